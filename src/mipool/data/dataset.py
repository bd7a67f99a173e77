from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np
import pandas as pd

from mipool.utils.checks import beartype
from mipool.utils.errors import DataValidationError

from .schema import DatasetSchema, VariableSpec

CASE_ID_COLUMN = "case_id"


@beartype
class Dataset:
    """Immutable, schema-validated table of cases.

    Missing sentinels are replaced by `NaN` at ingestion. Continuous variables
    are stored as `float64`, binary and categorical variables as `object`
    columns holding their declared level labels. Accessors return copies; the
    imputer works on private copies and never mutates a `Dataset`.

    Examples:
        ```python
        import pandas as pd

        from mipool.data import Dataset, infer_schema

        raw = pd.DataFrame({"age": [31, -9, 45], "smoker": ["y", "n", None]})
        schema = infer_schema(raw, missing_values={"age": [-9]})
        dataset = Dataset.from_frame(raw, schema)
        ```
    """

    def __init__(self, frame: pd.DataFrame, schema: DatasetSchema) -> None:
        self._frame = frame
        self._schema = schema

    @classmethod
    @beartype
    def from_frame(cls, frame: pd.DataFrame, schema: DatasetSchema) -> Dataset:
        """Validate `frame` against `schema` and ingest a private copy.

        Args:
            frame (pd.DataFrame): Raw data, one column per declared variable
                plus the optional identifier column.
            schema (DatasetSchema): Declared column semantics.

        Returns:
            Dataset: The ingested dataset with resolved levels.
        """

        expected = set(schema.names)
        if schema.id_column is not None:
            expected.add(schema.id_column)
        missing_columns = sorted(expected - {str(c) for c in frame.columns})
        if missing_columns:
            raise DataValidationError(
                "Schema references variables missing from the data: "
                f"{', '.join(missing_columns)}."
            )
        undeclared = sorted({str(c) for c in frame.columns} - expected)
        if undeclared:
            raise DataValidationError(
                f"Data columns are not declared in the schema: {', '.join(undeclared)}."
            )

        data = frame.copy()
        data.columns = [str(column) for column in data.columns]
        data.index = _case_index(data, schema.id_column)
        if schema.id_column is not None:
            data = data.drop(columns=[schema.id_column])
        data = data.loc[:, list(schema.names)]

        resolved_levels: dict[str, tuple[Any, ...]] = {}
        for spec in schema.variables:
            column = data[spec.name].astype(object)
            column = column.where(~_missing_mask(column, spec.missing_values), np.nan)
            if spec.type == "continuous":
                data[spec.name] = _as_continuous(column, name=spec.name)
            else:
                data[spec.name] = column
                resolved_levels[spec.name] = _resolve_levels(column, spec=spec)

        for name in schema.names_with_role("predictor"):
            count = int(data[name].isna().sum())
            if count:
                raise DataValidationError(
                    f"Predictor-only variable `{name}` has {count} missing values; "
                    "declare it as `target` to impute it or `excluded` to drop it."
                )

        # A complete passive variable is never recomputed.
        for name in schema.names_with_role("passive"):
            if data[name].isna().any():
                continue
            incomplete = [
                input_name
                for input_name in schema.passive_inputs(name)
                if data[input_name].isna().any()
            ]
            if incomplete:
                raise DataValidationError(
                    f"Passive variable `{name}` is fully observed but its inputs "
                    f"{', '.join(incomplete)} have missing values; mark the "
                    "affected derived values missing so they are recomputed."
                )

        resolved = schema.with_levels(resolved_levels) if resolved_levels else schema
        return cls(data, resolved)

    @classmethod
    @beartype
    def from_records(
        cls,
        records: Sequence[Mapping[str, Any]],
        schema: DatasetSchema,
    ) -> Dataset:
        """Ingest a sequence of `{variable: value}` records.

        Keys absent from a record are treated as missing.
        """

        columns = list(schema.names)
        if schema.id_column is not None:
            columns.insert(0, schema.id_column)
        for index, record in enumerate(records):
            unknown = sorted(set(record) - set(columns))
            if unknown:
                raise DataValidationError(
                    f"Record {index} has undeclared keys: {', '.join(unknown)}."
                )
        frame = pd.DataFrame.from_records(list(records), columns=columns)
        return cls.from_frame(frame, schema)

    @property
    def schema(self) -> DatasetSchema:
        return self._schema

    @property
    def names(self) -> tuple[str, ...]:
        return self._schema.names

    @property
    def n_cases(self) -> int:
        return len(self._frame)

    @property
    def case_ids(self) -> pd.Index:
        return self._frame.index.copy()

    def __len__(self) -> int:
        return len(self._frame)

    def __repr__(self) -> str:
        return f"Dataset(n_cases={self.n_cases}, variables={self.names!r})"

    def to_frame(self) -> pd.DataFrame:
        """Return a copy of the ingested data indexed by case identifier."""

        return self._frame.copy()

    def missing_mask(self) -> pd.DataFrame:
        return self._frame.isna()

    def missing_count(self, name: str) -> int:
        return int(self._frame[name].isna().sum())

    def observed_values(self, name: str) -> np.ndarray:
        """Return the observed (non-missing) values of one variable."""

        column = self._frame[name]
        return column[column.notna()].to_numpy(copy=True)

    def spec(self, name: str) -> VariableSpec:
        return self._schema[name]


def _case_index(data: pd.DataFrame, id_column: str | None) -> pd.Index:
    if id_column is None:
        return pd.RangeIndex(len(data), name=CASE_ID_COLUMN)
    ids = data[id_column]
    if ids.isna().any():
        raise DataValidationError(
            f"Identifier column `{id_column}` has missing values."
        )
    if not ids.is_unique:
        raise DataValidationError(f"Identifier column `{id_column}` is not unique.")
    return pd.Index(ids.to_numpy(), name=CASE_ID_COLUMN)


def _missing_mask(column: pd.Series, sentinels: tuple[Any, ...]) -> pd.Series:
    mask = column.isna()
    if sentinels:
        mask = mask | column.isin(list(sentinels))
    return mask


def _as_continuous(column: pd.Series, *, name: str) -> pd.Series:
    try:
        return pd.to_numeric(column, errors="raise").astype("float64")
    except (TypeError, ValueError) as exc:
        raise DataValidationError(
            f"Continuous variable `{name}` has non-numeric values that are not "
            f"declared missing sentinels: {exc}"
        ) from exc


def _resolve_levels(column: pd.Series, *, spec: VariableSpec) -> tuple[Any, ...]:
    observed = pd.unique(column[column.notna()])
    if spec.levels is not None:
        allowed = set(spec.levels)
        unknown = [value for value in observed if value not in allowed]
        if unknown:
            raise DataValidationError(
                f"Variable `{spec.name}` has values outside its declared levels: "
                f"{', '.join(repr(value) for value in unknown)}."
            )
        return spec.levels

    levels = tuple(sorted(observed, key=lambda value: (str(type(value)), value)))
    if spec.type == "binary" and len(levels) > 2:
        raise DataValidationError(
            f"Binary variable `{spec.name}` has {len(levels)} observed levels."
        )
    return levels
