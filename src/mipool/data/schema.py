from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any, Literal

import pandas as pd

from mipool.utils.checks import beartype
from mipool.utils.errors import DataValidationError

from .formulas import (
    Aggregate,
    Arithmetic,
    Column,
    Constant,
    Cut,
    PassiveFormula,
    formula_inputs,
    parse_formula,
)

VariableType = Literal["continuous", "binary", "categorical"]
VariableRole = Literal["target", "predictor", "passive", "excluded"]

_VARIABLE_TYPES = ("continuous", "binary", "categorical")
_VARIABLE_ROLES = ("target", "predictor", "passive", "excluded")


@beartype
@dataclass(frozen=True)
class VariableSpec:
    """Declared schema for one dataset column.

    Attributes:
        name (str): Unique column name.
        type (VariableType): Semantic type.
        role (VariableRole): `target` variables are imputed when incomplete,
            `predictor` variables only inform other models and must be fully
            observed, `passive` variables are derived from `formula`, and
            `excluded` variables are carried through untouched.
        missing_values (tuple[Any, ...]): Sentinels marking a missing cell in
            addition to `None`/`NaN`.
        levels (tuple[Any, ...] | None): Allowed levels for binary and
            categorical variables. Inferred from observed data when omitted.
        formula (PassiveFormula | None): Derivation rule of a passive variable.
    """

    name: str
    type: VariableType = "continuous"
    role: VariableRole = "target"
    missing_values: tuple[Any, ...] = ()
    levels: tuple[Any, ...] | None = None
    formula: PassiveFormula | None = None


@beartype
class DatasetSchema:
    """Ordered, validated collection of variable declarations.

    Column order of the schema is the default visit order of the imputer.
    """

    def __init__(
        self,
        variables: Sequence[VariableSpec],
        *,
        id_column: str | None = None,
    ) -> None:
        self._variables = tuple(variables)
        self._by_name = {spec.name: spec for spec in self._variables}
        self.id_column = id_column
        self._validate()

    @property
    def variables(self) -> tuple[VariableSpec, ...]:
        return self._variables

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self._variables)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._variables)

    def __getitem__(self, name: str) -> VariableSpec:
        try:
            return self._by_name[name]
        except KeyError:
            raise DataValidationError(f"Unknown variable `{name}`.") from None

    def __repr__(self) -> str:
        return f"DatasetSchema(names={self.names!r}, id_column={self.id_column!r})"

    def names_with_role(self, *roles: VariableRole) -> tuple[str, ...]:
        return tuple(spec.name for spec in self._variables if spec.role in roles)

    def passive_inputs(self, name: str) -> tuple[str, ...]:
        spec = self[name]
        if spec.formula is None:
            return ()
        return formula_inputs(spec.formula)

    def with_levels(self, levels: Mapping[str, tuple[Any, ...]]) -> DatasetSchema:
        """Return a copy with resolved levels for discrete variables."""

        updated = [
            replace(spec, levels=levels[spec.name]) if spec.name in levels else spec
            for spec in self._variables
        ]
        return DatasetSchema(updated, id_column=self.id_column)

    def _validate(self) -> None:
        if not self._variables:
            raise DataValidationError("Schema must declare at least one variable.")
        if len(self._by_name) != len(self._variables):
            counts = Counter(spec.name for spec in self._variables)
            duplicates = sorted(name for name, count in counts.items() if count > 1)
            raise DataValidationError(
                f"Duplicate variable names in schema: {', '.join(duplicates)}."
            )
        if self.id_column is not None and self.id_column in self._by_name:
            raise DataValidationError(
                f"Identifier column `{self.id_column}` cannot also be a variable."
            )

        for spec in self._variables:
            _validate_sentinels(spec)
            _validate_levels(spec)
            if spec.role == "passive":
                self._validate_passive(spec)
            elif spec.formula is not None:
                raise DataValidationError(
                    f"Variable `{spec.name}` declares a formula but its role is "
                    f"`{spec.role}`; only passive variables are derived."
                )

        self._check_passive_cycles()

    def _validate_passive(self, spec: VariableSpec) -> None:
        if spec.formula is None:
            raise DataValidationError(
                f"Passive variable `{spec.name}` must declare a formula."
            )
        inputs = formula_inputs(spec.formula)
        if not inputs:
            raise DataValidationError(
                f"Passive variable `{spec.name}` formula reads no variables."
            )
        for input_name in inputs:
            if input_name == spec.name:
                raise DataValidationError(
                    f"Passive variable `{spec.name}` cannot reference itself."
                )
            if input_name not in self._by_name:
                raise DataValidationError(
                    f"Passive variable `{spec.name}` references undeclared "
                    f"input `{input_name}`."
                )
            if self._by_name[input_name].role == "excluded":
                raise DataValidationError(
                    f"Passive variable `{spec.name}` references excluded "
                    f"input `{input_name}`."
                )

    def _check_passive_cycles(self) -> None:
        state: dict[str, int] = {}

        def visit(name: str, path: tuple[str, ...]) -> None:
            if state.get(name) == 2:
                return
            if state.get(name) == 1:
                cycle = " -> ".join((*path, name))
                raise DataValidationError(f"Passive formulas form a cycle: {cycle}.")
            state[name] = 1
            for input_name in self.passive_inputs(name):
                if self._by_name[input_name].role == "passive":
                    visit(input_name, (*path, name))
            state[name] = 2

        for name in self.names_with_role("passive"):
            visit(name, ())


@beartype
def infer_schema(
    frame: pd.DataFrame,
    *,
    types: Mapping[str, VariableType] | None = None,
    roles: Mapping[str, VariableRole] | None = None,
    formulas: Mapping[str, Any] | None = None,
    missing_values: Mapping[str, Sequence[Any]] | None = None,
    levels: Mapping[str, Sequence[Any]] | None = None,
    id_column: str | None = None,
) -> DatasetSchema:
    """Build a schema for `frame`, inferring types that are not declared.

    Inference: numeric columns with more than two distinct observed values are
    continuous, columns with at most two distinct values are binary, anything
    else is categorical. Every keyword mapping must reference existing
    columns.

    Args:
        frame (pd.DataFrame): Raw data, one column per variable.
        types (Mapping[str, VariableType] | None): Declared types.
        roles (Mapping[str, VariableRole] | None): Declared roles. Variables
            with a formula default to `passive`, all others to `target`.
        formulas (Mapping[str, Any] | None): Passive formulas, either parsed
            expression trees or YAML/JSON-style mappings.
        missing_values (Mapping[str, Sequence[Any]] | None): Extra missing
            sentinels per column.
        levels (Mapping[str, Sequence[Any]] | None): Declared levels.
        id_column (str | None): Case identifier column.

    Returns:
        DatasetSchema: Validated schema in frame column order.
    """

    columns = [str(column) for column in frame.columns if column != id_column]
    if id_column is not None and id_column not in frame.columns:
        raise DataValidationError(f"Identifier column `{id_column}` is not present.")

    types = dict(types or {})
    roles = dict(roles or {})
    formulas = dict(formulas or {})
    missing_values = dict(missing_values or {})
    levels = dict(levels or {})
    for label, mapping in (
        ("types", types),
        ("roles", roles),
        ("formulas", formulas),
        ("missing_values", missing_values),
        ("levels", levels),
    ):
        unknown = sorted(set(mapping) - set(columns))
        if unknown:
            raise DataValidationError(
                f"`{label}` references unknown variables: {', '.join(unknown)}."
            )

    specs: list[VariableSpec] = []
    for column in columns:
        sentinels = tuple(missing_values.get(column, ()))
        declared_type = types.get(column)
        if declared_type is None:
            declared_type = _infer_type(frame[column], sentinels=sentinels)
        elif declared_type not in _VARIABLE_TYPES:
            raise DataValidationError(
                f"Unsupported type `{declared_type}` for `{column}`. "
                f"Supported types: {', '.join(_VARIABLE_TYPES)}."
            )

        formula = formulas.get(column)
        if formula is not None and not _is_parsed_formula(formula):
            formula = parse_formula(formula, context=f"formulas.{column}")
        role = roles.get(column, "passive" if formula is not None else "target")
        if role not in _VARIABLE_ROLES:
            raise DataValidationError(
                f"Unsupported role `{role}` for `{column}`. "
                f"Supported roles: {', '.join(_VARIABLE_ROLES)}."
            )

        declared_levels = levels.get(column)
        specs.append(
            VariableSpec(
                name=column,
                type=declared_type,
                role=role,
                missing_values=sentinels,
                levels=tuple(declared_levels) if declared_levels is not None else None,
                formula=formula,
            )
        )
    return DatasetSchema(specs, id_column=id_column)


@beartype
def schema_from_mapping(raw: Mapping[str, Any]) -> DatasetSchema:
    """Parse a JSON/YAML schema payload.

    Expected shape::

        {"id_column": "pid",
         "variables": [{"name": "age", "type": "continuous",
                        "role": "target", "missing_values": [-9]}, ...]}
    """

    variables = raw.get("variables")
    if not isinstance(variables, list) or not variables:
        raise DataValidationError("Schema must define a non-empty `variables` list.")

    specs: list[VariableSpec] = []
    for index, item in enumerate(variables):
        context = f"variables[{index}]"
        if not isinstance(item, Mapping):
            raise DataValidationError(f"Invalid `{context}`. Expected mapping.")
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise DataValidationError(f"Invalid `{context}.name`.")
        var_type = item.get("type", "continuous")
        if var_type not in _VARIABLE_TYPES:
            raise DataValidationError(f"Unsupported `{context}.type` `{var_type}`.")
        formula = item.get("formula")
        role = item.get("role", "passive" if formula is not None else "target")
        if role not in _VARIABLE_ROLES:
            raise DataValidationError(f"Unsupported `{context}.role` `{role}`.")
        sentinels = item.get("missing_values", [])
        if not isinstance(sentinels, list):
            raise DataValidationError(f"Invalid `{context}.missing_values`.")
        raw_levels = item.get("levels")
        if raw_levels is not None and not isinstance(raw_levels, list):
            raise DataValidationError(f"Invalid `{context}.levels`.")
        specs.append(
            VariableSpec(
                name=name.strip(),
                type=var_type,
                role=role,
                missing_values=tuple(sentinels),
                levels=tuple(raw_levels) if raw_levels is not None else None,
                formula=(
                    parse_formula(formula, context=f"{context}.formula")
                    if formula is not None
                    else None
                ),
            )
        )

    id_column = raw.get("id_column")
    if id_column is not None and not isinstance(id_column, str):
        raise DataValidationError("`id_column` must be a string.")
    return DatasetSchema(specs, id_column=id_column)


def _is_parsed_formula(value: Any) -> bool:
    return isinstance(value, Column | Constant | Arithmetic | Aggregate | Cut)


def _infer_type(series: pd.Series, *, sentinels: tuple[Any, ...]) -> VariableType:
    observed = series[~series.isna()]
    if sentinels:
        observed = observed[~observed.isin(sentinels)]
    distinct = observed.nunique(dropna=True)
    if distinct <= 2:
        return "binary"
    if pd.api.types.is_numeric_dtype(observed) and not pd.api.types.is_bool_dtype(
        observed
    ):
        return "continuous"
    return "categorical"


def _validate_sentinels(spec: VariableSpec) -> None:
    for sentinel in spec.missing_values:
        if sentinel is None:
            raise DataValidationError(
                f"Variable `{spec.name}`: `None` is always missing and must not "
                "be declared as a sentinel."
            )
        if spec.type == "continuous" and (
            isinstance(sentinel, bool) or not isinstance(sentinel, int | float | str)
        ):
            raise DataValidationError(
                f"Variable `{spec.name}`: sentinel {sentinel!r} is not a valid "
                "missing marker for a continuous variable."
            )
        if spec.levels is not None and sentinel in spec.levels:
            raise DataValidationError(
                f"Variable `{spec.name}`: sentinel {sentinel!r} is also a "
                "declared level."
            )
    if len(set(map(repr, spec.missing_values))) != len(spec.missing_values):
        raise DataValidationError(
            f"Variable `{spec.name}` declares duplicate missing sentinels."
        )


def _validate_levels(spec: VariableSpec) -> None:
    if spec.levels is None:
        return
    if spec.type == "continuous":
        raise DataValidationError(
            f"Continuous variable `{spec.name}` cannot declare levels."
        )
    if len(set(map(repr, spec.levels))) != len(spec.levels):
        raise DataValidationError(f"Variable `{spec.name}` declares duplicate levels.")
    if spec.type == "binary" and len(spec.levels) > 2:
        raise DataValidationError(
            f"Binary variable `{spec.name}` cannot have more than two levels."
        )
