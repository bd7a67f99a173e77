from __future__ import annotations

from collections import Counter
from collections.abc import Iterator, Sequence

from mipool.config import VisitOrder
from mipool.data import Dataset
from mipool.utils.checks import beartype
from mipool.utils.errors import DataValidationError

from .registry import MethodRegistry


@beartype
class VisitSequence:
    """Validated order in which one iteration visits the imputed variables.

    The sequence covers exactly the variables with a non-`none` method, holds
    no duplicates, and places every passive variable after each of its
    visited inputs.
    """

    def __init__(self, order: Sequence[str]) -> None:
        duplicates = sorted(name for name, count in Counter(order).items() if count > 1)
        if duplicates:
            raise DataValidationError(
                f"Visit sequence repeats variables: {', '.join(duplicates)}."
            )
        self._order = tuple(order)

    @classmethod
    @beartype
    def for_registry(
        cls,
        dataset: Dataset,
        registry: MethodRegistry,
        order: VisitOrder | Sequence[str] = "column",
    ) -> VisitSequence:
        """Build and validate a visit sequence.

        Args:
            dataset (Dataset): Ingested dataset.
            registry (MethodRegistry): Method assignment; variables with
                method `none` are left out.
            order (VisitOrder | Sequence[str]): `"column"` for dataset column
                order, `"monotone"` for increasing and `"revmonotone"` for
                decreasing number of missing values, or an explicit sequence
                of variable names that is validated as given.

        Returns:
            VisitSequence: The validated sequence.
        """

        imputed = registry.imputed()
        if isinstance(order, str):
            ranked = list(imputed)
            if order in ("monotone", "revmonotone"):
                ranked.sort(
                    key=dataset.missing_count, reverse=order == "revmonotone"
                )
            elif order != "column":
                raise DataValidationError(
                    f"Unknown visit order `{order}`; use column, monotone or "
                    "revmonotone."
                )
            sequence = cls(_place_passive(ranked, dataset=dataset))
        else:
            sequence = cls(order)
        sequence.validate(dataset, registry)
        return sequence

    @property
    def order(self) -> tuple[str, ...]:
        return self._order

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VisitSequence):
            return NotImplemented
        return self._order == other._order

    def __hash__(self) -> int:
        return hash(self._order)

    def __repr__(self) -> str:
        return f"VisitSequence({list(self._order)!r})"

    def validate(self, dataset: Dataset, registry: MethodRegistry) -> None:
        expected = set(registry.imputed())
        unknown = sorted(set(self._order) - set(dataset.schema.names))
        if unknown:
            raise DataValidationError(
                f"Visit sequence references unknown variables: {', '.join(unknown)}."
            )
        extra = sorted(set(self._order) - expected)
        if extra:
            raise DataValidationError(
                "Visit sequence includes variables that are not imputed: "
                f"{', '.join(extra)}."
            )
        absent = sorted(expected - set(self._order))
        if absent:
            raise DataValidationError(
                f"Visit sequence omits imputed variables: {', '.join(absent)}."
            )

        position = {name: index for index, name in enumerate(self._order)}
        for name in self._order:
            if registry[name] != "passive":
                continue
            for input_name in dataset.schema.passive_inputs(name):
                if input_name in position and position[input_name] > position[name]:
                    raise DataValidationError(
                        f"Passive variable `{name}` is visited before its input "
                        f"`{input_name}`."
                    )


def _place_passive(ranked: list[str], *, dataset: Dataset) -> list[str]:
    """Keep the ranking but hold each passive variable until its inputs ran."""

    schema = dataset.schema
    visited = set(ranked)
    placed: list[str] = []
    pending: list[str] = []

    def _flush() -> None:
        progressed = True
        while progressed:
            progressed = False
            for name in list(pending):
                needed = [i for i in schema.passive_inputs(name) if i in visited]
                if all(input_name in placed for input_name in needed):
                    placed.append(name)
                    pending.remove(name)
                    progressed = True

    for name in ranked:
        if schema[name].role == "passive":
            pending.append(name)
        else:
            placed.append(name)
        _flush()
    return placed + pending
