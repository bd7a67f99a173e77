from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType

from mipool.data import Dataset
from mipool.utils.checks import beartype
from mipool.utils.errors import DataValidationError, OperationNotFoundError
from mipool.utils.metadata import resolve_component_metadata

from .methods import MODEL_METHODS, MethodKind, method_class

_DEFAULT_BY_TYPE: dict[str, MethodKind] = {
    "continuous": "pmm",
    "binary": "logreg",
    "categorical": "polyreg",
}


@beartype
class MethodRegistry:
    """Immutable assignment of exactly one imputation method per variable.

    Use `MethodRegistry.for_dataset(...)` to build a validated registry; the
    constructor only stores the mapping.
    """

    def __init__(self, methods: Mapping[str, MethodKind]) -> None:
        self._methods = MappingProxyType(dict(methods))

    @classmethod
    @beartype
    def for_dataset(
        cls,
        dataset: Dataset,
        overrides: Mapping[str, str] | None = None,
    ) -> MethodRegistry:
        """Assign default methods and apply validated overrides.

        Defaults: `none` for excluded, predictor-only and fully observed
        variables; `passive` for passive variables with missing cells; `pmm`
        for continuous, `logreg` for binary and `polyreg` for categorical
        targets.

        Args:
            dataset (Dataset): Ingested dataset.
            overrides (Mapping[str, str] | None): Per-variable method keys.

        Returns:
            MethodRegistry: The validated registry.
        """

        overrides = dict(overrides or {})
        unknown = sorted(name for name in overrides if name not in dataset.schema)
        if unknown:
            raise DataValidationError(
                f"Method overrides reference unknown variables: {', '.join(unknown)}."
            )

        methods: dict[str, MethodKind] = {}
        for spec in dataset.schema.variables:
            kind = overrides.get(spec.name, _default_method(dataset, spec.name))
            kind = str(kind).strip().lower()
            try:
                method_class(kind)
            except OperationNotFoundError as exc:
                raise DataValidationError(
                    f"Unknown imputation method `{kind}` for `{spec.name}`."
                ) from exc
            methods[spec.name] = kind

        registry = cls(methods)
        registry.validate(dataset)
        return registry

    def __getitem__(self, name: str) -> MethodKind:
        try:
            return self._methods[name]
        except KeyError as exc:
            raise DataValidationError(f"No method registered for `{name}`.") from exc

    def __iter__(self) -> Iterator[str]:
        return iter(self._methods)

    def __len__(self) -> int:
        return len(self._methods)

    def __contains__(self, name: object) -> bool:
        return name in self._methods

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MethodRegistry):
            return NotImplemented
        return dict(self._methods) == dict(other._methods)

    def __repr__(self) -> str:
        return f"MethodRegistry({dict(self._methods)!r})"

    def as_dict(self) -> dict[str, MethodKind]:
        return dict(self._methods)

    def imputed(self) -> tuple[str, ...]:
        """Variables with a non-`none` method, in registry order."""

        return tuple(name for name, kind in self._methods.items() if kind != "none")

    def modelled(self) -> tuple[str, ...]:
        return tuple(
            name for name, kind in self._methods.items() if kind in MODEL_METHODS
        )

    def validate(self, dataset: Dataset) -> None:
        """Check the registry against roles, types and missingness.

        Raises:
            DataValidationError: On any inconsistency between a variable's
                method and its role, declared type or missingness.
        """

        schema = dataset.schema
        if set(self._methods) != set(schema.names):
            raise DataValidationError(
                "Method registry must cover exactly the dataset variables."
            )
        for spec in schema.variables:
            kind = self._methods[spec.name]
            missing = dataset.missing_count(spec.name)
            if spec.role in ("excluded", "predictor") and kind != "none":
                raise DataValidationError(
                    f"`{spec.name}` has role `{spec.role}` and cannot be imputed "
                    f"with `{kind}`."
                )
            if missing == 0 and kind != "none":
                raise DataValidationError(
                    f"`{spec.name}` is fully observed; its method must be `none`."
                )
            if (kind == "passive") != (spec.role == "passive" and missing > 0):
                raise DataValidationError(
                    f"`{spec.name}`: the `passive` method is reserved for passive "
                    "variables with missing values, and they must use it."
                )
            if spec.role == "target" and missing > 0:
                if kind not in MODEL_METHODS:
                    raise DataValidationError(
                        f"`{spec.name}` has {missing} missing values but method "
                        f"`{kind}` does not impute them."
                    )
                if missing == dataset.n_cases:
                    raise DataValidationError(
                        f"`{spec.name}` has no observed values to fit a model on."
                    )
            if kind in MODEL_METHODS:
                metadata = resolve_component_metadata(method_class(kind))
                supported = metadata.supported_types
                if spec.type not in supported:
                    raise DataValidationError(
                        f"Method `{kind}` does not support {spec.type} variable "
                        f"`{spec.name}`; supported types: {', '.join(supported)}."
                    )


def _default_method(dataset: Dataset, name: str) -> MethodKind:
    spec = dataset.spec(name)
    if spec.role in ("excluded", "predictor") or dataset.missing_count(name) == 0:
        return "none"
    if spec.role == "passive":
        return "passive"
    return _DEFAULT_BY_TYPE[spec.type]
