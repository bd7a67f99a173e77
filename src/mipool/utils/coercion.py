from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from mipool.utils.checks import beartype
from mipool.utils.errors import InputValidationError


@beartype
def as_int(value: Any, *, field_name: str) -> int:
    """Coerce a user-supplied value into an integer."""

    if isinstance(value, bool):
        raise InputValidationError(f"`{field_name}` must be an integer value.")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise InputValidationError(f"`{field_name}` must be an integer value.")
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError as exc:
            raise InputValidationError(
                f"`{field_name}` must be an integer value."
            ) from exc
    raise InputValidationError(f"`{field_name}` must be an integer value.")


@beartype
def as_optional_int(value: Any, *, field_name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return as_int(value, field_name=field_name)


@beartype
def as_float(value: Any, *, field_name: str) -> float:
    if isinstance(value, bool):
        raise InputValidationError(f"`{field_name}` must be a numeric value.")
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip())
        except ValueError as exc:
            raise InputValidationError(
                f"`{field_name}` must be a numeric value."
            ) from exc
    raise InputValidationError(f"`{field_name}` must be a numeric value.")


@beartype
def as_optional_float(value: Any, *, field_name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return as_float(value, field_name=field_name)


@beartype
def as_bool(value: Any, *, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in {"1", "true", "yes", "y", "on"}:
            return True
        if token in {"0", "false", "no", "n", "off"}:
            return False
    raise InputValidationError(f"`{field_name}` must be a boolean value.")


@beartype
def as_name_tuple(value: Any, *, field_name: str) -> tuple[str, ...]:
    """Parse a comma-separated string or an iterable of names."""

    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    if isinstance(value, Iterable):
        names: list[str] = []
        for item in value:
            if not isinstance(item, str) or not item.strip():
                raise InputValidationError(
                    f"`{field_name}` entries must be non-empty strings."
                )
            names.append(item.strip())
        return tuple(names)
    raise InputValidationError(f"`{field_name}` must be a list of names.")

