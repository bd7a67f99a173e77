from __future__ import annotations

import io
import json
import sys
import warnings
from collections.abc import Mapping
from contextlib import redirect_stderr, redirect_stdout
from typing import Any

from mipool.utils.errors import (
    ConvergenceWarning,
    DataValidationError,
    InputValidationError,
    LibraryError,
    ModelFitError,
    ModelFitWarning,
    OperationNotFoundError,
    PoolingError,
)

BRIDGE_NAME = "mipool-bridge"

# Most specific first; the first matching class decides the envelope.
_ERROR_TYPES: tuple[tuple[type[LibraryError], int, str], ...] = (
    (OperationNotFoundError, 2, "unknown_operation"),
    (DataValidationError, 3, "data_validation_error"),
    (InputValidationError, 3, "input_validation_error"),
    (PoolingError, 3, "pooling_error"),
    (ModelFitError, 3, "model_fit_error"),
    (LibraryError, 3, "library_error"),
)
_REPORTED_WARNINGS = (ModelFitWarning, ConvergenceWarning)


class PayloadError(ValueError):
    """Raised when the request envelope itself is malformed."""


def _emit(payload: Mapping[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False), file=sys.stdout)


def _fail(*, code: int, error_type: str, message: str) -> int:
    _emit({"ok": False, "error": {"type": error_type, "message": message}})
    return code


def _classify(exc: LibraryError) -> tuple[int, str]:
    return next(
        (code, error_type)
        for error_class, code, error_type in _ERROR_TYPES
        if isinstance(exc, error_class)
    )


def _parse_request(raw: str) -> tuple[str, dict[str, Any]]:
    """Split a `{"operation": ..., "params": {...}}` request."""

    if not raw.strip():
        raise PayloadError("Missing JSON request on stdin.")
    request = json.loads(raw)
    if not isinstance(request, dict):
        raise PayloadError("JSON request must be an object.")
    operation = request.get("operation")
    params = request.get("params", {})
    if not isinstance(operation, str) or not operation.strip():
        raise PayloadError("`operation` must be a non-empty string.")
    if not isinstance(params, dict):
        raise PayloadError("`params` must be an object.")
    return operation.strip(), params


def _ping() -> int:
    from mipool.bridge.operations import list_operations

    operations = [item["name"] for item in list_operations()]
    _emit(
        {
            "ok": True,
            "result": {
                "bridge": BRIDGE_NAME,
                "status": "ok",
                "operations": operations,
            },
        }
    )
    return 0


def main() -> int:
    """Read one JSON request from stdin and print a JSON envelope.

    Successful runs print `{"ok": true, "result": ..., "warnings": [...]}`,
    where `warnings` carries the model-fit and convergence warnings the
    operation issued. Failures print `{"ok": false, "error": {...}}` and
    return a non-zero exit code: 2 for malformed requests and unknown
    operations, 3 for rejected data or pooling inputs, 1 otherwise.
    """

    if len(sys.argv) > 1 and sys.argv[1].strip().lower() in {"--ping", "ping"}:
        return _ping()

    try:
        operation, params = _parse_request(sys.stdin.read())
    except json.JSONDecodeError as exc:
        return _fail(code=2, error_type="json_decode_error", message=str(exc))
    except PayloadError as exc:
        return _fail(code=2, error_type="payload_error", message=str(exc))

    from mipool.bridge.operations import execute_operation

    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            with redirect_stdout(io.StringIO()), redirect_stderr(io.StringIO()):
                result = execute_operation(operation, params)
    except LibraryError as exc:
        code, error_type = _classify(exc)
        return _fail(code=code, error_type=error_type, message=str(exc))
    except Exception as exc:  # pragma: no cover - reported, not raised
        return _fail(code=1, error_type="internal_error", message=str(exc))

    _emit(
        {
            "ok": True,
            "result": result,
            "warnings": [
                {"category": item.category.__name__, "message": str(item.message)}
                for item in caught
                if issubclass(item.category, _REPORTED_WARNINGS)
            ],
        }
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
