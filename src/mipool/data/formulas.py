from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Union

import numpy as np
import pandas as pd

from mipool.utils.checks import beartype
from mipool.utils.errors import DataValidationError

ArithmeticOperation = Literal["add", "subtract", "multiply", "divide", "power"]
AggregateOperation = Literal["sum", "mean", "min", "max"]

_ARITHMETIC_OPERATIONS = ("add", "subtract", "multiply", "divide", "power")
_AGGREGATE_OPERATIONS = ("sum", "mean", "min", "max")


@dataclass(frozen=True)
class Column:
    """Reference to the current value of one declared variable."""

    name: str


@dataclass(frozen=True)
class Constant:
    value: float


@dataclass(frozen=True)
class Arithmetic:
    """Binary arithmetic between two sub-expressions.

    Attributes:
        operation (ArithmeticOperation): One of add, subtract, multiply,
            divide, power.
        left (PassiveFormula): Left operand.
        right (PassiveFormula): Right operand.
    """

    operation: ArithmeticOperation
    left: PassiveFormula
    right: PassiveFormula


@dataclass(frozen=True)
class Aggregate:
    """Row-wise aggregate over several sub-expressions.

    Attributes:
        operation (AggregateOperation): One of sum, mean, min, max.
        inputs (tuple[PassiveFormula, ...]): Aggregated expressions.
    """

    operation: AggregateOperation
    inputs: tuple[PassiveFormula, ...]


@dataclass(frozen=True)
class Cut:
    """Bucketize a numeric expression into labelled intervals.

    Attributes:
        input (PassiveFormula): Expression to bucketize.
        bins (tuple[float, ...]): Strictly increasing bin edges. Use
            `-inf`/`inf` for open-ended buckets.
        labels (tuple[str | int | float, ...] | None): One label per bucket.
            Integer bucket codes are produced when omitted.
        right (bool): Whether intervals include their right edge.
    """

    input: PassiveFormula
    bins: tuple[float, ...]
    labels: tuple[str | int | float, ...] | None = None
    right: bool = True

    def __post_init__(self) -> None:
        if len(self.bins) < 2:
            raise DataValidationError("Cut formula needs at least two bin edges.")
        if any(
            upper <= lower
            for lower, upper in zip(self.bins[:-1], self.bins[1:], strict=True)
        ):
            raise DataValidationError("Cut bin edges must be strictly increasing.")
        if self.labels is not None and len(self.labels) != len(self.bins) - 1:
            raise DataValidationError(
                "Cut formula needs exactly one label per bucket "
                f"({len(self.bins) - 1}), got {len(self.labels)}."
            )


PassiveFormula = Union[Column, Constant, Arithmetic, Aggregate, Cut]


@beartype
def formula_inputs(formula: PassiveFormula) -> tuple[str, ...]:
    """Return the variable names a formula reads, in first-use order."""

    names: list[str] = []
    _collect_inputs(formula, names)
    return tuple(dict.fromkeys(names))


def _collect_inputs(formula: PassiveFormula, names: list[str]) -> None:
    if isinstance(formula, Column):
        names.append(formula.name)
    elif isinstance(formula, Arithmetic):
        _collect_inputs(formula.left, names)
        _collect_inputs(formula.right, names)
    elif isinstance(formula, Aggregate):
        for item in formula.inputs:
            _collect_inputs(item, names)
    elif isinstance(formula, Cut):
        _collect_inputs(formula.input, names)


@beartype
def evaluate_formula(formula: PassiveFormula, data: pd.DataFrame) -> pd.Series:
    """Evaluate a formula row-wise over the current values in `data`.

    Evaluation is a pure function of the referenced columns: no randomness and
    no state, so repeated evaluation on identical inputs is identical.
    """

    if isinstance(formula, Column):
        if formula.name not in data.columns:
            raise DataValidationError(
                f"Passive formula references unknown column `{formula.name}`."
            )
        return data[formula.name]
    if isinstance(formula, Constant):
        return pd.Series(formula.value, index=data.index, dtype="float64")
    if isinstance(formula, Arithmetic):
        left = _numeric(evaluate_formula(formula.left, data))
        right = _numeric(evaluate_formula(formula.right, data))
        with np.errstate(divide="ignore", invalid="ignore"):
            if formula.operation == "add":
                return left + right
            if formula.operation == "subtract":
                return left - right
            if formula.operation == "multiply":
                return left * right
            if formula.operation == "divide":
                return left / right
            return left**right
    if isinstance(formula, Aggregate):
        frame = pd.concat(
            [_numeric(evaluate_formula(item, data)) for item in formula.inputs],
            axis=1,
        )
        if formula.operation == "sum":
            return frame.sum(axis=1, min_count=1)
        if formula.operation == "mean":
            return frame.mean(axis=1)
        if formula.operation == "min":
            return frame.min(axis=1)
        return frame.max(axis=1)
    values = _numeric(evaluate_formula(formula.input, data))
    bucketed = pd.cut(
        values,
        bins=list(formula.bins),
        labels=list(formula.labels) if formula.labels is not None else False,
        right=formula.right,
    )
    if formula.labels is None:
        return pd.Series(bucketed, index=data.index, dtype="float64")
    return pd.Series(bucketed, index=data.index).astype(object)


@beartype
def parse_formula(
    raw: Mapping[str, Any] | str | int | float, *, context: str
) -> PassiveFormula:
    """Parse a YAML/JSON formula description into an expression tree.

    Accepted shapes:
        - `"age"` or `{"column": "age"}`: column reference.
        - `3.5` or `{"constant": 3.5}`: constant.
        - `{"operation": "divide", "left": ..., "right": ...}`: arithmetic.
        - `{"operation": "mean", "inputs": [...]}`: row-wise aggregate.
        - `{"operation": "cut", "input": ..., "bins": [...], "labels": [...]}`.
    """

    if isinstance(raw, str):
        if not raw.strip():
            raise DataValidationError(f"Invalid `{context}`: empty column name.")
        return Column(raw.strip())
    if isinstance(raw, bool):
        raise DataValidationError(f"Invalid `{context}`: booleans are not formulas.")
    if isinstance(raw, int | float):
        return Constant(float(raw))

    if "column" in raw:
        return parse_formula(str(raw["column"]), context=context)
    if "constant" in raw:
        value = raw["constant"]
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise DataValidationError(f"Invalid `{context}.constant`.")
        return Constant(float(value))

    operation = raw.get("operation")
    if operation in _ARITHMETIC_OPERATIONS:
        if "left" not in raw or "right" not in raw:
            raise DataValidationError(
                f"Invalid `{context}`: `{operation}` needs `left` and `right`."
            )
        return Arithmetic(
            operation=operation,
            left=parse_formula(raw["left"], context=f"{context}.left"),
            right=parse_formula(raw["right"], context=f"{context}.right"),
        )
    if operation in _AGGREGATE_OPERATIONS:
        inputs = raw.get("inputs")
        if not isinstance(inputs, list) or not inputs:
            raise DataValidationError(
                f"Invalid `{context}.inputs`. Expected non-empty list."
            )
        return Aggregate(
            operation=operation,
            inputs=tuple(
                parse_formula(item, context=f"{context}.inputs[{index}]")
                for index, item in enumerate(inputs)
            ),
        )
    if operation == "cut":
        bins = raw.get("bins")
        if not isinstance(bins, list) or len(bins) < 2:
            raise DataValidationError(
                f"Invalid `{context}.bins`. Expected a list of bin edges."
            )
        labels = raw.get("labels")
        if labels is not None and not isinstance(labels, list):
            raise DataValidationError(f"Invalid `{context}.labels`. Expected list.")
        if "input" not in raw:
            raise DataValidationError(f"Invalid `{context}`: `cut` needs `input`.")
        return Cut(
            input=parse_formula(raw["input"], context=f"{context}.input"),
            bins=tuple(_as_edge(edge, context=context) for edge in bins),
            labels=tuple(labels) if labels is not None else None,
            right=bool(raw.get("right", True)),
        )

    supported = ", ".join((*_ARITHMETIC_OPERATIONS, *_AGGREGATE_OPERATIONS, "cut"))
    raise DataValidationError(
        f"Unsupported `{context}.operation` `{operation}`. "
        f"Supported operations: {supported}."
    )


def _as_edge(value: Any, *, context: str) -> float:
    if isinstance(value, str) and value.strip().lower() in {"-inf", "inf", "+inf"}:
        return -math.inf if value.strip().startswith("-") else math.inf
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise DataValidationError(f"Invalid bin edge in `{context}.bins`: {value!r}.")
    return float(value)


def _numeric(series: pd.Series) -> pd.Series:
    return pd.to_numeric(series, errors="coerce").astype("float64")
