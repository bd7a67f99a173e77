from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from mipool.config import ImputationConfig
from mipool.utils.checks import beartype
from mipool.utils.errors import ModelFitError
from mipool.utils.metadata import ComponentMetadata

from .design import dependent_columns


@beartype
@dataclass(frozen=True)
class FittedModel:
    """Result of fitting one conditional model on the observed rows.

    Attributes:
        method (str): Method key that produced the fit.
        columns (tuple[str, ...]): Design columns, intercept excluded.
        coefficients (dict[str, float]): Point estimates keyed by design
            column, with `"(intercept)"` first. Multinomial fits prefix each
            key with the outcome level, e.g. `"b:x"`.
        state (dict[str, Any]): Method-private arrays used by `draw`.
    """

    method: str
    columns: tuple[str, ...]
    coefficients: dict[str, float]
    state: dict[str, Any] = field(default_factory=dict, repr=False)


@beartype
class ImputationMethod:
    """Base interface for univariate conditional imputation models.

    One call to `fit(...)` is made per target variable per iteration, on the
    currently observed rows; `draw(...)` then produces one value per missing
    row. Both receive the chain's own random generator so that a fixed seed
    reproduces every draw.
    """

    metadata = ComponentMetadata(
        name="base",
        full_name="Imputation Method",
    )

    @beartype
    def fit(
        self,
        *,
        x: np.ndarray,
        y: np.ndarray,
        columns: Sequence[str],
        sources: Sequence[str],
        levels: tuple[Any, ...] | None,
        rng: np.random.Generator,
        config: ImputationConfig,
    ) -> FittedModel:
        """Fit the conditional model of one target.

        Args:
            x (np.ndarray): Design rows of the observed cases, no intercept.
            y (np.ndarray): Observed target values.
            columns (Sequence[str]): Design column labels.
            sources (Sequence[str]): Predictor variable behind each column,
                used to name offending predictors in `ModelFitError`.
            levels (tuple[Any, ...] | None): Level set for discrete targets.
            rng (np.random.Generator): Chain random generator.
            config (ImputationConfig): Run settings such as `donors`.

        Returns:
            FittedModel: Fitted parameters including one posterior draw.
        """

        _ = x, y, columns, sources, levels, rng, config
        raise NotImplementedError

    @beartype
    def draw(
        self,
        model: FittedModel,
        *,
        x: np.ndarray,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """Draw imputations for the missing rows described by `x`."""

        _ = model, x, rng
        raise NotImplementedError


@beartype
def require_full_rank(
    x: np.ndarray, *, columns: Sequence[str], sources: Sequence[str]
) -> None:
    """Raise `ModelFitError` naming predictors behind dependent columns."""

    dependent = dependent_columns(x)
    if not dependent:
        return
    offending = tuple(dict.fromkeys(sources[index] for index in dependent))
    labels = ", ".join(columns[index] for index in dependent)
    raise ModelFitError(
        f"Design matrix is rank deficient; dependent columns: {labels}.",
        offending=offending,
    )


@beartype
def require_cases(
    x: np.ndarray, *, sources: Sequence[str], minimum_extra: int = 1
) -> None:
    """Raise when there are too few observed rows for the design."""

    needed = x.shape[1] + 1 + minimum_extra
    if x.shape[0] >= needed:
        return
    raise ModelFitError(
        f"Only {x.shape[0]} observed cases for {x.shape[1]} design columns.",
        offending=tuple(dict.fromkeys(sources[-1:])),
    )


@beartype
def draw_marginal(
    observed: np.ndarray, size: int, rng: np.random.Generator
) -> np.ndarray:
    """Sample with replacement from the observed values of one variable."""

    if size == 0:
        return observed[:0].copy()
    return observed[rng.integers(0, len(observed), size=size)]


def named_coefficients(
    intercept: float, slopes: np.ndarray, columns: Sequence[str], *, prefix: str = ""
) -> dict[str, float]:
    named = {f"{prefix}(intercept)": float(intercept)}
    named.update(
        {f"{prefix}{column}": float(value) for column, value in zip(columns, slopes)}
    )
    return named


def posterior_normal(
    mean: np.ndarray,
    covariance: np.ndarray,
    rng: np.random.Generator,
    *,
    sources: Sequence[str],
    scale: float = 1.0,
) -> np.ndarray:
    """Draw from `N(mean, scale**2 * covariance)` through a Cholesky factor."""

    try:
        factor = np.linalg.cholesky(covariance)
    except np.linalg.LinAlgError as exc:
        raise ModelFitError(
            "Parameter covariance is not positive definite.",
            offending=tuple(dict.fromkeys(sources[-1:])),
        ) from exc
    return mean + scale * (factor @ rng.standard_normal(len(mean)))
