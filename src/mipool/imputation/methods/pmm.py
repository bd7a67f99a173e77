from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as np
from sklearn.linear_model import LinearRegression

from mipool.config import ImputationConfig
from mipool.utils.checks import beartype
from mipool.utils.errors import ModelFitError
from mipool.utils.metadata import ComponentMetadata

from .base import (
    FittedModel,
    ImputationMethod,
    named_coefficients,
    posterior_normal,
    require_cases,
    require_full_rank,
)
from .design import with_intercept


@beartype
class PredictiveMeanMatching(ImputationMethod):
    """Predictive mean matching for continuous targets.

    Fits an ordinary least-squares model, draws `(sigma*, beta*)` from their
    posterior under a non-informative prior, and fills each missing row with
    the observed value of one donor drawn uniformly from the `donors` observed
    rows whose fitted mean is closest to the row's predicted mean under
    `beta*`. Imputed values are therefore always observed values.
    """

    metadata = ComponentMetadata(
        name="pmm",
        full_name="Predictive Mean Matching",
        abstract_description=(
            "Linear model with a Bayesian parameter draw; imputes observed donor "
            "values closest in predicted mean."
        ),
        supported_types=("continuous",),
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
        _ = levels
        require_cases(x, sources=sources)
        require_full_rank(x, columns=columns, sources=sources)

        y = y.astype("float64")
        regression = LinearRegression().fit(x, y)
        beta_hat = np.r_[regression.intercept_, regression.coef_]
        design = with_intercept(x)
        residuals = y - design @ beta_hat

        df = max(design.shape[0] - design.shape[1], 1)
        sigma_star = float(np.sqrt(residuals @ residuals / rng.chisquare(df)))

        xtx = design.T @ design
        try:
            covariance = np.linalg.inv(xtx + np.diag(config.ridge * np.diag(xtx)))
        except np.linalg.LinAlgError as exc:
            raise ModelFitError(
                "Normal equations are singular.",
                offending=tuple(dict.fromkeys(sources[-1:])),
            ) from exc
        covariance = (covariance + covariance.T) / 2.0
        beta_star = posterior_normal(
            beta_hat, covariance, rng, sources=sources, scale=sigma_star
        )

        return FittedModel(
            method="pmm",
            columns=tuple(columns),
            coefficients=named_coefficients(beta_hat[0], beta_hat[1:], columns),
            state={
                "beta_star": beta_star,
                "fitted": design @ beta_hat,
                "observed": y,
                "donors": config.donors,
            },
        )

    @beartype
    def draw(
        self,
        model: FittedModel,
        *,
        x: np.ndarray,
        rng: np.random.Generator,
    ) -> np.ndarray:
        predicted = with_intercept(x) @ model.state["beta_star"]
        return match_donors(
            predicted,
            fitted=model.state["fitted"],
            observed=model.state["observed"],
            donors=model.state["donors"],
            rng=rng,
        )


@beartype
def match_donors(
    predicted: np.ndarray,
    *,
    fitted: np.ndarray,
    observed: np.ndarray,
    donors: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Pick one of the `donors` nearest observed rows for each prediction.

    Ties in distance are broken by observed-row order.
    """

    if len(predicted) == 0:
        return observed[:0].copy()
    pool = min(donors, len(observed))
    distances = np.abs(predicted[:, None] - fitted[None, :])
    nearest = np.argsort(distances, axis=1, kind="stable")[:, :pool]
    chosen = rng.integers(0, pool, size=len(predicted))
    return observed[nearest[np.arange(len(predicted)), chosen]]
