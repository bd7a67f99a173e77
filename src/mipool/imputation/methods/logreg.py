from __future__ import annotations

import warnings
from collections.abc import Sequence
from typing import Any

import numpy as np
from scipy.special import expit
from sklearn.exceptions import ConvergenceWarning as SklearnConvergenceWarning
from sklearn.linear_model import LogisticRegression

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

# Inverse regularisation strength; large enough to leave estimates unpenalised
# in practice while keeping lbfgs finite.
PENALTY_C = 1.0e4
MAX_ITER = 1000


@beartype
class LogisticRegressionImputation(ImputationMethod):
    """Bayesian logistic regression for binary targets.

    After the maximum-likelihood fit, coefficients are drawn from their
    approximate normal posterior `N(beta_hat, (X'WX)^-1)` and each missing
    row receives a Bernoulli draw at the success probability implied by the
    drawn coefficients. The second declared level is the success level.

    Complete or quasi-complete separation of the observed outcomes by the
    linear predictor is reported as `ModelFitError` blaming the predictor
    with the largest standardised coefficient.
    """

    metadata = ComponentMetadata(
        name="logreg",
        full_name="Logistic Regression",
        abstract_description=(
            "Binary logistic model with a Bayesian coefficient draw and a "
            "Bernoulli draw per missing case."
        ),
        supported_types=("binary",),
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
        _ = config
        levels = levels or ()
        if len(levels) != 2 or len(set(y.tolist())) < 2:
            raise ModelFitError(
                "Logistic model needs both outcome levels among observed cases."
            )
        outcome = (y == levels[1]).astype("float64")
        require_cases(x, sources=sources)
        require_full_rank(x, columns=columns, sources=sources)

        classifier = _fit_classifier(x, outcome)
        beta_hat = np.r_[classifier.intercept_, classifier.coef_.ravel()]
        design = with_intercept(x)
        linear = design @ beta_hat

        # Ties at the boundary count: quasi-complete separation.
        if np.ptp(linear) > 0 and (
            linear[outcome == 1].min() >= linear[outcome == 0].max()
        ):
            strength = np.abs(beta_hat[1:]) * x.std(axis=0)
            blamed = int(np.argmax(strength))
            raise ModelFitError(
                f"Observed outcomes are perfectly separated by `{columns[blamed]}`.",
                offending=(sources[blamed],),
            )

        probability = expit(linear)
        information = design.T @ (design * (probability * (1.0 - probability))[:, None])
        try:
            covariance = np.linalg.inv(information)
        except np.linalg.LinAlgError as exc:
            raise ModelFitError(
                "Fisher information is singular.",
                offending=tuple(dict.fromkeys(sources[-1:])),
            ) from exc
        covariance = (covariance + covariance.T) / 2.0
        beta_star = posterior_normal(beta_hat, covariance, rng, sources=sources)

        return FittedModel(
            method="logreg",
            columns=tuple(columns),
            coefficients=named_coefficients(beta_hat[0], beta_hat[1:], columns),
            state={"beta_star": beta_star, "levels": levels},
        )

    @beartype
    def draw(
        self,
        model: FittedModel,
        *,
        x: np.ndarray,
        rng: np.random.Generator,
    ) -> np.ndarray:
        failure, success = model.state["levels"]
        probability = expit(with_intercept(x) @ model.state["beta_star"])
        hits = rng.random(len(probability)) < probability
        return np.where(hits, success, failure).astype(object)


def _fit_classifier(x: np.ndarray, outcome: np.ndarray) -> LogisticRegression:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=SklearnConvergenceWarning)
        return LogisticRegression(C=PENALTY_C, max_iter=MAX_ITER).fit(x, outcome)
