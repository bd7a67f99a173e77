from __future__ import annotations

import warnings
from collections.abc import Sequence
from typing import Any

import numpy as np
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
    require_cases,
    require_full_rank,
)
from .logreg import MAX_ITER, PENALTY_C


@beartype
class MultinomialImputation(ImputationMethod):
    """Multinomial logistic regression for categorical targets.

    Parameter uncertainty is propagated by refitting on a bootstrap resample
    of the observed rows; each missing row then draws its level from the
    per-level probabilities of the resampled fit. Levels absent from the
    resample receive probability zero for that iteration.
    """

    metadata = ComponentMetadata(
        name="polyreg",
        full_name="Multinomial Logistic Regression",
        abstract_description=(
            "Multinomial logistic model refit on a bootstrap sample; draws a "
            "level per missing case."
        ),
        supported_types=("binary", "categorical"),
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
        position = {level: index for index, level in enumerate(levels)}
        codes = np.asarray([position[value] for value in y], dtype="int64")
        if len(np.unique(codes)) < 2:
            raise ModelFitError(
                "Multinomial model needs at least two observed levels."
            )
        require_cases(x, sources=sources)
        require_full_rank(x, columns=columns, sources=sources)

        resample = rng.integers(0, len(codes), size=len(codes))
        if len(np.unique(codes[resample])) < 2:
            resample = np.arange(len(codes))
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=SklearnConvergenceWarning)
            classifier = LogisticRegression(C=PENALTY_C, max_iter=MAX_ITER).fit(
                x[resample], codes[resample]
            )

        coefficients: dict[str, float] = {}
        fitted_classes = classifier.classes_.tolist()
        if len(fitted_classes) == 2:
            coefficients.update(
                named_coefficients(
                    classifier.intercept_[0],
                    classifier.coef_[0],
                    columns,
                    prefix=f"{levels[fitted_classes[1]]}:",
                )
            )
        else:
            for row, code in enumerate(fitted_classes):
                coefficients.update(
                    named_coefficients(
                        classifier.intercept_[row],
                        classifier.coef_[row],
                        columns,
                        prefix=f"{levels[code]}:",
                    )
                )

        return FittedModel(
            method="polyreg",
            columns=tuple(columns),
            coefficients=coefficients,
            state={"classifier": classifier, "levels": levels},
        )

    @beartype
    def draw(
        self,
        model: FittedModel,
        *,
        x: np.ndarray,
        rng: np.random.Generator,
    ) -> np.ndarray:
        levels = model.state["levels"]
        classifier = model.state["classifier"]
        if len(x) == 0:
            return np.empty(0, dtype=object)
        probabilities = np.zeros((len(x), len(levels)))
        probabilities[:, classifier.classes_] = classifier.predict_proba(x)
        return draw_categorical(probabilities, levels, rng)


@beartype
def draw_categorical(
    probabilities: np.ndarray, levels: tuple[Any, ...], rng: np.random.Generator
) -> np.ndarray:
    """Draw one level per row from row-wise level probabilities."""

    cumulative = np.cumsum(probabilities, axis=1)
    cumulative /= cumulative[:, -1:]
    uniform = rng.random((len(probabilities), 1))
    picked = np.minimum((cumulative < uniform).sum(axis=1), len(levels) - 1)
    return np.asarray(levels, dtype=object)[picked]
