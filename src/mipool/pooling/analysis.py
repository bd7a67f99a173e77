from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import numpy as np
import pandas as pd

from mipool.config import PoolingConfig
from mipool.imputation import ImputationResult
from mipool.utils.checks import beartype
from mipool.utils.errors import PoolingError

from .multivariate import PooledVector, pool_vector
from .rubin import PooledEstimate, pool_scalar

AnalysisFunction = Callable[[pd.DataFrame], tuple[Any, Any]]


@beartype
def pool_analyses(
    data: ImputationResult | Sequence[pd.DataFrame],
    analysis: AnalysisFunction,
    *,
    names: Sequence[str] | None = None,
    dfcom: float | None = None,
    alpha: float | None = None,
    parallel: bool = False,
    max_workers: int | None = None,
    config: PoolingConfig | None = None,
) -> PooledEstimate | PooledVector:
    """Apply `analysis` to every completed dataset and pool the results.

    `analysis` receives one completed frame and returns either a scalar
    `(estimate, variance)` pair or a `(vector, covariance)` pair. It must
    compute the estimate exactly as on genuinely complete data.

    Args:
        data (ImputationResult | Sequence[pd.DataFrame]): Completed datasets.
        analysis (AnalysisFunction): The per-dataset analysis.
        names (Sequence[str] | None): Component labels for vector results.
        dfcom (float | None): Complete-data degrees of freedom.
        alpha (float | None): Interval level parameter.
        parallel (bool): Run the analyses in a thread pool.
        max_workers (int | None): Thread pool size cap.
        config (PoolingConfig | None): Pooling defaults.

    Returns:
        PooledEstimate | PooledVector: Scalar or vector pooled result.

    Raises:
        PoolingError: If there are no datasets or the analysis outputs are
            malformed or inconsistent across datasets.
    """

    frames = list(data)
    if not frames:
        raise PoolingError("Pooling needs at least one imputation (m >= 1).")

    if parallel and len(frames) > 1:
        workers = max_workers or min(len(frames), os.cpu_count() or 1)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outputs = list(executor.map(lambda frame: analysis(frame.copy()), frames))
    else:
        outputs = [analysis(frame.copy()) for frame in frames]

    estimates, variances = _split_outputs(outputs)
    if estimates.ndim == 1:
        return pool_scalar(
            estimates, variances, dfcom=dfcom, alpha=alpha, config=config
        )
    return pool_vector(
        estimates, variances, names=names, dfcom=dfcom, alpha=alpha, config=config
    )


def _split_outputs(outputs: list[Any]) -> tuple[np.ndarray, np.ndarray]:
    estimates = []
    variances = []
    for index, output in enumerate(outputs, start=1):
        if not isinstance(output, tuple | list) or len(output) != 2:
            raise PoolingError(
                f"Analysis of imputation {index} must return an "
                "(estimate, variance) pair."
            )
        estimates.append(np.asarray(output[0], dtype="float64"))
        variances.append(np.asarray(output[1], dtype="float64"))

    shapes = {(est.shape, var.shape) for est, var in zip(estimates, variances)}
    if len(shapes) != 1:
        raise PoolingError("Analysis outputs differ in shape across imputations.")
    estimate_shape, variance_shape = shapes.pop()
    if estimate_shape == () and variance_shape == ():
        return np.asarray(estimates), np.asarray(variances)
    if len(estimate_shape) == 1 and variance_shape == estimate_shape * 2:
        return np.stack(estimates), np.stack(variances)
    raise PoolingError(
        "Analysis must return a scalar estimate with a scalar variance, or a "
        "vector with a square covariance matrix."
    )
