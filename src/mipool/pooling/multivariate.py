from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
from scipy import stats

from mipool.config import PoolingConfig
from mipool.utils.checks import beartype
from mipool.utils.errors import PoolingError

from .rubin import PooledEstimate, pool_scalar


@beartype
@dataclass(frozen=True)
class PooledVector:
    """Rubin's-rules combination of `m` vector estimates.

    Attributes:
        names (tuple[str, ...]): Component labels.
        estimate (np.ndarray): Pooled estimate `Qbar`, shape `(k,)`.
        within (np.ndarray): Mean within covariance `Ubar`, `(k, k)`.
        between (np.ndarray): Between-imputation covariance `B`, `(k, k)`.
        total (np.ndarray): Total covariance `Ubar + (1 + 1/m) B`.
        components (tuple[PooledEstimate, ...]): Scalar pooling of each
            component with its diagonal variances.
        m (int): Number of imputations pooled.
    """

    names: tuple[str, ...]
    estimate: np.ndarray
    within: np.ndarray
    between: np.ndarray
    total: np.ndarray
    components: tuple[PooledEstimate, ...]
    m: int

    def __getitem__(self, name: str) -> PooledEstimate:
        try:
            return self.components[self.names.index(name)]
        except ValueError as exc:
            raise KeyError(name) from exc

    def to_frame(self) -> pd.DataFrame:
        """One row per component with the usual regression-table columns."""

        return pd.DataFrame(
            [
                {
                    "estimate": item.estimate,
                    "std_error": item.std_error,
                    "statistic": item.statistic,
                    "df": item.df,
                    "p_value": item.p_value,
                    "ci_lower": item.ci_lower,
                    "ci_upper": item.ci_upper,
                    "riv": item.riv,
                    "fmi": item.fmi,
                }
                for item in self.components
            ],
            index=pd.Index(self.names, name="term"),
        )


@beartype
@dataclass(frozen=True)
class WaldTestResult:
    """Multivariate Wald test on pooled estimates (D1 statistic).

    Attributes:
        statistic (float): `D1`, referred to `F(df1, df2)`.
        df1 (int): Number of tested components.
        df2 (float): Denominator degrees of freedom; `inf` when `B == 0`.
        p_value (float): Upper-tail probability.
        riv (float): Average relative increase in variance.
    """

    statistic: float
    df1: int
    df2: float
    p_value: float
    riv: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "statistic": self.statistic,
            "df1": self.df1,
            "df2": self.df2,
            "p_value": self.p_value,
            "riv": self.riv,
        }


@beartype
def pool_vector(
    estimates: Sequence[Sequence[float]] | np.ndarray,
    covariances: Sequence[Any] | np.ndarray,
    *,
    names: Sequence[str] | None = None,
    dfcom: float | None = None,
    alpha: float | None = None,
    config: PoolingConfig | None = None,
) -> PooledVector:
    """Pool `m` vector estimates with their covariance matrices.

    Args:
        estimates (Sequence[Sequence[float]] | np.ndarray): `(m, k)` estimates.
        covariances (Sequence[Any] | np.ndarray): `(m, k, k)` covariance
            matrices.
        names (Sequence[str] | None): Component labels. Defaults to
            `q0, q1, ...`.
        dfcom (float | None): Complete-data degrees of freedom.
        alpha (float | None): Interval level parameter.
        config (PoolingConfig | None): Pooling defaults.

    Returns:
        PooledVector: Pooled vector, covariance decomposition and per-component
        scalar summaries.
    """

    q = np.asarray(estimates, dtype="float64")
    u = np.asarray(covariances, dtype="float64")
    if q.ndim != 2 or q.shape[0] < 1:
        raise PoolingError("estimates must have shape (m, k) with m >= 1.")
    m, k = q.shape
    if u.shape != (m, k, k):
        raise PoolingError(
            f"covariances must have shape ({m}, {k}, {k}), got {u.shape}."
        )
    if not (np.isfinite(q).all() and np.isfinite(u).all()):
        raise PoolingError("Estimates and covariances must be finite.")
    labels = tuple(names) if names is not None else tuple(f"q{i}" for i in range(k))
    if len(labels) != k:
        raise PoolingError(f"Expected {k} names, got {len(labels)}.")

    qbar = q.mean(axis=0)
    ubar = u.mean(axis=0)
    if m > 1:
        between = np.cov(q, rowvar=False, ddof=1).reshape(k, k)
    else:
        between = np.zeros((k, k))
    total = ubar + (1.0 + 1.0 / m) * between

    components = tuple(
        pool_scalar(
            q[:, index], u[:, index, index], dfcom=dfcom, alpha=alpha, config=config
        )
        for index in range(k)
    )
    return PooledVector(
        names=labels,
        estimate=qbar,
        within=ubar,
        between=between,
        total=total,
        components=components,
        m=m,
    )


@beartype
def wald_test_d1(
    pooled: PooledVector,
    *,
    null: Sequence[float] | np.ndarray | None = None,
) -> WaldTestResult:
    """Test `Qbar == null` jointly with the D1 statistic.

    Uses the Li-Raghunathan-Rubin denominator degrees of freedom.

    Raises:
        PoolingError: If `m == 1` (no between-imputation covariance) or the
            within covariance is singular.
    """

    if pooled.m < 2:
        raise PoolingError("The D1 test needs at least two imputations (m >= 2).")
    k = len(pooled.names)
    reference = np.zeros(k) if null is None else np.asarray(null, dtype="float64")
    if reference.shape != (k,):
        raise PoolingError(f"null must have {k} components.")

    try:
        within_inverse = np.linalg.inv(pooled.within)
    except np.linalg.LinAlgError as exc:
        raise PoolingError("Within-imputation covariance is singular.") from exc

    m = pooled.m
    riv = float((1.0 + 1.0 / m) * np.trace(pooled.between @ within_inverse) / k)
    delta = pooled.estimate - reference
    statistic = float(delta @ within_inverse @ delta / (k * (1.0 + riv)))

    if riv <= 0:
        return WaldTestResult(
            statistic=statistic,
            df1=k,
            df2=math.inf,
            p_value=float(stats.chi2.sf(statistic * k, k)),
            riv=0.0,
        )
    t = k * (m - 1)
    if t > 4:
        df2 = 4.0 + (t - 4.0) * (1.0 + (1.0 - 2.0 / t) / riv) ** 2
    else:
        df2 = t * (1.0 + 1.0 / k) * (1.0 + 1.0 / riv) ** 2 / 2.0
    return WaldTestResult(
        statistic=statistic,
        df1=k,
        df2=float(df2),
        p_value=float(stats.f.sf(statistic, k, df2)),
        riv=riv,
    )
