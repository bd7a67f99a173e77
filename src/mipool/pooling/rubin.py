from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any

import numpy as np
from scipy import stats

from mipool.config import PoolingConfig
from mipool.utils.checks import beartype
from mipool.utils.errors import PoolingError

_LAMBDA_FLOOR = 1.0e-4


@beartype
@dataclass(frozen=True)
class PooledEstimate:
    """Rubin's-rules combination of `m` scalar estimates.

    Attributes:
        estimate (float): Pooled point estimate `Qbar`.
        within (float): Mean within-imputation variance `Ubar`.
        between (float): Between-imputation variance `B` (0 when `m == 1`).
        total (float): Total variance `T = Ubar + (1 + 1/m) B`.
        df (float): Degrees of freedom; Barnard-Rubin adjusted when `dfcom`
            is given, `inf` when `B == 0` and `dfcom` is absent.
        riv (float): Relative increase in variance `(1 + 1/m) B / Ubar`.
        lambda_ (float): Proportion of total variance due to missingness.
        fmi (float): Fraction of missing information; `nan` when `m == 1`.
        ci_lower (float): Lower bound of the `1 - alpha` interval.
        ci_upper (float): Upper bound of the `1 - alpha` interval.
        alpha (float): Interval level parameter.
        m (int): Number of imputations pooled.
        dfcom (float | None): Complete-data degrees of freedom used.
        between_defined (bool): False when `m == 1`, i.e. `B` was not
            estimable and the result ignores imputation uncertainty.
        estimates (tuple[float, ...]): Raw `Q_i`.
        variances (tuple[float, ...]): Raw `U_i`.
    """

    estimate: float
    within: float
    between: float
    total: float
    df: float
    riv: float
    lambda_: float
    fmi: float
    ci_lower: float
    ci_upper: float
    alpha: float
    m: int
    dfcom: float | None
    between_defined: bool
    estimates: tuple[float, ...]
    variances: tuple[float, ...]

    @property
    def std_error(self) -> float:
        return math.sqrt(self.total)

    @property
    def statistic(self) -> float:
        """Wald statistic `Qbar / sqrt(T)` for the null value zero."""

        if self.total == 0:
            return math.copysign(math.inf, self.estimate) if self.estimate else math.nan
        return self.estimate / self.std_error

    @property
    def p_value(self) -> float:
        """Two-sided p-value of `statistic` on the pooled reference distribution."""

        statistic = abs(self.statistic)
        if math.isnan(statistic):
            return math.nan
        if math.isinf(self.df):
            return float(2.0 * stats.norm.sf(statistic))
        return float(2.0 * stats.t.sf(statistic, self.df))

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["estimates"] = list(self.estimates)
        payload["variances"] = list(self.variances)
        payload["std_error"] = self.std_error
        payload["p_value"] = self.p_value
        return payload


@beartype
def pool_scalar(
    estimates: Sequence[float] | np.ndarray,
    variances: Sequence[float] | np.ndarray,
    *,
    dfcom: float | None = None,
    alpha: float | None = None,
    require_between: bool = False,
    config: PoolingConfig | None = None,
) -> PooledEstimate:
    """Pool `m` scalar `(Q_i, U_i)` pairs with Rubin's rules.

    Pool on the scale where the estimator is approximately normal (e.g.
    log-odds) and back-transform the pooled result afterwards.

    Args:
        estimates (Sequence[float] | np.ndarray): Point estimates `Q_i`.
        variances (Sequence[float] | np.ndarray): Sampling variances `U_i`.
        dfcom (float | None): Complete-data degrees of freedom. Enables the
            Barnard-Rubin small-sample degrees of freedom, which never exceed
            `dfcom`. Defaults to config.
        alpha (float | None): Interval level parameter. Defaults to config.
        require_between (bool): Raise instead of returning a caveated result
            when `m == 1` leaves `B` undefined.
        config (PoolingConfig | None): Defaults for `alpha` and `dfcom`.

    Returns:
        PooledEstimate: Pooled estimate, variance decomposition and interval.

    Raises:
        PoolingError: If `m < 1`, the inputs differ in length, contain
            non-finite values or negative variances, or `m == 1` while
            `require_between` is set.
    """

    settings = config or PoolingConfig.from_mapping()
    alpha = float(settings.alpha if alpha is None else alpha)
    dfcom = settings.dfcom if dfcom is None else dfcom
    dfcom = None if dfcom is None else float(dfcom)
    if not 0.0 < alpha < 1.0:
        raise PoolingError("alpha must be strictly between 0 and 1.")
    if dfcom is not None and dfcom <= 0:
        raise PoolingError("dfcom must be positive.")

    q, u = _validated_pairs(estimates, variances)
    m = len(q)
    if m == 1 and require_between:
        raise PoolingError(
            "Between-imputation variance needs at least two imputations (m = 1)."
        )

    qbar = float(q.mean())
    ubar = float(u.mean())
    between = float(q.var(ddof=1)) if m > 1 else 0.0
    total = ubar + (1.0 + 1.0 / m) * between

    if m == 1:
        df = float(dfcom) if dfcom is not None else math.inf
        riv = lambda_ = 0.0
        fmi = math.nan
    else:
        riv = _riv(between, ubar, m)
        lambda_ = (1.0 + 1.0 / m) * between / total if total > 0 else 0.0
        df = degrees_of_freedom(m=m, lambda_=lambda_, dfcom=dfcom)
        fmi = 1.0 if math.isinf(riv) else (riv + 2.0 / (df + 3.0)) / (riv + 1.0)

    half_width = critical_value(df, alpha) * math.sqrt(total)
    return PooledEstimate(
        estimate=qbar,
        within=ubar,
        between=between,
        total=total,
        df=df,
        riv=riv,
        lambda_=lambda_,
        fmi=fmi,
        ci_lower=qbar - half_width,
        ci_upper=qbar + half_width,
        alpha=alpha,
        m=m,
        dfcom=dfcom,
        between_defined=m > 1,
        estimates=tuple(float(value) for value in q),
        variances=tuple(float(value) for value in u),
    )


@beartype
def degrees_of_freedom(*, m: int, lambda_: float, dfcom: float | None) -> float:
    """Rubin's degrees of freedom, Barnard-Rubin adjusted when `dfcom` is set.

    Without `dfcom` this is `(m - 1) / lambda^2`, identical to
    `(m - 1) (1 + Ubar / ((1 + 1/m) B))^2`, and infinite when `B == 0`.
    """

    if dfcom is None or math.isinf(dfcom):
        if lambda_ <= 0:
            return math.inf
        return (m - 1) / lambda_**2
    lambda_ = max(lambda_, _LAMBDA_FLOOR)
    df_old = (m - 1) / lambda_**2
    df_obs = (dfcom + 1.0) / (dfcom + 3.0) * dfcom * (1.0 - lambda_)
    return df_old * df_obs / (df_old + df_obs)


@beartype
def critical_value(df: float, alpha: float) -> float:
    """Two-sided `t` quantile, normal when `df` is infinite."""

    if math.isinf(df):
        return float(stats.norm.ppf(1.0 - alpha / 2.0))
    return float(stats.t.ppf(1.0 - alpha / 2.0, df))


def _riv(between: float, ubar: float, m: int) -> float:
    inflation = (1.0 + 1.0 / m) * between
    if ubar > 0:
        return inflation / ubar
    return math.inf if inflation > 0 else 0.0


def _validated_pairs(
    estimates: Sequence[float] | np.ndarray,
    variances: Sequence[float] | np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    q = np.asarray(estimates, dtype="float64").ravel()
    u = np.asarray(variances, dtype="float64").ravel()
    if len(q) < 1:
        raise PoolingError("Pooling needs at least one imputation (m >= 1).")
    if len(q) != len(u):
        raise PoolingError(
            f"Got {len(q)} estimates but {len(u)} variances; lengths must match."
        )
    if not (np.isfinite(q).all() and np.isfinite(u).all()):
        raise PoolingError("Estimates and variances must be finite.")
    if (u < 0).any():
        raise PoolingError("Variances must be non-negative.")
    return q, u
