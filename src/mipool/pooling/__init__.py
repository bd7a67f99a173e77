from .analysis import AnalysisFunction, pool_analyses
from .multivariate import PooledVector, WaldTestResult, pool_vector, wald_test_d1
from .report import build_pooled_table, print_pooled_estimates
from .rubin import PooledEstimate, critical_value, degrees_of_freedom, pool_scalar

__all__ = [
    "AnalysisFunction",
    "PooledEstimate",
    "PooledVector",
    "WaldTestResult",
    "build_pooled_table",
    "critical_value",
    "degrees_of_freedom",
    "pool_analyses",
    "pool_scalar",
    "pool_vector",
    "print_pooled_estimates",
    "wald_test_d1",
]
