from .matrix import PredictorMatrix
from .quickpred import full_predictor_matrix, numeric_codes, quickpred

__all__ = [
    "PredictorMatrix",
    "full_predictor_matrix",
    "numeric_codes",
    "quickpred",
]
