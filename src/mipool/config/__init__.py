from .settings import ImputationConfig, PoolingConfig, QuickpredConfig, VisitOrder

__all__ = [
    "ImputationConfig",
    "PoolingConfig",
    "QuickpredConfig",
    "VisitOrder",
]
