from .chain import ChainState, ImputationPlan, chain_generator
from .engine import ChainedEquationsImputer, validate_plan
from .methods import (
    FittedModel,
    ImputationMethod,
    MethodKind,
    list_imputation_methods,
)
from .registry import MethodRegistry
from .result import IMPUTATION_COLUMN, ImputationResult, ImputedDataset
from .trace import (
    ConvergenceTrace,
    ModelFitEvent,
    TraceEntry,
    build_trace_table,
    check_convergence,
    potential_scale_reduction,
    print_trace_summary,
)
from .visit import VisitSequence

__all__ = [
    "ChainState",
    "ChainedEquationsImputer",
    "ConvergenceTrace",
    "FittedModel",
    "IMPUTATION_COLUMN",
    "ImputationMethod",
    "ImputationPlan",
    "ImputationResult",
    "ImputedDataset",
    "MethodKind",
    "MethodRegistry",
    "ModelFitEvent",
    "TraceEntry",
    "VisitSequence",
    "build_trace_table",
    "chain_generator",
    "check_convergence",
    "list_imputation_methods",
    "potential_scale_reduction",
    "print_trace_summary",
    "validate_plan",
]
