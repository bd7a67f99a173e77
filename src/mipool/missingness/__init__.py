from .analyzer import (
    MissingnessOverview,
    MissingnessPattern,
    MissingnessReport,
    MissingPairs,
    PatternTable,
    analyze_missingness,
    case_missingness,
    case_patterns,
    flux,
    missing_pairs,
    outbound,
    overall_missingness,
    pattern_frame,
    pattern_table,
    response_indicators,
    usable_cases,
    variable_missingness,
)
from .report import build_missingness_table, print_missingness_report

__all__ = [
    "MissingPairs",
    "MissingnessOverview",
    "MissingnessPattern",
    "MissingnessReport",
    "PatternTable",
    "analyze_missingness",
    "build_missingness_table",
    "case_missingness",
    "case_patterns",
    "flux",
    "missing_pairs",
    "outbound",
    "overall_missingness",
    "pattern_frame",
    "pattern_table",
    "print_missingness_report",
    "response_indicators",
    "usable_cases",
    "variable_missingness",
]
