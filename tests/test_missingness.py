"""
Tests for the missingness analyzer
"""

import numpy as np
import pandas as pd
import pytest
from rich.console import Console

from mipool.data import Dataset, infer_schema
from mipool.missingness import (
    analyze_missingness,
    build_missingness_table,
    case_missingness,
    flux,
    missing_pairs,
    outbound,
    overall_missingness,
    pattern_frame,
    pattern_table,
    print_missingness_report,
    response_indicators,
    usable_cases,
    variable_missingness,
)


class TestCounts:
    """Per-variable, per-case and overall counts"""

    def test_response_indicators(self, scenario_c_frame):
        indicators = response_indicators(scenario_c_frame)
        assert indicators["t"].tolist() == [0, 0, 0, 0, 1, 1, 1, 1, 1, 1]
        assert indicators["p"].sum() == 9

    def test_variable_missingness(self, scenario_c_frame):
        summary = variable_missingness(scenario_c_frame)
        assert summary.loc["t", "missing"] == 4
        assert summary.loc["p", "proportion"] == pytest.approx(0.1)

    def test_case_missingness(self, scenario_c_frame):
        summary = case_missingness(scenario_c_frame)
        assert summary["missing"].tolist()[:5] == [1, 1, 1, 2, 0]
        assert summary.loc[3, "proportion"] == pytest.approx(1.0)

    def test_overall_missingness(self, scenario_c_frame):
        overview = overall_missingness(scenario_c_frame)
        assert overview.missing_cells == 5
        assert overview.cell_proportion == pytest.approx(0.25)
        assert overview.variable_proportion == pytest.approx(1.0)
        assert overview.case_proportion == pytest.approx(0.4)

    def test_accepts_dataset(self, continuous_dataset):
        summary = variable_missingness(continuous_dataset)
        assert summary["missing"].to_dict() == {"x": 0, "w": 12, "y": 15, "z": 0}


class TestPairs:
    """Pairwise response patterns and their derived ratios"""

    def test_pair_counts_sum_to_cases(self, continuous_dataset):
        pairs = missing_pairs(continuous_dataset)
        total = pairs.rr + pairs.rm + pairs.mr + pairs.mm
        assert (total.to_numpy() == continuous_dataset.n_cases).all()
        assert pairs.n_cases == continuous_dataset.n_cases

    def test_pair_counts_match_hand_count(self, scenario_c_frame):
        pairs = missing_pairs(scenario_c_frame)
        assert pairs.rr.loc["t", "p"] == 6
        assert pairs.mr.loc["t", "p"] == 3
        assert pairs.mm.loc["t", "p"] == 1
        assert pairs.rm.loc["t", "p"] == 0

    def test_usable_cases(self, scenario_c_frame):
        puc = usable_cases(scenario_c_frame)
        assert puc.loc["t", "p"] == pytest.approx(0.75)

    def test_usable_cases_undefined_for_complete_target(self, continuous_dataset):
        puc = usable_cases(continuous_dataset)
        assert np.isnan(puc.loc["x", "y"])

    def test_outbound(self, scenario_c_frame):
        result = outbound(scenario_c_frame)
        assert result.loc["t", "p"] == pytest.approx(3 / 9)

    def test_flux(self, scenario_c_frame):
        result = flux(scenario_c_frame)
        assert result.loc["t", "influx"] == pytest.approx(0.2)
        assert result.loc["t", "outflux"] == pytest.approx(0.0)
        assert result.loc["p", "outflux"] == pytest.approx(0.6)
        assert result.loc["p", "pobs"] == pytest.approx(0.9)


class TestPatterns:
    """Missingness pattern tabulation"""

    def test_pattern_table(self, scenario_c_frame):
        table = pattern_table(scenario_c_frame)
        assert table == {
            frozenset(): 6,
            frozenset({"t"}): 3,
            frozenset({"t", "p"}): 1,
        }

    def test_pattern_frame_ordering(self, scenario_c_frame):
        frame = pattern_frame(scenario_c_frame)
        assert frame["n_missing"].tolist() == [0, 1, 2]
        assert frame["count"].tolist() == [6, 3, 1]
        assert frame.loc[1, ["t", "p"]].tolist() == [0, 1]

    def test_pattern_counts_cover_all_cases(self, mixed_dataset):
        assert sum(pattern_table(mixed_dataset).values()) == mixed_dataset.n_cases


def test_analyze_missingness_report(scenario_c_frame):
    dataset = Dataset.from_frame(scenario_c_frame, infer_schema(scenario_c_frame))
    report = analyze_missingness(dataset)
    assert report.overview.n_cases == 10
    assert report.usable_cases.loc["t", "p"] == pytest.approx(0.75)
    pd.testing.assert_frame_equal(report.flux, flux(dataset))

    table = build_missingness_table(report)
    assert table.row_count == 2

    console = Console(record=True, width=120)
    print_missingness_report(report, console=console)
    assert "Missingness summary" in console.export_text()
