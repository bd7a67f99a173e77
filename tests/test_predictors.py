"""
Tests for predictor matrix construction
"""

import numpy as np
import pandas as pd
import pytest

from mipool.data import Dataset, infer_schema
from mipool.predictors import PredictorMatrix, full_predictor_matrix, quickpred
from mipool.utils.errors import DataValidationError


@pytest.fixture
def scenario_c_dataset(scenario_c_frame):
    return Dataset.from_frame(scenario_c_frame, infer_schema(scenario_c_frame))


class TestPredictorMatrix:
    """Immutable target-by-predictor relation"""

    def test_rejects_self_prediction(self):
        with pytest.raises(DataValidationError, match="predict themselves"):
            PredictorMatrix(["a", "b"], np.array([[True, False], [False, False]]))

    def test_edits_return_new_matrix(self):
        matrix = PredictorMatrix(["a", "b"])
        edited = matrix.with_predictor("a", "b")
        assert not matrix["a", "b"]
        assert edited["a", "b"]
        assert edited.without_predictor("a", "b") == matrix

    def test_values_are_read_only(self):
        matrix = PredictorMatrix(["a", "b"])
        with pytest.raises(ValueError):
            matrix.values[0, 1] = True

    def test_from_frame_requires_aligned_axes(self):
        frame = pd.DataFrame([[False, True], [False, False]], index=["a", "b"])
        with pytest.raises(DataValidationError, match="identically ordered"):
            PredictorMatrix.from_frame(frame)

    def test_round_trip_through_frame(self):
        matrix = PredictorMatrix(["a", "b", "c"]).with_predictors("c", ["a", "b"])
        assert PredictorMatrix.from_frame(matrix.to_frame()) == matrix
        assert matrix.targets_of("a") == ("c",)

    def test_unknown_name(self):
        with pytest.raises(DataValidationError, match="no variable"):
            PredictorMatrix(["a"]).predictors_of("b")


class TestQuickpred:
    """Automatic predictor selection"""

    def test_correlated_predictor_selected(self, scenario_c_dataset):
        matrix = quickpred(scenario_c_dataset)
        assert matrix.predictors_of("t") == ("p",)

    def test_minpuc_drops_pair(self, scenario_c_dataset):
        matrix = quickpred(scenario_c_dataset, minpuc=0.8)
        assert matrix.predictors_of("t") == ()

    def test_complete_variables_have_empty_rows(self, continuous_dataset):
        matrix = quickpred(continuous_dataset)
        assert matrix.predictors_of("x") == ()
        assert matrix.predictors_of("z") == ()
        assert "x" in matrix.predictors_of("y")

    def test_include_wins_over_exclude(self, continuous_dataset):
        matrix = quickpred(
            continuous_dataset, mincor=1.0, include=["z"], exclude=["z", "x"]
        )
        assert matrix.predictors_of("y") == ("z",)
        assert matrix.predictors_of("w") == ("z",)

    def test_unknown_include_rejected(self, continuous_dataset):
        with pytest.raises(DataValidationError, match="include"):
            quickpred(continuous_dataset, include=["ghost"])

    def test_excluded_variables_never_predict(self, mixed_dataset):
        matrix = quickpred(mixed_dataset, mincor=0.0)
        assert matrix.targets_of("note") == ()
        assert matrix.predictors_of("note") == ()
        assert matrix.predictors_of("income") == ()

    def test_passive_columns_replaced_by_inputs(self, passive_dataset):
        matrix = quickpred(passive_dataset, mincor=0.0)
        assert matrix.targets_of("bmi") == ()
        assert matrix.predictors_of("bmi") == ("weight", "height")
        assert matrix.predictors_of("height") == ("weight",)

    def test_exclude_holds_through_passive_substitution(self, passive_dataset):
        matrix = quickpred(passive_dataset, mincor=0.0, exclude=["weight"])
        assert matrix.predictors_of("height") == ()
        assert matrix.predictors_of("bmi") == ("weight", "height")

    def test_include_restores_substituted_input(self, passive_dataset):
        matrix = quickpred(
            passive_dataset, mincor=0.0, include=["weight"], exclude=["weight"]
        )
        assert matrix.predictors_of("height") == ("weight",)

    def test_integer_thresholds(self, passive_dataset):
        assert quickpred(passive_dataset, mincor=0, minpuc=0) == quickpred(
            passive_dataset, mincor=0.0, minpuc=0.0
        )

    def test_full_matrix_applies_role_rules(self, mixed_dataset):
        matrix = full_predictor_matrix(mixed_dataset)
        assert matrix.predictors_of("age") == ("income", "smoker", "region")
        assert matrix.predictors_of("note") == ()
