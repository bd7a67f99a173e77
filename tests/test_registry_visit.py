"""
Tests for method assignment and visit sequences
"""

import numpy as np
import pandas as pd
import pytest

from mipool.data import Dataset, DatasetSchema, VariableSpec
from mipool.imputation import MethodRegistry, VisitSequence, list_imputation_methods
from mipool.imputation.methods import method_class
from mipool.utils.errors import DataValidationError, OperationNotFoundError


class TestMethodRegistry:
    """Validated method assignment"""

    def test_defaults_follow_role_and_type(self, mixed_dataset):
        registry = MethodRegistry.for_dataset(mixed_dataset)
        assert registry.as_dict() == {
            "income": "none",
            "age": "pmm",
            "smoker": "logreg",
            "region": "polyreg",
            "note": "none",
        }
        assert registry.imputed() == ("age", "smoker", "region")

    def test_passive_default(self, passive_dataset):
        registry = MethodRegistry.for_dataset(passive_dataset)
        assert registry["bmi"] == "passive"
        assert registry["weight"] == "none"
        assert registry.modelled() == ("height",)

    def test_polyreg_allowed_for_binary(self, mixed_dataset):
        registry = MethodRegistry.for_dataset(mixed_dataset, {"smoker": "polyreg"})
        assert registry["smoker"] == "polyreg"

    def test_override_is_normalised(self, mixed_dataset):
        registry = MethodRegistry.for_dataset(mixed_dataset, {"age": " PMM "})
        assert registry["age"] == "pmm"

    def test_pmm_on_binary_rejected(self, mixed_dataset):
        with pytest.raises(DataValidationError, match="does not support binary"):
            MethodRegistry.for_dataset(mixed_dataset, {"smoker": "pmm"})

    def test_logreg_on_categorical_rejected(self, mixed_dataset):
        with pytest.raises(DataValidationError, match="does not support categorical"):
            MethodRegistry.for_dataset(mixed_dataset, {"region": "logreg"})

    def test_complete_variable_must_use_none(self, continuous_dataset):
        with pytest.raises(DataValidationError, match="fully observed"):
            MethodRegistry.for_dataset(continuous_dataset, {"x": "pmm"})

    def test_excluded_variable_cannot_be_imputed(self, mixed_dataset):
        with pytest.raises(DataValidationError, match="role `excluded`"):
            MethodRegistry.for_dataset(mixed_dataset, {"note": "logreg"})

    def test_incomplete_target_needs_model(self, continuous_dataset):
        with pytest.raises(DataValidationError, match="does not impute them"):
            MethodRegistry.for_dataset(continuous_dataset, {"y": "none"})

    def test_passive_method_reserved(self, continuous_dataset):
        with pytest.raises(DataValidationError, match="reserved for passive"):
            MethodRegistry.for_dataset(continuous_dataset, {"y": "passive"})

    def test_unknown_method(self, continuous_dataset):
        with pytest.raises(DataValidationError, match="Unknown imputation method"):
            MethodRegistry.for_dataset(continuous_dataset, {"y": "forest"})

    def test_unknown_variable(self, continuous_dataset):
        with pytest.raises(DataValidationError, match="unknown variables"):
            MethodRegistry.for_dataset(continuous_dataset, {"ghost": "pmm"})

    def test_fully_missing_target_rejected(self):
        frame = pd.DataFrame({"a": [np.nan, np.nan, np.nan], "b": [1.0, 2.0, 3.0]})
        schema = DatasetSchema([VariableSpec(name="a"), VariableSpec(name="b")])
        dataset = Dataset.from_frame(frame, schema)
        with pytest.raises(DataValidationError, match="no observed values"):
            MethodRegistry.for_dataset(dataset)

    def test_registry_equality(self, continuous_dataset):
        first = MethodRegistry.for_dataset(continuous_dataset)
        second = MethodRegistry.for_dataset(continuous_dataset, {"y": "pmm"})
        assert first == second
        assert len(first) == 4
        assert "w" in first


def test_method_catalog():
    names = [metadata.name for metadata in list_imputation_methods()]
    assert names == ["pmm", "logreg", "polyreg", "passive", "none"]
    with pytest.raises(OperationNotFoundError):
        method_class("forest")


class TestVisitSequence:
    """Visit order construction and validation"""

    def test_column_order(self, continuous_dataset):
        registry = MethodRegistry.for_dataset(continuous_dataset)
        sequence = VisitSequence.for_registry(continuous_dataset, registry)
        assert sequence.order == ("w", "y")

    def test_monotone_orders(self, continuous_dataset):
        registry = MethodRegistry.for_dataset(continuous_dataset)
        monotone = VisitSequence.for_registry(continuous_dataset, registry, "monotone")
        reverse = VisitSequence.for_registry(
            continuous_dataset, registry, "revmonotone"
        )
        assert monotone.order == ("w", "y")
        assert reverse.order == ("y", "w")

    def test_passive_follows_inputs(self, passive_dataset):
        registry = MethodRegistry.for_dataset(passive_dataset)
        sequence = VisitSequence.for_registry(passive_dataset, registry, "revmonotone")
        assert sequence.order == ("height", "bmi")

    def test_passive_before_input_rejected(self, passive_dataset):
        registry = MethodRegistry.for_dataset(passive_dataset)
        with pytest.raises(DataValidationError, match="before its input"):
            VisitSequence.for_registry(passive_dataset, registry, ["bmi", "height"])

    def test_duplicates_rejected(self):
        with pytest.raises(DataValidationError, match="repeats"):
            VisitSequence(["w", "y", "w"])

    def test_omission_rejected(self, continuous_dataset):
        registry = MethodRegistry.for_dataset(continuous_dataset)
        with pytest.raises(DataValidationError, match="omits"):
            VisitSequence.for_registry(continuous_dataset, registry, ["w"])

    def test_unimputed_variable_rejected(self, continuous_dataset):
        registry = MethodRegistry.for_dataset(continuous_dataset)
        with pytest.raises(DataValidationError, match="not imputed"):
            VisitSequence.for_registry(continuous_dataset, registry, ["w", "y", "x"])

    def test_unknown_order_keyword(self, continuous_dataset):
        registry = MethodRegistry.for_dataset(continuous_dataset)
        with pytest.raises(DataValidationError, match="Unknown visit order"):
            VisitSequence.for_registry(continuous_dataset, registry, "random")
