"""
Tests for the JSON bridge
"""

import io
import json
import sys

import pytest

from mipool.bridge.operations import execute_operation
from mipool.bridge.runner import main
from mipool.utils.errors import OperationNotFoundError


@pytest.fixture
def records():
    return [
        {"x": 1.0, "y": 2.1, "g": "a"},
        {"x": 2.0, "y": None, "g": "b"},
        {"x": 3.0, "y": 6.2, "g": "a"},
        {"x": 4.0, "y": 7.9, "g": None},
        {"x": 5.0, "y": 10.1, "g": "b"},
        {"x": 6.0, "y": None, "g": "a"},
        {"x": 7.0, "y": 14.2, "g": "b"},
        {"x": 8.0, "y": 15.8, "g": "a"},
        {"x": 9.0, "y": 18.1, "g": "b"},
        {"x": 10.0, "y": 20.0, "g": "a"},
    ]


def _run(monkeypatch, capsys, argv, stdin=""):
    monkeypatch.setattr(sys, "argv", argv)
    monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
    code = main()
    return code, json.loads(capsys.readouterr().out)


class TestOperations:
    """Operation dispatch"""

    def test_unknown_operation(self):
        with pytest.raises(OperationNotFoundError):
            execute_operation("imputation.unknown", {})

    def test_catalog_lists_operations(self):
        catalog = execute_operation("core.catalog", {})["operations"]
        names = [item["name"] for item in catalog]
        assert "imputation.run" in names
        assert "pooling.pool" in names

    def test_method_catalog(self):
        methods = execute_operation("imputation.methods.catalog", {})["methods"]
        assert [item["name"] for item in methods][:3] == ["pmm", "logreg", "polyreg"]

    def test_pool_scalar(self):
        result = execute_operation(
            "pooling.pool",
            {"estimates": [0.1, 0.2, 0.3], "variances": [0.01, 0.01, 0.01]},
        )
        assert result["estimate"] == pytest.approx(0.2)
        assert result["df"] == pytest.approx(6.125)

    def test_pool_vector_includes_wald(self):
        result = execute_operation(
            "pooling.pool",
            {
                "estimates": [[1, 0.5], [1.2, 0.4], [0.9, 0.7]],
                "covariances": [
                    [[0.04, 0.0], [0.0, 0.02]],
                    [[0.05, 0.0], [0.0, 0.03]],
                    [[0.03, 0.0], [0.0, 0.02]],
                ],
                "names": ["b0", "b1"],
            },
        )
        assert set(result["components"]) == {"b0", "b1"}
        assert 0.0 <= result["wald"]["p_value"] <= 1.0

    def test_missingness(self, records):
        result = execute_operation("missingness.analyze", {"data": records})
        assert result["variables"]["y"]["missing"] == 2
        assert result["overview"]["n_cases"] == 10
        assert result["usable_cases"]["x"]["y"] is None

    def test_impute_is_json_serialisable(self, records):
        result = execute_operation(
            "imputation.run",
            {
                "data": records,
                "config": {"m": 2, "maxit": 2, "seed": 3},
                "predictor_matrix": {"y": ["x"], "g": ["x"]},
            },
        )
        json.dumps(result)
        assert result["m"] == 2
        assert result["iterations"] == [2, 2]
        assert len(result["long"]) == 20
        assert all(row["y"] is not None for row in result["long"])
        assert result["predictor_matrix"]["predictors"]["y"] == ["x"]


class TestRunner:
    """Command-line entry point"""

    def test_ping(self, monkeypatch, capsys):
        code, payload = _run(monkeypatch, capsys, ["mipool-bridge", "--ping"])
        assert code == 0
        assert payload["result"]["bridge"] == "mipool-bridge"
        assert "imputation.run" in payload["result"]["operations"]

    def test_executes_payload(self, monkeypatch, capsys):
        request = json.dumps(
            {
                "operation": "pooling.pool",
                "params": {"estimates": [1.0, 1.0], "variances": [0.5, 0.5]},
            }
        )
        code, payload = _run(monkeypatch, capsys, ["mipool-bridge"], request)
        assert code == 0
        assert payload["ok"] is True
        assert payload["result"]["between"] == 0.0
        assert payload["warnings"] == []

    def test_pooling_error(self, monkeypatch, capsys):
        request = json.dumps(
            {"operation": "pooling.pool", "params": {"estimates": [], "variances": []}}
        )
        code, payload = _run(monkeypatch, capsys, ["mipool-bridge"], request)
        assert code == 3
        assert payload["error"]["type"] == "pooling_error"

    def test_data_validation_error(self, monkeypatch, capsys):
        request = json.dumps(
            {
                "operation": "missingness.analyze",
                "params": {
                    "data": [{"a": 1.0}, {"a": None}],
                    "schema": {"variables": [{"name": "a", "role": "predictor"}]},
                },
            }
        )
        code, payload = _run(monkeypatch, capsys, ["mipool-bridge"], request)
        assert code == 3
        assert payload["error"]["type"] == "data_validation_error"
        assert "Predictor-only" in payload["error"]["message"]

    def test_unknown_operation(self, monkeypatch, capsys):
        request = json.dumps({"operation": "imputation.unknown"})
        code, payload = _run(monkeypatch, capsys, ["mipool-bridge"], request)
        assert code == 2
        assert payload["error"]["type"] == "unknown_operation"
        assert "pooling.pool" in payload["error"]["message"]

    def test_model_fit_warnings_reported(self, monkeypatch, capsys):
        records = [
            {"x": float(x), "y": "a" if x <= 10 else "b"} for x in range(1, 21)
        ]
        for position in (2, 5, 14, 17):
            records[position]["y"] = None
        request = json.dumps(
            {
                "operation": "imputation.run",
                "params": {
                    "data": records,
                    "config": {"m": 1, "maxit": 1, "seed": 5},
                    "predictor_matrix": {"y": ["x"]},
                },
            }
        )
        code, payload = _run(monkeypatch, capsys, ["mipool-bridge"], request)
        assert code == 0
        categories = {item["category"] for item in payload["warnings"]}
        assert categories == {"ModelFitWarning"}
        assert any("separated" in item["message"] for item in payload["warnings"])

    def test_empty_payload(self, monkeypatch, capsys):
        code, payload = _run(monkeypatch, capsys, ["mipool-bridge"])
        assert code == 2
        assert payload["error"]["type"] == "payload_error"
