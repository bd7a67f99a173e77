"""
Tests for the chained-equations imputer
"""

import threading

import numpy as np
import pandas as pd
import pytest

from mipool.config import ImputationConfig
from mipool.data import Arithmetic, Column, Dataset, DatasetSchema, VariableSpec
from mipool.imputation import (
    IMPUTATION_COLUMN,
    ChainedEquationsImputer,
    ConvergenceTrace,
    ImputationPlan,
    MethodRegistry,
    TraceEntry,
    VisitSequence,
    build_trace_table,
    check_convergence,
    chain_generator,
    potential_scale_reduction,
)
from mipool.imputation.chain import start_chain
from mipool.imputation.methods import (
    LogisticRegressionImputation,
    PredictiveMeanMatching,
    match_donors,
)
from mipool.predictors import PredictorMatrix, full_predictor_matrix
from mipool.utils.errors import (
    ConvergenceWarning,
    DataValidationError,
    InputValidationError,
    ModelFitError,
    ModelFitWarning,
)


def _assert_same_datasets(first, second):
    assert first.m == second.m
    for left, right in zip(first, second):
        pd.testing.assert_frame_equal(left, right)


# ==================== CORE INVARIANTS ====================


class TestInvariants:
    """Observed cells, complete variables and randomness"""

    def test_observed_cells_unchanged(self, continuous_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(continuous_dataset)
        original = continuous_dataset.to_frame()
        observed = original.notna()
        for frame in result:
            assert not frame.isna().any().any()
            assert (frame[observed] == original[observed]).sum().sum() == (
                observed.sum().sum()
            )

    def test_complete_variable_bit_identical(self, continuous_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(continuous_dataset)
        original = continuous_dataset.to_frame()["z"].to_numpy()
        for frame in result:
            assert np.array_equal(frame["z"].to_numpy(), original)

    def test_pmm_imputes_observed_values(self, continuous_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(continuous_dataset)
        mask = continuous_dataset.missing_mask()["y"].to_numpy()
        donors = set(continuous_dataset.observed_values("y").tolist())
        for frame in result:
            assert set(frame["y"].to_numpy()[mask].tolist()) <= donors

    def test_same_seed_reproduces(self, continuous_dataset, small_config):
        first = ChainedEquationsImputer(small_config).impute(continuous_dataset)
        second = ChainedEquationsImputer(small_config).impute(continuous_dataset)
        _assert_same_datasets(first, second)
        assert first.seed == second.seed == 7

    def test_parallel_matches_sequential(self, continuous_dataset):
        sequential = ImputationConfig(m=3, maxit=3, seed=7)
        parallel = ImputationConfig(m=3, maxit=3, seed=7, parallel=True, max_workers=3)
        first = ChainedEquationsImputer(sequential).impute(continuous_dataset)
        second = ChainedEquationsImputer(parallel).impute(continuous_dataset)
        _assert_same_datasets(first, second)
        pd.testing.assert_frame_equal(first.trace.to_frame(), second.trace.to_frame())

    def test_chains_differ(self, continuous_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(continuous_dataset)
        assert not result.complete(1).equals(result.complete(2))

    def test_chain_generators_are_independent(self):
        first = chain_generator(7, 1).random(5)
        again = chain_generator(7, 1).random(5)
        other = chain_generator(7, 2).random(5)
        assert np.array_equal(first, again)
        assert not np.array_equal(first, other)

    def test_unseeded_run_records_seed(self, continuous_dataset):
        config = ImputationConfig(m=2, maxit=1)
        result = ChainedEquationsImputer(config).impute(continuous_dataset)
        replay = ChainedEquationsImputer(
            ImputationConfig(m=2, maxit=1, seed=result.seed)
        ).impute(continuous_dataset)
        _assert_same_datasets(result, replay)

    def test_input_dataset_untouched(self, continuous_dataset, small_config):
        before = continuous_dataset.to_frame()
        ChainedEquationsImputer(small_config).impute(continuous_dataset)
        pd.testing.assert_frame_equal(continuous_dataset.to_frame(), before)


# ==================== ITERATION CONTROL ====================


class TestIterationControl:
    """maxit, resume and cooperative stopping"""

    def test_zero_iterations_is_marginal_fill(self, continuous_dataset, monkeypatch):
        def _fail(*args, **kwargs):
            raise AssertionError("no model may be fitted when maxit is 0")

        monkeypatch.setattr(PredictiveMeanMatching, "fit", _fail)
        config = ImputationConfig(m=2, maxit=0, seed=3)
        result = ChainedEquationsImputer(config).impute(continuous_dataset)

        registry = MethodRegistry.for_dataset(continuous_dataset)
        plan = ImputationPlan(
            dataset=continuous_dataset,
            predictor_matrix=result.predictor_matrix,
            methods=registry,
            visit_sequence=VisitSequence.for_registry(continuous_dataset, registry),
            config=config,
        )
        for index, frame in enumerate(result, start=1):
            expected = start_chain(plan, index=index, seed=3).frame
            pd.testing.assert_frame_equal(frame, expected)
        assert result.iterations == (0, 0)
        assert len(result.trace) == 0

    def test_resume_matches_single_run(self, continuous_dataset):
        short = ChainedEquationsImputer(ImputationConfig(m=2, maxit=2, seed=5))
        partial = short.impute(continuous_dataset)
        resumed = short.resume(partial, 3)

        full = ChainedEquationsImputer(ImputationConfig(m=2, maxit=5, seed=5))
        expected = full.impute(continuous_dataset)

        _assert_same_datasets(resumed, expected)
        assert resumed.iterations == (5, 5)
        assert partial.iterations == (2, 2)

    def test_resume_rejects_negative(self, continuous_dataset, small_config):
        imputer = ChainedEquationsImputer(small_config)
        result = imputer.impute(continuous_dataset)
        with pytest.raises(InputValidationError):
            imputer.resume(result, -1)

    def test_preset_stop_event(self, continuous_dataset, small_config):
        stop = threading.Event()
        stop.set()
        result = ChainedEquationsImputer(small_config).impute(
            continuous_dataset, stop_event=stop
        )
        assert result.iterations == (0, 0, 0)
        assert all(not frame.isna().any().any() for frame in result)


# ==================== METHODS IN CONTEXT ====================


class TestMethods:
    """Per-type methods running inside chains"""

    def test_binary_target_scenario(self, scenario_b_dataset):
        observed = scenario_b_dataset.to_frame().dropna()
        outcome = (observed["B"] == "yes").astype("float64")
        expected_sign = np.sign(np.corrcoef(observed["A"], outcome)[0, 1])

        config = ImputationConfig(m=5, maxit=5, seed=11)
        matrix = PredictorMatrix(["A", "B"]).with_predictor("B", "A")
        result = ChainedEquationsImputer(config).impute(
            scenario_b_dataset, predictor_matrix=matrix
        )
        assert result.m == 5
        for dataset in result.datasets:
            assert not dataset.frame["B"].isna().any()
            assert set(dataset.frame["B"]) <= {"no", "yes"}
            assert np.sign(dataset.coefficients["B"]["A"]) == expected_sign

    def test_categorical_levels_respected(self, mixed_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(mixed_dataset)
        for frame in result:
            assert set(frame["region"]) <= {"north", "south", "west"}
            assert set(frame["smoker"]) <= {"no", "yes"}
            assert not frame["age"].isna().any()
            assert frame["note"].isna().sum() == 5

    def test_passive_variable_tracks_formula(self, passive_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(passive_dataset)
        for frame in result:
            expected = frame["weight"] / frame["height"] ** 2
            assert np.allclose(frame["bmi"].to_numpy(), expected.to_numpy())

    def test_passive_recomputed_for_every_case(self, small_config):
        rng = np.random.default_rng(3)
        h = rng.uniform(1.5, 1.9, size=20)
        w = 25.0 * h + rng.normal(scale=2.0, size=20)
        r = w / h
        w[2] = np.nan
        r[2] = 99.0
        r[5] = np.nan
        ratio = Arithmetic(operation="divide", left=Column("w"), right=Column("h"))
        schema = DatasetSchema(
            [
                VariableSpec(name="w"),
                VariableSpec(name="h"),
                VariableSpec(name="r", role="passive", formula=ratio),
            ]
        )
        dataset = Dataset.from_frame(pd.DataFrame({"w": w, "h": h, "r": r}), schema)

        result = ChainedEquationsImputer(small_config).impute(dataset)
        for frame in result:
            expected = (frame["w"] / frame["h"]).to_numpy()
            np.testing.assert_allclose(frame["r"].to_numpy(), expected)
            assert frame["r"].iloc[2] != 99.0

    def test_passive_cannot_predict(self, passive_dataset, small_config):
        matrix = full_predictor_matrix(passive_dataset).with_predictor(
            "height", "bmi"
        )
        with pytest.raises(DataValidationError, match="cannot predict"):
            ChainedEquationsImputer(small_config).impute(
                passive_dataset, predictor_matrix=matrix
            )

    def test_match_donors_picks_nearest(self):
        rng = np.random.default_rng(0)
        drawn = match_donors(
            np.array([0.1, 9.8]),
            fitted=np.array([0.0, 5.0, 10.0]),
            observed=np.array([1.0, 2.0, 3.0]),
            donors=1,
            rng=rng,
        )
        assert drawn.tolist() == [1.0, 3.0]


# ==================== MODEL-FIT RECOVERY ====================


class TestModelFitRecovery:
    """Recovered fit failures are warned about and traced"""

    def test_collinear_predictor_dropped(self, rng):
        n = 50
        x1 = rng.normal(size=n)
        y = 2.0 * x1 + rng.normal(scale=0.3, size=n)
        y[:10] = np.nan
        frame = pd.DataFrame({"x1": x1, "x2": 2.0 * x1, "y": y})
        schema = DatasetSchema([VariableSpec(name=name) for name in frame.columns])
        dataset = Dataset.from_frame(frame, schema)
        matrix = PredictorMatrix(list(frame.columns)).with_predictors(
            "y", ["x1", "x2"]
        )

        with pytest.warns(ModelFitWarning, match="rank deficient"):
            result = ChainedEquationsImputer(
                ImputationConfig(m=1, maxit=2, seed=1)
            ).impute(dataset, predictor_matrix=matrix)

        events = result.trace.degraded("y")
        assert len(events) == 2
        assert all(event.dropped == ("x2",) for event in events)
        assert not any(event.marginal for event in events)
        assert "x1" in result.datasets[0].coefficients["y"]

    def test_separation_falls_back_to_marginal(self):
        x = np.arange(1.0, 21.0)
        y = np.where(x <= 10, "a", "b").astype(object)
        y[[2, 5, 14, 17]] = None
        frame = pd.DataFrame({"x": x, "y": y})
        schema = DatasetSchema(
            [VariableSpec(name="x"), VariableSpec(name="y", type="binary")]
        )
        dataset = Dataset.from_frame(frame, schema)
        matrix = PredictorMatrix(["x", "y"]).with_predictor("y", "x")

        with pytest.warns(ModelFitWarning, match="separated"):
            result = ChainedEquationsImputer(
                ImputationConfig(m=2, maxit=2, seed=4)
            ).impute(dataset, predictor_matrix=matrix)

        assert result.trace.is_degraded("y")
        assert all(event.marginal for event in result.trace.events)
        assert all(event.dropped == ("x",) for event in result.trace.events)
        assert "y" not in result.datasets[0].coefficients
        for frame in result:
            assert set(frame["y"]) <= {"a", "b"}

    def test_quasi_complete_separation_reported(self):
        x = np.array([1.0, 2.0, 3.0, 4.0, 5.0, 5.0, 6.0, 7.0, 8.0, 9.0])[:, None]
        y = np.array(["a"] * 5 + ["b"] * 5, dtype=object)
        with pytest.raises(ModelFitError, match="separated") as info:
            LogisticRegressionImputation().fit(
                x=x,
                y=y,
                columns=["x"],
                sources=["x"],
                levels=("a", "b"),
                rng=np.random.default_rng(0),
                config=ImputationConfig(),
            )
        assert info.value.offending == ("x",)


# ==================== DIAGNOSTICS AND OUTPUT ====================


class TestTraceAndOutput:
    """Convergence trace and completed-data layouts"""

    def test_trace_shape(self, continuous_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(continuous_dataset)
        frame = result.trace.to_frame()
        assert len(frame) == 3 * 3 * 2 * 2
        assert set(frame["statistic"]) == {"mean", "sd"}
        assert frame["iteration"].min() == 1
        assert result.trace.series("y").shape == (3, 3)

    def test_discrete_trace_statistics(self, mixed_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(mixed_dataset)
        frame = result.trace.to_frame()
        region = frame[frame["variable"] == "region"]
        assert set(region["statistic"]) == {
            "level[north]",
            "level[south]",
            "level[west]",
        }
        shares = region.groupby(["chain", "iteration"])["value"].sum()
        assert np.allclose(shares.to_numpy(), 1.0)

    def test_check_convergence_flags_unmixed_chains(self):
        entries = [
            TraceEntry(
                chain=chain,
                iteration=iteration,
                variable="v",
                statistic="mean",
                value=float(chain * 10 + iteration % 2),
            )
            for chain in (1, 2)
            for iteration in range(1, 7)
        ]
        with pytest.warns(ConvergenceWarning, match="v:mean"):
            summary = check_convergence(ConvergenceTrace(entries))
        assert not summary.loc[0, "converged"]
        assert summary.loc[0, "rhat"] > 1.1

    def test_potential_scale_reduction_identical_chains(self):
        chains = np.tile(np.array([[1.0], [2.0], [3.0]]), (1, 3))
        assert potential_scale_reduction(chains) == pytest.approx(
            np.sqrt(2.0 / 3.0)
        )

    def test_trace_table(self, continuous_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(continuous_dataset)
        table = build_trace_table(result.trace)
        assert table.row_count == 4

    def test_long_layout(self, continuous_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(continuous_dataset)
        long = result.long(include_original=True)
        assert list(long.columns) == [IMPUTATION_COLUMN, "case_id", "x", "w", "y", "z"]
        assert len(long) == 4 * continuous_dataset.n_cases
        assert long[long[IMPUTATION_COLUMN] == 0]["y"].isna().sum() == 15

    def test_complete_bounds(self, continuous_dataset, small_config):
        result = ChainedEquationsImputer(small_config).impute(continuous_dataset)
        with pytest.raises(InputValidationError):
            result.complete(4)
