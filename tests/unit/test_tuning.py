"""
Unit and property-based tests for the hyperparameter tuning module.

Tests grid builders, tune_grid, TuneResult selection (including
tie-breaking) and the HyperparameterTuner search strategies.
"""

import math

import numpy as np
import pandas as pd
import pytest
from hypothesis import given, settings, strategies as st

from fraud_workflow.models import TUNE, decision_tree
from fraud_workflow.recipe import Recipe
from fraud_workflow.resampling import FoldResult, ResampleResult
from fraud_workflow.splitting import make_folds
from fraud_workflow.tuning import (
    DEFAULT_RANGES,
    HyperparameterTuner,
    ParamRange,
    TuneResult,
    grid_from_values,
    random_grid,
    regular_grid,
    tune_grid,
)
from fraud_workflow.workflow import Workflow


def _fake_tune_result(grid, means, metric="roc_auc"):
    """TuneResult with one fold per configuration holding ``means``."""
    results = [
        ResampleResult([FoldResult("Fold1", pd.DataFrame(), {metric: value})], [metric], params=config)
        for config, value in zip(grid, means)
    ]
    return TuneResult(grid, results, [metric])


@pytest.fixture
def tunable_workflow():
    return Workflow(
        Recipe.default(),
        decision_tree(cost_complexity=TUNE, tree_depth=TUNE, min_n=TUNE),
    )


@pytest.fixture
def folds(transactions):
    return make_folds(transactions, k=3, seed=123)


class TestParamRange:
    """Tests for ParamRange value generation."""

    def test_log_scale_levels(self):
        values = DEFAULT_RANGES["cost_complexity"].values(3)
        assert values == pytest.approx([1e-10, 10 ** -5.5, 0.1])

    def test_integer_levels(self):
        assert DEFAULT_RANGES["tree_depth"].values(3) == [1, 8, 15]
        assert DEFAULT_RANGES["min_n"].values(3) == [2, 21, 40]

    def test_integer_levels_deduplicated(self):
        assert ParamRange(1, 3, integer=True).values(5) == [1, 2, 3]

    def test_single_level_is_midpoint(self):
        assert ParamRange(0, 10).values(1) == [5.0]

    def test_invalid_levels(self):
        with pytest.raises(ValueError, match="levels"):
            ParamRange(0, 1).values(0)

    def test_samples_within_bounds(self):
        samples = DEFAULT_RANGES["min_n"].sample(np.random.default_rng(0), 50)
        assert all(isinstance(v, int) and 2 <= v <= 40 for v in samples)


class TestGridBuilders:
    """Tests for regular_grid, random_grid and grid_from_values."""

    def test_regular_grid_is_full_factorial(self):
        grid = regular_grid(["cost_complexity", "tree_depth", "min_n"], levels=3)
        assert len(grid) == 27
        assert len({tuple(sorted(c.items())) for c in grid}) == 27
        assert {"cost_complexity", "tree_depth", "min_n"} == set(grid[0])

    def test_regular_grid_range_override(self):
        grid = regular_grid(["tree_depth"], levels=2, ranges={"tree_depth": ParamRange(2, 4, integer=True)})
        assert grid == [{"tree_depth": 2}, {"tree_depth": 4}]

    def test_unknown_parameter(self):
        with pytest.raises(ValueError, match="No range defined"):
            regular_grid(["max_leaves"])

    def test_random_grid_reproducible(self):
        names = ["cost_complexity", "tree_depth", "min_n"]
        assert random_grid(names, size=5, seed=1) == random_grid(names, size=5, seed=1)
        assert random_grid(names, size=5, seed=1) != random_grid(names, size=5, seed=2)

    def test_random_grid_size(self):
        grid = random_grid(["tree_depth"], size=4)
        assert len(grid) == 4
        assert all(1 <= c["tree_depth"] <= 15 for c in grid)

    def test_random_grid_invalid_size(self):
        with pytest.raises(ValueError, match="size"):
            random_grid(["tree_depth"], size=0)

    def test_grid_from_values(self):
        grid = grid_from_values({"tree_depth": [3, 5], "min_n": [2, 10]})
        assert len(grid) == 4
        assert {"tree_depth": 5, "min_n": 10} in grid

    def test_grid_from_empty_mapping(self):
        assert grid_from_values({}) == []


class TestTuneResult:
    """Tests for TuneResult selection and reporting."""

    def test_select_best_maximises(self):
        grid = [{"tree_depth": 2}, {"tree_depth": 4}, {"tree_depth": 8}]
        result = _fake_tune_result(grid, [0.7, 0.9, 0.8])
        assert result.select_best("roc_auc") == {"tree_depth": 4}

    def test_ties_resolve_to_grid_order(self):
        grid = [{"cost_complexity": 1e-5}, {"cost_complexity": 1e-2}]
        result = _fake_tune_result(grid, [0.9, 0.9])
        assert result.select_best("roc_auc") == {"cost_complexity": 1e-5}

    def test_tie_break_prefers_simpler_model(self):
        grid = [{"cost_complexity": 1e-5}, {"cost_complexity": 1e-2}, {"cost_complexity": 1e-3}]
        result = _fake_tune_result(grid, [0.9, 0.9, 0.8])
        assert result.select_best("roc_auc", tie_break="cost_complexity") == {"cost_complexity": 1e-2}

    def test_explicit_tie_break_direction(self):
        grid = [{"tree_depth": 8}, {"tree_depth": 2}]
        result = _fake_tune_result(grid, [0.9, 0.9])
        assert result.select_best("roc_auc", tie_break=("tree_depth", "desc")) == {"tree_depth": 8}
        assert result.select_best("roc_auc", tie_break="tree_depth") == {"tree_depth": 2}

    def test_tie_break_parameter_must_exist(self):
        result = _fake_tune_result([{"tree_depth": 8}, {"tree_depth": 2}], [0.9, 0.9])
        with pytest.raises(ValueError, match="min_n"):
            result.select_best("roc_auc", tie_break="min_n")

    def test_undefined_candidates_skipped(self):
        grid = [{"tree_depth": 2}, {"tree_depth": 4}]
        result = _fake_tune_result(grid, [float("nan"), 0.6])
        assert result.select_best("roc_auc") == {"tree_depth": 4}

    def test_all_undefined(self):
        result = _fake_tune_result([{"tree_depth": 2}], [float("nan")])
        with pytest.raises(ValueError, match="undefined"):
            result.select_best("roc_auc")

    def test_metric_not_computed(self):
        result = _fake_tune_result([{"tree_depth": 2}], [0.5])
        with pytest.raises(KeyError, match="recall"):
            result.select_best("recall")

    def test_show_best_ordering(self):
        grid = [{"tree_depth": d} for d in (1, 2, 3, 4)]
        result = _fake_tune_result(grid, [0.5, 0.8, 0.6, 0.7])
        best = result.show_best("roc_auc", n=2)

        assert best["tree_depth"].tolist() == [2, 4]
        assert best["mean"].tolist() == [0.8, 0.7]

    def test_collect_metrics_layout(self):
        result = _fake_tune_result([{"tree_depth": 1}, {"tree_depth": 2}], [0.5, 0.6])
        table = result.collect_metrics()

        assert table["config_id"].tolist() == ["Config1", "Config2"]
        assert {"metric", "mean", "std_err", "n", "tree_depth"} <= set(table.columns)

    def test_best_result(self):
        grid = [{"tree_depth": 1}, {"tree_depth": 2}]
        result = _fake_tune_result(grid, [0.5, 0.6])
        assert result.best_result("roc_auc").params == {"tree_depth": 2}

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="same length"):
            TuneResult([{"tree_depth": 1}], [], ["roc_auc"])


class TestTuneGrid:
    """Tests for tune_grid on real folds."""

    def test_evaluates_every_candidate(self, tunable_workflow, transactions, folds):
        grid = [
            {"cost_complexity": 1e-4, "tree_depth": 3, "min_n": 2},
            {"cost_complexity": 1e-2, "tree_depth": 6, "min_n": 20},
        ]
        result = tune_grid(tunable_workflow, transactions, folds, grid, metrics=["roc_auc", "recall"])

        assert len(result) == 2
        assert [r.params for r in result.results] == grid
        assert all(len(r) == 3 for r in result.results)
        assert len(result.collect_metrics()) == 4

    def test_best_is_at_least_every_candidate(self, tunable_workflow, transactions, folds):
        grid = regular_grid(["cost_complexity", "tree_depth", "min_n"], levels=2)
        result = tune_grid(tunable_workflow, transactions, folds, grid, metrics=["roc_auc"])

        best = result.select_best("roc_auc", tie_break="cost_complexity")
        best_value = result.best_result("roc_auc", tie_break="cost_complexity").metric_mean("roc_auc")
        assert best in grid
        for candidate in result.results:
            value = candidate.metric_mean("roc_auc")
            assert math.isnan(value) or best_value >= value

    def test_parallel_matches_sequential(self, tunable_workflow, transactions, folds):
        grid = random_grid(["cost_complexity", "tree_depth", "min_n"], size=3, seed=5)
        sequential = tune_grid(tunable_workflow, transactions, folds, grid, n_jobs=1)
        parallel = tune_grid(tunable_workflow, transactions, folds, grid, n_jobs=4)
        pd.testing.assert_frame_equal(sequential.collect_metrics(), parallel.collect_metrics())

    def test_missing_tuned_value(self, tunable_workflow, transactions, folds):
        with pytest.raises(ValueError, match="min_n"):
            tune_grid(tunable_workflow, transactions, folds, [{"cost_complexity": 0.01, "tree_depth": 3}])

    def test_empty_grid(self, tunable_workflow, transactions, folds):
        with pytest.raises(ValueError, match="empty"):
            tune_grid(tunable_workflow, transactions, folds, [])

    def test_no_folds(self, tunable_workflow, transactions):
        grid = [{"cost_complexity": 0.01, "tree_depth": 3, "min_n": 2}]
        with pytest.raises(ValueError, match="fold"):
            tune_grid(tunable_workflow, transactions, [], grid)


class TestHyperparameterTuner:
    """Tests for HyperparameterTuner search strategies."""

    def test_grid_search_default_grid(self, tunable_workflow, transactions, folds):
        tuner = HyperparameterTuner(seed=1)
        result = tuner.grid_search(tunable_workflow, transactions, folds, levels=2, metrics=["roc_auc"])
        assert len(result) == 8

    def test_grid_search_value_mapping(self, tunable_workflow, transactions, folds):
        tuner = HyperparameterTuner(seed=1)
        result = tuner.grid_search(
            tunable_workflow,
            transactions,
            folds,
            param_grid={"cost_complexity": [1e-3], "tree_depth": [3, 6], "min_n": [2]},
            metrics=["roc_auc"],
        )
        assert [c["tree_depth"] for c in result.grid] == [3, 6]

    def test_grid_search_explicit_configurations(self, tunable_workflow, transactions, folds):
        grid = [{"cost_complexity": 1e-3, "tree_depth": 4, "min_n": 5}]
        result = HyperparameterTuner().grid_search(
            tunable_workflow, transactions, folds, param_grid=grid, metrics=["accuracy"]
        )
        assert result.grid == grid

    def test_random_search_default_ranges(self, tunable_workflow, transactions, folds):
        result = HyperparameterTuner(seed=3).random_search(
            tunable_workflow, transactions, folds, n_iter=3, metrics=["roc_auc"]
        )
        assert len(result) == 3
        assert all(1 <= c["tree_depth"] <= 15 for c in result.grid)

    def test_random_search_distributions(self, tunable_workflow, transactions, folds):
        result = HyperparameterTuner(seed=3).random_search(
            tunable_workflow,
            transactions,
            folds,
            param_distributions={
                "cost_complexity": 1e-3,
                "tree_depth": [3, 5, 7],
                "min_n": ParamRange(2, 10, integer=True),
            },
            n_iter=3,
            metrics=["roc_auc"],
        )
        for config in result.grid:
            assert config["cost_complexity"] == 1e-3
            assert config["tree_depth"] in (3, 5, 7)
            assert 2 <= config["min_n"] <= 10

    def test_random_search_invalid_iterations(self, tunable_workflow, transactions, folds):
        with pytest.raises(ValueError, match="n_iter"):
            HyperparameterTuner().random_search(tunable_workflow, transactions, folds, n_iter=0)


# ========================================
# Property: Selected Configuration Is Optimal
# ========================================

@settings(max_examples=100, deadline=None)
@given(
    means=st.lists(
        st.one_of(st.floats(min_value=0.0, max_value=1.0), st.just(float("nan"))),
        min_size=1,
        max_size=12,
    ).filter(lambda xs: any(not math.isnan(x) for x in xs))
)
def test_property_select_best_dominates_candidates(means):
    """The selected configuration's value is >= every defined candidate's."""
    grid = [{"cost_complexity": 10.0 ** -(i + 1)} for i in range(len(means))]
    result = _fake_tune_result(grid, means)

    best = result.select_best("roc_auc", tie_break="cost_complexity")
    best_value = means[grid.index(best)]
    assert all(best_value >= m for m in means if not math.isnan(m))
