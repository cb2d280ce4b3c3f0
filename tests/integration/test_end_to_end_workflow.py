"""
Integration tests for the complete experiment.

Runs run_workflow on a synthetic transaction file and checks the exported
artifacts can be used for prediction on raw rows.
"""

import pandas as pd
import pytest

from fraud_workflow.config import WorkflowConfig
from fraud_workflow.data_loading import DEFAULT_DROP_COLUMNS
from fraud_workflow.export import load_metrics, load_workflow, metrics_as_dict
from fraud_workflow.pipeline import run_workflow


@pytest.fixture
def config(transactions_csv, tmp_path):
    return WorkflowConfig(
        data_path=str(transactions_csv),
        output_dir=str(tmp_path / "output"),
        n_folds=3,
        grid_levels=2,
        n_jobs=2,
        seed=123,
    )


@pytest.fixture
def report(config):
    return run_workflow(config)


class TestGridSearchRun:
    """End-to-end run with the default grid search."""

    def test_split_and_folds(self, report):
        assert len(report.split.training) + len(report.split.testing) == 300
        assert len(report.folds) == 3
        assert report.summary["n_rows"] == 300

    def test_every_candidate_tuned(self, report):
        assert len(report.tuning) == 8
        assert set(report.best_params) == {"cost_complexity", "tree_depth", "min_n"}
        assert report.best_params in report.tuning.grid

    def test_baselines_cross_validated(self, report):
        assert set(report.baselines) == {"logistic_reg", "decision_tree"}
        for result in report.baselines.values():
            assert len(result) == 3

    def test_final_metrics_on_test_rows(self, report):
        assert len(report.final.predictions) == len(report.split.testing)
        assert 0.0 <= report.final.metrics["roc_auc"] <= 1.0

    def test_metrics_file(self, report):
        metrics = metrics_as_dict(load_metrics(report.metrics_path))

        assert "cv_logistic_reg_roc_auc" in metrics
        assert "cv_decision_tree_roc_auc" in metrics
        assert "cv_tuned_roc_auc" in metrics
        assert metrics["test_roc_auc"] == pytest.approx(report.final.metrics["roc_auc"])

    def test_exported_model_predicts_raw_rows(self, report, transactions_csv):
        workflow = load_workflow(report.model_path)
        raw = pd.read_csv(transactions_csv).drop(columns=list(DEFAULT_DROP_COLUMNS) + ["isFraud"])

        predictions = workflow.predict_class(raw.head(50))
        assert len(predictions) == 50
        assert set(predictions.unique()) <= {0, 1}

        single = workflow.predict_prob(raw.iloc[0].to_dict())
        assert single.sum(axis=1).iloc[0] == pytest.approx(1.0)

    def test_exported_model_is_reduced(self, report):
        workflow = load_workflow(report.model_path)
        assert workflow.fitted_recipe.training_data is None
        assert workflow.finalized

    def test_reproducible(self, config, report):
        again = run_workflow(config)

        assert again.best_params == report.best_params
        pd.testing.assert_frame_equal(again.metrics, report.metrics)


class TestRandomSearchRun:
    """End-to-end run with random search."""

    def test_random_candidates(self, config):
        config.search = "random"
        config.n_random_candidates = 3
        config.reduce_model = False

        report = run_workflow(config)

        assert len(report.tuning) == 3
        assert load_workflow(report.model_path).fitted_recipe.training_data is not None
