"""
End-to-end fraud detection experiment.

``run_workflow`` chains every stage of the experiment, driven by a
WorkflowConfig:

    1. Load and validate the transaction table, then summarize it
    2. Stratified train/test split and k stratified folds on training
    3. Cross-validate logistic regression and decision tree baselines
    4. Tune the decision tree (grid or random search)
    5. Select the best configuration, finalize and refit on all training rows
    6. Score once on the test rows
    7. Export the fitted workflow and a metrics table

Example:
    from fraud_workflow.config import WorkflowConfig
    from fraud_workflow.pipeline import run_workflow

    report = run_workflow(WorkflowConfig.from_yaml("config/workflow.yaml"))
    print(report.best_params, report.final.metrics)
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List

import pandas as pd

from fraud_workflow.config import WorkflowConfig
from fraud_workflow.data_loading import load_transactions, summarize_dataset
from fraud_workflow.export import export_metrics, export_workflow
from fraud_workflow.models import TUNE, decision_tree, logistic_reg
from fraud_workflow.recipe import Recipe
from fraud_workflow.resampling import ResampleResult, fit_resamples
from fraud_workflow.splitting import Fold, Split, make_folds, stratified_split
from fraud_workflow.tuning import HyperparameterTuner, TuneResult
from fraud_workflow.workflow import LastFitResult, Workflow, finalize_workflow, last_fit

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class WorkflowReport:
    """Everything an experiment run produced."""

    summary: Dict[str, Any]
    split: Split
    folds: List[Fold]
    baselines: Dict[str, ResampleResult]
    tuning: TuneResult
    best_params: Dict[str, Any]
    final: LastFitResult
    metrics: pd.DataFrame
    model_path: str
    metrics_path: str


def _output_path(output_dir: str, filename: str) -> str:
    if output_dir.startswith("s3://"):
        return f"{output_dir.rstrip('/')}/{filename}"
    return os.path.join(output_dir, filename)


def metrics_table(
    baselines: Dict[str, ResampleResult],
    tuned: ResampleResult,
    test_metrics: Dict[str, float],
) -> pd.DataFrame:
    """
    Flatten resampling and test results into ``metric``/``value`` rows.

    Rows are named ``cv_<family>_<metric>`` for baselines, ``cv_tuned_<metric>``
    for the selected configuration and ``test_<metric>`` for the final
    held-out evaluation.
    """
    rows = []
    for family, result in baselines.items():
        for row in result.collect_metrics().itertuples():
            rows.append({"metric": f"cv_{family}_{row.metric}", "value": row.mean})
    for row in tuned.collect_metrics().itertuples():
        rows.append({"metric": f"cv_tuned_{row.metric}", "value": row.mean})
    for name, value in test_metrics.items():
        rows.append({"metric": f"test_{name}", "value": value})
    return pd.DataFrame(rows, columns=["metric", "value"])


def run_workflow(config: WorkflowConfig) -> WorkflowReport:
    """
    Run the complete experiment described by ``config``.

    Args:
        config: Validated configuration.

    Returns:
        WorkflowReport with intermediate results and artifact locations.
    """
    config.validate()
    logger.info(f"Starting fraud workflow with seed={config.seed}, n_jobs={config.n_jobs}")

    # Step 1: Load and explore
    data = load_transactions(
        config.data_path,
        label=config.label,
        drop_columns=config.drop_columns,
        positive_label=config.positive_label,
    )
    summary = summarize_dataset(data, label=config.label)

    # Step 2: Split and resample
    split = stratified_split(
        data, proportion=config.train_proportion, strata=config.label, seed=config.seed
    )
    training = split.training
    folds = make_folds(training, k=config.n_folds, strata=config.label, seed=config.seed)

    recipe = Recipe.from_config(config)
    resample_kwargs = dict(
        n_jobs=config.n_jobs, seed=config.seed, positive=config.positive_label
    )

    # Step 3: Baselines
    baselines = {
        "logistic_reg": fit_resamples(
            Workflow(recipe, logistic_reg()), training, folds, **resample_kwargs
        ),
        "decision_tree": fit_resamples(
            Workflow(recipe, decision_tree()), training, folds, **resample_kwargs
        ),
    }

    # Step 4: Tune the tree
    tunable = Workflow(recipe, decision_tree(cost_complexity=TUNE, tree_depth=TUNE, min_n=TUNE))
    tuner = HyperparameterTuner(
        n_jobs=config.n_jobs, seed=config.seed, positive=config.positive_label
    )
    if config.search == "grid":
        tuning = tuner.grid_search(tunable, training, folds, levels=config.grid_levels)
    else:
        tuning = tuner.random_search(
            tunable, training, folds, n_iter=config.n_random_candidates
        )

    # Step 5: Select and finalize
    best_params = tuning.select_best(
        config.select_metric, tie_break=config.simplicity_tie_break
    )
    final_workflow = finalize_workflow(tunable, best_params)

    # Step 6: Final evaluation on the test rows
    final = last_fit(final_workflow, split, seed=config.seed, positive=config.positive_label)

    # Step 7: Export
    metrics = metrics_table(
        baselines, tuning.results[tuning.grid.index(best_params)], final.metrics
    )
    model_path = export_workflow(
        final.workflow,
        _output_path(config.output_dir, config.model_filename),
        reduce=config.reduce_model,
    )
    metrics_path = export_metrics(
        metrics, _output_path(config.output_dir, config.metrics_filename)
    )

    logger.info(
        f"Workflow complete. Best params: {best_params}; test metrics: {final.metrics}"
    )
    return WorkflowReport(
        summary=summary,
        split=split,
        folds=folds,
        baselines=baselines,
        tuning=tuning,
        best_params=best_params,
        final=final,
        metrics=metrics,
        model_path=model_path,
        metrics_path=metrics_path,
    )
