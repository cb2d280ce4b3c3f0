"""
Resampling module for the fraud detection workflow.

Estimates out-of-sample performance of a workflow with k-fold
cross-validation: for every fold the whole workflow (recipe and model) is fit
on the fold's analysis rows only and scored on its assessment rows. Folds
are independent and may be evaluated concurrently.

Example:
    from fraud_workflow.resampling import fit_resamples
    from fraud_workflow.splitting import make_folds

    folds = make_folds(train_df, k=10, strata="isFraud", seed=123)
    result = fit_resamples(workflow, train_df, folds, n_jobs=4, seed=123)
    print(result.collect_metrics())
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from fraud_workflow.metrics import MetricSet, as_metric_set, prediction_frame
from fraud_workflow.parallel import map_units
from fraud_workflow.splitting import Fold

logger = logging.getLogger(__name__)


def fold_seed(seed: int, fold_index: int) -> int:
    """Derive an independent, reproducible seed for one fold."""
    return int(np.random.SeedSequence([seed, fold_index]).generate_state(1)[0])


@dataclass(frozen=True, eq=False)
class FoldResult:
    """Held-out predictions and metrics of one fold."""

    fold_id: str
    predictions: pd.DataFrame = field(repr=False)
    metrics: Dict[str, float] = field(default_factory=dict)


class ResampleResult(Mapping):
    """
    Read-only mapping of fold id to FoldResult.

    Args:
        fold_results: One result per fold.
        metric_names: Names of the computed metrics, in order.
        params: Hyperparameters the workflow was evaluated with, if tuned.
    """

    def __init__(
        self,
        fold_results: Sequence[FoldResult],
        metric_names: Sequence[str],
        params: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._folds: Dict[str, FoldResult] = {r.fold_id: r for r in fold_results}
        self.metric_names: Tuple[str, ...] = tuple(metric_names)
        self.params: Dict[str, Any] = dict(params or {})

    def __getitem__(self, fold_id: str) -> FoldResult:
        return self._folds[fold_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._folds)

    def __len__(self) -> int:
        return len(self._folds)

    def __repr__(self) -> str:
        return f"<ResampleResult {len(self)} folds, metrics={list(self.metric_names)}>"

    def collect_metrics(self, summarize: bool = True) -> pd.DataFrame:
        """
        Per-fold or aggregated metrics.

        Args:
            summarize: When True, one row per metric with ``mean``,
                ``std_err`` and ``n`` (non-missing folds); otherwise one row
                per fold and metric with ``estimate``.
        """
        rows = [
            {"fold_id": fold_id, "metric": name, "estimate": result.metrics[name]}
            for fold_id, result in self._folds.items()
            for name in self.metric_names
        ]
        per_fold = pd.DataFrame(rows, columns=["fold_id", "metric", "estimate"])
        if not summarize:
            return per_fold

        summary = []
        for name in self.metric_names:
            values = per_fold.loc[per_fold["metric"] == name, "estimate"].dropna()
            n = len(values)
            std_err = values.std(ddof=1) / np.sqrt(n) if n > 1 else float("nan")
            summary.append(
                {
                    "metric": name,
                    "mean": values.mean() if n else float("nan"),
                    "std_err": std_err,
                    "n": n,
                }
            )
        return pd.DataFrame(summary, columns=["metric", "mean", "std_err", "n"])

    def metric_mean(self, name: str) -> float:
        """Mean of one metric across folds (NaN folds excluded)."""
        if name not in self.metric_names:
            raise KeyError(f"Metric {name!r} was not computed; have {list(self.metric_names)}")
        summary = self.collect_metrics()
        return float(summary.loc[summary["metric"] == name, "mean"].iloc[0])

    def collect_predictions(self) -> pd.DataFrame:
        """All held-out predictions with a ``fold_id`` column."""
        frames = [
            result.predictions.assign(fold_id=fold_id)
            for fold_id, result in self._folds.items()
        ]
        return pd.concat(frames, ignore_index=True)


def _fit_fold(
    workflow: Any,
    data: pd.DataFrame,
    fold: Fold,
    fold_index: int,
    metric_set: MetricSet,
    seed: int,
    positive: Any,
) -> FoldResult:
    analysis = fold.analysis_data(data)
    assessment = fold.assessment_data(data)

    fitted = workflow.fit(analysis, seed=fold_seed(seed, fold_index))
    predictions = prediction_frame(fitted, assessment, workflow.label, positive)
    predictions = predictions.reset_index(drop=True)
    predictions.insert(0, "row", fold.assessment)

    metrics = metric_set(
        predictions[workflow.label],
        predictions["pred_class"],
        predictions["pred_prob"],
        positive,
    )
    logger.debug(f"{fold.fold_id}: {metrics}")
    return FoldResult(fold_id=fold.fold_id, predictions=predictions, metrics=metrics)


def fit_resamples(
    workflow: Any,
    data: pd.DataFrame,
    folds: List[Fold],
    metrics: Any = None,
    n_jobs: int = 1,
    seed: int = 123,
    positive: Any = 1,
) -> ResampleResult:
    """
    Fit and assess a workflow on every fold.

    Args:
        workflow: Workflow with resolved hyperparameters.
        data: The table the folds index into (the training subset).
        folds: Folds from ``make_folds``.
        metrics: Metric names or MetricSet; defaults to all metrics.
        n_jobs: Worker threads for fold evaluation.
        seed: Base seed; each fold gets ``fold_seed(seed, index)``.
        positive: Label of the positive class.

    Returns:
        ResampleResult keyed by fold id.
    """
    metric_set = as_metric_set(metrics)
    if not folds:
        raise ValueError("fit_resamples needs at least one fold")

    def run(unit: Tuple[int, Fold]) -> FoldResult:
        index, fold = unit
        return _fit_fold(workflow, data, fold, index, metric_set, seed, positive)

    fold_results = map_units(run, list(enumerate(folds)), n_jobs=n_jobs)
    result = ResampleResult(fold_results, metric_set.names, params=dict(workflow.model.params))
    logger.info(
        f"Resampled {workflow.model.family} over {len(folds)} folds: "
        + ", ".join(
            f"{row.metric}={row.mean:.4f}" for row in result.collect_metrics().itertuples()
        )
    )
    return result
