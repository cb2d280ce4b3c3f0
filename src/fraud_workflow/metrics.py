"""
Metrics module for the fraud detection workflow.

This module computes binary classification statistics from true labels and
predictions, and provides the ModelEvaluator class for scoring a fitted
workflow on held-out data and rendering evaluation plots.

Metrics whose denominator is zero (for example precision when nothing was
predicted positive, or ROC-AUC when the truth has a single class) are
undefined: they return ``float("nan")`` and log a warning rather than a
misleading 0.

Example:
    from fraud_workflow.metrics import ModelEvaluator, recall

    evaluator = ModelEvaluator()
    metrics = evaluator.calculate_metrics(y_true, y_pred, y_pred_proba)

    recall(y_true, y_pred)
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import confusion_matrix, roc_auc_score, roc_curve

logger = logging.getLogger(__name__)

POSITIVE_LABEL = 1


class ConfusionCounts(NamedTuple):
    """Cell counts of a binary confusion matrix."""

    tp: int
    fp: int
    fn: int
    tn: int

    @property
    def total(self) -> int:
        return self.tp + self.fp + self.fn + self.tn


def confusion_counts(
    y_true: Any, y_pred: Any, positive: Any = POSITIVE_LABEL
) -> ConfusionCounts:
    """
    Count true/false positives and negatives.

    Args:
        y_true: True labels.
        y_pred: Predicted labels.
        positive: The label treated as the positive (fraud) class.

    Returns:
        ConfusionCounts(tp, fp, fn, tn).
    """
    y_true = (np.asarray(y_true) == positive).astype(int)
    y_pred = (np.asarray(y_pred) == positive).astype(int)
    if y_true.shape != y_pred.shape:
        raise ValueError(
            f"y_true and y_pred must have the same length, got "
            f"{y_true.shape[0]} and {y_pred.shape[0]}"
        )
    if y_true.size == 0:
        return ConfusionCounts(tp=0, fp=0, fn=0, tn=0)
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    return ConfusionCounts(tp=int(tp), fp=int(fp), fn=int(fn), tn=int(tn))


def _ratio(numerator: float, denominator: float, metric: str) -> float:
    if denominator == 0:
        logger.warning(f"{metric} is undefined (zero denominator); returning NaN")
        return float("nan")
    return numerator / denominator


def accuracy_from_counts(counts: ConfusionCounts) -> float:
    return _ratio(counts.tp + counts.tn, counts.total, "accuracy")


def precision_from_counts(counts: ConfusionCounts) -> float:
    return _ratio(counts.tp, counts.tp + counts.fp, "precision")


def recall_from_counts(counts: ConfusionCounts) -> float:
    return _ratio(counts.tp, counts.tp + counts.fn, "recall")


def specificity_from_counts(counts: ConfusionCounts) -> float:
    return _ratio(counts.tn, counts.tn + counts.fp, "specificity")


def f1_from_counts(counts: ConfusionCounts) -> float:
    """F1 as the harmonic mean of precision and recall; NaN if either is."""
    p = precision_from_counts(counts)
    r = recall_from_counts(counts)
    if np.isnan(p) or np.isnan(r):
        return float("nan")
    return _ratio(2 * p * r, p + r, "f1")


def accuracy(y_true: Any, y_pred: Any, positive: Any = POSITIVE_LABEL) -> float:
    return accuracy_from_counts(confusion_counts(y_true, y_pred, positive))


def precision(y_true: Any, y_pred: Any, positive: Any = POSITIVE_LABEL) -> float:
    return precision_from_counts(confusion_counts(y_true, y_pred, positive))


def recall(y_true: Any, y_pred: Any, positive: Any = POSITIVE_LABEL) -> float:
    return recall_from_counts(confusion_counts(y_true, y_pred, positive))


sensitivity = recall


def specificity(y_true: Any, y_pred: Any, positive: Any = POSITIVE_LABEL) -> float:
    return specificity_from_counts(confusion_counts(y_true, y_pred, positive))


def f1(y_true: Any, y_pred: Any, positive: Any = POSITIVE_LABEL) -> float:
    return f1_from_counts(confusion_counts(y_true, y_pred, positive))


def roc_auc(y_true: Any, y_score: Any, positive: Any = POSITIVE_LABEL) -> float:
    """
    Area under the ROC curve over the full threshold sweep.

    Args:
        y_true: True labels.
        y_score: Predicted probability of the positive class.
        positive: The positive label.

    Returns:
        ROC-AUC, or NaN when ``y_true`` contains a single class.
    """
    y_binary = (np.asarray(y_true) == positive).astype(int)
    if np.unique(y_binary).size < 2:
        logger.warning("roc_auc is undefined (only one class present); returning NaN")
        return float("nan")
    return float(roc_auc_score(y_binary, np.asarray(y_score, dtype=float)))


# name -> (function, input kind). "class" metrics take hard labels,
# "prob" metrics take the positive-class probability.
METRICS: Dict[str, Tuple[Callable[..., float], str]] = {
    "accuracy": (accuracy, "class"),
    "precision": (precision, "class"),
    "recall": (recall, "class"),
    "sensitivity": (sensitivity, "class"),
    "specificity": (specificity, "class"),
    "f1": (f1, "class"),
    "roc_auc": (roc_auc, "prob"),
}

# True when larger values are better.
METRIC_DIRECTIONS: Dict[str, bool] = {name: True for name in METRICS}

DEFAULT_METRICS: Tuple[str, ...] = (
    "accuracy",
    "sensitivity",
    "specificity",
    "precision",
    "recall",
    "f1",
    "roc_auc",
)


class MetricSet:
    """
    A named collection of metrics evaluated together.

    Example:
        metric_set = MetricSet(["recall", "roc_auc"])
        metric_set(y_true, y_pred, y_prob)
        # {'recall': 0.8, 'roc_auc': 0.93}
    """

    def __init__(self, names: Iterable[str] = DEFAULT_METRICS) -> None:
        names = list(names)
        unknown = [name for name in names if name not in METRICS]
        if unknown:
            raise ValueError(
                f"Unknown metrics: {unknown}. Available metrics: {sorted(METRICS)}"
            )
        if not names:
            raise ValueError("A metric set needs at least one metric")
        self.names: List[str] = names

    def __iter__(self):
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    def __repr__(self) -> str:
        return f"MetricSet({self.names!r})"

    def __call__(
        self,
        y_true: Any,
        y_pred: Any,
        y_prob: Optional[Any] = None,
        positive: Any = POSITIVE_LABEL,
    ) -> Dict[str, float]:
        results: Dict[str, float] = {}
        for name in self.names:
            func, kind = METRICS[name]
            if kind == "prob":
                if y_prob is None:
                    raise ValueError(f"Metric {name!r} needs predicted probabilities")
                results[name] = func(y_true, y_prob, positive)
            else:
                results[name] = func(y_true, y_pred, positive)
        return results


def as_metric_set(metrics: Any) -> MetricSet:
    """Coerce None, a list of names or a MetricSet into a MetricSet."""
    if metrics is None:
        return MetricSet()
    if isinstance(metrics, MetricSet):
        return metrics
    if isinstance(metrics, str):
        return MetricSet([metrics])
    return MetricSet(metrics)


class ModelEvaluator:
    """
    Standardized evaluation of fitted workflows.

    Provides methods for calculating classification metrics, scoring a fitted
    workflow on labelled data, and generating evaluation plots.

    Args:
        positive: Label of the positive (fraud) class.

    Example:
        evaluator = ModelEvaluator()
        results = evaluator.evaluate_workflow(fitted_workflow, test_df)
        print(results["metrics"])
    """

    def __init__(self, positive: Any = POSITIVE_LABEL) -> None:
        self.positive = positive

    def calculate_metrics(
        self,
        y_true: Any,
        y_pred: Any,
        y_pred_proba: Any,
        metrics: Any = None,
    ) -> Dict[str, float]:
        """
        Calculate classification metrics.

        Args:
            y_true: True labels.
            y_pred: Predicted labels.
            y_pred_proba: Predicted probabilities for the positive class.
            metrics: Metric names or MetricSet; defaults to DEFAULT_METRICS.

        Returns:
            Dictionary of metric name to value (NaN where undefined).

        Example:
            evaluator = ModelEvaluator()
            metrics = evaluator.calculate_metrics(
                np.array([0, 1, 1, 0]),
                np.array([0, 1, 0, 0]),
                np.array([0.1, 0.9, 0.4, 0.2]),
            )
        """
        return as_metric_set(metrics)(y_true, y_pred, y_pred_proba, self.positive)

    def evaluate_workflow(
        self,
        workflow: Any,
        data: pd.DataFrame,
        label: Optional[str] = None,
        metrics: Any = None,
    ) -> Dict[str, Any]:
        """
        Score a fitted workflow on labelled data.

        Args:
            workflow: A fitted Workflow.
            data: DataFrame of raw rows including the label column.
            label: Label column; defaults to the workflow recipe's label.
            metrics: Metric names or MetricSet.

        Returns:
            Dictionary with keys: metrics, confusion_counts, predictions.
        """
        label = label or workflow.recipe.label
        predictions = prediction_frame(workflow, data, label, self.positive)
        y_true = predictions[label]
        results = self.calculate_metrics(
            y_true, predictions["pred_class"], predictions["pred_prob"], metrics
        )
        counts = confusion_counts(y_true, predictions["pred_class"], self.positive)
        logger.info(
            f"Evaluated workflow on {len(data)} rows: "
            + ", ".join(f"{k}={v:.4f}" for k, v in results.items())
        )
        return {
            "metrics": results,
            "confusion_counts": counts,
            "predictions": predictions,
        }

    def plot_confusion_matrix(
        self,
        y_true: Any,
        y_pred: Any,
        save_path: str = "confusion_matrix.png",
    ) -> np.ndarray:
        """
        Generate and save a confusion matrix heatmap.

        Returns:
            The 2x2 confusion matrix, rows = truth (negative, positive).
        """
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
        import seaborn as sns

        counts = confusion_counts(y_true, y_pred, self.positive)
        cm = np.array([[counts.tn, counts.fp], [counts.fn, counts.tp]])

        plt.figure(figsize=(8, 6))
        sns.heatmap(cm, annot=True, fmt="d", cmap="Blues")
        plt.title("Confusion Matrix")
        plt.ylabel("True Label")
        plt.xlabel("Predicted Label")
        plt.savefig(save_path)
        plt.close()

        return cm

    def plot_roc_curve(
        self,
        y_true: Any,
        y_pred_proba: Any,
        save_path: str = "roc_curve.png",
    ) -> Tuple[np.ndarray, np.ndarray, float]:
        """
        Generate and save an ROC curve.

        Returns:
            Tuple of (fpr, tpr, auc).
        """
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        y_binary = (np.asarray(y_true) == self.positive).astype(int)
        fpr, tpr, _ = roc_curve(y_binary, y_pred_proba)
        auc = roc_auc(y_true, y_pred_proba, self.positive)

        plt.figure(figsize=(8, 6))
        plt.plot(fpr, tpr, label=f"ROC Curve (AUC = {auc:.3f})")
        plt.plot([0, 1], [0, 1], "k--", label="Random Classifier")
        plt.xlabel("False Positive Rate")
        plt.ylabel("True Positive Rate")
        plt.title("ROC Curve")
        plt.legend()
        plt.grid(True)
        plt.savefig(save_path)
        plt.close()

        return fpr, tpr, auc


def prediction_frame(
    workflow: Any, data: pd.DataFrame, label: str, positive: Any = POSITIVE_LABEL
) -> pd.DataFrame:
    """
    Predict with a fitted workflow and line predictions up with the truth.

    Returns:
        DataFrame indexed like ``data`` with columns: the label, ``pred_class``
        and ``pred_prob`` (probability of ``positive``).
    """
    features = data.drop(columns=[label])
    probabilities = workflow.predict_prob(features)
    return pd.DataFrame(
        {
            label: data[label].to_numpy(),
            "pred_class": workflow.predict_class(features).to_numpy(),
            "pred_prob": probabilities[f"prob_{positive}"].to_numpy(),
        },
        index=data.index,
    )
