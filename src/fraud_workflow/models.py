"""
Model specification module for the fraud detection workflow.

A ModelSpec declares *what* to fit (algorithm family, hyperparameters,
computational engine, task mode) without referring to any data. Fitting a
spec on preprocessed training data produces a FittedModel that predicts
class labels and per-class probabilities.

Supported families and engines:
    logistic_reg  / sklearn   LogisticRegression
    decision_tree / sklearn   DecisionTreeClassifier
    boost_tree    / xgboost   XGBClassifier

Hyperparameters use engine-neutral names (``tree_depth``, ``min_n``,
``cost_complexity``...) and may be left as ``TUNE`` to mark them for
hyperparameter tuning.

Example:
    from fraud_workflow.models import TUNE, decision_tree, fit_model

    spec = decision_tree(cost_complexity=TUNE, tree_depth=TUNE, min_n=TUNE)
    spec.tunable_params()          # ['cost_complexity', 'tree_depth', 'min_n']

    resolved = spec.with_params(cost_complexity=0.001, tree_depth=8, min_n=20)
    model = fit_model(resolved, train_processed, label="isFraud", seed=123)
    model.predict_prob(test_processed)
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.linear_model import LogisticRegression
from sklearn.tree import DecisionTreeClassifier
from xgboost import XGBClassifier

from fraud_workflow.data_loading import SchemaMismatchError

logger = logging.getLogger(__name__)

MODES = ("classification", "regression")


class _TuneMarker:
    """Placeholder for a hyperparameter whose value is chosen by tuning."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "TUNE"

    def __reduce__(self):
        return (_TuneMarker, ())


TUNE = _TuneMarker()


def _build_logistic_reg(params: Dict[str, Any], seed: Optional[int]) -> Any:
    penalty = params["penalty"]
    if penalty is None or penalty == 0:
        return LogisticRegression(C=np.inf, max_iter=1000, random_state=seed)
    return LogisticRegression(C=1.0 / penalty, max_iter=1000, random_state=seed)


def _build_decision_tree(params: Dict[str, Any], seed: Optional[int]) -> Any:
    return DecisionTreeClassifier(
        ccp_alpha=float(params["cost_complexity"]),
        max_depth=int(params["tree_depth"]),
        min_samples_split=int(params["min_n"]),
        random_state=seed,
    )


def _build_boost_tree(params: Dict[str, Any], seed: Optional[int]) -> Any:
    return XGBClassifier(
        n_estimators=int(params["trees"]),
        max_depth=int(params["tree_depth"]),
        learning_rate=float(params["learn_rate"]),
        eval_metric="logloss",
        random_state=seed,
        n_jobs=1,
    )


# family -> default hyperparameters
FAMILY_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "logistic_reg": {"penalty": None},
    "decision_tree": {"cost_complexity": 0.01, "tree_depth": 30, "min_n": 2},
    "boost_tree": {"trees": 100, "tree_depth": 6, "learn_rate": 0.3},
}

# (family, engine) -> estimator builder
ENGINES: Dict[Tuple[str, str], Callable[[Dict[str, Any], Optional[int]], Any]] = {
    ("logistic_reg", "sklearn"): _build_logistic_reg,
    ("decision_tree", "sklearn"): _build_decision_tree,
    ("boost_tree", "xgboost"): _build_boost_tree,
}


@dataclass(frozen=True)
class ModelSpec:
    """
    Declarative description of a learning algorithm.

    Args:
        family: Algorithm family (logistic_reg, decision_tree, boost_tree).
        params: Hyperparameters by engine-neutral name; values may be TUNE.
        engine: Computational backend for the family.
        mode: Task mode; only ``"classification"`` can be fit.
    """

    family: str
    params: Dict[str, Any] = field(default_factory=dict)
    engine: str = "sklearn"
    mode: str = "classification"

    def __post_init__(self) -> None:
        if self.family not in FAMILY_DEFAULTS:
            raise ValueError(
                f"Unknown model family {self.family!r}; "
                f"available: {sorted(FAMILY_DEFAULTS)}"
            )
        if (self.family, self.engine) not in ENGINES:
            engines = sorted(e for f, e in ENGINES if f == self.family)
            raise ValueError(
                f"Engine {self.engine!r} is not available for {self.family}; "
                f"available: {engines}"
            )
        if self.mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {self.mode!r}")
        unknown = sorted(set(self.params) - set(FAMILY_DEFAULTS[self.family]))
        if unknown:
            raise ValueError(
                f"Unknown hyperparameters for {self.family}: {unknown}; "
                f"valid: {sorted(FAMILY_DEFAULTS[self.family])}"
            )
        merged = dict(FAMILY_DEFAULTS[self.family])
        merged.update(self.params)
        object.__setattr__(self, "params", merged)

    def tunable_params(self) -> List[str]:
        """Names of hyperparameters still marked TUNE."""
        return [name for name, value in self.params.items() if value is TUNE]

    def is_resolved(self) -> bool:
        return not self.tunable_params()

    def with_params(self, **values: Any) -> "ModelSpec":
        """Return a new spec with the given hyperparameters replaced."""
        params = dict(self.params)
        params.update(values)
        return replace(self, params=params)

    def with_mode(self, mode: str) -> "ModelSpec":
        return replace(self, mode=mode)

    def build_estimator(self, seed: Optional[int] = None) -> Any:
        """Instantiate the unfitted engine estimator."""
        if self.mode != "classification":
            raise ValueError(
                f"{self.family} can only be fit in classification mode, got {self.mode!r}"
            )
        if not self.is_resolved():
            raise ValueError(
                f"{self.family} has unresolved tuning parameters: {self.tunable_params()}"
            )
        return ENGINES[(self.family, self.engine)](self.params, seed)


def logistic_reg(penalty: Any = None, engine: str = "sklearn") -> ModelSpec:
    """Logistic regression; ``penalty`` is the L2 regularisation amount."""
    return ModelSpec("logistic_reg", {"penalty": penalty}, engine)


def decision_tree(
    cost_complexity: Any = 0.01,
    tree_depth: Any = 30,
    min_n: Any = 2,
    engine: str = "sklearn",
) -> ModelSpec:
    """
    CART decision tree.

    Args:
        cost_complexity: Minimal cost-complexity pruning penalty.
        tree_depth: Maximum depth of the tree.
        min_n: Minimum number of rows in a node for it to be split.
    """
    return ModelSpec(
        "decision_tree",
        {"cost_complexity": cost_complexity, "tree_depth": tree_depth, "min_n": min_n},
        engine,
    )


def boost_tree(
    trees: Any = 100,
    tree_depth: Any = 6,
    learn_rate: Any = 0.3,
    engine: str = "xgboost",
) -> ModelSpec:
    """Gradient boosted trees."""
    return ModelSpec(
        "boost_tree",
        {"trees": trees, "tree_depth": tree_depth, "learn_rate": learn_rate},
        engine,
    )


@dataclass(frozen=True)
class FittedModel:
    """
    A ModelSpec together with the estimator learned from training data.

    ``fit_info`` carries training-time diagnostics only; it is not needed
    for prediction and is dropped by ``without_fit_info``.
    """

    spec: ModelSpec
    estimator: Any
    feature_names: Tuple[str, ...]
    classes: Tuple[Any, ...]
    fit_info: Optional[Dict[str, Any]] = field(default=None, compare=False)

    def _features(self, data: pd.DataFrame) -> pd.DataFrame:
        expected = set(self.feature_names)
        missing = [col for col in self.feature_names if col not in data.columns]
        extra = [col for col in data.columns if col not in expected]
        if missing or extra:
            raise SchemaMismatchError(
                f"Predictors do not match the training-time features: "
                f"missing {missing}, unexpected {extra}"
            )
        return data[list(self.feature_names)]

    def predict_class(self, data: pd.DataFrame) -> pd.Series:
        """Predict the class label of each row."""
        predictions = self.estimator.predict(self._features(data))
        return pd.Series(
            np.asarray(self.classes)[_class_positions(self.classes, predictions)],
            index=data.index,
            name="pred_class",
        )

    def predict_prob(self, data: pd.DataFrame) -> pd.DataFrame:
        """Predict per-class probabilities; columns ``prob_<class>`` sum to 1."""
        proba = self.estimator.predict_proba(self._features(data))
        return pd.DataFrame(
            proba,
            columns=[f"prob_{c}" for c in self.classes],
            index=data.index,
        )

    def without_fit_info(self) -> "FittedModel":
        return replace(self, fit_info=None)


def _class_positions(classes: Tuple[Any, ...], predictions: np.ndarray) -> np.ndarray:
    lookup = {c: i for i, c in enumerate(classes)}
    return np.array([lookup[p] for p in np.asarray(predictions).tolist()], dtype=int)


def fit_model(
    spec: ModelSpec,
    data: pd.DataFrame,
    label: str,
    seed: int = 123,
) -> FittedModel:
    """
    Fit a resolved ModelSpec on preprocessed training data.

    Args:
        spec: Model specification without TUNE placeholders.
        data: Preprocessed training data including the label column.
        label: Name of the label column.
        seed: Random state passed to the engine.

    Returns:
        FittedModel.

    Raises:
        SchemaMismatchError: If the label column is missing.
        ValueError: If the spec still has TUNE placeholders.
    """
    if label not in data.columns:
        raise SchemaMismatchError(f"Label column '{label}' not found in training data")

    estimator = spec.build_estimator(seed)
    X = data.drop(columns=[label])
    y = data[label].to_numpy()

    start_time = time.time()
    estimator.fit(X, y)
    training_time = time.time() - start_time

    classes = tuple(np.asarray(estimator.classes_).tolist())
    fit_info = {
        "n_rows": len(data),
        "class_counts": {k: int(v) for k, v in data[label].value_counts().items()},
        "training_time_seconds": training_time,
    }
    logger.info(
        f"Fitted {spec.family} ({spec.engine}) on {len(data)} rows "
        f"in {training_time:.2f}s"
    )
    return FittedModel(
        spec=spec,
        estimator=estimator,
        feature_names=tuple(X.columns),
        classes=classes,
        fit_info=fit_info,
    )
