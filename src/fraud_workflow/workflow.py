"""
Workflow module for the fraud detection workflow.

A Workflow bundles a preprocessing Recipe with a ModelSpec so the pair can be
fit, resampled, tuned, evaluated and exported as one unit. Workflows are
immutable values: ``with_model`` and ``fit`` return new workflows and never
modify the original.

Lifecycle:
    unfit  --fit()-->  fitted  --finalize_workflow()-->  finalized  --export-->

Example:
    from fraud_workflow.models import decision_tree
    from fraud_workflow.recipe import Recipe
    from fraud_workflow.workflow import Workflow, last_fit

    workflow = Workflow(Recipe.default(), decision_tree(tree_depth=8))
    fitted = workflow.fit(train_df, seed=123)
    fitted.predict_class({"step": 1, "type": "TRANSFER", "amount": 181.0, ...})

    result = last_fit(workflow, split)
    print(result.metrics)
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional

import pandas as pd

from fraud_workflow.metrics import ModelEvaluator, as_metric_set
from fraud_workflow.models import FittedModel, ModelSpec, fit_model
from fraud_workflow.recipe import FittedRecipe, Recipe
from fraud_workflow.splitting import Split

logger = logging.getLogger(__name__)


class WorkflowError(RuntimeError):
    """Raised when a workflow is used out of lifecycle order.

    For example predicting with an unfitted workflow, or fitting one whose
    model still has hyperparameters marked for tuning.
    """


def _as_frame(data: Any) -> pd.DataFrame:
    if isinstance(data, pd.DataFrame):
        return data
    if isinstance(data, Mapping):
        return pd.DataFrame([dict(data)])
    if isinstance(data, (list, tuple)):
        return pd.DataFrame(list(data))
    raise TypeError(
        f"Expected a DataFrame, a mapping or a list of mappings, got {type(data).__name__}"
    )


@dataclass(frozen=True, eq=False)
class Workflow:
    """
    A preprocessing recipe paired with a model specification.

    Args:
        recipe: Preprocessing recipe; its label is the prediction target.
        model: Model specification, possibly with TUNE placeholders.
        fitted_recipe: Set once the workflow is fit.
        fitted_model: Set once the workflow is fit.
        finalized: True once hyperparameters are locked by finalize_workflow.
    """

    recipe: Recipe
    model: ModelSpec
    fitted_recipe: Optional[FittedRecipe] = field(default=None, repr=False)
    fitted_model: Optional[FittedModel] = field(default=None, repr=False)
    finalized: bool = False

    @property
    def label(self) -> str:
        return self.recipe.label

    @property
    def is_fitted(self) -> bool:
        return self.fitted_recipe is not None and self.fitted_model is not None

    def with_model(self, model: ModelSpec) -> "Workflow":
        """Return an unfitted copy using ``model``."""
        return Workflow(recipe=self.recipe, model=model)

    def with_recipe(self, recipe: Recipe) -> "Workflow":
        """Return an unfitted copy using ``recipe``."""
        return Workflow(recipe=recipe, model=self.model)

    def fit(self, training: pd.DataFrame, seed: Optional[int] = None) -> "Workflow":
        """
        Fit the recipe on ``training`` and the model on the recipe's output.

        Args:
            training: Raw training rows including the label.
            seed: Seed for the oversampler and the model engine; defaults to
                the recipe's seed.

        Returns:
            A fitted copy of this workflow.

        Raises:
            WorkflowError: If the model has unresolved TUNE parameters.
        """
        if not self.model.is_resolved():
            raise WorkflowError(
                f"Cannot fit: parameters {self.model.tunable_params()} are marked "
                "for tuning. Use finalize_workflow() or with_model() first."
            )
        seed = self.recipe.seed if seed is None else seed
        recipe = self.recipe.with_seed(seed)
        fitted_recipe = recipe.fit(training)
        fitted_model = fit_model(
            self.model, fitted_recipe.training_data, self.label, seed=seed
        )
        return replace(self, fitted_recipe=fitted_recipe, fitted_model=fitted_model)

    def _processed(self, data: Any) -> pd.DataFrame:
        if not self.is_fitted:
            raise WorkflowError("Workflow is not fitted; call fit() first")
        processed = self.fitted_recipe.apply(_as_frame(data))
        if self.label in processed.columns:
            processed = processed.drop(columns=[self.label])
        return processed

    def predict_class(self, data: Any) -> pd.Series:
        """
        Predict class labels for raw rows.

        Args:
            data: DataFrame, single mapping, or list of mappings with the raw
                feature columns (the label column is optional).
        """
        processed = self._processed(data)
        return self.fitted_model.predict_class(processed)

    def predict_prob(self, data: Any) -> pd.DataFrame:
        """Predict per-class probabilities for raw rows."""
        processed = self._processed(data)
        return self.fitted_model.predict_prob(processed)

    def reduce(self) -> "Workflow":
        """
        Strip training-time artifacts not needed for prediction.

        Drops the retained processed training data and the model's fit
        diagnostics. Predictions are unchanged.
        """
        if not self.is_fitted:
            raise WorkflowError("Only fitted workflows can be reduced")
        return replace(
            self,
            fitted_recipe=self.fitted_recipe.without_training_data(),
            fitted_model=self.fitted_model.without_fit_info(),
        )


def finalize_workflow(workflow: Workflow, params: Mapping[str, Any]) -> Workflow:
    """
    Lock hyperparameters into a workflow.

    Args:
        workflow: Workflow whose model may contain TUNE placeholders.
        params: Values for the model's hyperparameters, e.g. the output of
            ``TuneResult.select_best``.

    Returns:
        An unfitted, finalized workflow ready to be refit.

    Raises:
        WorkflowError: If placeholders remain after substitution.
    """
    model = workflow.model.with_params(**dict(params))
    if not model.is_resolved():
        raise WorkflowError(
            f"Parameters {model.tunable_params()} still unresolved after finalizing"
        )
    logger.info(f"Finalized {model.family} with {dict(params)}")
    return replace(workflow.with_model(model), finalized=True)


@dataclass(frozen=True, eq=False)
class LastFitResult:
    """Outcome of fitting on the training subset and scoring the test subset."""

    workflow: Workflow
    predictions: pd.DataFrame
    metrics: Dict[str, float]
    split: Split = field(repr=False)

    def collect_metrics(self) -> pd.DataFrame:
        return pd.DataFrame(
            {"metric": list(self.metrics), "estimate": list(self.metrics.values())}
        )


def last_fit(
    workflow: Workflow,
    split: Split,
    metrics: Any = None,
    seed: Optional[int] = None,
    positive: Any = 1,
) -> LastFitResult:
    """
    Fit on the full training subset, then evaluate once on the test subset.

    Args:
        workflow: Workflow with resolved hyperparameters.
        split: The initial train/test split.
        metrics: Metric names or MetricSet; defaults to all metrics.
        seed: Seed for the fit; defaults to the split's seed.
        positive: Label of the positive class.
    """
    seed = split.seed if seed is None else seed
    fitted = workflow.fit(split.training, seed=seed)
    evaluation = ModelEvaluator(positive=positive).evaluate_workflow(
        fitted, split.testing, label=workflow.label, metrics=as_metric_set(metrics)
    )
    return LastFitResult(
        workflow=fitted,
        predictions=evaluation["predictions"],
        metrics=evaluation["metrics"],
        split=split,
    )
