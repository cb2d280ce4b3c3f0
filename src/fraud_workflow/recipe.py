"""
Preprocessing recipe module for the fraud detection workflow.

A Recipe is an ordered, declarative list of preprocessing steps. Fitting a
recipe on training data learns each step's parameters once (which columns
are correlated, means and scales, category levels) and returns a
FittedRecipe that replays exactly those transformations on any new data.

Every step implements the same two-phase interface:

    params = step.fit(reference, label)
    transformed = step.apply(params, data, label)

``apply`` only uses ``params``; statistics are never recomputed from the
data being transformed. Steps flagged ``skip_on_new_data`` (oversampling)
run while the recipe is fit and are skipped afterwards, so synthetic rows
never reach validation or test data.

Example:
    from fraud_workflow.recipe import Recipe

    recipe = Recipe.default(label="isFraud", seed=123)
    fitted = recipe.fit(train_df)

    train_processed = fitted.training_data   # oversampled
    test_processed = fitted.apply(test_df)   # no oversampling
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from imblearn.over_sampling import SMOTE
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from fraud_workflow.data_loading import (
    CATEGORICAL,
    INTEGER,
    LABEL,
    NUMERIC,
    SchemaMismatchError,
    validate_schema,
)

logger = logging.getLogger(__name__)

DEFAULT_SEED = 123


class RecipeError(ValueError):
    """Raised when a preprocessing step cannot be fit or applied.

    Examples: a log transform meeting values at or below ``-offset``, an
    oversampler without enough minority rows, or a recipe fit on an empty
    table.
    """


class UnseenCategoryError(ValueError):
    """Raised when encoding meets a category level absent at fit time.

    Only raised under the ``"error"`` unknown-category policy; the default
    ``"ignore"`` policy encodes such rows as all-zero indicators.
    """


def _numeric_predictors(data: pd.DataFrame, label: str) -> List[str]:
    return [
        col for col in data.columns
        if col != label and pd.api.types.is_numeric_dtype(data[col])
    ]


def _nominal_predictors(data: pd.DataFrame, label: str) -> List[str]:
    return [
        col for col in data.columns
        if col != label and not pd.api.types.is_numeric_dtype(data[col])
    ]


class Step:
    """Base class for recipe steps.

    Subclasses are frozen dataclasses holding only their settings; learned
    state is returned by ``fit`` and passed back into ``apply``.
    """

    name = "step"
    skip_on_new_data = False

    def fit(self, data: pd.DataFrame, label: str) -> Dict[str, Any]:
        raise NotImplementedError

    def apply(self, params: Dict[str, Any], data: pd.DataFrame, label: str) -> pd.DataFrame:
        raise NotImplementedError


@dataclass(frozen=True)
class CorrelationFilter(Step):
    """
    Remove numeric predictors highly correlated with an earlier predictor.

    Columns are scanned in table order; a column is dropped when the absolute
    Pearson correlation with any already-retained column exceeds
    ``threshold``. For a correlated pair the later column is therefore the
    one removed. Undefined correlations (constant columns) count as 0.
    """

    threshold: float = 0.9
    name = "correlation_filter"

    def fit(self, data: pd.DataFrame, label: str) -> Dict[str, Any]:
        columns = _numeric_predictors(data, label)
        corr = data[columns].corr().abs().fillna(0.0)

        retained: List[str] = []
        removed: List[str] = []
        for col in columns:
            if any(corr.loc[col, kept] > self.threshold for kept in retained):
                removed.append(col)
            else:
                retained.append(col)

        if removed:
            logger.info(f"Correlation filter (threshold={self.threshold}) removes {removed}")
        return {"removed": removed}

    def apply(self, params: Dict[str, Any], data: pd.DataFrame, label: str) -> pd.DataFrame:
        return data.drop(columns=params["removed"])


@dataclass(frozen=True)
class LogTransform(Step):
    """Replace numeric predictors by ``log_base(x + offset)``."""

    base: float = 10.0
    offset: float = 1.0
    name = "log_transform"

    def fit(self, data: pd.DataFrame, label: str) -> Dict[str, Any]:
        return {
            "columns": _numeric_predictors(data, label),
            "base": float(self.base),
            "offset": float(self.offset),
        }

    def apply(self, params: Dict[str, Any], data: pd.DataFrame, label: str) -> pd.DataFrame:
        columns = params["columns"]
        if not columns:
            return data
        shifted = data[columns].astype(float) + params["offset"]
        invalid = (shifted <= 0).sum()
        invalid = invalid[invalid > 0]
        if not invalid.empty:
            raise RecipeError(
                f"Log transform with offset {params['offset']} is undefined for "
                f"values <= {-params['offset']}; offending counts: {invalid.to_dict()}"
            )
        out = data.copy()
        out[columns] = np.log(shifted) / np.log(params["base"])
        return out


@dataclass(frozen=True)
class Normalizer(Step):
    """
    Center and scale numeric predictors to zero mean and unit variance.

    Means and scales come from the fit reference; zero-variance columns are
    centered and left unscaled.
    """

    name = "normalizer"

    def fit(self, data: pd.DataFrame, label: str) -> Dict[str, Any]:
        columns = _numeric_predictors(data, label)
        if not columns:
            return {"columns": [], "scaler": None}
        scaler = StandardScaler().fit(data[columns])
        constant = [col for col, var in zip(columns, scaler.var_) if var == 0]
        if constant:
            logger.warning(f"Zero-variance columns left unscaled: {constant}")
        return {"columns": columns, "scaler": scaler}

    def apply(self, params: Dict[str, Any], data: pd.DataFrame, label: str) -> pd.DataFrame:
        columns = params["columns"]
        if not columns:
            return data
        out = data.copy()
        out[columns] = pd.DataFrame(
            params["scaler"].transform(data[columns]), columns=columns, index=data.index
        )
        return out


@dataclass(frozen=True)
class DummyEncoder(Step):
    """
    Expand nominal predictors into one indicator column per fit-time level.

    All levels get an indicator (no reference level is dropped), so an
    all-zero row unambiguously means the value was not seen at fit time.

    Args:
        unknown: ``"ignore"`` encodes unseen levels as all zeros (and logs a
            warning); ``"error"`` raises UnseenCategoryError.
    """

    unknown: str = "ignore"
    name = "dummy_encoder"

    def __post_init__(self) -> None:
        if self.unknown not in ("ignore", "error"):
            raise ValueError(f"unknown must be 'ignore' or 'error', got {self.unknown!r}")

    def fit(self, data: pd.DataFrame, label: str) -> Dict[str, Any]:
        columns = _nominal_predictors(data, label)
        if not columns:
            return {"columns": [], "encoder": None, "levels": {}}
        encoder = OneHotEncoder(handle_unknown="ignore", sparse_output=False, dtype=float)
        encoder.fit(data[columns].astype(str))
        levels = {
            col: [str(level) for level in cats]
            for col, cats in zip(columns, encoder.categories_)
        }
        return {"columns": columns, "encoder": encoder, "levels": levels}

    def apply(self, params: Dict[str, Any], data: pd.DataFrame, label: str) -> pd.DataFrame:
        columns = params["columns"]
        if not columns:
            return data
        values = data[columns].astype(str)

        for col in columns:
            unseen = ~values[col].isin(params["levels"][col])
            if unseen.any():
                new_levels = sorted(values.loc[unseen, col].unique().tolist())
                if self.unknown == "error":
                    raise UnseenCategoryError(
                        f"Column '{col}' has levels not seen during fit: {new_levels}"
                    )
                logger.warning(
                    f"Column '{col}': {int(unseen.sum())} rows with unseen levels "
                    f"{new_levels} encoded as all-zero indicators"
                )

        encoder = params["encoder"]
        encoded = pd.DataFrame(
            encoder.transform(values),
            columns=encoder.get_feature_names_out(columns),
            index=data.index,
        )
        return pd.concat([data.drop(columns=columns), encoded], axis=1)


@dataclass(frozen=True)
class Oversampler(Step):
    """
    SMOTE oversampling of the minority class.

    Synthesises minority rows by interpolating between a minority row and
    one of its ``neighbors`` nearest minority neighbours until the
    minority/majority ratio reaches ``ratio``. Runs on training data only.
    """

    ratio: float = 1.0
    neighbors: int = 5
    seed: int = DEFAULT_SEED
    name = "oversampler"
    skip_on_new_data = True

    def fit(self, data: pd.DataFrame, label: str) -> Dict[str, Any]:
        if label not in data.columns:
            raise RecipeError(f"Oversampling needs the label column '{label}'")
        return {"ratio": float(self.ratio), "neighbors": int(self.neighbors), "seed": self.seed}

    def apply(self, params: Dict[str, Any], data: pd.DataFrame, label: str) -> pd.DataFrame:
        nominal = _nominal_predictors(data, label)
        if nominal:
            raise RecipeError(
                f"Oversampling needs numeric predictors; encode {nominal} first"
            )

        y = data[label]
        counts = y.value_counts()
        if len(counts) != 2:
            raise RecipeError(
                f"Oversampling needs two classes in '{label}', found {counts.to_dict()}"
            )
        n_minority, n_majority = counts.min(), counts.max()
        if n_minority / n_majority >= params["ratio"]:
            logger.info(
                f"Classes already at ratio {n_minority / n_majority:.3f}; "
                "no oversampling needed"
            )
            return data
        if n_minority < 2:
            raise RecipeError(
                f"Oversampling needs at least 2 minority rows, found {n_minority}"
            )

        k_neighbors = min(params["neighbors"], n_minority - 1)
        if k_neighbors < params["neighbors"]:
            logger.warning(
                f"Only {n_minority} minority rows; using {k_neighbors} neighbours"
            )
        sampler = SMOTE(
            sampling_strategy=params["ratio"],
            k_neighbors=k_neighbors,
            random_state=params["seed"],
        )
        X = data.drop(columns=[label])
        X_resampled, y_resampled = sampler.fit_resample(X, y.to_numpy())

        out = pd.DataFrame(np.asarray(X_resampled), columns=X.columns)
        out[label] = np.asarray(y_resampled).astype(y.dtype)
        out = out[list(data.columns)]

        logger.info(
            f"Oversampling: {len(data)} -> {len(out)} rows, class distribution "
            f"{out[label].value_counts().to_dict()}"
        )
        return out


def _column_kind(series: pd.Series) -> str:
    if pd.api.types.is_integer_dtype(series):
        return INTEGER
    if pd.api.types.is_numeric_dtype(series):
        return NUMERIC
    return CATEGORICAL


@dataclass(frozen=True)
class FittedRecipe:
    """
    A recipe whose steps have been fit on a reference dataset.

    ``apply`` is a pure function of the learned parameters and its input.
    ``training_data`` holds the processed (and oversampled) fit reference
    and is dropped by ``without_training_data``.
    """

    recipe: "Recipe"
    input_schema: Dict[str, str]
    params: Tuple[Dict[str, Any], ...]
    output_columns: Tuple[str, ...]
    training_data: Optional[pd.DataFrame] = field(default=None, repr=False, compare=False)

    @property
    def label(self) -> str:
        return self.recipe.label

    @property
    def predictor_columns(self) -> List[str]:
        """Raw input columns expected at apply time (label excluded)."""
        return [col for col in self.input_schema if col != self.label]

    def apply(self, data: pd.DataFrame) -> pd.DataFrame:
        """
        Transform new data with the fitted parameters.

        The label column is optional; when present it is passed through.
        Oversampling is never applied here.

        Raises:
            SchemaMismatchError: If predictor columns are missing, extra,
                mistyped or contain missing values.
        """
        current = validate_schema(data, self.input_schema, self.label, require_label=False)
        for step, params in zip(self.recipe.steps, self.params):
            if step.skip_on_new_data:
                continue
            current = step.apply(params, current, self.label)
        return current

    def without_training_data(self) -> "FittedRecipe":
        return replace(self, training_data=None)


@dataclass(frozen=True)
class Recipe:
    """
    Ordered declaration of preprocessing steps for one label column.

    Recipes are immutable; ``add_step`` returns a new recipe.

    Example:
        recipe = (
            Recipe(label="isFraud")
            .add_step(CorrelationFilter(threshold=0.9))
            .add_step(Normalizer())
        )
        fitted = recipe.fit(train_df)
    """

    label: str
    steps: Tuple[Step, ...] = ()

    def add_step(self, step: Step) -> "Recipe":
        return replace(self, steps=self.steps + (step,))

    @classmethod
    def default(
        cls,
        label: str = "isFraud",
        correlation_threshold: float = 0.9,
        log_base: float = 10.0,
        log_offset: float = 1.0,
        unknown_category: str = "ignore",
        oversample_ratio: float = 1.0,
        oversample_neighbors: int = 5,
        seed: int = DEFAULT_SEED,
    ) -> "Recipe":
        """
        The standard fraud preprocessing: correlation filter, log transform,
        normalization, dummy encoding, then SMOTE oversampling.
        """
        return cls(
            label=label,
            steps=(
                CorrelationFilter(threshold=correlation_threshold),
                LogTransform(base=log_base, offset=log_offset),
                Normalizer(),
                DummyEncoder(unknown=unknown_category),
                Oversampler(ratio=oversample_ratio, neighbors=oversample_neighbors, seed=seed),
            ),
        )

    @classmethod
    def from_config(cls, config: Any) -> "Recipe":
        """Build the default recipe from a WorkflowConfig."""
        return cls.default(
            label=config.label,
            correlation_threshold=config.correlation_threshold,
            log_base=config.log_base,
            log_offset=config.log_offset,
            unknown_category=config.unknown_category,
            oversample_ratio=config.oversample_ratio,
            oversample_neighbors=config.oversample_neighbors,
            seed=config.seed,
        )

    @property
    def seed(self) -> int:
        """Seed of the first stochastic step, or DEFAULT_SEED when none has one."""
        return next((step.seed for step in self.steps if hasattr(step, "seed")), DEFAULT_SEED)

    def with_seed(self, seed: int) -> "Recipe":
        """Return a copy whose stochastic steps use ``seed``."""
        steps = tuple(
            replace(step, seed=seed) if hasattr(step, "seed") else step
            for step in self.steps
        )
        return replace(self, steps=steps)

    def fit(self, training: pd.DataFrame) -> FittedRecipe:
        """
        Fit every step, in order, on the training data.

        Each step is fit on the output of the previous steps. A failure in
        any step aborts the fit; no partially fitted recipe is returned.

        Returns:
            FittedRecipe with the processed training data retained.

        Raises:
            SchemaMismatchError: If the label column is missing or the data
                has missing values.
        """
        if self.label not in training.columns:
            raise SchemaMismatchError(f"Label column '{self.label}' not found in training data")
        if training.empty:
            raise RecipeError("Cannot fit a recipe on an empty table")

        input_schema = {
            col: (LABEL if col == self.label else _column_kind(training[col]))
            for col in training.columns
        }
        current = validate_schema(training, input_schema, self.label)

        params: List[Dict[str, Any]] = []
        for step in self.steps:
            try:
                step_params = step.fit(current, self.label)
                current = step.apply(step_params, current, self.label)
            except Exception as e:
                logger.error(f"Recipe step '{step.name}' failed: {e}")
                raise
            params.append(step_params)

        output_columns = tuple(col for col in current.columns if col != self.label)
        logger.info(
            f"Fitted recipe with {len(self.steps)} steps: {len(training)} rows in, "
            f"{len(current)} rows / {len(output_columns)} predictors out"
        )
        return FittedRecipe(
            recipe=self,
            input_schema=input_schema,
            params=tuple(params),
            output_columns=output_columns,
            training_data=current,
        )
