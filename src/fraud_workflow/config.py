"""
Configuration module for the fraud detection workflow.

This module provides the WorkflowConfig dataclass, which holds every setting
the end-to-end experiment needs (data location, split proportions, recipe
parameters, tuning strategy, export targets). Configurations are read from
YAML files and can be overridden through environment variables, so the same
file can be reused across local runs and scheduled jobs.

Example:
    from fraud_workflow.config import WorkflowConfig, configure_logging

    config = WorkflowConfig.from_yaml("config/workflow.yaml")
    config.apply_env_overrides()
    config.validate()
    configure_logging(config.log_level)
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from fraud_workflow.metrics import METRIC_DIRECTIONS

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

SEARCH_METHODS = ("grid", "random")
UNKNOWN_CATEGORY_POLICIES = ("ignore", "error")

# Environment variable name -> (config attribute, parser)
ENV_OVERRIDES: Dict[str, Any] = {
    "FRAUD_WORKFLOW_DATA_PATH": ("data_path", str),
    "FRAUD_WORKFLOW_OUTPUT_DIR": ("output_dir", str),
    "FRAUD_WORKFLOW_SEED": ("seed", int),
    "FRAUD_WORKFLOW_N_JOBS": ("n_jobs", int),
    "FRAUD_WORKFLOW_LOG_LEVEL": ("log_level", str),
}


def configure_logging(level: Union[str, int] = "INFO") -> None:
    """
    Configure root logging for command line runs.

    Library modules only create loggers; handlers are installed here once,
    by the entry point.

    Args:
        level: Logging level name (``"INFO"``, ``"DEBUG"``...) or number.
    """
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)


@dataclass
class WorkflowConfig:
    """
    Settings for a complete fraud detection experiment.

    Every stochastic stage receives ``seed`` (or a value derived from it)
    explicitly; nothing relies on process-wide random state.

    Example:
        config = WorkflowConfig(data_path="data/transactions.csv")
        config.validate()
    """

    data_path: str = "data/transactions.csv"
    output_dir: str = "output"
    label: str = "isFraud"
    positive_label: int = 1
    drop_columns: List[str] = field(
        default_factory=lambda: ["nameOrig", "nameDest", "isFlaggedFraud"]
    )

    # Splitting and resampling
    train_proportion: float = 0.75
    n_folds: int = 10
    seed: int = 123
    n_jobs: int = 1

    # Recipe
    correlation_threshold: float = 0.9
    log_base: float = 10.0
    log_offset: float = 1.0
    oversample_ratio: float = 1.0
    oversample_neighbors: int = 5
    unknown_category: str = "ignore"

    # Tuning
    search: str = "grid"
    grid_levels: int = 3
    n_random_candidates: int = 10
    select_metric: str = "roc_auc"
    simplicity_tie_break: Optional[str] = "cost_complexity"

    # Export
    reduce_model: bool = True
    model_filename: str = "fraud_workflow.joblib"
    metrics_filename: str = "metrics.csv"

    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "WorkflowConfig":
        """
        Build a configuration from a plain mapping.

        Raises:
            ValueError: If the mapping contains keys that are not settings.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(
                f"Unknown configuration keys: {unknown}. "
                f"Valid keys are: {sorted(known)}"
            )
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "WorkflowConfig":
        """
        Load a configuration from a YAML file.

        An empty file yields the defaults.

        Example:
            config = WorkflowConfig.from_yaml("config/workflow.yaml")
        """
        with open(path, "r") as f:
            values = yaml.safe_load(f) or {}
        if not isinstance(values, dict):
            raise ValueError(
                f"Configuration file {path} must contain a mapping, "
                f"got {type(values).__name__}"
            )
        logger.info(f"Loaded configuration from {path}")
        return cls.from_dict(values)

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Write the configuration to a YAML file."""
        with open(path, "w") as f:
            yaml.safe_dump(asdict(self), f, sort_keys=False)

    def apply_env_overrides(self) -> "WorkflowConfig":
        """
        Override settings from ``FRAUD_WORKFLOW_*`` environment variables.

        Returns:
            The same configuration object, for chaining.
        """
        for env_name, (attribute, parser) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                value = parser(raw)
            except ValueError:
                raise ValueError(
                    f"Environment variable {env_name}={raw!r} is not a valid "
                    f"{parser.__name__}"
                )
            setattr(self, attribute, value)
            logger.info(f"Configuration override from {env_name}: {attribute}={value!r}")
        return self

    def validate(self) -> bool:
        """
        Validate value ranges and enumerated settings.

        Returns:
            True if the configuration is valid.

        Raises:
            ValueError: Naming the first invalid setting.
        """
        if not 0.0 < self.train_proportion < 1.0:
            raise ValueError(
                f"train_proportion must be in (0, 1), got {self.train_proportion}"
            )
        if self.n_folds < 2:
            raise ValueError(f"n_folds must be at least 2, got {self.n_folds}")
        if self.n_jobs < 1:
            raise ValueError(f"n_jobs must be at least 1, got {self.n_jobs}")
        if not 0.0 < self.correlation_threshold <= 1.0:
            raise ValueError(
                "correlation_threshold must be in (0, 1], "
                f"got {self.correlation_threshold}"
            )
        if self.log_base <= 0 or self.log_base == 1:
            raise ValueError(f"log_base must be positive and not 1, got {self.log_base}")
        if self.oversample_ratio <= 0 or self.oversample_ratio > 1:
            raise ValueError(
                f"oversample_ratio must be in (0, 1], got {self.oversample_ratio}"
            )
        if self.oversample_neighbors < 1:
            raise ValueError(
                f"oversample_neighbors must be at least 1, got {self.oversample_neighbors}"
            )
        if self.unknown_category not in UNKNOWN_CATEGORY_POLICIES:
            raise ValueError(
                f"unknown_category must be one of {UNKNOWN_CATEGORY_POLICIES}, "
                f"got {self.unknown_category!r}"
            )
        if self.search not in SEARCH_METHODS:
            raise ValueError(
                f"search must be one of {SEARCH_METHODS}, got {self.search!r}"
            )
        if self.grid_levels < 1:
            raise ValueError(f"grid_levels must be at least 1, got {self.grid_levels}")
        if self.n_random_candidates < 1:
            raise ValueError(
                f"n_random_candidates must be at least 1, got {self.n_random_candidates}"
            )
        if self.select_metric not in METRIC_DIRECTIONS:
            raise ValueError(
                f"select_metric must be one of {sorted(METRIC_DIRECTIONS)}, "
                f"got {self.select_metric!r}"
            )
        return True
