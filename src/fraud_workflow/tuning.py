"""
Hyperparameter tuning module for the fraud detection workflow.

This module provides grid builders and the HyperparameterTuner class. Every
candidate configuration is evaluated with the full cross-validation
procedure over the same folds, so aggregate metrics are comparable across
candidates. (configuration, fold) pairs are independent units of work and
are dispatched through the worker pool.

Example:
    from fraud_workflow.models import TUNE, decision_tree
    from fraud_workflow.tuning import HyperparameterTuner
    from fraud_workflow.workflow import Workflow, finalize_workflow

    workflow = Workflow(recipe, decision_tree(cost_complexity=TUNE, tree_depth=TUNE, min_n=TUNE))
    tuner = HyperparameterTuner(n_jobs=4, seed=123)

    results = tuner.grid_search(workflow, train_df, folds, levels=3)
    best = results.select_best("roc_auc", tie_break="cost_complexity")
    final = finalize_workflow(workflow, best)
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from fraud_workflow.metrics import METRIC_DIRECTIONS, as_metric_set
from fraud_workflow.parallel import map_units
from fraud_workflow.resampling import FoldResult, ResampleResult, _fit_fold
from fraud_workflow.splitting import Fold

logger = logging.getLogger(__name__)

Grid = List[Dict[str, Any]]


@dataclass(frozen=True)
class ParamRange:
    """
    Range of candidate values for one hyperparameter.

    With ``log10=True`` the bounds are exponents: ``ParamRange(-10, -1,
    log10=True)`` spans 1e-10 to 0.1.
    """

    lower: float
    upper: float
    integer: bool = False
    log10: bool = False

    def _finish(self, raw: np.ndarray) -> List[Any]:
        values = np.power(10.0, raw) if self.log10 else raw
        if self.integer:
            return [int(v) for v in np.round(values)]
        return [float(v) for v in values]

    def values(self, levels: int) -> List[Any]:
        """``levels`` evenly spaced values (on the log scale if log10)."""
        if levels < 1:
            raise ValueError(f"levels must be at least 1, got {levels}")
        raw = np.linspace(self.lower, self.upper, levels) if levels > 1 else np.array(
            [(self.lower + self.upper) / 2.0]
        )
        # Integer ranges can round neighbouring levels to the same value
        return list(dict.fromkeys(self._finish(raw)))

    def sample(self, rng: np.random.Generator, size: int) -> List[Any]:
        return self._finish(rng.uniform(self.lower, self.upper, size))


DEFAULT_RANGES: Dict[str, ParamRange] = {
    "cost_complexity": ParamRange(-10, -1, log10=True),
    "tree_depth": ParamRange(1, 15, integer=True),
    "min_n": ParamRange(2, 40, integer=True),
    "penalty": ParamRange(-10, 0, log10=True),
    "trees": ParamRange(1, 2000, integer=True),
    "learn_rate": ParamRange(-10, -1, log10=True),
}

# Direction in which a hyperparameter makes a model simpler.
SIMPLICITY_DIRECTIONS: Dict[str, str] = {
    "cost_complexity": "desc",
    "penalty": "desc",
    "min_n": "desc",
    "tree_depth": "asc",
    "trees": "asc",
}


def _resolve_ranges(
    names: Sequence[str], ranges: Optional[Mapping[str, ParamRange]]
) -> Dict[str, ParamRange]:
    ranges = dict(DEFAULT_RANGES, **dict(ranges or {}))
    missing = [name for name in names if name not in ranges]
    if missing:
        raise ValueError(f"No range defined for parameters {missing}")
    return {name: ranges[name] for name in names}


def regular_grid(
    names: Sequence[str],
    levels: int = 3,
    ranges: Optional[Mapping[str, ParamRange]] = None,
) -> Grid:
    """
    Full factorial grid with ``levels`` values per parameter.

    Args:
        names: Parameters to vary.
        levels: Values per parameter.
        ranges: Overrides of DEFAULT_RANGES.

    Example:
        grid = regular_grid(["cost_complexity", "tree_depth", "min_n"], levels=3)
        len(grid)   # 27
    """
    resolved = _resolve_ranges(names, ranges)
    param_names = list(resolved)
    param_values = [resolved[name].values(levels) for name in param_names]
    return [dict(zip(param_names, combo)) for combo in itertools.product(*param_values)]


def random_grid(
    names: Sequence[str],
    size: int = 10,
    seed: int = 123,
    ranges: Optional[Mapping[str, ParamRange]] = None,
) -> Grid:
    """``size`` configurations sampled uniformly from each range."""
    if size < 1:
        raise ValueError(f"size must be at least 1, got {size}")
    resolved = _resolve_ranges(names, ranges)
    rng = np.random.default_rng(seed)
    columns = {name: r.sample(rng, size) for name, r in resolved.items()}
    return [{name: columns[name][i] for name in resolved} for i in range(size)]


def grid_from_values(param_grid: Mapping[str, Sequence[Any]]) -> Grid:
    """Expand ``{'max_depth': [3, 5], 'min_n': [2, 10]}`` into all combinations."""
    if not param_grid:
        return []
    param_names = list(param_grid.keys())
    param_values = list(param_grid.values())
    return [dict(zip(param_names, combo)) for combo in itertools.product(*param_values)]


class TuneResult:
    """
    Resampling results for every candidate configuration of a tuning run.

    Args:
        grid: Candidate configurations, in evaluation order.
        results: One ResampleResult per configuration.
        metric_names: Metrics computed for each fold.
    """

    def __init__(self, grid: Grid, results: Sequence[ResampleResult], metric_names: Sequence[str]):
        if len(grid) != len(results):
            raise ValueError("grid and results must have the same length")
        self.grid: Grid = [dict(config) for config in grid]
        self.results: List[ResampleResult] = list(results)
        self.metric_names: Tuple[str, ...] = tuple(metric_names)
        width = len(str(len(self.grid)))
        self.config_ids: List[str] = [
            f"Config{str(i + 1).zfill(width)}" for i in range(len(self.grid))
        ]

    def __len__(self) -> int:
        return len(self.grid)

    def __repr__(self) -> str:
        return f"<TuneResult {len(self)} candidates, metrics={list(self.metric_names)}>"

    def collect_metrics(self) -> pd.DataFrame:
        """One row per (configuration, metric) with the aggregate estimate."""
        frames = []
        for config_id, config, result in zip(self.config_ids, self.grid, self.results):
            summary = result.collect_metrics()
            for name, value in config.items():
                summary[name] = value
            summary.insert(0, "config_id", config_id)
            frames.append(summary)
        return pd.concat(frames, ignore_index=True)

    def _metric_table(self, metric: str) -> pd.DataFrame:
        if metric not in self.metric_names:
            raise KeyError(f"Metric {metric!r} was not computed; have {list(self.metric_names)}")
        table = self.collect_metrics()
        table = table[table["metric"] == metric].reset_index(drop=True)
        table["position"] = range(len(table))
        return table

    def show_best(self, metric: str = "roc_auc", n: int = 5) -> pd.DataFrame:
        """Top ``n`` configurations for ``metric``, best first."""
        table = self._metric_table(metric).dropna(subset=["mean"])
        ascending = not METRIC_DIRECTIONS[metric]
        table = table.sort_values(["mean", "position"], ascending=[ascending, True], kind="mergesort")
        return table.drop(columns=["position"]).head(n).reset_index(drop=True)

    def select_best(
        self,
        metric: str = "roc_auc",
        tie_break: Optional[Union[str, Tuple[str, str]]] = None,
    ) -> Dict[str, Any]:
        """
        The configuration with the best aggregate value of ``metric``.

        Args:
            metric: Metric to optimise; its direction comes from
                METRIC_DIRECTIONS.
            tie_break: Parameter used to order candidates tied on the
                metric, either a name (simpler direction from
                SIMPLICITY_DIRECTIONS) or ``(name, "asc" | "desc")``.
                Without it ties resolve to grid order.

        Returns:
            The chosen configuration's hyperparameters.

        Raises:
            ValueError: If every candidate's metric is undefined.
        """
        table = self._metric_table(metric).dropna(subset=["mean"])
        if table.empty:
            raise ValueError(f"Metric {metric!r} is undefined for every candidate")

        means = table["mean"].to_numpy()
        best_value = means.max() if METRIC_DIRECTIONS[metric] else means.min()
        tied = table[means == best_value]

        if tie_break is not None and len(tied) > 1:
            if isinstance(tie_break, str):
                name, direction = tie_break, SIMPLICITY_DIRECTIONS.get(tie_break, "asc")
            else:
                name, direction = tie_break
            if name not in tied.columns:
                raise ValueError(f"Tie-break parameter {name!r} is not part of the grid")
            tied = tied.sort_values(
                [name, "position"], ascending=[direction == "asc", True], kind="mergesort"
            )

        position = int(tied["position"].iloc[0])
        best = dict(self.grid[position])
        logger.info(
            f"Best {metric} = {best_value:.4f} with {best} "
            f"({len(tied)} tied candidate(s))"
        )
        return best

    def best_result(self, metric: str = "roc_auc", **kwargs: Any) -> ResampleResult:
        best = self.select_best(metric, **kwargs)
        return self.results[self.grid.index(best)]


def tune_grid(
    workflow: Any,
    data: pd.DataFrame,
    folds: List[Fold],
    grid: Grid,
    metrics: Any = None,
    n_jobs: int = 1,
    seed: int = 123,
    positive: Any = 1,
) -> TuneResult:
    """
    Evaluate every configuration of ``grid`` on every fold.

    Args:
        workflow: Workflow whose model marks the tuned parameters with TUNE.
        data: The table the folds index into.
        folds: Folds from ``make_folds``; shared by every configuration.
        grid: Candidate configurations.
        metrics: Metric names or MetricSet.
        n_jobs: Worker threads.
        seed: Base seed; fold ``i`` uses the same derived seed for every
            configuration.
        positive: Label of the positive class.
    """
    if not grid:
        raise ValueError("Tuning grid is empty")
    if not folds:
        raise ValueError("Tuning needs at least one fold")
    tunable = set(workflow.model.tunable_params())
    for config in grid:
        missing = tunable - set(config)
        if missing:
            raise ValueError(f"Configuration {config} lacks values for {sorted(missing)}")

    metric_set = as_metric_set(metrics)
    candidates = [workflow.with_model(workflow.model.with_params(**config)) for config in grid]
    units = [
        (config_index, fold_index, fold)
        for config_index in range(len(grid))
        for fold_index, fold in enumerate(folds)
    ]

    def run(unit: Tuple[int, int, Fold]) -> FoldResult:
        config_index, fold_index, fold = unit
        return _fit_fold(
            candidates[config_index], data, fold, fold_index, metric_set, seed, positive
        )

    logger.info(f"Tuning {len(grid)} candidates x {len(folds)} folds with n_jobs={n_jobs}")
    fold_results = map_units(run, units, n_jobs=n_jobs)

    n_folds = len(folds)
    results = [
        ResampleResult(
            fold_results[i * n_folds:(i + 1) * n_folds], metric_set.names, params=config
        )
        for i, config in enumerate(grid)
    ]
    return TuneResult(grid, results, metric_set.names)


class HyperparameterTuner:
    """
    Hyperparameter tuner supporting grid search and random search.

    Args:
        n_jobs: Worker threads for (configuration, fold) units.
        seed: Base seed for fold fitting and random sampling.
        positive: Label of the positive class.

    Example:
        tuner = HyperparameterTuner(n_jobs=4)
        results = tuner.grid_search(
            workflow, train_df, folds,
            param_grid={"tree_depth": [4, 8], "min_n": [2, 20], "cost_complexity": [1e-4]},
        )
    """

    def __init__(self, n_jobs: int = 1, seed: int = 123, positive: Any = 1) -> None:
        self.n_jobs = n_jobs
        self.seed = seed
        self.positive = positive

    # ------------------------------------------------------------------
    # Grid Search
    # ------------------------------------------------------------------
    def grid_search(
        self,
        workflow: Any,
        data: pd.DataFrame,
        folds: List[Fold],
        param_grid: Optional[Union[Mapping[str, Sequence[Any]], Grid]] = None,
        levels: int = 3,
        ranges: Optional[Mapping[str, ParamRange]] = None,
        metrics: Any = None,
    ) -> TuneResult:
        """
        Exhaustive search over a parameter grid.

        Args:
            workflow: Workflow with TUNE placeholders.
            data: Training table.
            folds: Cross-validation folds over ``data``.
            param_grid: Either a mapping of parameter name to candidate
                values (expanded to all combinations) or an explicit list of
                configurations. When None, a regular grid over the
                workflow's tunable parameters is built with ``levels``.
            levels: Values per parameter for the regular grid.
            ranges: Range overrides for the regular grid.
            metrics: Metric names or MetricSet.
        """
        if param_grid is None:
            grid = regular_grid(workflow.model.tunable_params(), levels, ranges)
        elif isinstance(param_grid, Mapping):
            grid = grid_from_values(param_grid)
        else:
            grid = [dict(config) for config in param_grid]
        return tune_grid(
            workflow, data, folds, grid, metrics, self.n_jobs, self.seed, self.positive
        )

    # ------------------------------------------------------------------
    # Random Search
    # ------------------------------------------------------------------
    def random_search(
        self,
        workflow: Any,
        data: pd.DataFrame,
        folds: List[Fold],
        param_distributions: Optional[Mapping[str, Any]] = None,
        n_iter: int = 10,
        metrics: Any = None,
    ) -> TuneResult:
        """
        Random search sampling ``n_iter`` configurations.

        Each distribution value can be:
          - a ParamRange – sampled uniformly (log-uniform for log10 ranges)
          - a list – a random element is chosen uniformly
          - any other value – used as is

        When ``param_distributions`` is None, the workflow's tunable
        parameters are sampled from DEFAULT_RANGES.
        """
        if n_iter <= 0:
            raise ValueError(f"n_iter must be positive, got {n_iter}")
        if param_distributions is None:
            grid = random_grid(workflow.model.tunable_params(), n_iter, self.seed)
        else:
            rng = np.random.default_rng(self.seed)
            grid = []
            for _ in range(n_iter):
                params: Dict[str, Any] = {}
                for name, dist in param_distributions.items():
                    if isinstance(dist, ParamRange):
                        params[name] = dist.sample(rng, 1)[0]
                    elif isinstance(dist, list):
                        params[name] = dist[int(rng.integers(len(dist)))]
                    else:
                        params[name] = dist
                grid.append(params)
        return tune_grid(
            workflow, data, folds, grid, metrics, self.n_jobs, self.seed, self.positive
        )
