"""
Splitting module for the fraud detection workflow.

Provides the stratified train/test split and the stratified k-fold partition
used for cross-validation. Both are deterministic given an explicit seed and
preserve the label balance of the input in every subset.

Example:
    from fraud_workflow.splitting import make_folds, stratified_split

    split = stratified_split(df, proportion=0.75, strata="isFraud", seed=123)
    folds = make_folds(split.training, k=10, strata="isFraud", seed=123)
"""

import logging
from dataclasses import dataclass
from typing import List

import numpy as np
import pandas as pd
from sklearn.model_selection import StratifiedKFold

logger = logging.getLogger(__name__)


class DegenerateSplitError(ValueError):
    """Raised when data cannot be split as requested.

    Typically a stratum (label category) has too few rows to place at least
    one row in every subset, or the requested proportion / fold count is out
    of range.
    """


@dataclass(frozen=True)
class Split:
    """A partition of a table into disjoint training and test subsets."""

    data: pd.DataFrame
    train_index: np.ndarray
    test_index: np.ndarray
    proportion: float
    strata: str
    seed: int

    @property
    def training(self) -> pd.DataFrame:
        return self.data.loc[self.train_index]

    @property
    def testing(self) -> pd.DataFrame:
        return self.data.loc[self.test_index]

    def __repr__(self) -> str:
        return (
            f"<Split train/test/total: {len(self.train_index)}/"
            f"{len(self.test_index)}/{len(self.data)}>"
        )


@dataclass(frozen=True)
class Fold:
    """One cross-validation fold: row positions used to fit and to assess."""

    fold_id: str
    analysis: np.ndarray
    assessment: np.ndarray

    def analysis_data(self, data: pd.DataFrame) -> pd.DataFrame:
        return data.iloc[self.analysis]

    def assessment_data(self, data: pd.DataFrame) -> pd.DataFrame:
        return data.iloc[self.assessment]


def stratified_split(
    data: pd.DataFrame,
    proportion: float = 0.75,
    strata: str = "isFraud",
    seed: int = 123,
) -> Split:
    """
    Split rows into training and test subsets, stratified on a column.

    Each category of ``strata`` is shuffled and cut independently so that
    ``round(n_category * proportion)`` of its rows go to training; the
    per-category pieces are then unioned. Row order within each subset
    follows the original table.

    Args:
        data: Table to split. Its index must be unique.
        proportion: Fraction of rows assigned to training, in (0, 1).
        strata: Column to stratify on (normally the label).
        seed: Seed for the random generator.

    Returns:
        Split with the training and test index labels.

    Raises:
        DegenerateSplitError: If the proportion is out of range, the strata
            column is missing, or a category cannot contribute at least one
            row to each subset.

    Example:
        split = stratified_split(df, proportion=0.75, strata="isFraud", seed=123)
        train_df, test_df = split.training, split.testing
    """
    if not 0.0 < proportion < 1.0:
        raise DegenerateSplitError(f"proportion must be in (0, 1), got {proportion}")
    if strata not in data.columns:
        raise DegenerateSplitError(f"Strata column '{strata}' not found")
    if not data.index.is_unique:
        raise DegenerateSplitError("Data index must be unique to split by label")

    rng = np.random.default_rng(seed)
    train_parts: List[np.ndarray] = []
    test_parts: List[np.ndarray] = []

    for category, positions in data.groupby(strata, sort=True).indices.items():
        n_category = len(positions)
        n_train = int(round(n_category * proportion))
        if n_train < 1 or n_train > n_category - 1:
            raise DegenerateSplitError(
                f"Category {category} of '{strata}' has {n_category} rows; "
                f"cannot place at least one row in both subsets at proportion "
                f"{proportion}"
            )
        shuffled = rng.permutation(positions)
        train_parts.append(shuffled[:n_train])
        test_parts.append(shuffled[n_train:])

    train_positions = np.sort(np.concatenate(train_parts))
    test_positions = np.sort(np.concatenate(test_parts))

    split = Split(
        data=data,
        train_index=data.index[train_positions].to_numpy(),
        test_index=data.index[test_positions].to_numpy(),
        proportion=proportion,
        strata=strata,
        seed=seed,
    )
    logger.info(
        f"Stratified split on '{strata}': {len(split.train_index)} train, "
        f"{len(split.test_index)} test"
    )
    return split


def make_folds(
    data: pd.DataFrame,
    k: int = 10,
    strata: str = "isFraud",
    seed: int = 123,
) -> List[Fold]:
    """
    Partition rows into ``k`` stratified cross-validation folds.

    Every row is in exactly one assessment set across the folds; a fold's
    analysis set is the complement of its assessment set.

    Args:
        data: Training table.
        k: Number of folds, at least 2.
        strata: Column to stratify on.
        seed: Seed for the shuffling.

    Returns:
        List of Fold with row positions; ids are ``Fold1``..``Fold{k}``,
        zero-padded to the width of ``k`` (``Fold01`` when k = 10).

    Raises:
        DegenerateSplitError: If ``k`` < 2 or a category has fewer than
            ``k`` rows.

    Example:
        folds = make_folds(train_df, k=5, strata="isFraud", seed=42)
    """
    if k < 2:
        raise DegenerateSplitError(f"k must be at least 2, got {k}")
    if strata not in data.columns:
        raise DegenerateSplitError(f"Strata column '{strata}' not found")

    y = data[strata].to_numpy()
    counts = pd.Series(y).value_counts()
    if (counts < k).any():
        raise DegenerateSplitError(
            f"Cannot make {k} stratified folds: category counts are "
            f"{counts.to_dict()}"
        )

    skf = StratifiedKFold(n_splits=k, shuffle=True, random_state=seed)
    width = len(str(k))
    folds = [
        Fold(
            fold_id=f"Fold{str(i + 1).zfill(width)}",
            analysis=analysis,
            assessment=assessment,
        )
        for i, (analysis, assessment) in enumerate(skf.split(np.zeros(len(y)), y))
    ]
    logger.info(f"Created {k} stratified folds on '{strata}' over {len(data)} rows")
    return folds
