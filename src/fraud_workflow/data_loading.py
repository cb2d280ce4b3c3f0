"""
Data loading module for the fraud detection workflow.

This module reads the PaySim-style transaction table from a delimited file,
validates and coerces every column against a declared schema, and provides
exploratory summaries and plots of the loaded data.

Expected columns:
    step            integer time step (one step = one hour of simulation)
    type            transaction type (PAYMENT, TRANSFER, CASH_OUT, ...)
    amount          transaction amount
    oldbalanceOrg   origin balance before the transaction
    newbalanceOrig  origin balance after the transaction
    oldbalanceDest  destination balance before the transaction
    newbalanceDest  destination balance after the transaction
    isFraud         binary label, 1 = fraud

Example:
    from fraud_workflow.data_loading import load_transactions, summarize_dataset

    df = load_transactions("data/transactions.csv")
    summary = summarize_dataset(df, label="isFraud")
    print(summary["class_counts"])
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

INTEGER = "integer"
NUMERIC = "numeric"
CATEGORICAL = "categorical"
LABEL = "label"

COLUMN_KINDS = (INTEGER, NUMERIC, CATEGORICAL, LABEL)

DEFAULT_LABEL = "isFraud"

DEFAULT_SCHEMA: Dict[str, str] = {
    "step": INTEGER,
    "type": CATEGORICAL,
    "amount": NUMERIC,
    "oldbalanceOrg": NUMERIC,
    "newbalanceOrig": NUMERIC,
    "oldbalanceDest": NUMERIC,
    "newbalanceDest": NUMERIC,
    "isFraud": LABEL,
}

# Account identifiers and the rule-based flag carry no generalisable signal.
DEFAULT_DROP_COLUMNS = ("nameOrig", "nameDest", "isFlaggedFraud")


class SchemaMismatchError(ValueError):
    """Raised when a table does not match the expected schema.

    Covers missing columns, unexpected extra columns, values that cannot be
    coerced to the declared type, missing values, and a label column that is
    not binary. Schema mismatches are fatal and never recovered from.
    """


def _coerce_column(series: pd.Series, kind: str) -> pd.Series:
    name = series.name
    if kind == CATEGORICAL:
        return series.astype(str)
    try:
        numeric = pd.to_numeric(series, errors="raise")
    except (ValueError, TypeError) as e:
        raise SchemaMismatchError(
            f"Column '{name}' is declared {kind} but holds non-numeric values: {e}"
        )
    if kind == NUMERIC:
        return numeric.astype(float)
    # INTEGER and LABEL
    if not np.all(np.equal(np.mod(numeric, 1), 0)):
        raise SchemaMismatchError(
            f"Column '{name}' is declared {kind} but holds non-integer values"
        )
    return numeric.astype(np.int64)


def validate_schema(
    df: pd.DataFrame,
    schema: Mapping[str, str],
    label: Optional[str] = None,
    require_label: bool = True,
) -> pd.DataFrame:
    """
    Check a table against a schema and coerce its columns.

    Args:
        df: Table to check.
        schema: Mapping of column name to kind (integer, numeric,
            categorical, label).
        label: Name of the label column, if the schema has one.
        require_label: When False the label column may be absent
            (prediction-time data).

    Returns:
        A new DataFrame with the schema's column order and coerced types.

    Raises:
        SchemaMismatchError: On missing, extra or mistyped columns, or
            missing values.
    """
    bad_kinds = {col: kind for col, kind in schema.items() if kind not in COLUMN_KINDS}
    if bad_kinds:
        raise ValueError(f"Unknown column kinds in schema: {bad_kinds}")

    expected = [
        col for col in schema
        if not (col == label and not require_label and col not in df.columns)
    ]
    missing = [col for col in expected if col not in df.columns]
    extra = [col for col in df.columns if col not in schema]
    if missing or extra:
        raise SchemaMismatchError(
            f"Schema mismatch: missing columns {missing}, unexpected columns {extra}"
        )

    null_counts = df[expected].isna().sum()
    null_counts = null_counts[null_counts > 0]
    if not null_counts.empty:
        raise SchemaMismatchError(
            f"Missing values found: {null_counts.to_dict()}"
        )

    return pd.DataFrame(
        {col: _coerce_column(df[col], schema[col]) for col in expected},
        index=df.index,
    )


def _separator_for(path: Union[str, Path]) -> str:
    return "\t" if str(path).lower().endswith((".tsv", ".tab")) else ","


def load_transactions(
    path: Union[str, Path],
    schema: Optional[Mapping[str, str]] = None,
    label: str = DEFAULT_LABEL,
    drop_columns: Iterable[str] = DEFAULT_DROP_COLUMNS,
    positive_label: Any = 1,
) -> pd.DataFrame:
    """
    Load the transaction table from a delimited file.

    The label keeps its original meaning: ``positive_label`` (1) marks a
    fraudulent transaction.

    Args:
        path: CSV (or TSV) file path.
        schema: Column name -> kind mapping; defaults to DEFAULT_SCHEMA.
        label: Name of the binary label column.
        drop_columns: Columns removed before validation when present.
        positive_label: The label value denoting fraud.

    Returns:
        DataFrame with validated, coerced columns in schema order.

    Raises:
        SchemaMismatchError: If the file does not match the schema or the
            label is not binary.

    Example:
        df = load_transactions("data/transactions.csv")
    """
    schema = dict(schema or DEFAULT_SCHEMA)
    if schema.get(label) != LABEL:
        raise ValueError(f"Schema must declare '{label}' as the label column")

    logger.info(f"Loading dataset from {path}")
    df = pd.read_csv(path, sep=_separator_for(path))
    logger.info(f"Loaded {len(df)} records with {len(df.columns)} columns")

    dropped = [col for col in drop_columns if col in df.columns]
    if dropped:
        df = df.drop(columns=dropped)
        logger.info(f"Dropped columns: {dropped}")

    if df.empty:
        raise SchemaMismatchError(f"Dataset {path} contains no records")

    df = validate_schema(df, schema, label=label)

    classes = sorted(df[label].unique().tolist())
    if len(classes) != 2:
        raise SchemaMismatchError(
            f"Label column '{label}' must have exactly two classes, found {classes}"
        )
    if positive_label not in classes:
        raise SchemaMismatchError(
            f"Positive label {positive_label!r} not found in '{label}' (classes: {classes})"
        )

    counts = df[label].value_counts()
    logger.info(f"Class distribution: {counts.to_dict()}")
    return df


def summarize_dataset(df: pd.DataFrame, label: str = DEFAULT_LABEL) -> Dict[str, Any]:
    """
    Exploratory summary of a loaded table.

    Returns:
        Dictionary with keys: n_rows, class_counts, class_proportions,
        imbalance_ratio, numeric_summary (DataFrame), categorical_levels,
        positive_rate_by_level.
    """
    y = df[label]
    class_counts = {k: int(v) for k, v in y.value_counts().sort_index().items()}
    n_rows = len(df)
    class_proportions = {k: v / n_rows for k, v in class_counts.items()}
    imbalance_ratio = max(class_counts.values()) / min(class_counts.values())

    features = df.drop(columns=[label])
    numeric = features.select_dtypes(include="number")
    categorical = features.select_dtypes(exclude="number")

    categorical_levels = {
        col: {k: int(v) for k, v in categorical[col].value_counts().items()}
        for col in categorical.columns
    }
    # Mean of the label per level is the fraud rate for a 0/1 label
    positive_rate_by_level = {
        col: df.groupby(col)[label].mean().to_dict() for col in categorical.columns
    }

    if imbalance_ratio > 3.0:
        logger.warning(f"Class imbalance detected (ratio: {imbalance_ratio:.1f}:1)")

    return {
        "n_rows": n_rows,
        "class_counts": class_counts,
        "class_proportions": class_proportions,
        "imbalance_ratio": imbalance_ratio,
        "numeric_summary": numeric.describe().T,
        "categorical_levels": categorical_levels,
        "positive_rate_by_level": positive_rate_by_level,
    }


def plot_class_balance(
    df: pd.DataFrame,
    label: str = DEFAULT_LABEL,
    save_path: str = "class_balance.png",
) -> None:
    """Save a bar chart of label counts per transaction type."""
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    import seaborn as sns

    categorical = df.drop(columns=[label]).select_dtypes(exclude="number").columns
    plt.figure(figsize=(8, 6))
    if len(categorical) > 0:
        sns.countplot(data=df, x=categorical[0], hue=label)
        plt.yscale("log")
    else:
        sns.countplot(data=df, x=label)
    plt.title("Class Balance")
    plt.tight_layout()
    plt.savefig(save_path)
    plt.close()


def plot_correlation_heatmap(
    df: pd.DataFrame,
    save_path: str = "correlation_heatmap.png",
) -> pd.DataFrame:
    """
    Save a heatmap of pairwise correlations between numeric columns.

    Returns:
        The correlation matrix.
    """
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    import seaborn as sns

    corr = df.select_dtypes(include="number").corr()
    plt.figure(figsize=(10, 8))
    sns.heatmap(corr, annot=True, fmt=".2f", cmap="coolwarm", vmin=-1, vmax=1)
    plt.title("Correlation Matrix")
    plt.tight_layout()
    plt.savefig(save_path)
    plt.close()
    return corr
