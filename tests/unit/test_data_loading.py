"""
Unit tests for the data loading module.

Tests schema validation, label checks, exploratory summaries and plots.
"""

import numpy as np
import pandas as pd
import pytest

from fraud_workflow.data_loading import (
    DEFAULT_SCHEMA,
    SchemaMismatchError,
    load_transactions,
    plot_class_balance,
    plot_correlation_heatmap,
    summarize_dataset,
    validate_schema,
)


class TestLoadTransactions:
    """Tests for load_transactions."""

    def test_loads_and_drops_identifier_columns(self, transactions_csv):
        df = load_transactions(transactions_csv)

        assert list(df.columns) == list(DEFAULT_SCHEMA)
        assert len(df) == 300
        assert "nameOrig" not in df.columns
        assert "isFlaggedFraud" not in df.columns

    def test_coerces_column_types(self, transactions_csv):
        df = load_transactions(transactions_csv)

        assert df["step"].dtype == np.int64
        assert df["isFraud"].dtype == np.int64
        assert df["amount"].dtype == np.float64
        assert not pd.api.types.is_numeric_dtype(df["type"])

    def test_label_semantics_preserved(self, transactions_csv):
        df = load_transactions(transactions_csv)
        assert df["isFraud"].sum() == 30

    def test_tab_separated_file(self, tmp_path, transactions):
        path = tmp_path / "transactions.tsv"
        transactions.to_csv(path, sep="\t", index=False)

        df = load_transactions(path)
        assert len(df) == len(transactions)

    def test_missing_column(self, tmp_path, transactions):
        path = tmp_path / "missing.csv"
        transactions.drop(columns=["amount"]).to_csv(path, index=False)

        with pytest.raises(SchemaMismatchError, match="amount"):
            load_transactions(path)

    def test_unexpected_column(self, tmp_path, transactions):
        path = tmp_path / "extra.csv"
        transactions.assign(merchant="M1").to_csv(path, index=False)

        with pytest.raises(SchemaMismatchError, match="merchant"):
            load_transactions(path)

    def test_missing_values(self, tmp_path, transactions):
        transactions.loc[3, "oldbalanceOrg"] = np.nan
        path = tmp_path / "nulls.csv"
        transactions.to_csv(path, index=False)

        with pytest.raises(SchemaMismatchError, match="Missing values"):
            load_transactions(path)

    def test_non_numeric_amount(self, tmp_path, transactions):
        transactions["amount"] = transactions["amount"].astype(object)
        transactions.loc[0, "amount"] = "abc"
        path = tmp_path / "bad_amount.csv"
        transactions.to_csv(path, index=False)

        with pytest.raises(SchemaMismatchError, match="amount"):
            load_transactions(path)

    def test_single_class_label(self, tmp_path, transactions):
        path = tmp_path / "no_fraud.csv"
        transactions.assign(isFraud=0).to_csv(path, index=False)

        with pytest.raises(SchemaMismatchError, match="exactly two classes"):
            load_transactions(path)

    def test_three_class_label(self, tmp_path, transactions):
        transactions.loc[0, "isFraud"] = 2
        path = tmp_path / "three.csv"
        transactions.to_csv(path, index=False)

        with pytest.raises(SchemaMismatchError, match="exactly two classes"):
            load_transactions(path)

    def test_positive_label_absent(self, transactions_csv):
        with pytest.raises(SchemaMismatchError, match="Positive label"):
            load_transactions(transactions_csv, positive_label=5)

    def test_empty_file(self, tmp_path, transactions):
        path = tmp_path / "empty.csv"
        transactions.head(0).to_csv(path, index=False)

        with pytest.raises(SchemaMismatchError, match="no records"):
            load_transactions(path)


class TestValidateSchema:
    """Tests for validate_schema."""

    def test_label_optional_for_prediction_rows(self, transactions):
        rows = transactions.drop(columns=["isFraud"]).head(3)
        out = validate_schema(rows, DEFAULT_SCHEMA, label="isFraud", require_label=False)
        assert "isFraud" not in out.columns
        assert len(out) == 3

    def test_label_required_by_default(self, transactions):
        rows = transactions.drop(columns=["isFraud"])
        with pytest.raises(SchemaMismatchError, match="isFraud"):
            validate_schema(rows, DEFAULT_SCHEMA, label="isFraud")

    def test_non_integer_step_rejected(self, transactions):
        transactions["step"] = transactions["step"] + 0.5
        with pytest.raises(SchemaMismatchError, match="non-integer"):
            validate_schema(transactions, DEFAULT_SCHEMA, label="isFraud")

    def test_unknown_kind_rejected(self, transactions):
        schema = dict(DEFAULT_SCHEMA, amount="money")
        with pytest.raises(ValueError, match="Unknown column kinds"):
            validate_schema(transactions, schema, label="isFraud")

    def test_index_preserved(self, transactions):
        subset = transactions.iloc[10:20]
        out = validate_schema(subset, DEFAULT_SCHEMA, label="isFraud")
        assert list(out.index) == list(subset.index)


class TestSummarizeDataset:
    """Tests for summarize_dataset."""

    def test_class_counts_and_ratio(self, transactions):
        summary = summarize_dataset(transactions)

        assert summary["n_rows"] == 300
        assert summary["class_counts"] == {0: 270, 1: 30}
        assert summary["class_proportions"][1] == pytest.approx(0.1)
        assert summary["imbalance_ratio"] == pytest.approx(9.0)

    def test_categorical_breakdown(self, transactions):
        summary = summarize_dataset(transactions)

        assert set(summary["categorical_levels"]) == {"type"}
        rates = summary["positive_rate_by_level"]["type"]
        assert rates.get("PAYMENT", 0.0) < rates["TRANSFER"]

    def test_numeric_summary_excludes_label(self, transactions):
        summary = summarize_dataset(transactions)
        assert "isFraud" not in summary["numeric_summary"].index
        assert "amount" in summary["numeric_summary"].index


class TestPlots:
    """Tests for exploratory plots."""

    def test_class_balance_plot_written(self, tmp_path, transactions):
        path = tmp_path / "balance.png"
        plot_class_balance(transactions, save_path=str(path))
        assert path.exists()

    def test_correlation_heatmap_returns_matrix(self, tmp_path, transactions):
        path = tmp_path / "corr.png"
        corr = plot_correlation_heatmap(transactions, save_path=str(path))

        assert path.exists()
        assert isinstance(corr, pd.DataFrame)
        assert corr.loc["amount", "amount"] == pytest.approx(1.0)
