"""
Shared fixtures: synthetic PaySim-style transaction tables.
"""

import numpy as np
import pandas as pd
import pytest

TRANSACTION_TYPES = ["PAYMENT", "TRANSFER", "CASH_OUT", "DEBIT", "CASH_IN"]


def make_transactions(n: int = 300, fraud_rate: float = 0.1, seed: int = 0,
                      with_ids: bool = False) -> pd.DataFrame:
    """
    Build a transaction table shaped like the PaySim data.

    Fraud rows are mostly TRANSFER / CASH_OUT with larger amounts and
    emptied origin accounts, so simple models can separate the classes.
    """
    rng = np.random.default_rng(seed)
    n_fraud = int(round(n * fraud_rate))
    labels = np.array([1] * n_fraud + [0] * (n - n_fraud))
    rng.shuffle(labels)
    is_fraud = labels == 1

    types = rng.choice(TRANSACTION_TYPES, size=n)
    types[is_fraud] = rng.choice(["TRANSFER", "CASH_OUT"], size=n_fraud)

    amount = rng.lognormal(mean=7.0, sigma=1.0, size=n)
    amount[is_fraud] *= 5.0
    old_balance_org = amount + rng.lognormal(mean=8.0, sigma=1.0, size=n)
    new_balance_orig = old_balance_org - amount
    new_balance_orig[is_fraud] = 0.0
    old_balance_dest = rng.lognormal(mean=9.0, sigma=1.2, size=n)
    new_balance_dest = old_balance_dest + amount

    df = pd.DataFrame(
        {
            "step": rng.integers(1, 744, size=n),
            "type": types,
            "amount": amount.round(2),
            "oldbalanceOrg": old_balance_org.round(2),
            "newbalanceOrig": new_balance_orig.round(2),
            "oldbalanceDest": old_balance_dest.round(2),
            "newbalanceDest": new_balance_dest.round(2),
            "isFraud": labels,
        }
    )
    if with_ids:
        df.insert(2, "nameOrig", [f"C{i:09d}" for i in range(n)])
        df.insert(6, "nameDest", [f"M{i:09d}" for i in range(n)])
        df["isFlaggedFraud"] = 0
    return df


@pytest.fixture
def transactions():
    """300 clean transactions, 10% fraud."""
    return make_transactions()


@pytest.fixture
def transactions_csv(tmp_path):
    """Raw CSV with identifier columns, as exported from the simulator."""
    path = tmp_path / "transactions.csv"
    make_transactions(with_ids=True).to_csv(path, index=False)
    return path


@pytest.fixture
def transaction_factory():
    """The ``make_transactions`` builder, for tests needing custom sizes."""
    return make_transactions
