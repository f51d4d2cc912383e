"""Ledger summaries for transaction analysis.

This module loads the transactions from the ledger store into a DataFrame and
provides the totals shown on the home and stats pages: income, expense and balance
overall and per month.
"""
import logging
from typing import Any, Dict

import pandas as pd

from ..core.database import TRANSACTION_COLUMNS
from ..core.models import TransactionType
from ..status.status import BaseStatusException

MONTH_FORMAT_LENGTH: int = len('YYYY-MM')
SUMMARY_COLUMNS = [TransactionType.Income.value, TransactionType.Expense.value, 'balance']


def get_data(store: Any) -> pd.DataFrame:
    """Load all transactions as a DataFrame.

    Returns an empty DataFrame with the transaction columns if the ledger cannot be read.
    """
    try:
        df = store.data()
    except BaseStatusException:
        return pd.DataFrame(columns=TRANSACTION_COLUMNS)

    if df.empty:
        return pd.DataFrame(columns=TRANSACTION_COLUMNS)
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0.0)
    return df


def filter_by_type(df: pd.DataFrame, transaction_type: TransactionType) -> pd.DataFrame:
    """Return only the rows of one transaction type.

    Args:
        df: Transactions DataFrame.
        transaction_type: Income or Expense.

    Returns:
        pd.DataFrame: A filtered copy.
    """
    transaction_type = TransactionType(transaction_type)
    if df.empty:
        return df.copy()
    return df[df['type'] == transaction_type.value].copy()


def get_totals(df: pd.DataFrame) -> Dict[str, float]:
    """Sum income and expense, and the balance between them.

    Args:
        df: Transactions DataFrame.

    Returns:
        Dict[str, float]: ``income``, ``expense`` and ``balance`` totals.
    """
    if df.empty:
        return {k: 0.0 for k in SUMMARY_COLUMNS}

    income = float(filter_by_type(df, TransactionType.Income)['amount'].sum())
    expense = float(filter_by_type(df, TransactionType.Expense)['amount'].sum())
    return {
        TransactionType.Income.value: income,
        TransactionType.Expense.value: expense,
        'balance': income - expense,
    }


def get_monthly_totals(df: pd.DataFrame) -> pd.DataFrame:
    """Total income and expense per ``YYYY-MM`` month.

    Args:
        df: Transactions DataFrame.

    Returns:
        pd.DataFrame: Indexed by month in ascending order, with income, expense and balance columns.
    """
    if df.empty:
        empty = pd.DataFrame(columns=SUMMARY_COLUMNS, dtype=float)
        empty.index.name = 'month'
        return empty

    df = df.copy()
    df['month'] = df['date'].astype(str).str[:MONTH_FORMAT_LENGTH]

    pivot = df.pivot_table(
        index='month',
        columns='type',
        values='amount',
        aggfunc='sum',
        fill_value=0.0,
    )
    for col in (TransactionType.Income.value, TransactionType.Expense.value):
        if col not in pivot.columns:
            pivot[col] = 0.0

    pivot = pivot[[TransactionType.Income.value, TransactionType.Expense.value]].astype(float)
    pivot['balance'] = pivot[TransactionType.Income.value] - pivot[TransactionType.Expense.value]
    pivot.columns.name = None
    pivot = pivot.sort_index()

    logging.debug(f'Computed monthly totals for {len(pivot)} month(s).')
    return pivot
