"""Tests for BudgetSync.data.data summaries."""
from unittest.mock import patch

import pandas as pd

from BudgetSync.core.database import TRANSACTION_COLUMNS
from BudgetSync.core.models import NewTransaction, TransactionType
from BudgetSync.data import data
from BudgetSync.status import status
from tests.base import BaseTestCase


class LedgerSummaryTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        for args in (
                (TransactionType.Income, 'Salary', 1000.0, '2024-01-31'),
                (TransactionType.Expense, 'Rent', 400.0, '2024-01-01'),
                (TransactionType.Expense, 'Food', 100.0, '2024-02-10'),
                (TransactionType.Expense, 'Fuel', 50.0, '2024-02-11'),
        ):
            self.store.add_transaction(NewTransaction(*args))

    def test_get_data(self):
        df = data.get_data(self.store)
        self.assertEqual(len(df), 4)
        self.assertEqual(list(df.columns), TRANSACTION_COLUMNS)

    def test_get_totals(self):
        totals = data.get_totals(data.get_data(self.store))
        self.assertEqual(totals, {'income': 1000.0, 'expense': 550.0, 'balance': 450.0})

    def test_filter_by_type(self):
        df = data.get_data(self.store)
        expenses = data.filter_by_type(df, TransactionType.Expense)
        self.assertEqual(sorted(expenses['description']), ['Food', 'Fuel', 'Rent'])
        income = data.filter_by_type(df, 'income')
        self.assertEqual(list(income['description']), ['Salary'])

    def test_monthly_totals(self):
        monthly = data.get_monthly_totals(data.get_data(self.store))
        self.assertEqual(list(monthly.index), ['2024-01', '2024-02'])
        self.assertEqual(list(monthly.columns), ['income', 'expense', 'balance'])
        self.assertEqual(monthly.loc['2024-01', 'balance'], 600.0)
        self.assertEqual(monthly.loc['2024-02', 'income'], 0.0)
        self.assertEqual(monthly.loc['2024-02', 'expense'], 150.0)


class EmptyLedgerSummaryTests(BaseTestCase):

    def test_empty_ledger(self):
        df = data.get_data(self.store)
        self.assertTrue(df.empty)
        self.assertEqual(list(df.columns), TRANSACTION_COLUMNS)
        self.assertEqual(data.get_totals(df), {'income': 0.0, 'expense': 0.0, 'balance': 0.0})
        self.assertTrue(data.get_monthly_totals(df).empty)
        self.assertTrue(data.filter_by_type(df, TransactionType.Income).empty)

    def test_unreadable_ledger_returns_empty_frame(self):
        with patch.object(self.store, 'data', side_effect=status.PersistenceException('locked')):
            df = data.get_data(self.store)
        self.assertIsInstance(df, pd.DataFrame)
        self.assertTrue(df.empty)
