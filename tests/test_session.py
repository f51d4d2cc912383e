"""Tests for BudgetSync.core.session.Session with an in-memory calendar client."""
from BudgetSync.core.models import (
    AppSettings,
    ColorMapping,
    Credentials,
    NewTransaction,
    TransactionSource,
    TransactionType,
)
from BudgetSync.core.session import CREDENTIALS_SAVED_MESSAGE, Session
from BudgetSync.core.signals import signals
from BudgetSync.status import status
from tests.base import BaseTestCase, FakeCalendarClient, make_event, make_mapping


class SessionTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.client = FakeCalendarClient(ready=False, authenticated=False)
        self.session = Session(self.paths, client=self.client)
        self.addCleanup(self.session.teardown)

    def test_session_uses_config_interval(self):
        self.assertEqual(self.session.scheduler.interval_ms, self.session.config.sync_interval_ms)

    def test_initialize_without_credentials(self):
        self.session.initialize()
        self.assertFalse(self.client.is_ready())
        self.assertTrue(self.session.scheduler.timer.isActive())

    def test_initialize_with_stored_credentials(self):
        self.store.save_credentials(Credentials('cid', 'key'))
        self.session.initialize()
        self.assertTrue(self.client.is_ready())

    def test_save_credentials_acknowledges(self):
        received = []

        def _slot():
            received.append(True)

        signals.credentialsChanged.connect(_slot)
        try:
            message = self.session.save_credentials(Credentials('cid', 'key', 'secret'))
        finally:
            signals.credentialsChanged.disconnect(_slot)

        self.assertEqual(message, CREDENTIALS_SAVED_MESSAGE)
        self.assertEqual(self.store.get_credentials(), Credentials('cid', 'key', 'secret'))
        self.assertTrue(self.client.is_ready())
        self.assertEqual(received, [True])

    def test_save_invalid_credentials_raises(self):
        with self.assertRaises(status.CredsInvalidException):
            self.session.save_credentials(Credentials('', 'key'))
        self.assertIsNone(self.store.get_credentials())
        self.assertFalse(self.client.is_ready())

    def test_delete_credentials_signs_out(self):
        self.session.save_credentials(Credentials('cid', 'key'))
        self.client.set_authenticated(True)

        self.session.delete_credentials()
        self.assertIsNone(self.store.get_credentials())
        self.assertFalse(self.client.is_authenticated())
        self.assertFalse(self.client.is_ready())

    def test_add_transaction_is_always_manual(self):
        new = NewTransaction(
            TransactionType.Expense, 'Coffee', 3.0, '2024-01-01',
            source=TransactionSource.calendar, calendar_event_id='ev1',
        )
        transaction = self.session.add_transaction(new)
        self.assertEqual(transaction.source, TransactionSource.manual)
        self.assertIsNone(transaction.calendar_event_id)
        self.assertEqual(self.session.transactions, [transaction])

    def test_add_invalid_transaction_raises(self):
        with self.assertRaises(ValueError):
            self.session.add_transaction(NewTransaction(TransactionType.Expense, 'x', -5, '2024-01-01'))

    def test_delete_transaction(self):
        first = self.session.add_transaction(NewTransaction(TransactionType.Income, 'Salary', 100, '2024-01-01'))
        second = self.session.add_transaction(NewTransaction(TransactionType.Expense, 'Rent', 50, '2024-01-02'))
        self.session.delete_transaction(first.id)
        self.assertEqual(self.session.transactions, [second])

    def test_save_settings(self):
        self.session.save_settings(AppSettings([ColorMapping('5', 'Food', 10.0)]))
        self.assertEqual(self.session.settings().color_mappings[0].description, 'Food')

        with self.assertRaises(status.SettingsInvalidException):
            self.session.save_settings(AppSettings([ColorMapping('99')]))

    def test_sign_in_then_sync(self):
        self.set_mappings(make_mapping())
        self.client.events = [make_event('ev1', summary='Groceries')]
        self.session.save_credentials(Credentials('cid', 'key'))
        self.session.initialize()

        self.session.sign_in()
        self.session.scheduler.stop()

        self.assertEqual(len(self.client.calls), 1)
        transactions = self.store.get_all_transactions()
        self.assertEqual([t.calendar_event_id for t in transactions], ['ev1'])

    def test_sync_now(self):
        self.set_mappings(make_mapping())
        self.client.events = [make_event('ev1')]
        self.store.save_credentials(Credentials('cid', 'key'))
        self.session.initialize()
        self.session.sign_in()
        self.session.scheduler.stop()

        self.assertTrue(self.session.sync_now())
        self.session.scheduler.stop()
        self.assertEqual(len(self.client.calls), 2)
        self.assertEqual(len(self.store.get_all_transactions()), 1)

    def test_sign_out(self):
        self.session.save_credentials(Credentials('cid', 'key'))
        self.session.sign_in()
        self.session.sign_out()
        self.assertFalse(self.client.is_authenticated())
