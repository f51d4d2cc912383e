"""Application controller.

:class:`Session` wires the ledger store, the settings service, the calendar client,
the sync orchestrator and the scheduler together, and exposes the user-facing
actions: manual transactions, API credentials, sign-in, settings and manual sync.
"""
import dataclasses
import logging
from typing import Any, List, Optional

from PySide6 import QtCore

from .auth import AuthManager
from .database import LedgerStore
from .models import AppSettings, Credentials, NewTransaction, Transaction, TransactionSource
from .scheduler import SyncScheduler
from .service import CalendarClient, validate_credentials
from .signals import signals
from .sync import SyncOrchestrator
from ..settings.lib import AppConfig, ConfigPaths, SettingsService
from ..status import status

CREDENTIALS_SAVED_MESSAGE: str = 'Credentials saved. Sign in to start syncing your calendar.'


class Session(QtCore.QObject):
    """Owns the sync engine for one user data directory.

    Args:
        paths: Resolved application paths.
        client: Optional calendar client. Defaults to a :class:`CalendarClient`
            using the stored OAuth token.
    """

    def __init__(self, paths: ConfigPaths, client: Any = None,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.paths = paths
        self.config = AppConfig(paths)
        self.store = LedgerStore(paths.db_path)
        self.settings_service = SettingsService(self.store)

        if client is None:
            client = CalendarClient(
                AuthManager(paths.creds_path),
                initial_window_days=self.config.initial_window_days,
                fetch_retries=self.config.fetch_retries,
            )
        self.client = client

        self.orchestrator = SyncOrchestrator(self.store, self.settings_service, self.client)
        self.scheduler = SyncScheduler(
            self.orchestrator, self.client,
            interval_ms=self.config.sync_interval_ms,
            config=self.config,
        )

        self._transactions: List[Transaction] = []
        signals.transactionsChanged.connect(self._on_transactions_changed)

    def initialize(self) -> None:
        """Load the ledger, set up the client from stored credentials and start the scheduler."""
        self._transactions = self.store.get_all_transactions()

        credentials = self.store.get_credentials()
        if credentials is None:
            logging.info('No API credentials stored yet.')
        else:
            try:
                self.client.initialize(credentials)
            except status.CredsInvalidException as ex:
                logging.warning(f'Stored credentials could not be used: {ex}')

        self.scheduler.start()

    @property
    def transactions(self) -> List[Transaction]:
        return list(self._transactions)

    @QtCore.Slot(list)
    def _on_transactions_changed(self, transactions: List[Transaction]) -> None:
        self._transactions = list(transactions)

    def reload_transactions(self) -> List[Transaction]:
        """Re-read the ledger and broadcast the new list."""
        self._transactions = self.store.get_all_transactions()
        signals.transactionsChanged.emit(list(self._transactions))
        return self.transactions

    def add_transaction(self, new: NewTransaction) -> Transaction:
        """Add a manual transaction.

        The source is always ``manual``; a calendar event id is never accepted here.

        Raises:
            ValueError: If the transaction fields are invalid.
            status.PersistenceException: If the write fails.
        """
        new = dataclasses.replace(new, source=TransactionSource.manual, calendar_event_id=None)
        transaction = self.store.add_transaction(new)
        logging.info(f'Added manual transaction id={transaction.id}.')
        self.reload_transactions()
        return transaction

    def delete_transaction(self, transaction_id: int) -> None:
        self.store.delete_transaction(transaction_id)
        self.reload_transactions()

    def save_credentials(self, credentials: Credentials) -> str:
        """Store the API credentials and set up the calendar client with them.

        Returns:
            str: Acknowledgment to show the user.

        Raises:
            status.CredsInvalidException: If the client id or API key is empty.
        """
        validate_credentials(credentials)
        self.store.save_credentials(credentials)
        self.client.initialize(credentials)
        signals.credentialsChanged.emit()
        return CREDENTIALS_SAVED_MESSAGE

    def delete_credentials(self) -> None:
        """Remove the API credentials, sign out and reset the calendar client."""
        self.store.delete_credentials()
        if self.client.is_authenticated():
            self.client.sign_out()
        self.client.reset()
        signals.credentialsChanged.emit()
        logging.info('Credentials deleted.')

    def sign_in(self) -> None:
        """Sign in to Google. The scheduler starts a cycle once the client reports it."""
        self.client.sign_in()

    def sign_out(self) -> None:
        self.client.sign_out()

    def settings(self) -> AppSettings:
        return self.settings_service.snapshot()

    def save_settings(self, settings: AppSettings) -> None:
        """Save user-edited settings. The last write wins against a running sync."""
        self.settings_service.save(settings)

    def sync_now(self) -> bool:
        """Request a sync cycle. Returns False if one is already running."""
        return self.scheduler.trigger()

    def teardown(self) -> None:
        """Stop the scheduler, wait for a running cycle, and drop subscriptions."""
        self.scheduler.stop()
        self.orchestrator.teardown()
        try:
            signals.transactionsChanged.disconnect(self._on_transactions_changed)
        except (RuntimeError, TypeError) as ex:
            logging.debug(f'transactionsChanged was already disconnected: {ex}')
