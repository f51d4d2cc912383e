"""Calendar-to-ledger sync: deduplication gate, transaction materializer and the sync orchestrator.

One sync cycle fetches the events that start at or after the watermark, turns every
event whose color matches a rule into a transaction, and then advances the watermark.

Guarantees:

- An event id is imported at most once. The gate is consulted right before each
  write, and the ledger's ``calendar_event_id`` column is UNIQUE.
- Events are processed one at a time in fetch order, so the gate sees the writes
  made earlier in the same cycle (duplicate ids within one page are imported once).
- A failed fetch leaves the watermark untouched. A successful fetch and process pass
  always advances it, even when nothing new was imported.
- At most one cycle runs at a time. A cycle requested while another is in flight is
  dropped, not queued.
"""
import dataclasses
import enum
import logging
import threading
from typing import Any, Optional

from PySide6 import QtCore

from .models import ColorMapping, ExternalEvent, NewTransaction, Transaction, TransactionSource
from .rules import resolve_mapping
from .signals import signals
from ..status import status


class SyncState(enum.StrEnum):
    """States of one sync cycle."""
    Idle = enum.auto()
    Fetching = enum.auto()
    Processing = enum.auto()
    Checkpointing = enum.auto()
    Error = enum.auto()


@dataclasses.dataclass
class SyncResult:
    """Outcome of one call to :meth:`SyncOrchestrator.run_cycle`.

    Attributes:
        state: The last state the cycle reached (Idle on success, Error on failure).
        dropped: True if another cycle was in flight and this one never started.
        skip_reason: Why the cycle was a no-op, if a precondition failed.
        error: Message of the failure that ended the cycle, if any.
        last_sync: The watermark stored at the end of a successful cycle.
    """
    fetched: int = 0
    created: int = 0
    skipped_no_color: int = 0
    skipped_no_date: int = 0
    skipped_no_mapping: int = 0
    skipped_duplicate: int = 0
    failed: int = 0
    state: SyncState = SyncState.Idle
    dropped: bool = False
    skip_reason: Optional[str] = None
    error: Optional[str] = None
    last_sync: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.dropped and self.skip_reason is None and self.error is None


class DeduplicationGate:
    """Answers whether a calendar event has already been imported."""

    def __init__(self, store: Any) -> None:
        self._store = store

    def is_imported(self, event_id: str) -> bool:
        """Return True if a transaction with this calendar event id exists.

        Raises:
            status.PersistenceException: If the ledger cannot be read.
        """
        return self._store.get_transaction_by_external_id(event_id) is not None


class TransactionMaterializer:
    """Turns a matched event into a persisted ledger transaction."""

    def __init__(self, store: Any) -> None:
        self._store = store

    @staticmethod
    def build(mapping: ColorMapping, event: ExternalEvent) -> NewTransaction:
        """Build the transaction fields for an event and its winning rule.

        The rule's description wins when it is not empty, otherwise the event summary
        is used.

        Raises:
            ValueError: If the resulting fields are invalid.
        """
        return NewTransaction(
            type=mapping.type,
            description=mapping.description or event.summary,
            amount=mapping.amount,
            date=event.resolved_date,
            source=TransactionSource.calendar,
            calendar_event_id=event.id,
        )

    def materialize(self, mapping: ColorMapping, event: ExternalEvent) -> Optional[Transaction]:
        """Persist the transaction for an event.

        Args:
            mapping: The rule resolved for the event's color.
            event: The calendar event.

        Returns:
            Optional[Transaction]: The stored transaction, or None if it could not be written.
        """
        try:
            new = self.build(mapping, event)
        except ValueError as ex:
            logging.warning(f'Skipping event "{event.id}": {ex}')
            return None

        try:
            return self._store.add_transaction(new)
        except status.PersistenceException as ex:
            logging.warning(f'Skipping event "{event.id}", the transaction could not be saved: {ex}')
            return None


class SyncOrchestrator(QtCore.QObject):
    """Runs sync cycles against the calendar client, the ledger and the settings service.

    The orchestrator subscribes to the client's ``authStateChanged`` once when
    constructed; :meth:`teardown` removes the subscription.

    Signals:
        stateChanged (str): Emitted with the new :class:`SyncState` value.
    """
    stateChanged = QtCore.Signal(str)

    def __init__(self, store: Any, settings_service: Any, client: Any,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.store = store
        self.settings_service = settings_service
        self.client = client

        self.gate = DeduplicationGate(store)
        self.materializer = TransactionMaterializer(store)

        self._cycle_lock = threading.Lock()
        self._state: SyncState = SyncState.Idle
        self._authenticated: bool = bool(client.is_authenticated())
        self._subscribed: bool = False

        self._connect_signals()

    def _connect_signals(self) -> None:
        self.client.authStateChanged.connect(self._on_auth_state_changed)
        self._subscribed = True

    def teardown(self) -> None:
        """Remove the authentication subscription. Safe to call more than once."""
        if not self._subscribed:
            return
        try:
            self.client.authStateChanged.disconnect(self._on_auth_state_changed)
        except (RuntimeError, TypeError) as ex:
            logging.debug(f'authStateChanged was already disconnected: {ex}')
        self._subscribed = False

    @QtCore.Slot(bool)
    def _on_auth_state_changed(self, value: bool) -> None:
        self._authenticated = bool(value)
        logging.debug(f'Sync orchestrator observed authentication change: signed_in={value}')

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def in_flight(self) -> bool:
        """True while a cycle holds the in-flight lock."""
        return self._cycle_lock.locked()

    def _set_state(self, state: SyncState) -> None:
        if state == self._state:
            return
        self._state = state
        self.stateChanged.emit(state.value)
        signals.syncStateChanged.emit(state.value)

    def run_cycle(self) -> SyncResult:
        """Run one sync cycle.

        Never raises. Failures are logged and reported in the returned result.

        Returns:
            SyncResult: Counters and final state of the cycle.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logging.info('A sync cycle is already running, the new request was dropped.')
            return SyncResult(dropped=True)

        try:
            return self._run_cycle()
        finally:
            self._cycle_lock.release()

    def _check_preconditions(self, settings: Any) -> None:
        """Raise a silent status exception if the cycle cannot run."""
        if not self._authenticated or not self.client.is_authenticated():
            raise status.NotAuthenticatedException
        if not self.client.is_ready():
            raise status.ClientNotReadyException
        if not settings.color_mappings:
            raise status.ColorMappingsNotConfiguredException

    def _run_cycle(self) -> SyncResult:
        result = SyncResult()

        settings = self.settings_service.snapshot()
        try:
            self._check_preconditions(settings)
        except status.BaseStatusException as ex:
            result.skip_reason = ex.status.value
            logging.debug(f'Sync cycle skipped: {ex}')
            return result

        signals.syncStarted.emit()
        try:
            self._set_state(SyncState.Fetching)
            try:
                events = self.client.list_events_since(settings.last_sync)
            except Exception as ex:
                logging.error(f'Sync fetch failed, the watermark was not advanced: {ex}')
                result.error = str(ex)
                self._set_state(SyncState.Error)
                return result
            result.fetched = len(events)

            try:
                self._set_state(SyncState.Processing)
                for event in events:
                    self._process_event(event, settings.color_mappings, result)

                self._set_state(SyncState.Checkpointing)
                if result.created:
                    transactions = self.store.get_all_transactions()
                    signals.transactionsChanged.emit(transactions)
                result.last_sync = self.settings_service.advance_watermark()
            except Exception as ex:
                logging.error(f'Sync cycle failed: {ex}', exc_info=True)
                result.error = str(ex)
                self._set_state(SyncState.Error)
                return result

            logging.info(
                f'Sync finished: {result.created} created, {result.skipped_duplicate} already imported, '
                f'{result.failed} failed, {result.fetched} fetched.'
            )
            return result
        finally:
            result.state = SyncState.Error if result.error else SyncState.Idle
            self._set_state(SyncState.Idle)
            signals.syncFinished.emit(result)

    def _process_event(self, event: ExternalEvent, mappings: Any, result: SyncResult) -> None:
        if not event.color_id:
            result.skipped_no_color += 1
            return
        if not event.resolved_date:
            logging.debug(f'Event "{event.id}" has no start date, skipped.')
            result.skipped_no_date += 1
            return

        mapping = resolve_mapping(event.color_id, mappings)
        if mapping is None:
            result.skipped_no_mapping += 1
            return

        if self.gate.is_imported(event.id):
            result.skipped_duplicate += 1
            return

        transaction = self.materializer.materialize(mapping, event)
        if transaction is None:
            result.failed += 1
            return

        logging.debug(f'Imported event "{event.id}" as transaction id={transaction.id}.')
        result.created += 1
