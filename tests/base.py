"""Unittest base class for creating a clean test environment."""
import logging
import os
import shutil
import tempfile
import threading
import unittest
from typing import Any, List, Optional
from unittest.mock import patch

from PySide6 import QtCore

from BudgetSync.core import database
from BudgetSync.core.models import ColorMapping, ExternalEvent, TransactionType
from BudgetSync.core.service import validate_credentials
from BudgetSync.settings import lib
from BudgetSync.status import status

_app: Optional[QtCore.QCoreApplication] = None


def ensure_app() -> QtCore.QCoreApplication:
    """Return the running QCoreApplication, creating one for headless tests if needed."""
    global _app
    if 'QT_QPA_PLATFORM' not in os.environ:
        os.environ['QT_QPA_PLATFORM'] = 'offscreen'
        logging.debug('QT_QPA_PLATFORM set to offscreen for headless testing.')

    app = QtCore.QCoreApplication.instance()
    if not app:
        _app = QtCore.QCoreApplication([])
        app = _app
        logging.debug('QtCore.QCoreApplication initialized for tests.')
    return app


def pump_events(duration_ms: int) -> None:
    """Process Qt events for the given duration so timers can fire."""
    elapsed = QtCore.QElapsedTimer()
    elapsed.start()
    while elapsed.elapsed() < duration_ms:
        QtCore.QCoreApplication.processEvents(QtCore.QEventLoop.ProcessEventsFlag.AllEvents, 10)
        QtCore.QThread.msleep(5)


def make_event(event_id: str, color_id: Optional[str] = '5', summary: str = '',
               date: Optional[str] = '2024-03-01', date_time: Optional[str] = None) -> ExternalEvent:
    """Return a calendar event. Pass ``date=None`` for a timed or undated event."""
    return ExternalEvent(id=event_id, summary=summary, color_id=color_id, date=date, date_time=date_time)


def make_mapping(color_id: str = '5', amount: float = 50.0, description: str = '',
                 type: TransactionType = TransactionType.Expense) -> ColorMapping:
    return ColorMapping(color_id=color_id, description=description, amount=amount, type=type)


class FakeCalendarClient(QtCore.QObject):
    """In-memory calendar client.

    ``events`` is returned by every fetch. Set ``fetch_error`` to make fetches fail, and
    call :meth:`block_fetches` to hold a fetch until :meth:`release` is called.
    """
    authStateChanged = QtCore.Signal(bool)
    readyChanged = QtCore.Signal(bool)

    def __init__(self, ready: bool = True, authenticated: bool = True) -> None:
        super().__init__()
        self._ready = ready
        self._authenticated = authenticated

        self.events: List[ExternalEvent] = []
        self.fetch_error: Optional[Exception] = None
        self.calls: List[Optional[str]] = []

        self.fetch_started = threading.Event()
        self._gate: Optional[threading.Event] = None

    def block_fetches(self) -> None:
        self._gate = threading.Event()

    def release(self) -> None:
        if self._gate:
            self._gate.set()

    def initialize(self, credentials: Any) -> bool:
        validate_credentials(credentials)
        self._ready = True
        self.readyChanged.emit(True)
        return True

    def reset(self) -> None:
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    def is_authenticated(self) -> bool:
        return self._authenticated

    def set_authenticated(self, value: bool) -> None:
        if value == self._authenticated:
            return
        self._authenticated = value
        self.authStateChanged.emit(value)

    def sign_in(self) -> None:
        if not self._ready:
            raise status.ClientNotReadyException
        self.set_authenticated(True)

    def sign_out(self) -> None:
        self.set_authenticated(False)

    def list_events_since(self, timestamp: Optional[str]) -> List[ExternalEvent]:
        self.calls.append(timestamp)
        self.fetch_started.set()
        if self._gate is not None:
            self._gate.wait(10)
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.events)


class BaseTestCase(unittest.TestCase):
    """Base test case that points the data directory at a fresh temporary directory."""

    paths: lib.ConfigPaths
    store: database.LedgerStore
    settings_service: lib.SettingsService

    def setUp(self) -> None:
        """Set up a clean data directory, ledger store and settings service."""
        ensure_app()

        self.temp_dir = tempfile.mkdtemp(prefix='budgetsync_test_')
        logging.debug(f'Created test data directory at {self.temp_dir}')

        patch.dict(os.environ, {lib.DATA_DIR_ENV_KEY: self.temp_dir}).start()
        self.addCleanup(patch.stopall)

        self.paths = lib.ConfigPaths()
        self.store = database.LedgerStore(self.paths.db_path)
        self.settings_service = lib.SettingsService(self.store)

    def tearDown(self) -> None:
        """Remove the temporary data directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        logging.debug(f'Removed test data directory {self.temp_dir}')

    def set_mappings(self, *mappings: ColorMapping) -> None:
        settings = self.settings_service.snapshot()
        settings.color_mappings = list(mappings)
        self.settings_service.save(settings)
