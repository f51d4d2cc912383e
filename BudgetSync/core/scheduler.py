"""Periodic and on-demand sync triggers.

The timer and manual actions both call :meth:`SyncScheduler.trigger`, which runs one
cycle on a :class:`SyncWorker` thread. A trigger that fires while a cycle runs is
dropped; the orchestrator's in-flight lock enforces this even for callers that
bypass the scheduler.
"""
import logging
from typing import Any, List, Optional

from PySide6 import QtCore

from .signals import signals
from .sync import SyncOrchestrator, SyncResult

DEFAULT_INTERVAL_MS: int = 5 * 60 * 1000


class SyncWorker(QtCore.QThread):
    """
    Runs a single sync cycle in a background thread.

    Signals:
        resultReady (object): Emitted with the SyncResult when the cycle ends.
    """
    resultReady = QtCore.Signal(object)

    def __init__(self, orchestrator: SyncOrchestrator, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.orchestrator = orchestrator
        self.result: Optional[SyncResult] = None

    def run(self) -> None:
        self.result = self.orchestrator.run_cycle()
        self.resultReady.emit(self.result)


class SyncScheduler(QtCore.QObject):
    """Invoke the orchestrator on a fixed period and whenever the user signs in.

    Args:
        orchestrator: The sync orchestrator.
        client: The calendar client whose ``authStateChanged`` starts a cycle.
        interval_ms: Timer period in milliseconds.
        config: Optional AppConfig. When given, edits to its ``sync`` section update the period.
    """

    def __init__(self, orchestrator: SyncOrchestrator, client: Any,
                 interval_ms: int = DEFAULT_INTERVAL_MS, config: Any = None,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.orchestrator = orchestrator
        self.client = client
        self.config = config

        self._workers: List[SyncWorker] = []
        self._connected: bool = False

        self.timer = QtCore.QTimer(self)
        self.timer.setSingleShot(False)
        self.timer.setInterval(interval_ms)
        self.timer.timeout.connect(self.trigger)

    @property
    def interval_ms(self) -> int:
        return self.timer.interval()

    def set_interval(self, interval_ms: int) -> None:
        """Change the timer period. A running timer restarts with the new period."""
        if interval_ms <= 0:
            raise ValueError(f'Sync interval must be positive, got {interval_ms}.')
        self.timer.setInterval(interval_ms)
        if self.timer.isActive():
            self.timer.start()
        logging.debug(f'Sync interval set to {interval_ms} ms.')

    def _connect_signals(self) -> None:
        if self._connected:
            return
        self.client.authStateChanged.connect(self._on_auth_state_changed)
        signals.configSectionChanged.connect(self._on_config_section_changed)
        self._connected = True

    def _disconnect_signals(self) -> None:
        if not self._connected:
            return
        for sig, slot in (
                (self.client.authStateChanged, self._on_auth_state_changed),
                (signals.configSectionChanged, self._on_config_section_changed),
        ):
            try:
                sig.disconnect(slot)
            except (RuntimeError, TypeError) as ex:
                logging.debug(f'Signal was already disconnected: {ex}')
        self._connected = False

    @QtCore.Slot(bool)
    def _on_auth_state_changed(self, value: bool) -> None:
        if value:
            logging.debug('Signed in, starting a sync cycle.')
            self.trigger()

    @QtCore.Slot(str)
    def _on_config_section_changed(self, section_name: str) -> None:
        if section_name != 'sync' or self.config is None:
            return
        self.set_interval(self.config.sync_interval_ms)

    def is_busy(self) -> bool:
        """True if a cycle is running or a worker has been started for one."""
        return self.orchestrator.in_flight or any(w.isRunning() for w in self._workers)

    def trigger(self) -> bool:
        """Start one sync cycle in the background unless one is already in flight.

        Returns:
            bool: True if a worker was started, False if the trigger was dropped.
        """
        if self.is_busy():
            logging.info('Sync already in progress, trigger dropped.')
            return False

        self._workers = [w for w in self._workers if not w.isFinished()]

        worker = SyncWorker(self.orchestrator)
        self._workers.append(worker)
        worker.start()
        return True

    def run_now(self) -> SyncResult:
        """Run one cycle on the calling thread. Dropped if a cycle is in flight."""
        return self.orchestrator.run_cycle()

    def start(self) -> None:
        """Start the periodic timer, and run a cycle now if the client can sync."""
        self._connect_signals()
        self.timer.start()
        logging.info(f'Sync scheduler started, every {self.timer.interval() // 1000} s.')

        if self.client.is_ready() and self.client.is_authenticated():
            self.trigger()

    def stop(self, timeout_ms: Optional[int] = None) -> None:
        """Stop the timer and let a running cycle finish.

        Args:
            timeout_ms: Optional upper bound on the wait for each running worker.
        """
        self.timer.stop()
        self._disconnect_signals()

        for worker in list(self._workers):
            if worker.isRunning():
                logging.debug('Waiting for the running sync cycle to finish...')
                if timeout_ms is None:
                    worker.wait()
                else:
                    worker.wait(timeout_ms)
        logging.info('Sync scheduler stopped.')

    @property
    def workers(self) -> List[SyncWorker]:
        return list(self._workers)
