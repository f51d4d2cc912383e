"""Application-wide Qt signals for BudgetSync.

This module provides:
    - Signals: custom Qt signals for errors, the sync cycle lifecycle,
      ledger data changes and settings changes.
    - signals: the process-wide instance.

Listeners connected from another thread than the emitter receive the signals
queued, so the sync worker thread can emit freely.
"""
from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals for errors, sync progress and data events."""
    error = QtCore.Signal(str)

    syncStarted = QtCore.Signal()
    syncFinished = QtCore.Signal(object)  # SyncResult
    syncStateChanged = QtCore.Signal(str)

    transactionsChanged = QtCore.Signal(list)  # List[Transaction]
    settingsChanged = QtCore.Signal(object)  # AppSettings
    credentialsChanged = QtCore.Signal()
    configSectionChanged = QtCore.Signal(str)

    def __init__(self):
        super().__init__()


signals = Signals()
