"""
BudgetSync: personal finance ledger that imports transactions from Google Calendar.

Events on the user's calendar are turned into income and expense transactions by
color rules, and a background sync keeps the local ledger up to date.

This package provides:

- :mod:`BudgetSync.core` – The sync engine, the ledger store, and the Google Calendar client.
- :mod:`BudgetSync.data` – Ledger summaries built with pandas.
- :mod:`BudgetSync.settings` – Application paths, config.json handling and the settings service.
- :mod:`BudgetSync.status` – Status codes and the exception taxonomy.
- :mod:`BudgetSync.log` – Logging setup and the in-memory log tank.

Use :func:`BudgetSync.exec_` to run the background sync.
"""

import sys

from PySide6 import QtCore

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('BudgetSync requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'BudgetSync: personal finance ledger synced from Google Calendar event colors.'

from .log import log

log.setup_logging()


def exec_() -> None:
    """Run the background sync until interrupted.

    Initializes the QCoreApplication and a Session, applies the configured log level,
    and starts the Qt event loop. Ctrl+C quits; a running sync cycle is allowed to finish.
    """
    import signal
    from .core.session import Session
    from .settings.lib import ConfigPaths

    app = QtCore.QCoreApplication(sys.argv)

    session = Session(ConfigPaths())
    log.set_logging_level(log.level_from_name(session.config.log_level))
    app.aboutToQuit.connect(session.teardown)

    signal.signal(signal.SIGINT, lambda *args: app.quit())

    # Let the interpreter run periodically so SIGINT is handled while Qt waits
    interrupt_timer = QtCore.QTimer()
    interrupt_timer.timeout.connect(lambda: None)
    interrupt_timer.start(500)

    QtCore.QTimer.singleShot(0, session.initialize)

    sys.exit(app.exec())


if __name__ == '__main__':
    exec_()
