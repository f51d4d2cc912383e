"""
Core package for BudgetSync providing the calendar-to-ledger sync engine.

This package includes:

- :mod:`BudgetSync.core.models` – Data model for transactions, settings, credentials and calendar events.
- :mod:`BudgetSync.core.rules` – Color rules resolving an event color to a transaction template.
- :mod:`BudgetSync.core.database` – Local SQLite ledger store.
- :mod:`BudgetSync.core.auth` – Google OAuth2 authentication and credential management.
- :mod:`BudgetSync.core.service` – Google Calendar API client.
- :mod:`BudgetSync.core.sync` – Deduplication gate, transaction materializer and sync orchestrator.
- :mod:`BudgetSync.core.scheduler` – Periodic and on-demand sync triggers.
- :mod:`BudgetSync.core.session` – Application controller for the user-facing actions.
- :mod:`BudgetSync.core.signals` – Process-wide Qt signals.
"""
