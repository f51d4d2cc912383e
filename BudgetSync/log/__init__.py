"""
Logging subsystem for BudgetSync.

Modules:

- :mod:`BudgetSync.log.log` – Root logger setup, in-memory log tank and the Qt message bridge.
"""
