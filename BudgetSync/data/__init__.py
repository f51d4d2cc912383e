"""
BudgetSync data package: ledger summaries.

This package provides:

- :mod:`BudgetSync.data.data` – pandas helpers that total the ledger by type and by month
  (:func:`BudgetSync.data.data.get_totals`, :func:`BudgetSync.data.data.get_monthly_totals`).
"""
