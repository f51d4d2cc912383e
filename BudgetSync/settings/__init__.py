"""Settings package: application paths, config.json handling and the settings service.

Modules:

- :mod:`BudgetSync.settings.lib` – ConfigPaths, AppConfig and SettingsService.
"""
