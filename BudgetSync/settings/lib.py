"""Settings library for application configuration and user settings.

Provides:
    - ConfigPaths: per-user file locations, created on first run.
    - Schema validation and enforcement for the config.json structure.
    - AppConfig: loading, saving and reverting the application config.
    - SettingsService: serialized access to the AppSettings record kept in the ledger store.
"""
import copy
import datetime
import json
import logging
import math
import os
import pathlib
import shutil
import threading
from typing import Any, Dict, List, Optional

from PySide6 import QtCore

from ..core.models import AppSettings, ColorMapping, TransactionType, is_known_color
from ..core.rules import unreachable_mappings
from ..status import status

app_name: str = 'BudgetSync'

DATA_DIR_ENV_KEY: str = 'BUDGETSYNC_DATA_DIR'

LOG_LEVEL_NAMES: List[str] = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

CONFIG_SCHEMA: Dict[str, Any] = {
    'sync': {
        'type': dict,
        'required': True,
        'item_schema': {
            'interval_minutes': {'type': int, 'required': True, 'min': 1},
            'initial_window_days': {'type': int, 'required': True, 'min': 0},
            'fetch_retries': {'type': int, 'required': True, 'min': 0},
        }
    },
    'log': {
        'type': dict,
        'required': True,
        'item_schema': {
            'level': {'type': str, 'required': True, 'allowed_values': LOG_LEVEL_NAMES},
        }
    },
}


def _validate_section(section_name: str, section: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate one config section against its item schema.

    Args:
        section_name: Name of the section, used in error messages.
        section: The section data.
        item_schema: Field specs with 'type', 'required', and optional 'min' or 'allowed_values'.

    Raises:
        TypeError: If the section or a field has the wrong type.
        ValueError: If a required field is missing or a value is out of range.
    """
    logging.debug(f'Validating "{section_name}" section.')
    if not isinstance(section, dict):
        msg: str = f'"{section_name}" must be a dict.'
        logging.error(msg)
        raise TypeError(msg)

    for field, specs in item_schema.items():
        if specs['required'] and field not in section:
            msg = f'Section "{section_name}" missing "{field}".'
            logging.error(msg)
            raise ValueError(msg)
        if field not in section:
            continue

        value = section[field]
        # bool is an int subclass and is never a valid number here
        if isinstance(value, bool) or not isinstance(value, specs['type']):
            msg = (
                f'Section "{section_name}" field "{field}" must be {specs["type"]}, '
                f'got {type(value)}.'
            )
            logging.error(msg)
            raise TypeError(msg)
        if 'min' in specs and value < specs['min']:
            msg = f'Section "{section_name}" field "{field}" must be >= {specs["min"]}, got {value}.'
            logging.error(msg)
            raise ValueError(msg)
        if 'allowed_values' in specs and value not in specs['allowed_values']:
            msg = f'Section "{section_name}" field "{field}" must be one of {specs["allowed_values"]}.'
            logging.error(msg)
            raise ValueError(msg)


def validate_color_mappings(mappings: List[ColorMapping]) -> None:
    """Validate user color rules.

    Args:
        mappings: Ordered color rules.

    Raises:
        status.SettingsInvalidException: If a rule uses an unknown color, a negative
            amount, or an invalid transaction type.
    """
    for idx, mapping in enumerate(mappings):
        if not isinstance(mapping, ColorMapping):
            raise status.SettingsInvalidException(f'Rule #{idx + 1} is not a color mapping.')
        if not is_known_color(mapping.color_id):
            raise status.SettingsInvalidException(
                f'Rule #{idx + 1} uses unknown color id "{mapping.color_id}".'
            )
        if not isinstance(mapping.description, str):
            raise status.SettingsInvalidException(f'Rule #{idx + 1} description must be a string.')
        try:
            amount = float(mapping.amount)
        except (TypeError, ValueError):
            raise status.SettingsInvalidException(f'Rule #{idx + 1} amount "{mapping.amount}" is not a number.')
        if not math.isfinite(amount):
            raise status.SettingsInvalidException(f'Rule #{idx + 1} amount must be a finite number.')
        if amount < 0:
            raise status.SettingsInvalidException(f'Rule #{idx + 1} amount must be non-negative.')
        if mapping.type not in tuple(TransactionType):
            raise status.SettingsInvalidException(f'Rule #{idx + 1} has invalid type "{mapping.type}".')


class ConfigPaths:
    """Manage application file paths and ensure default templates and directories exist.

    The data directory is the Qt AppDataLocation for the application unless
    ``data_dir`` or the ``BUDGETSYNC_DATA_DIR`` environment variable overrides it.
    """

    def __init__(self, data_dir: Optional[str] = None) -> None:
        """Set up application paths and ensure required directories and templates exist.

        Args:
            data_dir: Optional root directory for config, auth, and database files.
        """
        QtCore.QCoreApplication.setApplicationName(app_name)
        QtCore.QCoreApplication.setOrganizationName('')

        data_dir = data_dir or os.environ.get(DATA_DIR_ENV_KEY)
        if data_dir:
            app_data_dir = pathlib.Path(data_dir)
        else:
            p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
            app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.config_template: pathlib.Path = self.template_dir / 'config.json.template'

        self.data_dir: pathlib.Path = app_data_dir
        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'
        self.db_dir: pathlib.Path = self.config_dir / 'db'

        self.config_path: pathlib.Path = self.config_dir / 'config.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'
        self.db_path: pathlib.Path = self.db_dir / 'ledger.db'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify the config template exists and create missing directories and files.

        Raises:
            FileNotFoundError: If the config template is missing.
        """
        if not self.config_template.exists():
            msg: str = f'Missing config template: {self.config_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)

        for d in (self.config_dir, self.auth_dir, self.db_dir):
            if not d.exists():
                logging.debug(f'Creating directory: {d}')
                d.mkdir(parents=True, exist_ok=True)

        if not self.config_path.exists():
            logging.debug(f'Copying default config from template to {self.config_path}')
            shutil.copy(self.config_template, self.config_path)

    def revert_config_to_template(self) -> None:
        """Restore config.json from the default template file."""
        logging.debug(f'Reverting config to template: {self.config_template}')
        shutil.copy(self.config_template, self.config_path)


class AppConfig:
    """Get/set/revert/save the sections of config.json."""

    def __init__(self, paths: ConfigPaths) -> None:
        self.paths = paths
        self.config_data: Dict[str, Any] = {k: {} for k in CONFIG_SCHEMA}
        self.load()

    def load(self) -> Dict[str, Any]:
        """Load config.json from disk and validate against schema.

        Returns:
            The loaded config data dictionary.

        Raises:
            status.ConfigNotFoundException: If config.json is missing.
            status.ConfigInvalidException: If JSON parsing or validation fails.
        """
        path = self.paths.config_path
        logging.debug(f'Loading config from "{path}"')
        if not path.exists():
            raise status.ConfigNotFoundException(str(path))

        try:
            with path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_config_data(data)
        except (ValueError, TypeError) as ex:
            raise status.ConfigInvalidException(str(ex)) from ex

        self.config_data = data
        return self.config_data

    @staticmethod
    def validate_config_data(data: Dict[str, Any]) -> None:
        """Validate config data against CONFIG_SCHEMA.

        Raises:
            ValueError: If a required section is missing or a value is out of range.
            TypeError: If a section or value has the wrong type.
        """
        if not isinstance(data, dict):
            raise TypeError('Config data must be a dict.')
        for section_name, specs in CONFIG_SCHEMA.items():
            if specs['required'] and section_name not in data:
                raise ValueError(f'Missing required section: {section_name}')
            if section_name in data:
                _validate_section(section_name, data[section_name], specs['item_schema'])
        logging.debug('Config data is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Return a copy of a config section.

        Raises:
            KeyError: If section_name is not a config section.
        """
        return self.config_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace, validate and persist a config section.

        The previous section data is restored if validation fails.

        Raises:
            ValueError: If section_name is unknown or the data is out of range.
            TypeError: If the data has the wrong type.
        """
        if section_name not in CONFIG_SCHEMA:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        current_section_data = copy.deepcopy(self.config_data.get(section_name, {}))
        self.config_data[section_name] = new_data
        try:
            self.validate_config_data(self.config_data)
            self.save()
        except (ValueError, TypeError) as e:
            logging.error(f'Validation error on set_section("{section_name}"): {e}')
            self.config_data[section_name] = current_section_data
            raise

        from ..core.signals import signals
        signals.configSectionChanged.emit(section_name)

    def revert(self) -> None:
        """Revert config.json to the template and reload it."""
        self.paths.revert_config_to_template()
        self.load()

        from ..core.signals import signals
        for section_name in CONFIG_SCHEMA:
            signals.configSectionChanged.emit(section_name)

    def save(self) -> None:
        """Write the current config data to config.json."""
        logging.debug(f'Saving config to "{self.paths.config_path}"')
        with self.paths.config_path.open('w', encoding='utf-8') as f:
            json.dump(self.config_data, f, indent=4, ensure_ascii=False)

    @property
    def sync_interval_ms(self) -> int:
        return self.config_data['sync']['interval_minutes'] * 60 * 1000

    @property
    def initial_window_days(self) -> int:
        return self.config_data['sync']['initial_window_days']

    @property
    def fetch_retries(self) -> int:
        return self.config_data['sync']['fetch_retries']

    @property
    def log_level(self) -> str:
        return self.config_data['log']['level']


class SettingsService:
    """Serialized access to the AppSettings record.

    The record lives in the ledger store. Every read and write goes through one
    re-entrant lock, so the sync worker and the user settings editor never
    interleave a read-modify-write. Writes are last-write-wins: a user edit that
    races a watermark update may overwrite it, and the next cycle then re-fetches
    an older window, which the deduplication gate makes harmless.
    """

    def __init__(self, store: Any) -> None:
        self._store = store
        self._lock = threading.RLock()

    def snapshot(self) -> AppSettings:
        """Return a deep copy of the current settings."""
        with self._lock:
            return self._store.get_settings().copy()

    def save(self, settings: AppSettings) -> None:
        """Validate and persist user-edited settings.

        Args:
            settings: The complete settings record to store.

        Raises:
            status.SettingsInvalidException: If a color mapping is invalid.
        """
        validate_color_mappings(settings.color_mappings)
        for mapping in unreachable_mappings(settings.color_mappings):
            logging.warning(
                f'Color mapping for color "{mapping.color_id}" ({mapping.description or "no description"}) '
                f'is shadowed by an earlier rule and will never be applied.'
            )

        with self._lock:
            self._store.save_settings(settings.copy())
        logging.info(f'Settings saved with {len(settings.color_mappings)} color mapping(s).')

        from ..core.signals import signals
        signals.settingsChanged.emit(settings.copy())

    def advance_watermark(self, instant: Optional[datetime.datetime] = None) -> str:
        """Move the sync watermark forward and persist it.

        The new value is strictly greater than the stored one even if the clock
        has not moved or went backwards.

        Args:
            instant: The new watermark. Defaults to the current UTC time.

        Returns:
            str: The stored ISO-8601 watermark.
        """
        instant = instant or datetime.datetime.now(datetime.timezone.utc)
        with self._lock:
            settings = self._store.get_settings()
            previous = parse_instant(settings.last_sync)
            if previous is not None and instant <= previous:
                instant = previous + datetime.timedelta(microseconds=1)

            settings.last_sync = instant.isoformat()
            self._store.save_settings(settings)
        logging.debug(f'Sync watermark advanced to {settings.last_sync}.')
        return settings.last_sync


def parse_instant(value: Optional[str]) -> Optional[datetime.datetime]:
    """Parse a stored ISO-8601 instant, assuming UTC when no offset is present.

    Returns:
        Optional[datetime.datetime]: The aware datetime, or None if value is empty or invalid.
    """
    if not value:
        return None
    try:
        dt = datetime.datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logging.warning(f'Invalid watermark format: {value}.')
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt
