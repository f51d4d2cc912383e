"""
Local SQLite ledger store.

This module keeps the transactions, the settings record, and the stored Google API
credentials in a single SQLite file. Each operation opens its own connection, so the
store can be used from the sync worker thread and the main thread alike.

The ``transactions.calendar_event_id`` column is UNIQUE: a calendar event can be
imported at most once even if two writers race.
"""

import enum
import json
import logging
import pathlib
import sqlite3
import time
from typing import Any, Dict, List, Optional

import pandas as pd

from .models import (
    AppSettings,
    Credentials,
    NewTransaction,
    Transaction,
)
from ..status import status

TRANSACTION_COLUMNS: List[str] = [
    'id', 'type', 'description', 'amount', 'date', 'source', 'calendar_event_id'
]


class Table(enum.StrEnum):
    """Enum for database tables."""
    Transactions = 'transactions'
    Settings = 'settings'
    Credentials = 'credentials'


# Expected columns and their SQL type definitions, per table
SCHEMA: Dict[Table, Dict[str, str]] = {
    Table.Transactions: {
        'id': 'INTEGER PRIMARY KEY AUTOINCREMENT',
        'type': 'TEXT NOT NULL',
        'description': "TEXT NOT NULL DEFAULT ''",
        'amount': 'REAL NOT NULL',
        'date': 'TEXT NOT NULL',
        'source': 'TEXT NOT NULL',
        'calendar_event_id': 'TEXT UNIQUE',
    },
    Table.Settings: {
        'meta_id': 'INTEGER PRIMARY KEY',
        'color_mappings': "TEXT NOT NULL DEFAULT '[]'",
        'last_sync': 'TEXT',
    },
    Table.Credentials: {
        'meta_id': 'INTEGER PRIMARY KEY',
        'client_id': 'TEXT NOT NULL',
        'api_key': 'TEXT NOT NULL',
        'client_secret': "TEXT NOT NULL DEFAULT ''",
    },
}


class LedgerStore:
    """Persistent keyed storage for transactions, settings and credentials."""

    def __init__(self, db_path: pathlib.Path) -> None:
        self.db_path = pathlib.Path(db_path)
        self._initialize_schema_if_needed()

    def connection(self) -> sqlite3.Connection:
        """Return a new connection to the ledger database.

        Returns:
            sqlite3.Connection: Database connection object.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 100000)
        return conn

    @staticmethod
    def _table_exists_in_conn(conn: sqlite3.Connection, table_name: str) -> bool:
        """Check if a table exists using an existing connection."""
        cursor = conn.execute(
            """SELECT name FROM sqlite_master WHERE type='table' AND name=?""",
            (table_name,)
        )
        return cursor.fetchone() is not None

    @staticmethod
    def _columns_in_conn(conn: sqlite3.Connection, table_name: str) -> set:
        cursor = conn.execute(f'PRAGMA table_info({table_name})')
        return {row[1] for row in cursor.fetchall()}

    def _initialize_schema_if_needed(self) -> None:
        """
        Ensures every table exists with the expected columns.

        A settings or credentials table with missing columns is recreated. A transactions
        table with missing columns is an unrecoverable error: ledger rows are never dropped.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            for table, columns in SCHEMA.items():
                expected = set(columns.keys())

                if self._table_exists_in_conn(conn, table.value):
                    current = self._columns_in_conn(conn, table.value)
                    if expected.issubset(current):
                        continue

                    missing = expected - current
                    if table == Table.Transactions:
                        raise status.PersistenceException(
                            f'Table "{table.value}" is missing columns {missing}.'
                        )
                    logging.warning(
                        f'Table "{table.value}" schema is invalid. Missing columns: {missing}. '
                        f'Table will be recreated.'
                    )
                    conn.execute(f'DROP TABLE IF EXISTS {table.value}')

                columns_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in columns.items())
                conn.execute(f'CREATE TABLE {table.value} ({columns_sql})')
                logging.info(f'Created table "{table.value}".')

            conn.execute(
                f'INSERT OR IGNORE INTO {Table.Settings.value} (meta_id, color_mappings, last_sync) '
                f'VALUES (1, ?, NULL)',
                ('[]',)
            )
            conn.commit()
        except sqlite3.Error as e:
            logging.error(f'SQLite error during schema initialization: {e}', exc_info=True)
            raise status.PersistenceException(f'Could not initialize the ledger database: {e}') from e
        finally:
            if conn:
                conn.close()

    # Transactions

    def get_all_transactions(self) -> List[Transaction]:
        """Return every transaction ordered by date, then id."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            rows = conn.execute(
                f'SELECT * FROM {Table.Transactions.value} ORDER BY date, id'
            ).fetchall()
            return [Transaction.from_row(dict(row)) for row in rows]
        except sqlite3.Error as e:
            logging.error(f'Error loading transactions: {e}', exc_info=True)
            raise status.PersistenceException(f'Could not load transactions: {e}') from e
        finally:
            if conn:
                conn.close()

    def get_transaction_by_external_id(self, event_id: str) -> Optional[Transaction]:
        """Look up the transaction imported from a calendar event.

        Args:
            event_id: The calendar event id.

        Returns:
            Optional[Transaction]: The transaction, or None if the event was never imported.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(
                f'SELECT * FROM {Table.Transactions.value} WHERE calendar_event_id = ?',
                (event_id,)
            ).fetchone()
            return Transaction.from_row(dict(row)) if row else None
        except sqlite3.Error as e:
            logging.error(f'Error looking up event "{event_id}": {e}', exc_info=True)
            raise status.PersistenceException(f'Could not look up event "{event_id}": {e}') from e
        finally:
            if conn:
                conn.close()

    def add_transaction(self, new: NewTransaction) -> Transaction:
        """Persist a new transaction and return it with its assigned id.

        Args:
            new: The transaction fields.

        Returns:
            Transaction: The stored transaction.

        Raises:
            status.PersistenceException: If the write fails, including a duplicate calendar event id.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            cursor = conn.execute(
                f'INSERT INTO {Table.Transactions.value} '
                f'(type, description, amount, date, source, calendar_event_id) '
                f'VALUES (?, ?, ?, ?, ?, ?)',
                (
                    new.type.value,
                    new.description,
                    new.amount,
                    new.date,
                    new.source.value,
                    new.calendar_event_id,
                )
            )
            conn.commit()
            transaction_id = cursor.lastrowid
        except sqlite3.Error as e:
            logging.error(f'Failed to add transaction {new}: {e}')
            if conn:
                conn.rollback()
            raise status.PersistenceException(f'Could not add transaction: {e}') from e
        finally:
            if conn:
                conn.close()

        logging.debug(f'Added transaction id={transaction_id} ({new.source.value}).')
        return Transaction(
            id=transaction_id,
            type=new.type,
            description=new.description,
            amount=new.amount,
            date=new.date,
            source=new.source,
            calendar_event_id=new.calendar_event_id,
        )

    def delete_transaction(self, transaction_id: int) -> None:
        """Delete a transaction by id. Deleting a missing id is a no-op."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            cursor = conn.execute(
                f'DELETE FROM {Table.Transactions.value} WHERE id = ?', (transaction_id,)
            )
            conn.commit()
            if cursor.rowcount == 0:
                logging.warning(f'No transaction found for id={transaction_id}')
            else:
                logging.info(f'Deleted transaction id={transaction_id}.')
        except sqlite3.Error as e:
            logging.error(f'Failed to delete transaction id={transaction_id}: {e}', exc_info=True)
            if conn:
                conn.rollback()
            raise status.PersistenceException(f'Could not delete transaction {transaction_id}: {e}') from e
        finally:
            if conn:
                conn.close()

    def data(self) -> pd.DataFrame:
        """Load all transactions into a pandas DataFrame.

        Returns:
            pandas.DataFrame: One row per transaction, with the ``transactions`` columns.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            df = pd.read_sql_query(
                f'SELECT * FROM {Table.Transactions.value} ORDER BY date, id', conn
            )
            logging.debug(f'Loaded {len(df)} rows from "{Table.Transactions.value}".')
            return df
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            logging.error(f'Error loading data from DB: {e}', exc_info=True)
            raise status.PersistenceException(f'Could not load transactions: {e}') from e
        finally:
            if conn:
                conn.close()

    # Settings

    def get_settings(self) -> AppSettings:
        """Return the settings record, or defaults if it is missing or unreadable."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(
                f'SELECT color_mappings, last_sync FROM {Table.Settings.value} WHERE meta_id=1'
            ).fetchone()
        except sqlite3.Error as e:
            logging.error(f'Error loading settings: {e}', exc_info=True)
            raise status.PersistenceException(f'Could not load settings: {e}') from e
        finally:
            if conn:
                conn.close()

        if not row:
            logging.warning('Settings record missing, using defaults.')
            return AppSettings()

        try:
            mappings: List[Dict[str, Any]] = json.loads(row['color_mappings'] or '[]')
            return AppSettings.from_dict({'color_mappings': mappings, 'last_sync': row['last_sync']})
        except (ValueError, KeyError, TypeError) as e:
            logging.error(f'Stored color mappings are invalid, using none: {e}')
            return AppSettings(last_sync=row['last_sync'])

    def save_settings(self, settings: AppSettings) -> None:
        """Overwrite the settings record."""
        payload = json.dumps([m.to_dict() for m in settings.color_mappings], ensure_ascii=False)
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(
                f'INSERT OR REPLACE INTO {Table.Settings.value} (meta_id, color_mappings, last_sync) '
                f'VALUES (1, ?, ?)',
                (payload, settings.last_sync)
            )
            conn.commit()
        except sqlite3.Error as e:
            logging.error(f'Failed to save settings: {e}', exc_info=True)
            if conn:
                conn.rollback()
            raise status.PersistenceException(f'Could not save settings: {e}') from e
        finally:
            if conn:
                conn.close()

    # Credentials

    def get_credentials(self) -> Optional[Credentials]:
        """Return the stored API credentials, or None."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(
                f'SELECT client_id, api_key, client_secret FROM {Table.Credentials.value} WHERE meta_id=1'
            ).fetchone()
        except sqlite3.Error as e:
            logging.error(f'Error loading credentials: {e}', exc_info=True)
            raise status.PersistenceException(f'Could not load credentials: {e}') from e
        finally:
            if conn:
                conn.close()

        if not row:
            return None
        return Credentials(
            client_id=row['client_id'],
            api_key=row['api_key'],
            client_secret=row['client_secret'] or '',
        )

    def save_credentials(self, credentials: Credentials) -> None:
        """Store the API credentials, replacing any previous set."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(
                f'INSERT OR REPLACE INTO {Table.Credentials.value} (meta_id, client_id, api_key, client_secret) '
                f'VALUES (1, ?, ?, ?)',
                (credentials.client_id, credentials.api_key, credentials.client_secret)
            )
            conn.commit()
            logging.debug('Credentials saved.')
        except sqlite3.Error as e:
            logging.error(f'Failed to save credentials: {e}', exc_info=True)
            if conn:
                conn.rollback()
            raise status.PersistenceException(f'Could not save credentials: {e}') from e
        finally:
            if conn:
                conn.close()

    def delete_credentials(self) -> None:
        """Remove the stored API credentials."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(f'DELETE FROM {Table.Credentials.value} WHERE meta_id=1')
            conn.commit()
            logging.debug('Credentials deleted.')
        except sqlite3.Error as e:
            logging.error(f'Failed to delete credentials: {e}', exc_info=True)
            if conn:
                conn.rollback()
            raise status.PersistenceException(f'Could not delete credentials: {e}') from e
        finally:
            if conn:
                conn.close()

    def delete(self) -> None:
        """Delete the ledger database file, retrying on failure.

        Raises:
            status.PersistenceException: If unable to remove the database file after retries.
        """
        if not self.db_path.exists():
            logging.debug('No ledger database found to delete.')
            return

        max_attempts = 5
        attempt = 0
        wait_seconds = 0.5

        while attempt < max_attempts:
            attempt += 1
            try:
                self.db_path.unlink()
                logging.info(f'Ledger database removed: {self.db_path}')
                return
            except OSError as ex:
                logging.error(f'Error removing ledger DB (attempt {attempt}/{max_attempts}): {ex}')
                if attempt < max_attempts:
                    time.sleep(wait_seconds)
                    wait_seconds *= 1.5
                else:
                    raise status.PersistenceException(
                        f'Failed to remove ledger DB {self.db_path} after {max_attempts} attempts: {ex}'
                    ) from ex
