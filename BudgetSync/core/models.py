"""Data model for the ledger and the calendar events it is synced from.

Defines the persisted records (:class:`Transaction`, :class:`AppSettings`,
:class:`Credentials`), the user rule type (:class:`ColorMapping`), and the
ephemeral :class:`ExternalEvent` read from Google Calendar on every sync cycle.

Dates are stored as ISO ``YYYY-MM-DD`` strings and instants (the sync watermark)
as ISO-8601 strings with a UTC offset.
"""
import dataclasses
import datetime
import enum
import logging
import math
from typing import Any, Dict, List, Optional

DATE_FORMAT = '%Y-%m-%d'
DATE_TIME_SEPARATOR = 'T'

# Google Calendar event color palette (colors.get, ``event`` section)
COLOR_PALETTE: Dict[str, Dict[str, str]] = {
    '1': {'name': 'Lavender', 'background': '#a4bdfc'},
    '2': {'name': 'Sage', 'background': '#7ae7bf'},
    '3': {'name': 'Grape', 'background': '#dbadff'},
    '4': {'name': 'Flamingo', 'background': '#ff887c'},
    '5': {'name': 'Banana', 'background': '#fbd75b'},
    '6': {'name': 'Tangerine', 'background': '#ffb878'},
    '7': {'name': 'Peacock', 'background': '#46d6db'},
    '8': {'name': 'Graphite', 'background': '#e1e1e1'},
    '9': {'name': 'Blueberry', 'background': '#5484ed'},
    '10': {'name': 'Basil', 'background': '#51b749'},
    '11': {'name': 'Tomato', 'background': '#dc2127'},
}

# Preset descriptions offered when editing a color mapping
DESCRIPTION_SUGGESTIONS: List[str] = [
    'Salary', 'Rent', 'Bills', 'Groceries', 'Transport', 'Restaurant', 'Shopping', 'Entertainment', 'Gift',
    'Other',
]


def is_known_color(color_id: Optional[str]) -> bool:
    """Check whether a color id belongs to the calendar event palette.

    Args:
        color_id: Color identifier as returned by the Calendar API.

    Returns:
        bool: True if the id is one of the palette keys.
    """
    return color_id is not None and str(color_id) in COLOR_PALETTE


def is_valid_date(value: Any) -> bool:
    """Return True if value is a ``YYYY-MM-DD`` date string."""
    if not isinstance(value, str):
        return False
    try:
        datetime.datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        return False
    return True


class TransactionType(enum.StrEnum):
    """Direction of a ledger entry."""
    Income = enum.auto()
    Expense = enum.auto()


class TransactionSource(enum.StrEnum):
    """Provenance of a ledger entry."""
    manual = enum.auto()
    calendar = enum.auto()


@dataclasses.dataclass
class NewTransaction:
    """Transaction fields before the store assigns an id.

    Raises:
        ValueError: If the amount is negative, the date is malformed, or the
            source and calendar event id disagree.
    """
    type: TransactionType
    description: str
    amount: float
    date: str
    source: TransactionSource = TransactionSource.manual
    calendar_event_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.type = TransactionType(self.type)
        self.source = TransactionSource(self.source)
        self.description = self.description or ''

        try:
            self.amount = float(self.amount)
        except (TypeError, ValueError) as ex:
            raise ValueError(f'Amount "{self.amount}" is not a number.') from ex
        if not math.isfinite(self.amount):
            raise ValueError(f'Amount must be a finite number, got {self.amount}.')
        if self.amount < 0:
            raise ValueError(f'Amount must be non-negative, got {self.amount}.')

        if not is_valid_date(self.date):
            raise ValueError(f'Date "{self.date}" must be in YYYY-MM-DD format.')

        if self.source == TransactionSource.calendar and not self.calendar_event_id:
            raise ValueError('Calendar transactions require a calendar event id.')
        if self.source == TransactionSource.manual and self.calendar_event_id:
            raise ValueError('Manual transactions cannot carry a calendar event id.')


@dataclasses.dataclass(frozen=True)
class Transaction:
    """A persisted ledger entry."""
    id: int
    type: TransactionType
    description: str
    amount: float
    date: str
    source: TransactionSource
    calendar_event_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Transaction':
        """Build a Transaction from a ``transactions`` table row mapping."""
        return cls(
            id=int(row['id']),
            type=TransactionType(row['type']),
            description=row['description'] or '',
            amount=float(row['amount']),
            date=row['date'],
            source=TransactionSource(row['source']),
            calendar_event_id=row['calendar_event_id'],
        )

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclasses.dataclass
class ColorMapping:
    """A user rule turning events of one color into a transaction template."""
    color_id: str
    description: str = ''
    amount: float = 0.0
    type: TransactionType = TransactionType.Expense

    def __post_init__(self) -> None:
        self.color_id = str(self.color_id)
        self.type = TransactionType(self.type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'color_id': self.color_id,
            'description': self.description,
            'amount': self.amount,
            'type': self.type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ColorMapping':
        return cls(
            color_id=data['color_id'],
            description=data.get('description', ''),
            amount=data.get('amount', 0.0),
            type=data.get('type', TransactionType.Expense),
        )


@dataclasses.dataclass
class AppSettings:
    """The singleton settings record.

    Attributes:
        color_mappings: Ordered rules; the first rule for a color wins.
        last_sync: Watermark of the last successful sync, or None before the first one.
    """
    color_mappings: List[ColorMapping] = dataclasses.field(default_factory=list)
    last_sync: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'color_mappings': [m.to_dict() for m in self.color_mappings],
            'last_sync': self.last_sync,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppSettings':
        return cls(
            color_mappings=[ColorMapping.from_dict(m) for m in data.get('color_mappings', [])],
            last_sync=data.get('last_sync'),
        )

    def copy(self) -> 'AppSettings':
        """Return a deep copy that is safe to hand to another thread."""
        return AppSettings.from_dict(self.to_dict())


@dataclasses.dataclass(frozen=True)
class Credentials:
    """Google API client credentials entered by the user.

    ``client_secret`` is needed by the installed-app OAuth flow and may be
    empty when only the API key is used.
    """
    client_id: str
    api_key: str
    client_secret: str = ''

    def client_config(self) -> Dict[str, Any]:
        """Return an ``installed`` client config for google_auth_oauthlib."""
        return {
            'installed': {
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'auth_uri': 'https://accounts.google.com/o/oauth2/auth',
                'token_uri': 'https://oauth2.googleapis.com/token',
                'redirect_uris': ['http://localhost'],
            }
        }


@dataclasses.dataclass(frozen=True)
class ExternalEvent:
    """A calendar event as consumed by one sync cycle. Never persisted."""
    id: str
    summary: str = ''
    color_id: Optional[str] = None
    date: Optional[str] = None
    date_time: Optional[str] = None

    @property
    def resolved_date(self) -> Optional[str]:
        """The all-day date, else the date part of the start date-time."""
        if self.date:
            return self.date
        if self.date_time:
            return self.date_time.split(DATE_TIME_SEPARATOR)[0] or None
        return None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> 'ExternalEvent':
        """Build an event from a Calendar API ``events#event`` resource.

        Args:
            item: The event resource dictionary.

        Returns:
            ExternalEvent: The event, with missing fields left as None.
        """
        start: Dict[str, Any] = item.get('start') or {}
        color_id = item.get('colorId')
        if color_id is not None and not is_known_color(color_id):
            logging.debug(f'Event "{item.get("id")}" has an unknown color id "{color_id}".')
        return cls(
            id=item.get('id', ''),
            summary=item.get('summary', '') or '',
            color_id=str(color_id) if color_id is not None else None,
            date=start.get('date'),
            date_time=start.get('dateTime'),
        )
