"""Google Calendar API integration.

Provides the CalendarClient used by the sync engine: initialization from the stored
API credentials, sign-in state with a change signal, and paged event listing from
the primary calendar.
"""

import datetime
import logging
import socket
import ssl
from typing import Any, Dict, List, Optional

import google.auth.exceptions
import httplib2
from PySide6 import QtCore
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .auth import AuthManager, AuthExpiredError
from .models import Credentials, ExternalEvent
from ..status import status

CALENDAR_ID: str = 'primary'
MAX_RESULTS_PER_PAGE: int = 2500
DEFAULT_INITIAL_WINDOW_DAYS: int = 30
DEFAULT_FETCH_RETRIES: int = 2


def validate_credentials(credentials: Credentials) -> None:
    """Check that the API credentials are filled in.

    Raises:
        status.CredsInvalidException: If the client id or API key is empty.
    """
    missing = [
        name for name in ('client_id', 'api_key')
        if not str(getattr(credentials, name, '') or '').strip()
    ]
    if missing:
        raise status.CredsInvalidException(f'Missing required fields: {missing}.')


class CalendarClient(QtCore.QObject):
    """Authenticated access to Google Calendar events.

    Signals:
        authStateChanged (bool): Emitted when the signed-in state changes.
        readyChanged (bool): Emitted when the client is initialized or reset.
    """
    authStateChanged = QtCore.Signal(bool)
    readyChanged = QtCore.Signal(bool)

    def __init__(self, auth_manager: AuthManager,
                 initial_window_days: int = DEFAULT_INITIAL_WINDOW_DAYS,
                 fetch_retries: int = DEFAULT_FETCH_RETRIES,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.auth_manager = auth_manager
        self.initial_window_days = initial_window_days
        self.fetch_retries = fetch_retries

        self._credentials: Optional[Credentials] = None
        self._ready: bool = False
        self._authenticated: bool = False
        self._cached_service: Any = None

    def initialize(self, credentials: Credentials) -> bool:
        """Prepare the client with the user's API credentials.

        Args:
            credentials: Client id and API key (and client secret for the OAuth flow).

        Returns:
            bool: True once the client is ready.

        Raises:
            status.CredsInvalidException: If the credentials are incomplete.
        """
        validate_credentials(credentials)

        self.clear_service()
        self._credentials = credentials
        self._ready = True
        logging.info('Calendar client initialized.')
        self.readyChanged.emit(True)

        self._set_authenticated(self.auth_manager.has_credentials())
        return self._ready

    def reset(self) -> None:
        """Forget the API credentials and return to the uninitialized state."""
        self.clear_service()
        self._credentials = None
        if self._ready:
            self._ready = False
            self.readyChanged.emit(False)

    def is_ready(self) -> bool:
        return self._ready

    def is_authenticated(self) -> bool:
        return self._authenticated

    def _set_authenticated(self, value: bool) -> None:
        if value == self._authenticated:
            return
        self._authenticated = value
        logging.debug(f'Calendar authentication state changed: signed_in={value}')
        self.authStateChanged.emit(value)

    def sign_in(self) -> None:
        """Run the interactive OAuth flow and mark the client as signed in.

        Raises:
            status.ClientNotReadyException: If the client has not been initialized.
            status.NotAuthenticatedException: If the OAuth flow fails.
        """
        if not self._ready or self._credentials is None:
            raise status.ClientNotReadyException('Save the API credentials before signing in.')

        if not self.auth_manager.has_credentials():
            self.auth_manager.authenticate(self._credentials.client_config())
        self.clear_service()
        self._set_authenticated(True)

    def sign_out(self) -> None:
        """Remove the stored OAuth token and mark the client as signed out."""
        self.auth_manager.sign_out()
        self.clear_service()
        self._set_authenticated(False)

    def clear_service(self) -> None:
        """
        Clears the cached Calendar API client.
        """
        try:
            if self._cached_service:
                self._cached_service.close()
        except Exception as ex:
            logging.debug(f'Failed closing cached Calendar service client: {ex}')

        self._cached_service = None

    def get_service(self) -> Any:
        """
        Builds (or returns cached) Google Calendar service client.

        Returns:
            The Calendar API Resource.

        Raises:
            status.ClientNotReadyException: If the client has not been initialized.
            status.NotAuthenticatedException: If no usable OAuth token exists.
            status.ServiceUnavailableException: If the API client cannot be built.
        """
        if not self._ready or self._credentials is None:
            raise status.ClientNotReadyException

        try:
            creds = self.auth_manager.get_valid_credentials()
        except (AuthExpiredError, status.CredsInvalidException) as ex:
            self._set_authenticated(False)
            raise status.NotAuthenticatedException(str(ex)) from ex
        except status.NotAuthenticatedException:
            self._set_authenticated(False)
            raise

        if self._cached_service is not None:
            return self._cached_service

        try:
            service = build(
                'calendar', 'v3',
                credentials=creds,
                developerKey=self._credentials.api_key,
                cache_discovery=False,
            )
        except Exception as ex:
            raise status.ServiceUnavailableException(str(ex)) from ex

        logging.debug('Google Calendar service client created successfully.')
        self._cached_service = service
        return service

    def initial_time_min(self) -> Optional[str]:
        """Return the lower bound used before the first successful sync.

        Returns:
            Optional[str]: RFC 3339 timestamp, or None to fetch without a lower bound.
        """
        if self.initial_window_days <= 0:
            return None
        start = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=self.initial_window_days)
        return start.isoformat()

    def list_events_since(self, timestamp: Optional[str]) -> List[ExternalEvent]:
        """List events starting at or after a timestamp, in API order.

        Args:
            timestamp: ISO-8601 instant (the sync watermark), or None for the initial window.

        Returns:
            List[ExternalEvent]: All events across every result page.

        Raises:
            status.ClientNotReadyException: If the client has not been initialized.
            status.NotAuthenticatedException: If the user is not signed in.
            status.FetchFailedException: On HTTP, network, or TLS errors.
        """
        service = self.get_service()
        time_min = timestamp or self.initial_time_min()

        params: Dict[str, Any] = {
            'calendarId': CALENDAR_ID,
            'singleEvents': True,
            'orderBy': 'startTime',
            'showDeleted': False,
            'maxResults': MAX_RESULTS_PER_PAGE,
        }
        if time_min:
            params['timeMin'] = time_min

        logging.debug(f'Fetching calendar events since {time_min or "the beginning"}.')
        events: List[ExternalEvent] = []
        page_token: Optional[str] = None
        pages = 0
        try:
            while True:
                if page_token:
                    params['pageToken'] = page_token
                response: Dict[str, Any] = service.events().list(**params).execute(
                    num_retries=self.fetch_retries
                )
                pages += 1
                events.extend(ExternalEvent.from_api(item) for item in response.get('items', []))

                page_token = response.get('nextPageToken')
                if not page_token:
                    break
        except HttpError as ex:
            stat: Optional[int] = ex.resp.status if ex.resp is not None else None
            if stat == 401:
                self._set_authenticated(False)
            raise status.FetchFailedException(f'Calendar API error (HTTP {stat}): {ex}') from ex
        except google.auth.exceptions.RefreshError as ex:
            self._set_authenticated(False)
            raise status.FetchFailedException(f'Token refresh failed: {ex}') from ex
        except socket.timeout as ex:
            raise status.FetchFailedException(f'Timeout error fetching events: {ex}') from ex
        except ssl.SSLError as ex:
            raise status.FetchFailedException(f'SSL error fetching events: {ex}') from ex
        except (httplib2.HttpLib2Error, ConnectionError, OSError) as ex:
            raise status.FetchFailedException(f'Network error fetching events: {ex}') from ex

        logging.debug(f'Fetched {len(events)} event(s) in {pages} page(s).')
        return events
