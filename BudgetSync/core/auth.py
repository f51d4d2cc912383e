"""
Google OAuth2 authentication and credential management.

Provides the AuthManager that loads, refreshes, stores and removes the OAuth user
token used by the calendar client, and runs the installed-app OAuth flow on a
worker thread.
"""

import logging
import pathlib
import threading
import time
from typing import Any, Dict, List, Optional

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
import google_auth_oauthlib.flow
from PySide6 import QtCore

from ..status import status

DEFAULT_SCOPES: List[str] = ['https://www.googleapis.com/auth/calendar.readonly', ]
AUTH_TIMEOUT_SECONDS: int = 120


class AuthExpiredError(Exception):
    """Raised when credentials are missing or expired and require interactive sign-in."""
    pass


class AuthFlowWorker(QtCore.QThread):
    """
    Runs OAuth web flow in a background thread.

    Signals:
        resultReady (object): Emitted with credentials on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, flow: google_auth_oauthlib.flow.InstalledAppFlow, parent=None):
        super().__init__(parent)
        self.flow = flow
        self.creds = None

    def run(self):
        logging.debug(f'[Thread-{threading.get_ident()}] AuthFlowWorker.run: called at {time.time()}')
        try:
            self.creds = self.flow.run_local_server(port=0, open_browser=True)
            if not self.creds or not self.creds.token:
                self.errorOccurred.emit(RuntimeError('Authentication did not complete successfully.'))
            else:
                self.resultReady.emit(self.creds)
        except Exception as ex:
            logging.debug(f'[Thread-{threading.get_ident()}] AuthFlowWorker.run: exception: {ex}')
            self.errorOccurred.emit(ex)


class AuthManager:
    """Manages OAuth2 user credentials with thread-safe load and refresh.

    Args:
        creds_path: File the authorized-user token is stored in.
        scopes: OAuth scopes requested and required of cached tokens.
    """

    def __init__(self, creds_path: pathlib.Path, scopes: Optional[List[str]] = None):
        self.creds_path = pathlib.Path(creds_path)
        self.scopes: List[str] = scopes or DEFAULT_SCOPES
        self._lock = threading.Lock()
        self._creds: Optional[google.oauth2.credentials.Credentials] = None

    def has_credentials(self) -> bool:
        """Return True if credentials are usable without any interaction."""
        try:
            self.get_valid_credentials()
        except (AuthExpiredError, status.BaseStatusException):
            return False
        return True

    def get_valid_credentials(self) -> google.oauth2.credentials.Credentials:
        """
        Return valid credentials without any interaction.

        Raises:
            AuthExpiredError: if no credentials exist or a full interactive flow is required.
            status.NotAuthenticatedException: if an auto-refresh fails.
            status.CredsInvalidException: if stored credentials are corrupt.
        """
        with self._lock:
            if self._creds is None:
                if not self.creds_path.exists():
                    raise AuthExpiredError('No credentials found; interactive authentication required')
                try:
                    creds = google.oauth2.credentials.Credentials.from_authorized_user_file(
                        str(self.creds_path))
                except (ValueError, OSError) as ex:
                    # Corrupt token file: remove it so the next sign-in starts clean
                    self.creds_path.unlink(missing_ok=True)
                    raise status.CredsInvalidException('Failed to load stored OAuth token.') from ex

                if creds.scopes and not set(self.scopes).issubset(set(creds.scopes)):
                    logging.debug('Cached credentials have mismatched scopes. Re-authentication required.')
                    raise AuthExpiredError('Stored credentials do not cover the calendar scope')
                self._creds = creds

            if self._creds.expired or not self._creds.valid:
                if self._creds.refresh_token:
                    try:
                        self._creds.refresh(google.auth.transport.requests.Request())
                        self._save_creds(self._creds)
                    except google.auth.exceptions.GoogleAuthError as ex:
                        raise status.NotAuthenticatedException('Failed to auto-refresh credentials.') from ex
                else:
                    raise AuthExpiredError('Credentials expired; interactive authentication required')

            return self._creds

    def authenticate(self, client_config: Dict[str, Any],
                     timeout_seconds: int = AUTH_TIMEOUT_SECONDS) -> google.oauth2.credentials.Credentials:
        """
        Run the installed-app OAuth flow and store the resulting token.

        The browser flow runs on an AuthFlowWorker while a local event loop waits for
        the result or the timeout.

        Args:
            client_config: An ``installed`` client config.
            timeout_seconds: How long to wait for the user to finish in the browser.

        Returns:
            google.oauth2.credentials.Credentials: The authenticated credentials.

        Raises:
            status.NotAuthenticatedException: If authentication fails, times out or is cancelled.
            RuntimeError: If no Qt application instance exists.
        """
        if not QtCore.QCoreApplication.instance():
            raise RuntimeError('No Qt application instance; cannot perform interactive auth')

        logging.debug('Starting new OAuth flow...')
        flow = google_auth_oauthlib.flow.InstalledAppFlow.from_client_config(client_config, scopes=self.scopes)

        auth_worker = AuthFlowWorker(flow)
        result = {'creds': None, 'error': None}
        loop = QtCore.QEventLoop()

        auth_worker.resultReady.connect(lambda c: (result.update({'creds': c}), loop.quit()))
        auth_worker.errorOccurred.connect(lambda err: (result.update({'error': err}), loop.quit()))

        timer = QtCore.QTimer()
        timer.setSingleShot(True)
        timer.timeout.connect(loop.quit)
        timer.start(timeout_seconds * 1000)

        auth_worker.start()
        loop.exec()
        timer.stop()

        if result['creds'] is None and result['error'] is None and auth_worker.isRunning():
            auth_worker.terminate()
            auth_worker.wait()
            raise status.NotAuthenticatedException('OAuth flow timed out (no response from browser).')
        auth_worker.wait()

        if result['error']:
            raise status.NotAuthenticatedException(f'OAuth flow failed: {result["error"]}')
        creds = result['creds']
        if not creds:
            raise status.NotAuthenticatedException('Authentication was cancelled or timed out.')

        with self._lock:
            self._save_creds(creds)
            self._creds = creds
        logging.info('Signed in to Google.')
        return creds

    def _save_creds(self, creds: google.oauth2.credentials.Credentials) -> None:
        """Save OAuth2 credentials to the token file."""
        self.creds_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.creds_path, 'w', encoding='utf-8') as token_file:
            token_file.write(creds.to_json())
        logging.debug(f'Credentials saved to {self.creds_path}.')

    def sign_out(self) -> None:
        """
        Delete stored credentials to sign out the user.
        """
        with self._lock:
            self._creds = None
            if self.creds_path.exists():
                logging.debug(f'Deleting {self.creds_path}...')
                self.creds_path.unlink()
                logging.debug('Successfully signed out.')
            else:
                logging.debug('No credentials file found. No action taken.')
