"""Status definitions and exceptions for BudgetSync.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions used by the store, the calendar client and the sync engine

Sync-related exceptions map onto the error taxonomy of the sync cycle:

    ============================================  ================
    Exception                                     Category
    ============================================  ================
    NotAuthenticatedException                     AuthError
    ClientNotReadyException                       AuthError
    FetchFailedException                          FetchError
    PersistenceException                          PersistenceError
    ColorMappingsNotConfiguredException           ConfigError
    ============================================  ================

"""
import enum
import logging
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    ConfigNotFound = enum.auto()
    ConfigInvalid = enum.auto()
    SettingsInvalid = enum.auto()
    ColorMappingsNotConfigured = enum.auto()

    # Authentication status
    CredsInvalid = enum.auto()
    NotAuthenticated = enum.auto()
    ClientNotReady = enum.auto()

    # Service status
    ServiceUnavailable = enum.auto()
    FetchFailed = enum.auto()

    # Storage status
    PersistenceFailed = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.ConfigNotFound: 'Could not find the application config.',
    Status.ConfigInvalid: 'The application config seems to be incomplete, or contains invalid values.',
    Status.SettingsInvalid: 'The settings contain invalid values. Please check the color mappings.',
    Status.ColorMappingsNotConfigured: 'No color mappings are configured. Add a color mapping to import events.',

    Status.CredsInvalid: 'Could not verify the Google API credentials. Please check the client id and API key.',
    Status.NotAuthenticated: 'Not signed in. Please sign in to your Google account.',
    Status.ClientNotReady: 'The calendar client is not initialized yet.',

    Status.ServiceUnavailable: 'Google Calendar service is unavailable. Please check your connection.',
    Status.FetchFailed: 'Could not fetch the calendar events. The sync will be retried.',

    Status.PersistenceFailed: 'Could not write to the local ledger.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in BudgetSync.

    Constructing the exception logs it and broadcasts ``signals.error`` so listeners
    can surface the problem. Subclasses marked ``silent`` are expected conditions
    (not signed in, nothing configured) and are only logged at debug level.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.
        silent (bool): Whether the error is expected and should not be broadcast.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus
    silent = False

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        if self.silent:
            logging.debug(exception_message)
            return

        logging.error(exception_message)

        from ..core.signals import signals
        signals.error.emit(message or self.status_message)


class ConfigNotFoundException(BaseStatusException):
    """Exception raised when the application config file cannot be found."""
    status = Status.ConfigNotFound


class ConfigInvalidException(BaseStatusException):
    """Exception raised when the application config is invalid or malformed."""
    status = Status.ConfigInvalid


class SettingsInvalidException(BaseStatusException):
    """Exception raised when user settings (color mappings) fail validation."""
    status = Status.SettingsInvalid


class ColorMappingsNotConfiguredException(BaseStatusException):
    """Raised when a sync is requested but no color mapping exists."""
    status = Status.ColorMappingsNotConfigured
    silent = True


class CredsInvalidException(BaseStatusException):
    """Exception raised when stored credentials are invalid or corrupt."""
    status = Status.CredsInvalid


class NotAuthenticatedException(BaseStatusException):
    """Exception raised when the user is not signed in with Google."""
    status = Status.NotAuthenticated
    silent = True


class ClientNotReadyException(BaseStatusException):
    """Exception raised when the calendar client has not been initialized."""
    status = Status.ClientNotReady
    silent = True


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when the Google Calendar service cannot be built."""
    status = Status.ServiceUnavailable


class FetchFailedException(BaseStatusException):
    """Exception raised when listing calendar events fails (network or API error)."""
    status = Status.FetchFailed


class PersistenceException(BaseStatusException):
    """Exception raised when a ledger store read or write fails."""
    status = Status.PersistenceFailed
