"""
Error kinds raised by the countries repositories.

The service never looks inside these: whatever a repository raises ends up
in `Failed(error)` as is. Cancellation is plain `asyncio.CancelledError` and
is never published to a subject.
"""

from typing import Optional


class CountriesError(Exception):
    """Base class for everything the repositories raise on purpose."""


class NetworkError(CountriesError):
    """Transport failure or non-2xx response from the countries API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecodingError(CountriesError):
    """The API answered, but not with something we can parse."""


class StorageError(CountriesError):
    """The local database failed to read or write."""
