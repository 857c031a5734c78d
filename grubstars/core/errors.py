"""Exception taxonomy shared by adapters, the indexer and the storage layer."""

from typing import Optional


class ConfigurationError(RuntimeError):
    """Raised when no directory adapter is usable or mandatory config is missing."""


class AdapterError(RuntimeError):
    """Raised when a directory returns an error or cannot be reached."""

    def __init__(self, message: str, *, source: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.source = source
        self.status = status


class AuthenticationError(AdapterError):
    """Raised when a directory rejects our credentials."""


class QuotaExceededError(AdapterError):
    """Raised when a directory's request budget is exhausted, remotely or locally."""

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        status: Optional[int] = None,
        limit: Optional[int] = None,
        current_count: Optional[int] = None,
    ) -> None:
        super().__init__(message, source=source, status=status)
        self.limit = limit
        self.current_count = current_count


class DetailFetchError(AdapterError):
    """Raised when enriching a single business with its full detail fails."""


class PersistenceError(RuntimeError):
    """Raised when a database operation fails; the transaction has been rolled back."""
