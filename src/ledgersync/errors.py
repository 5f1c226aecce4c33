"""Closed error taxonomy surfaced by ``send`` and ``sync``.

Every failure leaving the engine is exactly one of the variants below,
wrapped in an :class:`AppException`. Variants are built by
:class:`ledgersync.classifier.ErrorClassifier`; other code raises ordinary
exceptions and lets the classifier tag them at the boundary.
"""

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Database errors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QueryFailed:
    message: str = "Database query failed"


@dataclass(frozen=True)
class ConstraintViolation:
    table: str

    @property
    def message(self) -> str:
        return f"Constraint violation in table {self.table}"


# ---------------------------------------------------------------------------
# File errors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileNotFound:
    path: str

    @property
    def message(self) -> str:
        return f"File not found: {self.path}"


@dataclass(frozen=True)
class PermissionDenied:
    message: str = "Permission denied"


# ---------------------------------------------------------------------------
# Sync errors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NetworkError:
    message: str = "Network error"


@dataclass(frozen=True)
class SyncTimeoutError:
    message: str = "Server did not respond in time"


@dataclass(frozen=True)
class AuthenticationError:
    message: str = "Authentication failed"


@dataclass(frozen=True)
class ServerError:
    http_code: int

    @property
    def message(self) -> str:
        return f"Server returned HTTP {self.http_code}"


@dataclass(frozen=True)
class ApiNotSupported:
    message: str = "Server does not support this API version"


DatabaseError = QueryFailed | ConstraintViolation
FileError = FileNotFound | PermissionDenied
SyncError = (
    NetworkError | SyncTimeoutError | AuthenticationError | ServerError | ApiNotSupported
)
AppError = DatabaseError | FileError | SyncError


class AppException(Exception):
    """Carries exactly one tagged :data:`AppError`."""

    def __init__(self, error: AppError):
        super().__init__(error.message)
        self.error = error


class SyncException(AppException):
    """An :class:`AppException` whose error is a :data:`SyncError` variant."""

    def __init__(self, error: SyncError):
        if not isinstance(error, SyncError):
            raise TypeError(f"Not a sync error: {error!r}")
        super().__init__(error)


class ProfileNotSavedError(ValueError):
    """Operation requires a profile that has been saved by the profile store."""
