"""Map raw exceptions onto the closed :data:`~ledgersync.errors.AppError` taxonomy."""

import logging
import re
import sqlite3

import requests

from .connectors.hledger_client import (
    ApiNotSupportedError,
    AuthenticationRequiredError,
    HttpStatusError,
    MissingTokenError,
    NotFoundError,
    RetriesExhaustedError,
)
from .errors import (
    ApiNotSupported,
    AppError,
    AppException,
    AuthenticationError,
    ConstraintViolation,
    FileNotFound,
    NetworkError,
    PermissionDenied,
    QueryFailed,
    ServerError,
    SyncError,
    SyncException,
    SyncTimeoutError,
)

logger = logging.getLogger(__name__)

_CONSTRAINT_RE = re.compile(r"constraint failed: (\w+)")

DATABASE_KEYWORDS = ("database", "cursor", "sqlite")
PERMISSION_KEYWORDS = ("permission", "access", "write", "read")


def extract_constraint_table(message: str) -> str | None:
    """Return the table named in a SQLite constraint failure message.

    ``"UNIQUE constraint failed: profiles.uuid"`` yields ``"profiles"``.
    Returns None when the message does not name a table.
    """
    m = _CONSTRAINT_RE.search(message)
    if not m:
        return None
    return m.group(1)


def _mentions(message: str, keywords: tuple[str, ...]) -> bool:
    lowered = message.lower()
    return any(k in lowered for k in keywords)


class ErrorClassifier:
    """Deterministic, total mapping from exceptions to :data:`AppError` variants.

    Checks run from the most to the least specific category, so an exception
    matching several rules (``PermissionError`` is an ``OSError``) gets the
    narrowest variant.
    """

    def classify(self, exc: Exception) -> AppError:
        error = self._classify(exc)
        logger.debug(f"Classified {type(exc).__name__} as {error!r}")
        return error

    def _classify(self, exc: Exception) -> AppError:
        if isinstance(exc, AppException):
            return exc.error

        # Storage
        if isinstance(exc, sqlite3.IntegrityError):
            table = extract_constraint_table(str(exc))
            if table is not None:
                return ConstraintViolation(table=table)
            return QueryFailed(message=str(exc) or QueryFailed.message)
        if isinstance(exc, sqlite3.Error):
            return QueryFailed(message=str(exc) or QueryFailed.message)
        if isinstance(exc, RuntimeError) and _mentions(str(exc), DATABASE_KEYWORDS):
            return QueryFailed(message=str(exc))

        # Files
        if isinstance(exc, FileNotFoundError):
            return FileNotFound(path=exc.filename or str(exc))
        if isinstance(exc, PermissionError) and _mentions(
            str(exc), PERMISSION_KEYWORDS
        ):
            return PermissionDenied()

        # Transport
        if isinstance(exc, ApiNotSupportedError):
            return ApiNotSupported()
        if isinstance(exc, AuthenticationRequiredError):
            return AuthenticationError()
        if isinstance(exc, (HttpStatusError, NotFoundError)):
            return ServerError(http_code=exc.status_code)
        if isinstance(exc, (MissingTokenError, RetriesExhaustedError)):
            return NetworkError(message=str(exc))

        # Network
        if isinstance(exc, (requests.Timeout, TimeoutError)):
            return SyncTimeoutError()
        if isinstance(exc, (requests.RequestException, OSError)):
            return NetworkError(message=str(exc) or NetworkError.message)

        return NetworkError(message=str(exc) or type(exc).__name__)

    def to_exception(self, exc: Exception) -> AppException:
        """Classify ``exc`` and wrap the result in the matching exception type."""
        if isinstance(exc, AppException):
            return exc
        error = self.classify(exc)
        wrapped = SyncException(error) if isinstance(error, SyncError) else AppException(error)
        wrapped.__cause__ = exc
        return wrapped
