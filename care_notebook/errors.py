"""
Closed set of failures raised at the persistence boundary.

Each variant carries the HTTP status and the message shown to the user, so
callers branch on the type instead of on message text.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager


class NotebookError(Exception):
    code = "unknown"
    status_code = 500
    user_message = "Something went wrong. Please try again."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.user_message
        super().__init__(self.detail)


class ValidationFailed(NotebookError):
    code = "validation_failed"
    status_code = 400

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class NotFound(NotebookError):
    code = "not_found"
    status_code = 404
    user_message = "Not found."


class Conflict(NotebookError):
    code = "conflict"
    status_code = 409
    user_message = (
        "This notebook changed since you last loaded it. "
        "Refresh and try again."
    )


class QuotaExceeded(NotebookError):
    code = "quota_exceeded"
    status_code = 507
    user_message = (
        "Storage quota exceeded. Please try again later or contact support."
    )


class Cancelled(NotebookError):
    code = "cancelled"
    status_code = 499
    user_message = "Request cancelled."


class Unknown(NotebookError):
    pass


def from_sqlite_error(exc: sqlite3.Error) -> NotebookError:
    # extended result codes keep the primary code in the low byte
    code = getattr(exc, "sqlite_errorcode", None)
    primary = code & 0xFF if code is not None else None
    if primary == sqlite3.SQLITE_FULL:
        return QuotaExceeded()
    if primary == sqlite3.SQLITE_INTERRUPT:
        return Cancelled()
    return Unknown(str(exc))


@contextmanager
def sqlite_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise from_sqlite_error(exc) from exc
