"""Error taxonomy shared by the database layer, services, and API.

Every error raised on purpose by the application derives from
``RestorationError`` and carries the HTTP status it should be reported with.
Nothing here is retried: errors propagate to the request layer, which rolls
back the transaction, releases the connection, and renders the response
through the handlers installed in ``restoration.main``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class RestorationError(Exception):
    """Base class for application errors.

    Attributes:
        message: Human readable reason.
        errors: Optional extra details (validation messages, causes).
        status_code: HTTP status used when the error reaches a client.
    """

    status_code = 500

    def __init__(self, message: str, errors: Sequence[object] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.errors = list(errors)


class NotOpen(RestorationError):
    """An operation needed an open connection."""

    def __init__(self, message: str = "DBConnection is not open") -> None:
        super().__init__(message)


class ConnectionUnavailable(RestorationError):
    """No pooled client could be handed out."""

    status_code = 503


class GeneralError(RestorationError):
    pass


class QueryExecutionError(RestorationError):
    """A statement failed; the driver exception is kept as ``__cause__``."""


class BadRequest(RestorationError):
    status_code = 400
