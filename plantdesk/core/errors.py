"""Error hierarchy of the ticket engine and its HTTP mapping."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TicketEngineError(RuntimeError):
    """Base error raised by the ticket engine."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "ticket_error"


class TicketNotFoundError(TicketEngineError):
    """Raised when a ticket does not exist or is outside the actor's scope."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"Ticket '{ticket_id}' not found")
        self.ticket_id = ticket_id


class TicketForbiddenError(TicketEngineError):
    """Raised when the actor lacks the permission for an operation."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class InvalidTransitionError(TicketEngineError):
    """Raised when a status or level change is not allowed from the current state."""

    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class TicketAlreadyInStateError(InvalidTransitionError):
    """Raised when a status change targets the status the ticket already has."""

    code = "already_in_state"


class TicketValidationError(TicketEngineError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"


class TicketConflictError(TicketEngineError):
    """Raised when a concurrent writer changed the ticket first."""

    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class InboxEntryNotFoundError(TicketEngineError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Notification '{entry_id}' not found")
        self.entry_id = entry_id


class DeliveryDegradedError(TicketEngineError):
    """Raised when a realtime push could not reach every open connection.

    Never surfaced to callers; the fanout logs it and the inbox keeps the entry.
    """

    code = "delivery_degraded"

    def __init__(self, message: str, *, failed: int = 0, timed_out: int = 0) -> None:
        super().__init__(message)
        self.failed = failed
        self.timed_out = timed_out


async def ticket_engine_error_handler(request: Request, exc: TicketEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Ticket engine failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TicketEngineError, ticket_engine_error_handler)


__all__ = [
    "DeliveryDegradedError",
    "InboxEntryNotFoundError",
    "InvalidTransitionError",
    "TicketAlreadyInStateError",
    "TicketConflictError",
    "TicketEngineError",
    "TicketForbiddenError",
    "TicketNotFoundError",
    "TicketValidationError",
    "register_exception_handlers",
]
