"""
Error taxonomy shared by the HTTP API and the realtime gateway.

Every failure carries a stable machine-readable ``code``. The HTTP layer
renders it as ``{"error": {"code", "message", "status"}}``; the gateway
pushes it as a named error event to the originating connection.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

log = structlog.get_logger()

T = TypeVar("T")


class ChatError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "An error occurred"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "status": self.status_code}


class Unauthorized(ChatError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Authentication required"


class Forbidden(ChatError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "You don't have permission to perform this action"


class NotFound(ChatError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class InvalidInput(ChatError):
    status_code = 400
    code = "INVALID_INPUT"
    default_message = "Invalid input"


class Conflict(ChatError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Resource already exists"


class UpstreamUnavailable(ChatError):
    status_code = 503
    code = "UPSTREAM_UNAVAILABLE"
    default_message = "A backing service is unavailable"


# --- Messaging-specific failures ---


class ReceiverNotFound(NotFound):
    code = "RECEIVER_NOT_FOUND"
    default_message = "Receiver not found"


class GroupNotFound(NotFound):
    code = "GROUP_NOT_FOUND"
    default_message = "Group not found"


class CrossTenantDenied(Forbidden):
    code = "CROSS_TENANT_DENIED"
    default_message = "Sender and receiver do not share an organization"


class NotGroupMember(Forbidden):
    code = "NOT_GROUP_MEMBER"
    default_message = "You are not a member of this group"


async def run_with_timeout(awaitable: Awaitable[T], timeout: float, resource: str = "store") -> T:
    """Await a store/cache call, converting timeouts and connectivity errors to UpstreamUnavailable."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        log.warning("upstream.timeout", resource=resource, timeout=timeout)
        raise UpstreamUnavailable(f"{resource} timed out")
    except (OperationalError, InterfaceError, OSError) as exc:
        log.error("upstream.error", resource=resource, error=str(exc))
        raise UpstreamUnavailable(f"{resource} unavailable")


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = InvalidInput().to_dict()
    error["details"] = jsonable_encoder(exc.errors())
    return JSONResponse(status_code=InvalidInput.status_code, content={"error": error})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
