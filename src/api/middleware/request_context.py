"""
Request context for Ward Assist Relay.

A ContextVar carries the current request (HTTP) or connection (WebSocket)
through the call stack, so every log record can be stamped with its ids
without passing them around. Tasks started while a context is bound inherit
it; the relay worker for a connection logs under the connection's id.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import Any, Literal

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

ContextKind = Literal["http", "websocket"]

ID_PREFIXES: dict[ContextKind, str] = {"http": "req_", "websocket": "ws_"}
REQUEST_ID_HEADER = "X-Request-ID"

_current: ContextVar[RequestContext | None] = ContextVar("ward_request_context", default=None)


@dataclass
class RequestContext:
    """Ids and timing for one HTTP request or one WebSocket connection."""

    request_id: str
    kind: ContextKind = "http"
    path: str = ""
    client_ip: str | None = None
    session_id: str | None = None
    room: str | None = None
    messages: int = 0
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def to_log_context(self) -> dict[str, Any]:
        """Extras merged into every log record written under this context."""
        ctx: dict[str, Any] = {
            "request_id": self.request_id,
            "channel": self.kind,
            "path": self.path,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        if self.client_ip:
            ctx["client_ip"] = self.client_ip
        if self.session_id:
            ctx["session_id"] = self.session_id
        if self.room:
            ctx["room"] = self.room
        if self.kind == "websocket":
            ctx["messages"] = self.messages
        return ctx


def new_request_id(kind: ContextKind = "http") -> str:
    """Prefix for the channel plus 16 hex characters."""
    return f"{ID_PREFIXES[kind]}{secrets.token_hex(8)}"


def get_request_context() -> RequestContext | None:
    return _current.get()


def get_request_id() -> str | None:
    ctx = _current.get()
    return ctx.request_id if ctx else None


def set_request_context(context: RequestContext) -> Token[RequestContext | None]:
    return _current.set(context)


def clear_request_context(token: Token[RequestContext | None] | None = None) -> None:
    """Restore the previous context when given the token from set_request_context, else unbind."""
    if token is not None:
        _current.reset(token)
    else:
        _current.set(None)


def note_ward_context(room: str | None) -> None:
    """Record the room a connection now reports, so later records carry it."""
    ctx = _current.get()
    if ctx is not None and room:
        ctx.room = room


def note_message() -> int:
    """Count one inbound chat message on the current connection."""
    ctx = _current.get()
    if ctx is None:
        return 0
    ctx.messages += 1
    return ctx.messages


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a context to each HTTP request and echo its id and duration."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or new_request_id("http"),
            path=request.url.path,
            client_ip=_client_ip(request),
        )
        token = set_request_context(context)
        try:
            response = await call_next(request)
        finally:
            clear_request_context(token)

        response.headers[REQUEST_ID_HEADER] = context.request_id
        response.headers["X-Response-Time"] = f"{context.elapsed_ms:.2f}ms"
        return response


def create_websocket_context(
    session_id: str,
    client_ip: str | None = None,
    room: str | None = None,
    path: str = "/ws/chat",
) -> RequestContext:
    """Bind the context for one WebSocket connection in the current task."""
    context = RequestContext(
        request_id=new_request_id("websocket"),
        kind="websocket",
        path=path,
        client_ip=client_ip,
        session_id=session_id,
        room=room,
    )
    set_request_context(context)
    return context


__all__ = [
    "REQUEST_ID_HEADER",
    "RequestContext",
    "RequestContextMiddleware",
    "clear_request_context",
    "create_websocket_context",
    "get_request_context",
    "get_request_id",
    "new_request_id",
    "note_message",
    "note_ward_context",
    "set_request_context",
]
