"""
Relay error taxonomy.

Every failure below the stream relay is one of these. Each carries a
``user_message`` that is safe to show the client; the exception text itself
may contain backend internals and is only logged.
"""

from __future__ import annotations

from collections.abc import Iterable

from core.constants import (
    ERROR_BACKEND_UNAVAILABLE,
    ERROR_STREAM_INTERRUPTED,
    ERROR_STREAM_TIMEOUT,
    ERROR_UNEXPECTED,
    MSG_ACTION_FAILED,
)


class RelayError(Exception):
    """Base exception for relay operations."""

    user_message: str = ERROR_UNEXPECTED

    def __init__(self, message: str = "", *, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class UnknownSession(RelayError):
    """Raised when a session id is not registered."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Unknown session: {session_id}")
        self.session_id = session_id


class BackendUnavailable(RelayError):
    """The generation backend produced nothing: unreachable, refusing, or silent."""

    user_message = ERROR_BACKEND_UNAVAILABLE


class _PartialStreamError(RelayError):
    """Stream failure after some text may already have been delivered."""

    def __init__(self, message: str = "", *, partial_text: str = "") -> None:
        super().__init__(message)
        self.partial_text = partial_text


class StreamTimeout(_PartialStreamError):
    """The per-call deadline expired while the stream was still open."""

    user_message = ERROR_STREAM_TIMEOUT


class StreamError(_PartialStreamError):
    """The backend disconnected or failed mid-stream."""

    user_message = ERROR_STREAM_INTERRUPTED


class UnknownAction(RelayError):
    """The model asked for an action that is not in the action table."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown action: {name!r}", user_message=f"I don't know how to perform '{name}'.")
        self.name = name


class InvalidArguments(RelayError):
    """Arguments for an action are missing or outside their allowed values."""

    def __init__(
        self,
        action: str,
        missing: Iterable[str] = (),
        invalid: dict[str, str] | None = None,
    ) -> None:
        self.action = action
        self.missing = sorted(missing)
        self.invalid = dict(invalid or {})

        parts = []
        if self.missing:
            parts.append(f"missing {', '.join(self.missing)}")
        if self.invalid:
            parts.append("invalid " + ", ".join(f"{k} ({v})" for k, v in sorted(self.invalid.items())))
        detail = "; ".join(parts) or "invalid arguments"

        super().__init__(
            f"Invalid arguments for {action}: {detail}",
            user_message=f"I couldn't run {action}: {detail}.",
        )


class PersistenceError(RelayError):
    """The record store failed to complete an insert or query."""

    user_message = MSG_ACTION_FAILED


__all__ = [
    "BackendUnavailable",
    "InvalidArguments",
    "PersistenceError",
    "RelayError",
    "StreamError",
    "StreamTimeout",
    "UnknownAction",
    "UnknownSession",
]
