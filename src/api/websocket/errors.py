"""
WebSocket error frames and close codes for Ward Assist Relay.

Only protocol-level problems use these: frames the server cannot accept,
capacity, idle timeout. Failures while a response is streaming are reported
in-band as an "[ERROR]" token followed by the end marker.
"""

from __future__ import annotations

import asyncio
import contextlib
import time

from collections import deque
from collections.abc import Callable
from enum import IntEnum
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from api.middleware.request_context import get_request_id
from models.error_models import ErrorCode, WebSocketError
from utils.logger import logger

# Raised by Starlette/uvicorn when writing to a socket the peer already closed
PEER_GONE_ERRORS: tuple[type[BaseException], ...] = (WebSocketDisconnect, RuntimeError, ConnectionError)

# RFC 6455 limits the close reason to 123 bytes of UTF-8
MAX_CLOSE_REASON_BYTES = 123


class WSCloseCode(IntEnum):
    """Close codes sent by the relay (RFC 6455 plus the 4000-4999 application range)."""

    GOING_AWAY = 1001
    MESSAGE_TOO_BIG = 1009
    TRY_AGAIN_LATER = 1013

    IDLE_TIMEOUT = 4000
    TOO_MANY_ERRORS = 4429
    SERVER_ERROR = 4500


ERROR_CODE_TO_WS_CLOSE: dict[ErrorCode, WSCloseCode] = {
    ErrorCode.WS_CAPACITY: WSCloseCode.TRY_AGAIN_LATER,
    ErrorCode.WS_MESSAGE_TOO_LARGE: WSCloseCode.MESSAGE_TOO_BIG,
    ErrorCode.WS_MESSAGE_INVALID: WSCloseCode.TOO_MANY_ERRORS,
    ErrorCode.WS_TIMEOUT: WSCloseCode.IDLE_TIMEOUT,
    ErrorCode.INTERNAL_ERROR: WSCloseCode.SERVER_ERROR,
}


def _close_reason(message: str) -> str:
    return message.encode("utf-8")[:MAX_CLOSE_REASON_BYTES].decode("utf-8", errors="ignore")


async def send_ws_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    session_id: str | None = None,
    recoverable: bool = True,
    details: dict[str, Any] | None = None,
) -> bool:
    """Send an error frame. Returns False if the peer was already gone.

    Args:
        websocket: Active WebSocket connection
        code: Application error code
        message: Text shown to the client
        session_id: Session the frame belongs to
        recoverable: Whether the client can keep using the connection
        details: Extra machine-readable context
    """
    frame = WebSocketError(
        code=code,
        message=message,
        request_id=get_request_id(),
        session_id=session_id,
        recoverable=recoverable,
        details=details,
    ).to_dict()

    try:
        await websocket.send_json(frame)
    except PEER_GONE_ERRORS as e:
        logger.warning(f"Could not deliver {code.value} error frame: {e}", session_id=session_id)
        return False
    return True


async def close_with_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    session_id: str | None = None,
) -> None:
    """Send an unrecoverable error frame, then close with the mapped close code."""
    await send_ws_error(websocket, code=code, message=message, session_id=session_id, recoverable=False)

    close_code = ERROR_CODE_TO_WS_CLOSE.get(code, WSCloseCode.SERVER_ERROR)
    with contextlib.suppress(*PEER_GONE_ERRORS):
        await websocket.close(code=close_code, reason=_close_reason(message))


class WebSocketErrorHandler:
    """Answers rejected inbound frames and closes connections that keep sending them.

    Rejections are counted over a sliding window; reaching ``max_errors``
    within ``error_window_seconds`` closes the socket with TOO_MANY_ERRORS.
    When ``send_lock`` is given, frames are written while holding it so they
    never interleave with frames sent through the connection manager.
    """

    def __init__(
        self,
        websocket: WebSocket,
        session_id: str | None = None,
        max_errors: int = 5,
        error_window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        send_lock: asyncio.Lock | None = None,
    ):
        self.websocket = websocket
        self.session_id = session_id
        self.max_errors = max_errors
        self.error_window_seconds = error_window_seconds
        self._clock = clock
        self._send_lock = send_lock
        self._rejections: deque[float] = deque()

    @property
    def error_count(self) -> int:
        """Rejections still inside the window."""
        self._expire(self._clock())
        return len(self._rejections)

    def _expire(self, now: float) -> None:
        while self._rejections and now - self._rejections[0] > self.error_window_seconds:
            self._rejections.popleft()

    def _writing(self) -> contextlib.AbstractAsyncContextManager[Any]:
        return self._send_lock if self._send_lock is not None else contextlib.nullcontext()

    async def report(self, code: ErrorCode, message: str) -> bool:
        """Send a recoverable server-side error. Not counted against the client."""
        async with self._writing():
            return await send_ws_error(self.websocket, code=code, message=message, session_id=self.session_id)

    async def reject_frame(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Report a bad frame to the client.

        Returns:
            True if the connection stays open, False if it was closed
        """
        now = self._clock()
        self._expire(now)
        self._rejections.append(now)
        logger.warning(f"Rejected WebSocket frame: {code.value} {message}", session_id=self.session_id)

        if len(self._rejections) >= self.max_errors:
            logger.warning(
                f"Closing session {self.session_id}: {len(self._rejections)} rejected frames "
                f"within {self.error_window_seconds}s"
            )
            async with self._writing():
                await close_with_error(
                    self.websocket,
                    code=ErrorCode.WS_MESSAGE_INVALID,
                    message="Too many invalid messages, please reconnect",
                    session_id=self.session_id,
                )
            return False

        async with self._writing():
            await send_ws_error(
                self.websocket,
                code=code,
                message=message,
                session_id=self.session_id,
                details=details,
            )
        return True


__all__ = [
    "ERROR_CODE_TO_WS_CLOSE",
    "PEER_GONE_ERRORS",
    "WSCloseCode",
    "WebSocketErrorHandler",
    "close_with_error",
    "send_ws_error",
]
