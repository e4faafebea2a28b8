"""
Cancellation token for interrupting an in-flight response.

The chat route creates one token per inbound message and hands it to the
relay; an "interrupt" frame cancels it. Disconnects do not go through the
token: they cancel the worker task directly.
"""

from __future__ import annotations

import asyncio
import contextlib
import time

from collections.abc import Callable

from utils.logger import logger

CancelCallback = Callable[[], None]


class CancellationToken:
    """One-shot interrupt signal for one response.

    Usage:
        token = CancellationToken()

        # Relay, around the generation task:
        token.on_cancel(pump.cancel)

        # Connection handler, on {"type": "interrupt"}:
        await token.cancel("client interrupt")
    """

    __slots__ = ("_callbacks", "_lock", "cancel_reason", "cancelled_at")

    def __init__(self) -> None:
        self._callbacks: list[CancelCallback] = []
        self._lock = asyncio.Lock()
        self.cancel_reason: str | None = None
        self.cancelled_at: float | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    async def cancel(self, reason: str | None = None) -> bool:
        """Fire the token. Returns False if it had already fired."""
        async with self._lock:
            if self.is_cancelled:
                return False
            self.cancel_reason = reason
            self.cancelled_at = time.monotonic()
            pending, self._callbacks = self._callbacks, []

        for callback in pending:
            self._run(callback)
        return True

    def on_cancel(self, callback: CancelCallback) -> CancelCallback:
        """Register a callback. A token that already fired runs it immediately."""
        if self.is_cancelled:
            self._run(callback)
        else:
            self._callbacks.append(callback)
        return callback

    def remove_callback(self, callback: CancelCallback) -> None:
        with contextlib.suppress(ValueError):
            self._callbacks.remove(callback)

    @staticmethod
    def _run(callback: CancelCallback) -> None:
        try:
            callback()
        except Exception as e:
            logger.warning(f"Interrupt callback {callback!r} failed: {e}")


__all__ = ["CancelCallback", "CancellationToken"]
