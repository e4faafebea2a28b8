from __future__ import annotations

import asyncio
import contextlib
import time

from typing import Any

from fastapi import WebSocket

from api.websocket.errors import PEER_GONE_ERRORS, WSCloseCode, close_with_error
from models.error_models import ErrorCode
from utils.logger import logger


class WebSocketManager:
    """Track one WebSocket per relay session, with idle timeout and a connection limit."""

    def __init__(
        self,
        idle_timeout_seconds: float = 600.0,
        max_connections: int = 200,
    ) -> None:
        """Initialize the WebSocket manager.

        Args:
            idle_timeout_seconds: Close connections idle longer than this (default 10 min)
            max_connections: Maximum concurrent connections
        """
        self.connections: dict[str, WebSocket] = {}
        self.last_activity: dict[str, float] = {}
        self.idle_timeout = idle_timeout_seconds
        self.max_connections = max_connections
        self._lock = asyncio.Lock()
        self._send_locks: dict[str, asyncio.Lock] = {}
        self._idle_checker_task: asyncio.Task[None] | None = None
        self._shutting_down = False
        self._frames_sent = 0

    async def connect(self, websocket: WebSocket, session_id: str) -> bool:
        """Accept and register a connection.

        Returns:
            True if connection was accepted, False if rejected due to limits
        """
        async with self._lock:
            if self._shutting_down:
                logger.warning(f"Rejecting connection during shutdown for session {session_id}")
                return False

            if len(self.connections) >= self.max_connections:
                logger.warning(f"Rejecting connection: max connections ({self.max_connections}) reached")
                return False

            await websocket.accept()
            self.connections[session_id] = websocket
            self._send_locks[session_id] = asyncio.Lock()
            self.last_activity[session_id] = time.monotonic()

        logger.info(f"WebSocket connected for session {session_id} (total: {self.connection_count})")
        return True

    async def disconnect(self, session_id: str) -> None:
        """Forget a connection. Safe to call more than once."""
        async with self._lock:
            removed = self.connections.pop(session_id, None)
            self.last_activity.pop(session_id, None)
            self._send_locks.pop(session_id, None)

        if removed is not None:
            logger.info(f"WebSocket disconnected for session {session_id} (total: {self.connection_count})")

    async def touch(self, session_id: str) -> None:
        """Record inbound activity for a session."""
        async with self._lock:
            if session_id in self.last_activity:
                self.last_activity[session_id] = time.monotonic()

    def send_lock(self, session_id: str) -> asyncio.Lock | None:
        """Lock held while writing a frame to the session's socket."""
        return self._send_locks.get(session_id)

    async def send(self, session_id: str, message: dict[str, Any]) -> bool:
        """Send one JSON frame to a session's connection.

        Frames for one session are written one at a time.

        Returns:
            False if the session has no live connection; the frame is dropped
        """
        websocket = self.connections.get(session_id)
        send_lock = self._send_locks.get(session_id)
        if websocket is None or send_lock is None:
            return False

        try:
            async with send_lock:
                await websocket.send_json(message)
        except PEER_GONE_ERRORS as e:
            logger.debug(f"Send failed for session {session_id}, dropping connection: {e}")
            await self.disconnect(session_id)
            return False

        self._frames_sent += 1
        return True

    def is_connected(self, session_id: str) -> bool:
        return session_id in self.connections

    async def start_idle_checker(self) -> None:
        """Start background task to close idle connections."""
        if self._idle_checker_task is None:
            self._idle_checker_task = asyncio.create_task(self._check_idle_connections())
            logger.info(f"WebSocket idle checker started (timeout: {self.idle_timeout}s)")

    async def stop_idle_checker(self) -> None:
        """Stop the idle checker background task."""
        if self._idle_checker_task:
            self._idle_checker_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._idle_checker_task
            self._idle_checker_task = None
            logger.info("WebSocket idle checker stopped")

    async def _check_idle_connections(self) -> None:
        """Periodically check and close idle connections."""
        check_interval = min(60.0, self.idle_timeout / 2)
        while True:
            await asyncio.sleep(check_interval)
            await self._close_idle_connections()

    async def _close_idle_connections(self) -> None:
        """Close connections that have been idle too long."""
        now = time.monotonic()

        async with self._lock:
            to_close = [
                (session_id, self.connections[session_id])
                for session_id, last in self.last_activity.items()
                if now - last > self.idle_timeout and session_id in self.connections
            ]

        # Close outside the lock; the route's receive loop sees the close and cleans up
        for session_id, ws in to_close:
            logger.info(f"Closing idle WebSocket for session {session_id}")
            async with self._send_locks.get(session_id) or contextlib.nullcontext():
                await close_with_error(ws, code=ErrorCode.WS_TIMEOUT, message="Idle timeout", session_id=session_id)
            await self.disconnect(session_id)

    async def graceful_shutdown(self, timeout: float = 10.0) -> None:
        """Close every connection with GOING_AWAY.

        Args:
            timeout: Maximum time to wait for connections to close
        """
        self._shutting_down = True
        logger.info(f"Initiating graceful WebSocket shutdown (timeout: {timeout}s)")

        await self.stop_idle_checker()

        async with self._lock:
            all_connections = list(self.connections.items())

        async def close_connection(session_id: str, ws: WebSocket) -> None:
            with contextlib.suppress(*PEER_GONE_ERRORS):
                await ws.close(code=WSCloseCode.GOING_AWAY, reason="Server shutdown")
            await self.disconnect(session_id)

        if all_connections:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(close_connection(sid, ws) for sid, ws in all_connections)),
                    timeout=timeout,
                )
            except TimeoutError:
                logger.warning(f"Timeout closing {len(all_connections)} WebSocket connections")

        logger.info(f"WebSocket shutdown complete (closed {len(all_connections)} connections)")

    @property
    def connection_count(self) -> int:
        """Total number of active connections."""
        return len(self.connections)

    def get_stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        return {
            "total_connections": self.connection_count,
            "max_connections": self.max_connections,
            "idle_timeout": self.idle_timeout,
            "frames_sent": self._frames_sent,
            "shutting_down": self._shutting_down,
        }
