"""WebSocket utilities for Ward Assist Relay.

Provides connection management, cancellation tokens, and error utilities.
"""

from __future__ import annotations

from api.websocket.errors import WSCloseCode, close_with_error, send_ws_error
from api.websocket.manager import WebSocketManager
from api.websocket.task_manager import CancellationToken

__all__ = [
    # Task cancellation
    "CancellationToken",
    # Error handling
    "WSCloseCode",
    # Connection management
    "WebSocketManager",
    "close_with_error",
    "send_ws_error",
]
