"""
Standardized error models for Ward Assist Relay.

Protocol-level problems on the WebSocket (bad frames, capacity, timeouts) are
reported with these. Failures inside a response are not: they travel as an
"[ERROR] ..." token followed by the end marker.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from core.constants import MSG_TYPE_ERROR


class ErrorCode(str, Enum):
    """Application-specific error codes for categorization."""

    # WebSocket errors (6xxx)
    WS_MESSAGE_INVALID = "WS_6002"
    WS_MESSAGE_TOO_LARGE = "WS_6003"
    WS_TIMEOUT = "WS_6004"
    WS_CAPACITY = "WS_6005"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "INT_9001"


class WebSocketError(BaseModel):
    """Error format for WebSocket messages.

    Sent as a JSON message with type="error" over WebSocket connections.

    Example:
    {
        "type": "error",
        "code": "WS_6002",
        "message": "Unsupported message type: 'foo'",
        "request_id": "ws_abc123",
        "recoverable": true,
        "session_id": "5f0c..."
    }
    """

    type: str = MSG_TYPE_ERROR
    code: ErrorCode
    message: str
    request_id: str | None = None
    session_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    recoverable: bool = True  # Hint to client if reconnection might help
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for WebSocket JSON message."""
        return self.model_dump(mode="json", exclude_none=True)


__all__ = [
    "ErrorCode",
    "WebSocketError",
]
