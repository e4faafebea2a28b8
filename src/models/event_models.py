"""
WebSocket frame models for Ward Assist Relay.
Validates inbound client frames and shapes outbound response frames.
"""

from __future__ import annotations

import json

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from core.constants import (
    FINISH_STOP,
    INBOUND_CONTEXT,
    INBOUND_INTERRUPT,
    INBOUND_MESSAGE,
    MSG_TYPE_END,
    MSG_TYPE_SESSION,
    MSG_TYPE_START,
    MSG_TYPE_TOKEN,
)

# ============================================================================
# Inbound
# ============================================================================


class MessageFrame(BaseModel):
    """A user message. Plain text frames are turned into one of these."""

    type: Literal["message"] = INBOUND_MESSAGE
    content: str

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message content cannot be empty")
        return v


class InterruptFrame(BaseModel):
    """Stop the response currently being streamed."""

    type: Literal["interrupt"] = INBOUND_INTERRUPT


class ContextFrame(BaseModel):
    """Update the ward context (patient, room) of the session."""

    type: Literal["context"] = INBOUND_CONTEXT
    patient_id: str | None = None
    room: str | None = None


InboundFrame = Annotated[MessageFrame | InterruptFrame | ContextFrame, Field(discriminator="type")]

_inbound_adapter: TypeAdapter[MessageFrame | InterruptFrame | ContextFrame] = TypeAdapter(InboundFrame)


class FrameError(ValueError):
    """An inbound frame could not be understood."""


def parse_inbound_frame(raw: str) -> MessageFrame | InterruptFrame | ContextFrame:
    """Parse one inbound text frame.

    A JSON object with a ``type`` key is a control frame; anything else is
    the text of a user message.

    Raises:
        FrameError: If a control frame is malformed or the message is empty
    """
    data: Any = None
    if raw.lstrip().startswith("{"):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = None

    try:
        if isinstance(data, dict) and "type" in data:
            return _inbound_adapter.validate_python(data)
        return MessageFrame(content=raw)
    except ValidationError as e:
        first = e.errors()[0]
        raise FrameError(first.get("msg", "Invalid frame")) from e


# ============================================================================
# Outbound
# ============================================================================


class _OutboundFrame(BaseModel):
    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


class SessionFrame(_OutboundFrame):
    type: Literal["session"] = MSG_TYPE_SESSION
    session_id: str


class StartFrame(_OutboundFrame):
    type: Literal["start"] = MSG_TYPE_START
    session_id: str


class TokenFrame(_OutboundFrame):
    type: Literal["token"] = MSG_TYPE_TOKEN
    content: str
    seq: int = Field(..., ge=0)


class EndFrame(_OutboundFrame):
    type: Literal["end"] = MSG_TYPE_END
    finish_reason: Literal["stop", "error", "interrupted"] = FINISH_STOP


__all__ = [
    "ContextFrame",
    "EndFrame",
    "FrameError",
    "InboundFrame",
    "InterruptFrame",
    "MessageFrame",
    "SessionFrame",
    "StartFrame",
    "TokenFrame",
    "parse_inbound_frame",
]
