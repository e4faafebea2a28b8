"""
Session models for Ward Assist Relay.
Provides the per-connection conversation state owned by the session registry.
"""

from __future__ import annotations

import asyncio

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant"]


class Turn(BaseModel):
    """One committed message in a conversation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    def to_message(self) -> dict[str, str]:
        """Chat-completions message dict."""
        return {"role": self.role, "content": self.content}


class StreamFragment(BaseModel):
    """A piece of generated text tagged with its session and sequence position."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    seq: int = Field(..., ge=0)
    text: str


class SessionContext(BaseModel):
    """Last-known ward context, used to fill arguments the model leaves out."""

    patient_id: str | None = None
    room: str | None = None


@dataclass
class Session:
    """Server-side state for one live connection.

    Only the SessionRegistry holds Session objects; other components receive
    copies of the history and context for the duration of one call.
    """

    session_id: str
    context: SessionContext = field(default_factory=SessionContext)
    turns: list[Turn] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    next_seq: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def turn_count(self) -> int:
        return len(self.turns)
