"""
Action models for Ward Assist Relay.

FunctionCall and the ParseResult variant describe what the model asked for;
AssistanceRequest is the record shape exchanged with the external store.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.constants import DEPARTMENTS, RECORD_PRIORITIES, REQUEST_STATUSES

Primitive = str | int | float | bool | None


class ActionName(str, Enum):
    """Actions the interpreter is allowed to execute."""

    CREATE_REQUEST = "create_request"
    GET_PATIENT_REQUESTS = "get_patient_requests"


class ToolCallPayload(BaseModel):
    """A structured tool call assembled from streamed backend deltas.

    ``arguments`` is the raw JSON text exactly as the backend produced it.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    arguments: str = ""
    call_id: str | None = None


class FunctionCall(BaseModel):
    """A recognised call: action name plus primitive arguments."""

    model_config = ConfigDict(frozen=True)

    name: str
    arguments: dict[str, Primitive] = Field(default_factory=dict)


class PlainText(BaseModel):
    """Parse result: the candidate was ordinary text."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class Call(BaseModel):
    """Parse result: the candidate encodes a function call."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["call"] = "call"
    call: FunctionCall


ParseResult = PlainText | Call


class AssistanceRequest(BaseModel):
    """A patient assistance request as held by the record store."""

    id: str | None = None
    priority: str
    description: str = Field(..., min_length=1)
    department: str
    status: str = "pending"
    patient: str
    room: str
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: str) -> str:
        if v not in RECORD_PRIORITIES:
            raise ValueError(f"priority must be one of {list(RECORD_PRIORITIES)}")
        return v

    @field_validator("department")
    @classmethod
    def validate_department(cls, v: str) -> str:
        if v not in DEPARTMENTS:
            raise ValueError(f"department must be one of {list(DEPARTMENTS)}")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in REQUEST_STATUSES:
            raise ValueError(f"status must be one of {list(REQUEST_STATUSES)}")
        return v

    def summary(self) -> str:
        """One line for the chat transcript."""
        return f"{self.priority}: {self.description} [{self.status}, {self.department}]"


class RequestFilter(BaseModel):
    """Filter passed to the record store's find()."""

    patient: str
    status: str | None = None

    def matches(self, request: AssistanceRequest) -> bool:
        if request.patient != self.patient:
            return False
        return self.status is None or request.status == self.status

    def as_query(self) -> dict[str, Any]:
        query: dict[str, Any] = {"patient": self.patient}
        if self.status is not None:
            query["status"] = self.status
        return query
