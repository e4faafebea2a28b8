"""
Action registry for Ward Assist Relay.
Declares every action the model may trigger and derives the tool definitions
sent to the generation backend from the same table.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from core.constants import DEPARTMENTS, REQUEST_PRIORITIES, REQUEST_STATUSES
from integrations.record_store import AssistanceRequestStore
from models.action_models import ActionName, Primitive
from tools.assistance import create_assistance_request, query_assistance_requests

ActionExecutor = Callable[[AssistanceRequestStore, Mapping[str, Primitive]], Awaitable[str]]


def _text(value: Primitive) -> str | None:
    return None if value is None else str(value)


@dataclass(frozen=True)
class ActionSpec:
    """Schema and executor for one action.

    ``context_fields`` maps argument names to SessionContext attributes; the
    interpreter fills those arguments from the session when the model omits them.
    ``session_fields`` are never taken from the model: they always come from
    the session, and are not part of the tool schema.
    """

    name: ActionName
    description: str
    executor: ActionExecutor
    required: tuple[str, ...] = ()
    optional: tuple[str, ...] = ()
    enums: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    context_fields: Mapping[str, str] = field(default_factory=dict)
    session_fields: Mapping[str, str] = field(default_factory=dict)
    descriptions: Mapping[str, str] = field(default_factory=dict)

    @property
    def accepted(self) -> tuple[str, ...]:
        return self.required + self.optional

    def to_tool(self) -> dict[str, Any]:
        """OpenAI chat-completions tool definition."""
        properties: dict[str, Any] = {}
        for key in self.accepted:
            prop: dict[str, Any] = {"type": "string"}
            if key in self.descriptions:
                prop["description"] = self.descriptions[key]
            if key in self.enums:
                prop["enum"] = list(self.enums[key])
            properties[key] = prop

        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": list(self.required),
                },
            },
        }


async def _run_create_request(store: AssistanceRequestStore, args: Mapping[str, Primitive]) -> str:
    return await create_assistance_request(
        store,
        priority=str(args["priority"]),
        description=str(args["description"]),
        department=str(args["department"]),
        patient_ref=_text(args.get("patientId")),
        room_label=_text(args.get("room")),
    )


async def _run_get_patient_requests(store: AssistanceRequestStore, args: Mapping[str, Primitive]) -> str:
    return await query_assistance_requests(
        store,
        patient_ref=_text(args.get("patientId")),
        status=_text(args.get("status")),
    )


# Adding an action means adding an entry here
ACTIONS: dict[ActionName, ActionSpec] = {
    ActionName.CREATE_REQUEST: ActionSpec(
        name=ActionName.CREATE_REQUEST,
        description=(
            "Create an assistance request for the patient. Use when the patient asks for help, "
            "reports a symptom or needs something from staff."
        ),
        executor=_run_create_request,
        required=("priority", "description", "department"),
        enums={"priority": REQUEST_PRIORITIES, "department": DEPARTMENTS},
        session_fields={"patientId": "patient_id", "room": "room"},
        descriptions={
            "priority": "How urgent the request is",
            "description": "Short description of what the patient needs",
            "department": "Department that should handle the request",
        },
    ),
    ActionName.GET_PATIENT_REQUESTS: ActionSpec(
        name=ActionName.GET_PATIENT_REQUESTS,
        description="List the assistance requests of a patient, optionally filtered by status.",
        executor=_run_get_patient_requests,
        required=("patientId",),
        optional=("status",),
        enums={"status": REQUEST_STATUSES},
        context_fields={"patientId": "patient_id"},
        descriptions={
            "patientId": "ID of the patient",
            "status": "Only return requests in this status",
        },
    ),
}

# Tool definitions for the generation backend
TOOLS: list[dict[str, Any]] = [spec.to_tool() for spec in ACTIONS.values()]


def get_action(name: str) -> ActionSpec | None:
    """Look up an action by its wire name."""
    try:
        return ACTIONS[ActionName(name)]
    except ValueError:
        return None
