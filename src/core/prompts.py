"""
System prompts for Ward Assist Relay.
Centralizes the instructions sent with every generation call.
"""

from __future__ import annotations

from core.constants import DEPARTMENTS, REQUEST_PRIORITIES, REQUEST_STATUSES
from models.session_models import SessionContext

SYSTEM_PROMPT = "You are a helpful hospital assistant for admitted patients."

# Models without native tool calling are told to emit the call as bare JSON;
# the relay recognises both forms.
ACTION_INSTRUCTIONS = f"""

You can act on the patient's behalf with these actions:

- create_request: file an assistance request for ward staff.
  Arguments: priority ({", ".join(REQUEST_PRIORITIES)}), description, department (one of: {", ".join(DEPARTMENTS)}).
- get_patient_requests: list the patient's assistance requests.
  Arguments: patientId, optional status ({", ".join(REQUEST_STATUSES)}).

Use the provided tools when available. Otherwise reply with only a JSON object such as
{{"name": "create_request", "arguments": {{"priority": "high", "description": "chest pain", "department": "Cardiology"}}}}
and nothing else in that message. Never invent request ids or request lists; always use an action to look them up.
Keep answers short, calm and clear. For emergencies, tell the patient to press the call button."""


def build_system_prompt(context: SessionContext | None = None) -> str:
    """Full system prompt for one generation call, including the ward context when known."""
    prompt = SYSTEM_PROMPT + ACTION_INSTRUCTIONS

    if context is None:
        return prompt

    known = []
    if context.patient_id:
        known.append(f"patient ID {context.patient_id}")
    if context.room:
        known.append(f"room {context.room}")
    if known:
        prompt += f"\n\nYou are speaking with the patient in {' and '.join(known)}."
    return prompt
