"""
Tools Module - Domain Actions for Ward Assist Relay
===================================================

Actions the language model can trigger mid-conversation, either through a
structured tool call or a JSON call embedded in its text.

Modules:
    assistance: Create and query patient assistance requests
    registry: Data-driven action table and the derived tool definitions

Available Actions:
    - create_request: File an assistance request (priority, description, department)
    - get_patient_requests: List a patient's requests, optionally by status

Example:
    Executing an action directly::

        from integrations.record_store import InMemoryRequestStore
        from tools import create_assistance_request

        store = InMemoryRequestStore()
        text = await create_assistance_request(
            store,
            priority="high",
            description="chest pain",
            department="Cardiology",
            patient_ref="P1",
            room_label="A101",
        )
"""

from tools.assistance import create_assistance_request, query_assistance_requests
from tools.registry import ACTIONS, TOOLS, ActionSpec, get_action

__all__ = [
    "ACTIONS",
    "TOOLS",
    "ActionSpec",
    "create_assistance_request",
    "get_action",
    "query_assistance_requests",
]
