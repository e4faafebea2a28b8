"""
Assistance request actions.

The two domain actions the model may trigger from the chat: file a new
assistance request for the patient, and list the patient's existing requests.
Both return a short text that is folded into the outgoing stream.
"""

from __future__ import annotations

from pydantic import ValidationError

from core.constants import (
    INITIAL_REQUEST_STATUS,
    MSG_NO_REQUESTS,
    MSG_REQUEST_CREATED,
    REQUEST_STATUSES,
    UNKNOWN_CONTEXT_VALUE,
)
from core.errors import InvalidArguments
from integrations.record_store import AssistanceRequestStore
from models.action_models import ActionName, AssistanceRequest, RequestFilter
from utils.logger import logger


async def create_assistance_request(
    store: AssistanceRequestStore,
    *,
    priority: str,
    description: str,
    department: str,
    patient_ref: str | None = None,
    room_label: str | None = None,
) -> str:
    """Insert one assistance request and confirm it.

    The status of a new request is always "pending". A missing patient or room
    is recorded as "Unknown" so staff can still see and route the request.

    Args:
        store: Record store to insert into
        priority: low, medium or high
        description: What the patient needs
        department: Department the request is routed to
        patient_ref: Patient identifier from the session context
        room_label: Room from the session context

    Returns:
        Confirmation text including the new request id

    Raises:
        InvalidArguments: If the fields do not form a valid request
        PersistenceError: If the store rejects the insert
    """
    try:
        request = AssistanceRequest(
            priority=priority,
            description=description,
            department=department,
            status=INITIAL_REQUEST_STATUS,
            patient=patient_ref or UNKNOWN_CONTEXT_VALUE,
            room=room_label or UNKNOWN_CONTEXT_VALUE,
        )
    except ValidationError as e:
        invalid = {str(err["loc"][0]): str(err.get("input")) for err in e.errors() if err.get("loc")}
        raise InvalidArguments(ActionName.CREATE_REQUEST.value, invalid=invalid) from e

    request_id = await store.insert(request)
    logger.info(
        f"Assistance request created: {request_id}",
        request_priority=request.priority,
        department=request.department,
    )
    return f"{MSG_REQUEST_CREATED} Reference: {request_id}"


async def query_assistance_requests(
    store: AssistanceRequestStore,
    *,
    patient_ref: str | None,
    status: str | None = None,
) -> str:
    """List a patient's assistance requests, optionally filtered by status.

    Records are listed in the order the store returns them.
    """
    if not patient_ref:
        raise InvalidArguments(ActionName.GET_PATIENT_REQUESTS.value, missing=["patientId"])
    if status is not None and status not in REQUEST_STATUSES:
        raise InvalidArguments(ActionName.GET_PATIENT_REQUESTS.value, invalid={"status": status})

    requests = await store.find(RequestFilter(patient=patient_ref, status=status))
    if not requests:
        return MSG_NO_REQUESTS
    return "\n".join(request.summary() for request in requests)
