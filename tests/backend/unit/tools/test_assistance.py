"""Tests for the assistance request actions."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest

from core.constants import MSG_NO_REQUESTS, MSG_REQUEST_CREATED
from core.errors import InvalidArguments, PersistenceError
from integrations.record_store import InMemoryRequestStore
from models.action_models import AssistanceRequest
from tools.assistance import create_assistance_request, query_assistance_requests


class TestCreateAssistanceRequest:
    """Tests for create_assistance_request."""

    @pytest.mark.asyncio
    async def test_creates_pending_request(self) -> None:
        store = InMemoryRequestStore()

        result = await create_assistance_request(
            store,
            priority="high",
            description="chest pain",
            department="Cardiology",
            patient_ref="P1",
            room_label="12B",
        )

        record = store.records[0]
        assert result == f"{MSG_REQUEST_CREATED} Reference: {record.id}"
        assert record.status == "pending"
        assert (record.patient, record.room) == ("P1", "12B")

    @pytest.mark.asyncio
    async def test_unknown_context_recorded_as_unknown(self) -> None:
        store = InMemoryRequestStore()

        await create_assistance_request(store, priority="low", description="tea", department="Geriatrics")

        assert store.records[0].patient == "Unknown"
        assert store.records[0].room == "Unknown"

    @pytest.mark.asyncio
    async def test_invalid_department(self) -> None:
        store = InMemoryRequestStore()

        with pytest.raises(InvalidArguments) as exc_info:
            await create_assistance_request(store, priority="low", description="x", department="Cafeteria")

        assert exc_info.value.invalid == {"department": "Cafeteria"}
        assert store.records == []

    @pytest.mark.asyncio
    async def test_empty_description(self) -> None:
        with pytest.raises(InvalidArguments) as exc_info:
            await create_assistance_request(InMemoryRequestStore(), priority="low", description="", department="Surgery")

        assert "description" in exc_info.value.invalid

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self) -> None:
        store = Mock()
        store.insert = AsyncMock(side_effect=PersistenceError("down"))

        with pytest.raises(PersistenceError):
            await create_assistance_request(store, priority="low", description="x", department="Surgery")


class TestQueryAssistanceRequests:
    """Tests for query_assistance_requests."""

    @pytest.fixture
    def store(self) -> InMemoryRequestStore:
        def req(patient: str, description: str, status: str = "pending", priority: str = "low") -> AssistanceRequest:
            return AssistanceRequest(
                priority=priority,
                description=description,
                department="Surgery",
                status=status,
                patient=patient,
                room="3",
            )

        return InMemoryRequestStore(
            [
                req("P1", "pillow"),
                req("P2", "not mine"),
                req("P1", "dressing", status="completed", priority="critical"),
                req("P1", "juice"),
            ]
        )

    @pytest.mark.asyncio
    async def test_lists_patient_requests_in_order(self, store: InMemoryRequestStore) -> None:
        result = await query_assistance_requests(store, patient_ref="P1")

        assert result.splitlines() == [
            "low: pillow [pending, Surgery]",
            "critical: dressing [completed, Surgery]",
            "low: juice [pending, Surgery]",
        ]

    @pytest.mark.asyncio
    async def test_status_filter(self, store: InMemoryRequestStore) -> None:
        result = await query_assistance_requests(store, patient_ref="P1", status="completed")

        assert result == "critical: dressing [completed, Surgery]"

    @pytest.mark.asyncio
    async def test_no_matches(self, store: InMemoryRequestStore) -> None:
        assert await query_assistance_requests(store, patient_ref="P404") == MSG_NO_REQUESTS

    @pytest.mark.asyncio
    async def test_patient_required(self, store: InMemoryRequestStore) -> None:
        with pytest.raises(InvalidArguments) as exc_info:
            await query_assistance_requests(store, patient_ref=None)

        assert exc_info.value.missing == ["patientId"]

    @pytest.mark.asyncio
    async def test_unknown_status(self, store: InMemoryRequestStore) -> None:
        with pytest.raises(InvalidArguments) as exc_info:
            await query_assistance_requests(store, patient_ref="P1", status="lost")

        assert exc_info.value.invalid == {"status": "lost"}
