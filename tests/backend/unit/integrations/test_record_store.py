"""Tests for the assistance request store adapters."""

from __future__ import annotations

import uuid

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from core.errors import PersistenceError
from integrations.record_store import (
    ASSISTANCE_REQUESTS_DDL,
    AssistanceRequestStore,
    InMemoryRequestStore,
    PostgresRequestStore,
)
from models.action_models import AssistanceRequest, RequestFilter


def make_request(patient: str = "P1", status: str = "pending", description: str = "water") -> AssistanceRequest:
    return AssistanceRequest(
        priority="low",
        description=description,
        department="Surgery",
        status=status,
        patient=patient,
        room="3",
    )


@pytest.fixture
def mock_conn() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def mock_pool(mock_conn: AsyncMock) -> MagicMock:
    pool = MagicMock()
    mock_ctx = AsyncMock()
    mock_ctx.__aenter__.return_value = mock_conn
    mock_ctx.__aexit__.return_value = None
    pool.acquire.return_value = mock_ctx
    return pool


class TestInMemoryRequestStore:
    """Tests for the process-local store."""

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self) -> None:
        store = InMemoryRequestStore()

        request_id = await store.insert(make_request())

        assert request_id
        assert store.records[0].id == request_id

    @pytest.mark.asyncio
    async def test_find_filters_and_keeps_order(self) -> None:
        store = InMemoryRequestStore()
        await store.insert(make_request("P1", description="first"))
        await store.insert(make_request("P2", description="other"))
        await store.insert(make_request("P1", status="completed", description="second"))
        await store.insert(make_request("P1", description="third"))

        everything = await store.find(RequestFilter(patient="P1"))
        pending = await store.find(RequestFilter(patient="P1", status="pending"))

        assert [r.description for r in everything] == ["first", "second", "third"]
        assert [r.description for r in pending] == ["first", "third"]

    @pytest.mark.asyncio
    async def test_records_is_a_copy(self) -> None:
        store = InMemoryRequestStore([make_request()])

        store.records.clear()

        assert len(store.records) == 1

    @pytest.mark.asyncio
    async def test_health(self) -> None:
        store = InMemoryRequestStore([make_request()])

        assert await store.health() == {"backend": "memory", "healthy": True, "records": 1}

    def test_satisfies_protocol(self, mock_pool: MagicMock) -> None:
        assert isinstance(InMemoryRequestStore(), AssistanceRequestStore)
        assert isinstance(PostgresRequestStore(mock_pool), AssistanceRequestStore)


class TestPostgresRequestStore:
    """Tests for the asyncpg-backed store, with a mocked pool."""

    @pytest.mark.asyncio
    async def test_insert_returns_generated_id(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        new_id = uuid.uuid4()
        mock_conn.fetchrow.return_value = {"id": new_id}
        store = PostgresRequestStore(mock_pool)

        request_id = await store.insert(make_request())

        assert request_id == str(new_id)
        args = mock_conn.fetchrow.call_args.args
        assert "INSERT INTO assistance_requests" in args[0]
        assert args[1:] == ("low", "water", "Surgery", "pending", "P1", "3")

    @pytest.mark.asyncio
    async def test_insert_failure_is_persistence_error(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        mock_conn.fetchrow.side_effect = asyncpg.PostgresError("relation does not exist")
        store = PostgresRequestStore(mock_pool)

        with pytest.raises(PersistenceError):
            await store.insert(make_request())

        # Not a transient error, so no retry
        assert mock_conn.fetchrow.await_count == 1

    @pytest.mark.asyncio
    async def test_insert_retries_transient_failure(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        mock_conn.fetchrow.side_effect = [ConnectionResetError("reset"), {"id": "abc"}]
        store = PostgresRequestStore(mock_pool)

        assert await store.insert(make_request()) == "abc"
        assert mock_conn.fetchrow.await_count == 2

    @pytest.mark.asyncio
    async def test_insert_without_row(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        mock_conn.fetchrow.return_value = None
        store = PostgresRequestStore(mock_pool)

        with pytest.raises(PersistenceError):
            await store.insert(make_request())

    @pytest.mark.asyncio
    async def test_find_maps_rows_in_query_order(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        created = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
        rows: list[dict[str, Any]] = [
            {
                "id": uuid.UUID(int=i + 1),
                "priority": "high",
                "description": f"request {i}",
                "department": "Cardiology",
                "status": "pending",
                "patient": "P1",
                "room": "12B",
                "created_at": created,
            }
            for i in range(3)
        ]
        mock_conn.fetch.return_value = rows
        store = PostgresRequestStore(mock_pool)

        found = await store.find(RequestFilter(patient="P1", status="pending"))

        assert [r.description for r in found] == ["request 0", "request 1", "request 2"]
        assert found[0].id == str(uuid.UUID(int=1))
        assert found[0].created_at == created.isoformat()
        query, patient, status = mock_conn.fetch.call_args.args
        assert "ORDER BY created_at, id" in query
        assert (patient, status) == ("P1", "pending")

    @pytest.mark.asyncio
    async def test_find_without_status(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        mock_conn.fetch.return_value = []
        store = PostgresRequestStore(mock_pool)

        assert await store.find(RequestFilter(patient="P1")) == []
        assert mock_conn.fetch.call_args.args[2] is None

    @pytest.mark.asyncio
    async def test_find_failure_is_persistence_error(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        mock_conn.fetch.side_effect = asyncpg.PostgresError("boom")
        store = PostgresRequestStore(mock_pool)

        with pytest.raises(PersistenceError):
            await store.find(RequestFilter(patient="P1"))

    @pytest.mark.asyncio
    async def test_create_schema(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        await PostgresRequestStore(mock_pool).create_schema()

        mock_conn.execute.assert_awaited_once_with(ASSISTANCE_REQUESTS_DDL)

    @pytest.mark.asyncio
    async def test_health(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval.return_value = 1
        mock_pool.get_size.return_value = 2
        mock_pool.get_max_size.return_value = 10
        mock_pool.get_idle_size.return_value = 1

        health = await PostgresRequestStore(mock_pool).health()

        assert health["backend"] == "postgres"
        assert health["healthy"] is True
