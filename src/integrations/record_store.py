"""
Assistance request store adapters.

The relay only needs two operations from the external record store: insert one
request and find a patient's requests. Anything the store raises is reported as
PersistenceError so the interpreter can turn it into a chat message.
"""

from __future__ import annotations

import asyncio
import uuid

from typing import Any, Protocol, runtime_checkable

import asyncpg

from core.errors import PersistenceError
from models.action_models import AssistanceRequest, RequestFilter
from utils.db_utils import (
    RETRYABLE_DB_ERRORS,
    DatabaseError,
    acquire_connection,
    check_pool_health,
    with_retry,
)
from utils.logger import logger

#: Minimal table backing PostgresRequestStore. Migrations are managed outside
#: this service; ``create_schema`` exists for local development.
ASSISTANCE_REQUESTS_DDL = """
CREATE TABLE IF NOT EXISTS assistance_requests (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    priority TEXT NOT NULL,
    description TEXT NOT NULL,
    department TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    patient TEXT NOT NULL,
    room TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS idx_assistance_requests_patient
    ON assistance_requests (patient, status);
"""

_STORE_ERRORS: tuple[type[Exception], ...] = (DatabaseError, asyncpg.PostgresError, *RETRYABLE_DB_ERRORS)


@runtime_checkable
class AssistanceRequestStore(Protocol):
    """Operations the domain actions need from the record store."""

    async def insert(self, request: AssistanceRequest) -> str:
        """Persist a request and return its store-assigned id."""
        ...

    async def find(self, request_filter: RequestFilter) -> list[AssistanceRequest]:
        """Return matching requests in store order."""
        ...

    async def health(self) -> dict[str, Any]: ...


class PostgresRequestStore:
    """Record store on PostgreSQL via an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool, *, acquire_timeout: float = 5.0) -> None:
        self.pool = pool
        self.acquire_timeout = acquire_timeout

    async def create_schema(self) -> None:
        async with acquire_connection(self.pool, timeout=self.acquire_timeout) as conn:
            await conn.execute(ASSISTANCE_REQUESTS_DDL)

    async def insert(self, request: AssistanceRequest) -> str:
        try:
            return await self._insert(request)
        except _STORE_ERRORS as e:
            logger.error(f"Failed to insert assistance request: {e}", exc_info=True)
            raise PersistenceError(f"insert failed: {e}") from e

    async def find(self, request_filter: RequestFilter) -> list[AssistanceRequest]:
        try:
            rows = await self._find(request_filter)
        except _STORE_ERRORS as e:
            logger.error(f"Failed to query assistance requests: {e}", exc_info=True)
            raise PersistenceError(f"find failed: {e}") from e
        return [self._row_to_request(row) for row in rows]

    @with_retry(max_attempts=3)
    async def _insert(self, request: AssistanceRequest) -> str:
        async with acquire_connection(self.pool, timeout=self.acquire_timeout) as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO assistance_requests (priority, description, department, status, patient, room)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING id
                """,
                request.priority,
                request.description,
                request.department,
                request.status,
                request.patient,
                request.room,
            )
        if row is None:
            raise DatabaseError("INSERT returned no row")
        return str(row["id"])

    @with_retry(max_attempts=3)
    async def _find(self, request_filter: RequestFilter) -> list[Any]:
        async with acquire_connection(self.pool, timeout=self.acquire_timeout) as conn:
            return list(
                await conn.fetch(
                    """
                    SELECT id, priority, description, department, status, patient, room, created_at
                    FROM assistance_requests
                    WHERE patient = $1 AND ($2::text IS NULL OR status = $2)
                    ORDER BY created_at, id
                    """,
                    request_filter.patient,
                    request_filter.status,
                )
            )

    @staticmethod
    def _row_to_request(row: Any) -> AssistanceRequest:
        created_at = row["created_at"]
        return AssistanceRequest(
            id=str(row["id"]),
            priority=row["priority"],
            description=row["description"],
            department=row["department"],
            status=row["status"],
            patient=row["patient"],
            room=row["room"],
            created_at=created_at.isoformat() if hasattr(created_at, "isoformat") else str(created_at),
        )

    async def health(self) -> dict[str, Any]:
        return {"backend": "postgres", **await check_pool_health(self.pool)}


class InMemoryRequestStore:
    """Process-local record store for development and tests. Keeps insertion order."""

    def __init__(self, records: list[AssistanceRequest] | None = None) -> None:
        self._records: list[AssistanceRequest] = list(records or [])
        self._lock = asyncio.Lock()

    @property
    def records(self) -> list[AssistanceRequest]:
        return list(self._records)

    async def insert(self, request: AssistanceRequest) -> str:
        request_id = request.id or uuid.uuid4().hex
        async with self._lock:
            self._records.append(request.model_copy(update={"id": request_id}))
        return request_id

    async def find(self, request_filter: RequestFilter) -> list[AssistanceRequest]:
        async with self._lock:
            return [record for record in self._records if request_filter.matches(record)]

    async def health(self) -> dict[str, Any]:
        return {"backend": "memory", "healthy": True, "records": len(self._records)}


__all__ = [
    "ASSISTANCE_REQUESTS_DDL",
    "AssistanceRequestStore",
    "InMemoryRequestStore",
    "PostgresRequestStore",
]
