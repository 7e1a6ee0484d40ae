"""PostgreSQL implementation of the workflow store."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..errors import StoreUnavailable
from ..models import (
    AssignmentStatus,
    CertificateRequest,
    WorkflowAssignment,
    WorkflowConfiguration,
    WorkflowHistory,
    utc_now,
)
from .repository import WorkflowStore

logger = logging.getLogger(__name__)

_REQUEST_COLUMNS = (
    "id, reference_number, certificate_type, status, current_step_id, revision, "
    "last_transition, applicant_name, payload, created_at, updated_at"
)
_ASSIGNMENT_COLUMNS = (
    "id, request_id, certificate_type, step_id, step_name, assigned_user_id, "
    "status, created_at, completed_at"
)
_HISTORY_COLUMNS = (
    "id, request_id, step_id, step_name, action, performed_by, "
    "previous_status, new_status, comment, created_at"
)


def _affected_rows(command_tag: str) -> int:
    """Parse the row count from a status tag such as ``UPDATE 2``."""
    return int(command_tag.rsplit(" ", 1)[-1])


class PostgresWorkflowStore(WorkflowStore):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        await conn.set_type_codec(
            "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_configurations (
                certificate_type TEXT PRIMARY KEY,
                config_name TEXT,
                steps JSONB NOT NULL,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS certificate_requests (
                id TEXT PRIMARY KEY,
                reference_number TEXT NOT NULL UNIQUE,
                certificate_type TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step_id TEXT,
                revision INTEGER NOT NULL DEFAULT 0,
                last_transition JSONB,
                applicant_name TEXT NOT NULL DEFAULT '',
                payload JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            ALTER TABLE certificate_requests
            ADD COLUMN IF NOT EXISTS last_transition JSONB
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_assignments (
                id TEXT PRIMARY KEY,
                request_id TEXT NOT NULL,
                certificate_type TEXT NOT NULL,
                step_id TEXT NOT NULL,
                step_name TEXT NOT NULL,
                assigned_user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS uq_workflow_assignments_pending
            ON workflow_assignments (request_id, step_id, assigned_user_id)
            WHERE status = 'pending'
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_history (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                request_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                step_name TEXT NOT NULL,
                action TEXT NOT NULL,
                performed_by TEXT NOT NULL,
                previous_status TEXT NOT NULL,
                new_status TEXT NOT NULL,
                comment TEXT,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        try:
            conn = await self._connect()
            try:
                yield conn
            finally:
                await conn.close()
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            logger.error(f"Postgres store failed during {operation}: {exc}")
            raise StoreUnavailable(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    async def get_configuration(
        self, certificate_type: str
    ) -> WorkflowConfiguration | None:
        async with self._connection("get_configuration") as conn:
            row = await conn.fetchrow(
                "SELECT certificate_type, config_name, steps, is_active, updated_at "
                "FROM workflow_configurations WHERE certificate_type = $1",
                certificate_type,
            )
        return WorkflowConfiguration(**dict(row)) if row else None

    async def save_configuration(self, config: WorkflowConfiguration) -> None:
        async with self._connection("save_configuration") as conn:
            await conn.execute(
                """
                INSERT INTO workflow_configurations
                    (certificate_type, config_name, steps, is_active, updated_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (certificate_type) DO UPDATE SET
                    config_name = EXCLUDED.config_name,
                    steps = EXCLUDED.steps,
                    is_active = EXCLUDED.is_active,
                    updated_at = EXCLUDED.updated_at
                """,
                config.certificate_type,
                config.config_name,
                [step.model_dump(by_alias=True) for step in config.steps],
                config.is_active,
                utc_now(),
            )

    async def list_configurations(self) -> list[WorkflowConfiguration]:
        async with self._connection("list_configurations") as conn:
            rows = await conn.fetch(
                "SELECT certificate_type, config_name, steps, is_active, updated_at "
                "FROM workflow_configurations ORDER BY certificate_type"
            )
        return [WorkflowConfiguration(**dict(r)) for r in rows]

    # ------------------------------------------------------------------
    async def create_request(self, request: CertificateRequest) -> None:
        async with self._connection("create_request") as conn:
            await conn.execute(
                f"INSERT INTO certificate_requests ({_REQUEST_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)",
                request.id,
                request.reference_number,
                request.certificate_type,
                request.status,
                request.current_step_id,
                request.revision,
                _transition_json(request.last_transition),
                request.applicant_name,
                request.payload,
                request.created_at,
                request.updated_at,
            )

    async def get_request(self, request_id: str) -> CertificateRequest | None:
        async with self._connection("get_request") as conn:
            row = await conn.fetchrow(
                f"SELECT {_REQUEST_COLUMNS} FROM certificate_requests WHERE id = $1",
                request_id,
            )
        return _to_request(row) if row else None

    async def list_requests(
        self,
        status: Optional[str] = None,
        certificate_type: Optional[str] = None,
    ) -> list[CertificateRequest]:
        async with self._connection("list_requests") as conn:
            rows = await conn.fetch(
                f"SELECT {_REQUEST_COLUMNS} FROM certificate_requests "
                "WHERE ($1::text IS NULL OR status = $1) "
                "AND ($2::text IS NULL OR certificate_type = $2) "
                "ORDER BY created_at",
                status,
                certificate_type,
            )
        return [_to_request(r) for r in rows]

    async def advance_request(
        self,
        request_id: str,
        expected_revision: int,
        status: str,
        current_step_id: Optional[str],
        transition: Optional[WorkflowHistory] = None,
    ) -> bool:
        async with self._connection("advance_request") as conn:
            tag = await conn.execute(
                "UPDATE certificate_requests "
                "SET status = $1, current_step_id = $2, revision = revision + 1, "
                "updated_at = $3, last_transition = $6 "
                "WHERE id = $4 AND revision = $5",
                status,
                current_step_id,
                utc_now(),
                request_id,
                expected_revision,
                _transition_json(transition),
            )
        return _affected_rows(tag) == 1

    # ------------------------------------------------------------------
    async def create_assignment(self, assignment: WorkflowAssignment) -> bool:
        async with self._connection("create_assignment") as conn:
            tag = await conn.execute(
                f"INSERT INTO workflow_assignments ({_ASSIGNMENT_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9) "
                "ON CONFLICT (request_id, step_id, assigned_user_id) "
                "WHERE status = 'pending' DO NOTHING",
                assignment.id,
                assignment.request_id,
                assignment.certificate_type,
                assignment.step_id,
                assignment.step_name,
                assignment.assigned_user_id,
                assignment.status,
                assignment.created_at,
                assignment.completed_at,
            )
        return _affected_rows(tag) == 1

    async def complete_assignments(self, request_id: str, step_id: str) -> int:
        async with self._connection("complete_assignments") as conn:
            tag = await conn.execute(
                "UPDATE workflow_assignments SET status = $1, completed_at = $2 "
                "WHERE request_id = $3 AND step_id = $4 AND status = $5",
                AssignmentStatus.COMPLETED,
                utc_now(),
                request_id,
                step_id,
                AssignmentStatus.PENDING,
            )
        return _affected_rows(tag)

    async def list_assignments(
        self,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        step_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[WorkflowAssignment]:
        async with self._connection("list_assignments") as conn:
            rows = await conn.fetch(
                f"SELECT {_ASSIGNMENT_COLUMNS} FROM workflow_assignments "
                "WHERE ($1::text IS NULL OR request_id = $1) "
                "AND ($2::text IS NULL OR assigned_user_id = $2) "
                "AND ($3::text IS NULL OR step_id = $3) "
                "AND ($4::text IS NULL OR status = $4) "
                "ORDER BY created_at DESC",
                request_id,
                user_id,
                step_id,
                status,
            )
        return [WorkflowAssignment(**dict(r)) for r in rows]

    # ------------------------------------------------------------------
    async def append_history(self, entry: WorkflowHistory) -> None:
        async with self._connection("append_history") as conn:
            await conn.execute(
                f"INSERT INTO workflow_history ({_HISTORY_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10) "
                "ON CONFLICT (id) DO NOTHING",
                entry.id,
                entry.request_id,
                entry.step_id,
                entry.step_name,
                entry.action.value,
                entry.performed_by,
                entry.previous_status,
                entry.new_status,
                entry.comment,
                entry.created_at,
            )

    async def list_history(self, request_id: str) -> list[WorkflowHistory]:
        async with self._connection("list_history") as conn:
            rows = await conn.fetch(
                f"SELECT {_HISTORY_COLUMNS} FROM workflow_history "
                "WHERE request_id = $1 ORDER BY seq",
                request_id,
            )
        return [WorkflowHistory(**dict(r)) for r in rows]


def _transition_json(transition: Optional[WorkflowHistory]) -> Optional[dict]:
    return transition.model_dump(mode="json") if transition else None


def _to_request(row: Any) -> CertificateRequest:
    data = dict(row)
    data["payload"] = data.get("payload") or {}
    return CertificateRequest(**data)
