"""SQLite implementation of the workflow store."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..db import (
    CertificateRequestRow,
    WorkflowAssignmentRow,
    WorkflowConfigurationRow,
    WorkflowDB,
    WorkflowHistoryRow,
)
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


class SQLiteWorkflowStore(WorkflowStore):
    """Persist workflow state in SQLite through SQLModel."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._db = WorkflowDB(f"sqlite+aiosqlite:///{self.db_path}")
        self._initialized = False
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Schema management
    async def _ensure_schema(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if not self._initialized:
                await self._db.init_db()
                self._initialized = True

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            await self._ensure_schema()
            async with self._db.session() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(f"SQLite store failed during {operation}: {exc}")
            raise StoreUnavailable(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Configurations
    async def get_configuration(
        self, certificate_type: str
    ) -> WorkflowConfiguration | None:
        async with self._session("get_configuration") as session:
            row = await session.get(WorkflowConfigurationRow, certificate_type)
        return _to_configuration(row) if row else None

    async def save_configuration(self, config: WorkflowConfiguration) -> None:
        row = WorkflowConfigurationRow(
            certificate_type=config.certificate_type,
            config_name=config.config_name,
            steps=[step.model_dump(by_alias=True) for step in config.steps],
            is_active=config.is_active,
            updated_at=utc_now(),
        )
        async with self._session("save_configuration") as session:
            await session.merge(row)
            await session.commit()

    async def list_configurations(self) -> list[WorkflowConfiguration]:
        async with self._session("list_configurations") as session:
            result = await session.execute(select(WorkflowConfigurationRow))
            rows = result.scalars().all()
        return [_to_configuration(r) for r in rows]

    # ------------------------------------------------------------------
    # Requests
    async def create_request(self, request: CertificateRequest) -> None:
        async with self._session("create_request") as session:
            data = request.model_dump()
            data["last_transition"] = _transition_json(request.last_transition)
            session.add(CertificateRequestRow(**data))
            await session.commit()

    async def get_request(self, request_id: str) -> CertificateRequest | None:
        async with self._session("get_request") as session:
            row = await session.get(CertificateRequestRow, request_id)
        if not row:
            return None
        return CertificateRequest.model_validate(row, from_attributes=True)

    async def list_requests(
        self,
        status: Optional[str] = None,
        certificate_type: Optional[str] = None,
    ) -> list[CertificateRequest]:
        query = select(CertificateRequestRow)
        if status is not None:
            query = query.where(CertificateRequestRow.status == status)
        if certificate_type is not None:
            query = query.where(
                CertificateRequestRow.certificate_type == certificate_type
            )
        query = query.order_by(CertificateRequestRow.created_at)
        async with self._session("list_requests") as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [CertificateRequest.model_validate(r, from_attributes=True) for r in rows]

    async def advance_request(
        self,
        request_id: str,
        expected_revision: int,
        status: str,
        current_step_id: Optional[str],
        transition: Optional[WorkflowHistory] = None,
    ) -> bool:
        async with self._session("advance_request") as session:
            result = await session.execute(
                update(CertificateRequestRow)
                .where(CertificateRequestRow.id == request_id)
                .where(CertificateRequestRow.revision == expected_revision)
                .values(
                    status=status,
                    current_step_id=current_step_id,
                    last_transition=_transition_json(transition),
                    revision=expected_revision + 1,
                    updated_at=utc_now(),
                )
            )
            await session.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Assignments
    async def create_assignment(self, assignment: WorkflowAssignment) -> bool:
        async with self._session("create_assignment") as session:
            session.add(WorkflowAssignmentRow(**assignment.model_dump()))
            try:
                await session.commit()
            except IntegrityError:
                # partial unique index on pending rows rejected a duplicate
                await session.rollback()
                return False
        return True

    async def complete_assignments(self, request_id: str, step_id: str) -> int:
        async with self._session("complete_assignments") as session:
            result = await session.execute(
                update(WorkflowAssignmentRow)
                .where(WorkflowAssignmentRow.request_id == request_id)
                .where(WorkflowAssignmentRow.step_id == step_id)
                .where(WorkflowAssignmentRow.status == AssignmentStatus.PENDING)
                .values(status=AssignmentStatus.COMPLETED, completed_at=utc_now())
            )
            await session.commit()
        return result.rowcount

    async def list_assignments(
        self,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        step_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[WorkflowAssignment]:
        query = select(WorkflowAssignmentRow)
        if request_id is not None:
            query = query.where(WorkflowAssignmentRow.request_id == request_id)
        if user_id is not None:
            query = query.where(WorkflowAssignmentRow.assigned_user_id == user_id)
        if step_id is not None:
            query = query.where(WorkflowAssignmentRow.step_id == step_id)
        if status is not None:
            query = query.where(WorkflowAssignmentRow.status == status)
        query = query.order_by(WorkflowAssignmentRow.created_at.desc())
        async with self._session("list_assignments") as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [WorkflowAssignment.model_validate(r, from_attributes=True) for r in rows]

    # ------------------------------------------------------------------
    # History
    async def append_history(self, entry: WorkflowHistory) -> None:
        data = entry.model_dump()
        data["action"] = entry.action.value
        async with self._session("append_history") as session:
            session.add(WorkflowHistoryRow(**data))
            try:
                await session.commit()
            except IntegrityError:
                # entry id already recorded
                await session.rollback()

    async def list_history(self, request_id: str) -> list[WorkflowHistory]:
        query = (
            select(WorkflowHistoryRow)
            .where(WorkflowHistoryRow.request_id == request_id)
            .order_by(WorkflowHistoryRow.seq)
        )
        async with self._session("list_history") as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [WorkflowHistory.model_validate(r, from_attributes=True) for r in rows]

    async def close(self) -> None:
        await self._db.dispose()


def _transition_json(transition: Optional[WorkflowHistory]) -> Optional[dict]:
    return transition.model_dump(mode="json") if transition else None


def _to_configuration(row: WorkflowConfigurationRow) -> WorkflowConfiguration:
    return WorkflowConfiguration(
        certificate_type=row.certificate_type,
        config_name=row.config_name,
        steps=row.steps,
        is_active=row.is_active,
        updated_at=row.updated_at,
    )
