"""In-memory implementation of the workflow store."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..models import (
    AssignmentStatus,
    CertificateRequest,
    WorkflowAssignment,
    WorkflowConfiguration,
    WorkflowHistory,
    utc_now,
)
from .repository import WorkflowStore


class InMemoryWorkflowStore(WorkflowStore):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Each method body runs without
    yielding to the event loop, so every conditional update is atomic with
    respect to other coroutines.
    """

    def __init__(self) -> None:
        self._configurations: Dict[str, WorkflowConfiguration] = {}
        self._requests: Dict[str, CertificateRequest] = {}
        self._assignments: List[WorkflowAssignment] = []
        self._history: List[WorkflowHistory] = []

    # ------------------------------------------------------------------
    async def get_configuration(
        self, certificate_type: str
    ) -> WorkflowConfiguration | None:
        config = self._configurations.get(certificate_type)
        return config.model_copy(deep=True) if config else None

    async def save_configuration(self, config: WorkflowConfiguration) -> None:
        self._configurations[config.certificate_type] = config.model_copy(
            update={"updated_at": utc_now()}, deep=True
        )

    async def list_configurations(self) -> list[WorkflowConfiguration]:
        return [c.model_copy(deep=True) for c in self._configurations.values()]

    # ------------------------------------------------------------------
    async def create_request(self, request: CertificateRequest) -> None:
        if request.id in self._requests:
            raise ValueError(f"Request {request.id} already exists")
        self._requests[request.id] = request.model_copy(deep=True)

    async def get_request(self, request_id: str) -> CertificateRequest | None:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def list_requests(
        self,
        status: Optional[str] = None,
        certificate_type: Optional[str] = None,
    ) -> list[CertificateRequest]:
        return [
            r.model_copy(deep=True)
            for r in self._requests.values()
            if (status is None or r.status == status)
            and (certificate_type is None or r.certificate_type == certificate_type)
        ]

    async def advance_request(
        self,
        request_id: str,
        expected_revision: int,
        status: str,
        current_step_id: Optional[str],
        transition: Optional[WorkflowHistory] = None,
    ) -> bool:
        request = self._requests.get(request_id)
        if request is None or request.revision != expected_revision:
            return False
        request.status = status
        request.current_step_id = current_step_id
        request.last_transition = transition
        request.revision += 1
        request.updated_at = utc_now()
        return True

    # ------------------------------------------------------------------
    async def create_assignment(self, assignment: WorkflowAssignment) -> bool:
        for existing in self._assignments:
            if (
                existing.status == AssignmentStatus.PENDING
                and existing.request_id == assignment.request_id
                and existing.step_id == assignment.step_id
                and existing.assigned_user_id == assignment.assigned_user_id
            ):
                return False
        self._assignments.append(assignment.model_copy(deep=True))
        return True

    async def complete_assignments(self, request_id: str, step_id: str) -> int:
        changed = 0
        now = utc_now()
        for assignment in self._assignments:
            if (
                assignment.request_id == request_id
                and assignment.step_id == step_id
                and assignment.status == AssignmentStatus.PENDING
            ):
                assignment.status = AssignmentStatus.COMPLETED
                assignment.completed_at = now
                changed += 1
        return changed

    async def list_assignments(
        self,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        step_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[WorkflowAssignment]:
        matches = [
            a.model_copy(deep=True)
            for a in self._assignments
            if (request_id is None or a.request_id == request_id)
            and (user_id is None or a.assigned_user_id == user_id)
            and (step_id is None or a.step_id == step_id)
            and (status is None or a.status == status)
        ]
        # newest first; insertion order breaks timestamp ties
        matches.reverse()
        return matches

    # ------------------------------------------------------------------
    async def append_history(self, entry: WorkflowHistory) -> None:
        if any(h.id == entry.id for h in self._history):
            return
        self._history.append(entry)

    async def list_history(self, request_id: str) -> list[WorkflowHistory]:
        return [h for h in self._history if h.request_id == request_id]
