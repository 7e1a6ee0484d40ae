"""Read-only views over workflow assignments."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .models import (
    AssignmentCheck,
    AssignmentStatus,
    PendingTask,
    RequestSummary,
    WorkflowAssignment,
    WorkflowConfiguration,
)
from .persistence import WorkflowStore

logger = logging.getLogger(__name__)


class AssignmentQueries:
    """Lookups used by approver dashboards. None of these write."""

    def __init__(self, store: WorkflowStore) -> None:
        self._store = store

    async def list_pending_for_user(self, user_id: str) -> List[PendingTask]:
        """Return the user's open tasks, newest first."""
        assignments = await self._store.list_assignments(
            user_id=user_id, status=AssignmentStatus.PENDING
        )
        configs: Dict[str, Optional[WorkflowConfiguration]] = {}
        tasks: List[PendingTask] = []
        for assignment in assignments:
            request = await self._store.get_request(assignment.request_id)
            if request is None:
                logger.warning(
                    f"Assignment {assignment.id} points at missing request "
                    f"{assignment.request_id}"
                )
                continue
            if request.certificate_type not in configs:
                configs[request.certificate_type] = await self._store.get_configuration(
                    request.certificate_type
                )
            config = configs[request.certificate_type]
            tasks.append(
                PendingTask(
                    assignment=assignment,
                    request=RequestSummary.from_request(request),
                    step=config.step_by_id(assignment.step_id) if config else None,
                )
            )
        logger.debug(f"{len(tasks)} pending tasks for {user_id}")
        return tasks

    async def is_assigned(self, user_id: str, request_id: str) -> AssignmentCheck:
        """Report whether ``user_id`` holds a pending assignment on a request."""
        pending = await self._store.list_assignments(
            request_id=request_id, user_id=user_id, status=AssignmentStatus.PENDING
        )
        if not pending:
            return AssignmentCheck(is_assigned=False)
        return AssignmentCheck(is_assigned=True, assignment=pending[0])

    async def list_for_user(
        self, user_id: str, status: Optional[str] = None
    ) -> List[WorkflowAssignment]:
        return await self._store.list_assignments(user_id=user_id, status=status)
