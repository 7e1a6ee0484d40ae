"""On-demand repair of drift between request status and assignments."""

from __future__ import annotations

import logging
from typing import Optional

from .engine import WorkflowEngine, expected_step, has_unfinished_transition
from .errors import ConfigMissing, InvalidConfiguration
from .models import (
    AssignmentStatus,
    ReconcileReport,
    WorkflowAssignment,
    WorkflowConfiguration,
)
from .persistence import WorkflowStore

logger = logging.getLogger(__name__)


async def reconcile(store: WorkflowStore) -> ReconcileReport:
    """Recreate missing pending assignments for every open request.

    Transitions interrupted after their claim are finished first. Safe to
    run repeatedly: rows that are already pending are never duplicated.
    Pending rows on a step other than the expected one are reported as
    stale and left untouched.
    """
    report = ReconcileReport()
    configs: dict[str, Optional[WorkflowConfiguration]] = {}
    engine = WorkflowEngine(store)

    for request in await store.list_requests():
        if request.last_transition is not None and has_unfinished_transition(
            request, await store.list_history(request.id)
        ):
            try:
                await engine.resume(request.id)
            except (ConfigMissing, InvalidConfiguration) as exc:
                logger.warning(
                    f"Cannot finish transition of {request.reference_number}: {exc}"
                )
                report.skipped[request.id] = f"unfinished transition: {exc}"
                continue
            report.resumed.append(request.id)

        if request.is_terminal:
            continue

        if request.certificate_type not in configs:
            configs[request.certificate_type] = await store.get_configuration(
                request.certificate_type
            )
        config = configs[request.certificate_type]
        if config is None or not config.is_active:
            logger.warning(
                f"Skipping {request.reference_number}: no workflow for "
                f"{request.certificate_type}"
            )
            report.skipped[request.id] = "no active workflow configuration"
            continue

        step = expected_step(request, config)
        if step is None:
            logger.warning(
                f"Skipping {request.reference_number}: status {request.status} "
                "matches no workflow step"
            )
            report.skipped[request.id] = f"status '{request.status}' matches no step"
            continue

        pending = await store.list_assignments(
            request_id=request.id, status=AssignmentStatus.PENDING
        )
        report.stale.extend(a for a in pending if a.step_id != step.key)
        holders = {a.assigned_user_id for a in pending if a.step_id == step.key}

        for user_id in step.assigned_users:
            if user_id in holders:
                continue
            assignment = WorkflowAssignment(
                request_id=request.id,
                certificate_type=request.certificate_type,
                step_id=step.key,
                step_name=step.name,
                assigned_user_id=user_id,
            )
            if await store.create_assignment(assignment):
                logger.info(
                    f"Recreated assignment for {request.reference_number} "
                    f"-> {user_id} at {step.name}"
                )
                report.created.append(assignment)

    logger.info(
        f"Reconcile finished: {len(report.created)} created, "
        f"{len(report.skipped)} skipped, {len(report.stale)} stale, "
        f"{len(report.resumed)} resumed"
    )
    return report
