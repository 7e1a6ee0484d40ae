"""Assignment advancement engine for certificate request workflows."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Union

from .configuration import ConfigurationLoader
from .errors import (
    AlreadyResolved,
    InvalidConfiguration,
    NotAuthorizedForStep,
    RequestNotFound,
)
from .models import (
    AssignmentStatus,
    CertificateRequest,
    RequestStatus,
    Step,
    WorkflowAction,
    WorkflowAssignment,
    WorkflowConfiguration,
    WorkflowHistory,
    utc_now,
)
from .persistence import WorkflowStore

logger = logging.getLogger(__name__)

REFERENCE_PREFIXES = {
    "barangay_clearance": "BC",
    "certificate_of_indigency": "CI",
    "barangay_residency": "BR",
    "certification_same_person": "CSP",
    "natural_death": "ND",
    "cohabitation": "CH",
}
DEFAULT_REFERENCE_PREFIX = "REF"


def expected_step(
    request: CertificateRequest, config: WorkflowConfiguration
) -> Optional[Step]:
    """Return the step a non-terminal request should currently sit on."""
    if request.status == RequestStatus.RETURNED:
        return config.first_step
    return config.step_by_id(request.current_step_id) or config.step_for_status(
        request.status
    )


def has_unfinished_transition(
    request: CertificateRequest, history: Sequence[WorkflowHistory]
) -> bool:
    """True when the request was advanced but its ledger entry is missing."""
    transition = request.last_transition
    if transition is None:
        return False
    return all(entry.id != transition.id for entry in history)


class WorkflowEngine:
    """Sole writer of request status and assignment state.

    Transitions are claimed with a compare-and-swap on the request revision,
    so of several concurrent actions on the same request exactly one is
    applied and the others fail with :class:`AlreadyResolved`. The claim
    stores the transition on the request; closing the step, opening the next
    one and appending the history entry follow and are all idempotent. If
    one of those writes fails, the next call touching the request (a retry,
    any other action, or :func:`~barangay_workflow.reconcile.reconcile`)
    finishes the transition before doing anything else.
    """

    def __init__(
        self,
        store: WorkflowStore,
        configurations: Optional[ConfigurationLoader] = None,
    ) -> None:
        self._store = store
        self._configurations = configurations or ConfigurationLoader(store)

    async def initiate(self, request: CertificateRequest) -> CertificateRequest:
        """Route a new request to the first step of its workflow.

        Calling again with a request that was already stored re-opens any
        missing first-step assignments and returns the stored request.

        Raises:
            ConfigMissing: No active workflow for the certificate type. Nothing
                is written in that case.
            AlreadyResolved: The request id exists and has moved past
                initiation.
        """
        config = await self._configurations.get_configuration(request.certificate_type)
        first = config.first_step

        existing = await self._store.get_request(request.id)
        if existing is not None:
            if existing.revision != 0 or existing.certificate_type != request.certificate_type:
                raise AlreadyResolved(request.id, "request was already initiated")
            logger.info(f"Resuming initiation of {existing.reference_number}")
            await self._materialize(existing, first)
            return existing

        reference = request.reference_number or await self.next_reference_number(
            request.certificate_type
        )
        initiated = request.model_copy(
            update={
                "reference_number": reference,
                "status": first.status,
                "current_step_id": first.key,
                "revision": 0,
                "last_transition": None,
                "updated_at": utc_now(),
            }
        )
        await self._store.create_request(initiated)
        await self._materialize(initiated, first)
        logger.info(
            f"Initiated {initiated.reference_number} ({initiated.certificate_type}) "
            f"at step {first.name}"
        )
        return initiated

    async def record_action(
        self,
        request_id: str,
        step_id: Union[int, str],
        actor_id: str,
        action: Union[WorkflowAction, str],
        comment: Optional[str] = None,
    ) -> WorkflowHistory:
        """Apply an approver's action to the current step of a request.

        Returns the history entry describing the applied transition. Retrying
        an action whose transition was claimed but not finished completes it
        and returns the same entry.
        """
        action = WorkflowAction(action)
        step_key = str(step_id)

        request = await self._store.get_request(request_id)
        if request is None:
            raise RequestNotFound(request_id)

        history = await self._store.list_history(request_id)
        if has_unfinished_transition(request, history):
            entry = await self._finish_transition(request)
            if _is_replay(entry, step_key, actor_id, action):
                return entry
            history.append(entry)

        if request.is_terminal:
            raise AlreadyResolved(request_id, f"request is already {request.status}")
        if history and _is_replay(history[-1], step_key, actor_id, action):
            raise AlreadyResolved(
                request_id, f"{action.value} by {actor_id} was already applied"
            )

        held = await self._store.list_assignments(
            request_id=request_id, step_id=step_key, user_id=actor_id
        )
        if not any(a.status == AssignmentStatus.PENDING for a in held):
            if held:
                raise AlreadyResolved(request_id, f"step {step_key} was already acted on")
            raise NotAuthorizedForStep(request_id, step_key, actor_id)

        config = await self._configurations.get_configuration(request.certificate_type)
        step = config.step_by_id(step_key)
        if step is None:
            raise InvalidConfiguration(
                f"Step {step_key} is not defined in the workflow for "
                f"'{request.certificate_type}'"
            )
        current = expected_step(request, config)
        if current is None or current.key != step.key:
            raise AlreadyResolved(
                request_id, f"request is at {request.status}, not step {step_key}"
            )

        target = _target_step(config, step, action)
        entry = WorkflowHistory(
            request_id=request_id,
            step_id=step_key,
            step_name=step.name,
            action=action,
            performed_by=actor_id,
            previous_status=step.status,
            new_status=_target_status(target, action),
            comment=comment,
        )

        claimed = await self._store.advance_request(
            request_id,
            request.revision,
            entry.new_status,
            target.key if target else None,
            entry,
        )
        if not claimed:
            raise AlreadyResolved(request_id, "another action was applied concurrently")

        advanced = request.model_copy(
            update={
                "status": entry.new_status,
                "current_step_id": target.key if target else None,
                "revision": request.revision + 1,
                "last_transition": entry,
            }
        )
        return await self._finish_transition(advanced, target)

    async def resume(self, request_id: str) -> Optional[WorkflowHistory]:
        """Finish an interrupted transition of a request, if there is one.

        Returns the ledger entry that was completed, or ``None`` when the
        request had nothing left to finish.
        """
        request = await self._store.get_request(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        history = await self._store.list_history(request_id)
        if not has_unfinished_transition(request, history):
            return None
        return await self._finish_transition(request)

    async def history(self, request_id: str) -> List[WorkflowHistory]:
        """Return the ledger for a request in the order it was written."""
        return await self._store.list_history(request_id)

    async def next_reference_number(
        self, certificate_type: str, year: Optional[int] = None
    ) -> str:
        """Return the next free ``PREFIX-YYYY-NNNNN`` number for a type."""
        prefix = REFERENCE_PREFIXES.get(certificate_type, DEFAULT_REFERENCE_PREFIX)
        year = year or datetime.now().year
        stem = f"{prefix}-{year}-"

        last_number = 0
        for existing in await self._store.list_requests(certificate_type=certificate_type):
            if not existing.reference_number.startswith(stem):
                continue
            try:
                number = int(existing.reference_number[len(stem):])
            except ValueError:
                continue
            last_number = max(last_number, number)
        return f"{stem}{last_number + 1:05d}"

    async def _finish_transition(
        self, request: CertificateRequest, target: Optional[Step] = None
    ) -> WorkflowHistory:
        # The history entry goes last: its presence marks the transition done.
        entry = request.last_transition
        closed = await self._store.complete_assignments(request.id, entry.step_id)
        logger.debug(
            f"Closed {closed} assignments for step {entry.step_id} "
            f"of {request.reference_number}"
        )

        if request.current_step_id is not None:
            if target is None:
                config = await self._configurations.get_configuration(
                    request.certificate_type
                )
                target = config.step_by_id(request.current_step_id)
                if target is None:
                    raise InvalidConfiguration(
                        f"Step {request.current_step_id} is not defined in the "
                        f"workflow for '{request.certificate_type}'"
                    )
            await self._materialize(request, target)

        await self._store.append_history(entry)
        logger.info(
            f"{request.reference_number}: {entry.action.value} by "
            f"{entry.performed_by} at {entry.step_name} "
            f"({entry.previous_status} -> {entry.new_status})"
        )
        return entry

    async def _materialize(
        self, request: CertificateRequest, step: Step
    ) -> List[WorkflowAssignment]:
        created: List[WorkflowAssignment] = []
        for user_id in step.assigned_users:
            assignment = WorkflowAssignment(
                request_id=request.id,
                certificate_type=request.certificate_type,
                step_id=step.key,
                step_name=step.name,
                assigned_user_id=user_id,
            )
            if await self._store.create_assignment(assignment):
                created.append(assignment)
            else:
                logger.debug(
                    f"{user_id} already holds a pending assignment for step "
                    f"{step.key} of {request.reference_number}"
                )
        return created


def _is_replay(
    last: WorkflowHistory, step_key: str, actor_id: str, action: WorkflowAction
) -> bool:
    return (
        last.step_id == step_key
        and last.performed_by == actor_id
        and last.action == action
    )


def _target_step(
    config: WorkflowConfiguration, step: Step, action: WorkflowAction
) -> Optional[Step]:
    if action is WorkflowAction.APPROVE:
        return config.step_after(step.key)
    if action is WorkflowAction.RETURN:
        return config.first_step
    return None


def _target_status(target: Optional[Step], action: WorkflowAction) -> str:
    if action is WorkflowAction.REJECT:
        return RequestStatus.REJECTED
    if target is None:
        return RequestStatus.COMPLETED
    return target.status
