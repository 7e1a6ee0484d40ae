"""Core records exchanged between the engine and the store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class WorkflowAction(str, Enum):
    """Actions an approver can take on a step."""

    APPROVE = "approve"
    RETURN = "return"
    REJECT = "reject"


class RequestStatus:
    """Status labels that do not belong to any workflow step."""

    COMPLETED = "completed"
    REJECTED = "rejected"
    # Written by older tooling; routed back to the first step on reconcile.
    RETURNED = "returned"

    TERMINAL = frozenset({COMPLETED, REJECTED})
    RESERVED = frozenset({COMPLETED, REJECTED, RETURNED})


class AssignmentStatus:
    PENDING = "pending"
    COMPLETED = "completed"


class Step(BaseModel):
    """One stage of a workflow."""

    id: Union[int, str]
    name: str
    status: str
    assigned_users: List[str] = Field(alias="assignedUsers")
    requires_approval: bool = Field(default=True, alias="requiresApproval")
    description: Optional[str] = None
    send_email: bool = Field(default=False, alias="sendEmail")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def key(self) -> str:
        """Step id in the string form used by assignment and history rows."""
        return str(self.id)

    @field_validator("assigned_users")
    @classmethod
    def _ensure_assignees(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("a step needs at least one assigned user")
        return v

    @field_validator("status")
    @classmethod
    def _ensure_not_reserved(cls, v: str) -> str:
        if v in RequestStatus.RESERVED:
            raise ValueError(f"step status '{v}' is reserved for request outcomes")
        return v


class WorkflowConfiguration(BaseModel):
    """Ordered approval steps for one certificate type."""

    certificate_type: str
    config_name: Optional[str] = None
    steps: List[Step]
    is_active: bool = True
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _ensure_steps(self) -> "WorkflowConfiguration":
        if not self.steps:
            raise ValueError("a workflow needs at least one step")
        keys = [step.key for step in self.steps]
        if len(keys) != len(set(keys)):
            raise ValueError(
                f"duplicate step ids in workflow for '{self.certificate_type}'"
            )
        return self

    @property
    def first_step(self) -> Step:
        return self.steps[0]

    def step_by_id(self, step_id: Union[int, str, None]) -> Optional[Step]:
        if step_id is None:
            return None
        for step in self.steps:
            if step.key == str(step_id):
                return step
        return None

    def step_after(self, step_id: Union[int, str]) -> Optional[Step]:
        """Return the step following ``step_id``, or ``None`` for the last one."""
        for index, step in enumerate(self.steps):
            if step.key == str(step_id):
                return self.steps[index + 1] if index + 1 < len(self.steps) else None
        return None

    def step_for_status(self, status: str) -> Optional[Step]:
        for step in self.steps:
            if step.status == status:
                return step
        return None


class WorkflowAssignment(BaseModel):
    """Open or resolved task for one approver on one request step."""

    id: str = Field(default_factory=_new_id)
    request_id: str
    certificate_type: str
    step_id: str
    step_name: str
    assigned_user_id: str
    status: str = AssignmentStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None


class WorkflowHistory(BaseModel):
    """Ledger entry for one applied transition."""

    id: str = Field(default_factory=_new_id)
    request_id: str
    step_id: str
    step_name: str
    action: WorkflowAction
    performed_by: str
    previous_status: str
    new_status: str
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)


class CertificateRequest(BaseModel):
    """A citizen's application routed through a workflow."""

    id: str = Field(default_factory=_new_id)
    reference_number: str = ""
    certificate_type: str
    status: str = "draft"
    current_step_id: Optional[str] = None
    revision: int = 0
    # transition claimed by the latest revision bump; finished once its
    # history entry is recorded
    last_transition: Optional[WorkflowHistory] = None
    applicant_name: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in RequestStatus.TERMINAL


class RequestSummary(BaseModel):
    id: str
    reference_number: str
    certificate_type: str
    status: str
    applicant_name: str
    created_at: datetime

    @classmethod
    def from_request(cls, request: CertificateRequest) -> "RequestSummary":
        return cls(
            id=request.id,
            reference_number=request.reference_number,
            certificate_type=request.certificate_type,
            status=request.status,
            applicant_name=request.applicant_name,
            created_at=request.created_at,
        )


class PendingTask(BaseModel):
    """A pending assignment joined with its request and step."""

    assignment: WorkflowAssignment
    request: RequestSummary
    step: Optional[Step] = None


class AssignmentCheck(BaseModel):
    is_assigned: bool
    assignment: Optional[WorkflowAssignment] = None


class ReconcileReport(BaseModel):
    """Outcome of a reconciliation sweep."""

    created: List[WorkflowAssignment] = Field(default_factory=list)
    skipped: Dict[str, str] = Field(default_factory=dict)
    stale: List[WorkflowAssignment] = Field(default_factory=list)
    # requests whose interrupted transition was finished
    resumed: List[str] = Field(default_factory=list)
