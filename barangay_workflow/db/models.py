from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, Index, text
from sqlmodel import Field, SQLModel

from ..models import AssignmentStatus, utc_now


class WorkflowConfigurationRow(SQLModel, table=True):
    """Approval steps for one certificate type."""

    __tablename__ = "workflow_configurations"

    certificate_type: str = Field(primary_key=True)
    config_name: Optional[str] = None
    steps: list = Field(sa_column=Column(JSON, nullable=False))
    is_active: bool = True
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True))
    )


class CertificateRequestRow(SQLModel, table=True):
    """A citizen's certificate request."""

    __tablename__ = "certificate_requests"

    id: str = Field(primary_key=True)
    reference_number: str = Field(index=True, unique=True)
    certificate_type: str = Field(index=True)
    status: str = Field(index=True)
    current_step_id: Optional[str] = None
    revision: int = 0
    last_transition: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    applicant_name: str = ""
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True))
    )
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True))
    )


class WorkflowAssignmentRow(SQLModel, table=True):
    """Task linking one approver to one step of one request."""

    __tablename__ = "workflow_assignments"
    __table_args__ = (
        # at most one pending row per (request, step, user)
        Index(
            "uq_workflow_assignments_pending",
            "request_id",
            "step_id",
            "assigned_user_id",
            unique=True,
            sqlite_where=text(f"status = '{AssignmentStatus.PENDING}'"),
            postgresql_where=text(f"status = '{AssignmentStatus.PENDING}'"),
        ),
    )

    id: str = Field(primary_key=True)
    request_id: str = Field(index=True)
    certificate_type: str
    step_id: str
    step_name: str
    assigned_user_id: str = Field(index=True)
    status: str = Field(default=AssignmentStatus.PENDING)
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True))
    )
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )


class WorkflowHistoryRow(SQLModel, table=True):
    """Append-only ledger entry."""

    __tablename__ = "workflow_history"

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(unique=True)
    request_id: str = Field(index=True)
    step_id: str
    step_name: str
    action: str
    performed_by: str
    previous_status: str
    new_status: str
    comment: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True))
    )
