from .models import (
    CertificateRequestRow,
    WorkflowAssignmentRow,
    WorkflowConfigurationRow,
    WorkflowHistoryRow,
)
from .workflow_db import WorkflowDB

__all__ = [
    "CertificateRequestRow",
    "WorkflowAssignmentRow",
    "WorkflowConfigurationRow",
    "WorkflowHistoryRow",
    "WorkflowDB",
]
