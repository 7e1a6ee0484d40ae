"""barangay-workflow: approval routing for barangay certificate requests."""

from .configuration import ConfigurationLoader, load_workflows_file
from .engine import WorkflowEngine
from .errors import (
    AlreadyResolved,
    ConfigMissing,
    InvalidConfiguration,
    NotAuthorizedForStep,
    RequestNotFound,
    StoreUnavailable,
    WorkflowError,
)
from .models import (
    CertificateRequest,
    RequestStatus,
    Step,
    WorkflowAction,
    WorkflowAssignment,
    WorkflowConfiguration,
    WorkflowHistory,
)
from .persistence import get_repository
from .queries import AssignmentQueries
from .reconcile import reconcile

__version__ = "0.1.0"
__all__ = [
    "AlreadyResolved",
    "AssignmentQueries",
    "CertificateRequest",
    "ConfigMissing",
    "ConfigurationLoader",
    "InvalidConfiguration",
    "NotAuthorizedForStep",
    "RequestNotFound",
    "RequestStatus",
    "Step",
    "StoreUnavailable",
    "WorkflowAction",
    "WorkflowAssignment",
    "WorkflowConfiguration",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowHistory",
    "get_repository",
    "load_workflows_file",
    "reconcile",
]
