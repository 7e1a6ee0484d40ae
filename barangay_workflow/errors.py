"""Error taxonomy for the workflow engine."""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


class ConfigMissing(WorkflowError):
    """No active workflow configuration exists for a certificate type."""

    def __init__(self, certificate_type: str) -> None:
        super().__init__(f"No active workflow configuration for '{certificate_type}'")
        self.certificate_type = certificate_type


class InvalidConfiguration(WorkflowError):
    """A workflow configuration failed validation."""


class RequestNotFound(WorkflowError):
    """The referenced certificate request does not exist."""

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Certificate request '{request_id}' not found")
        self.request_id = request_id


class NotAuthorizedForStep(WorkflowError):
    """The actor holds no pending assignment for the request step."""

    def __init__(self, request_id: str, step_id: str, actor_id: str) -> None:
        super().__init__(
            f"User '{actor_id}' has no pending assignment for step {step_id} "
            f"of request '{request_id}'"
        )
        self.request_id = request_id
        self.step_id = step_id
        self.actor_id = actor_id


class AlreadyResolved(WorkflowError):
    """The action is stale or a duplicate of one already applied."""

    def __init__(self, request_id: str, reason: str) -> None:
        super().__init__(f"Request '{request_id}' already resolved: {reason}")
        self.request_id = request_id
        self.reason = reason


class StoreUnavailable(WorkflowError):
    """The backing store failed to complete an operation."""


__all__ = [
    "WorkflowError",
    "ConfigMissing",
    "InvalidConfiguration",
    "RequestNotFound",
    "NotAuthorizedForStep",
    "AlreadyResolved",
    "StoreUnavailable",
]
