"""Store abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..models import (
    CertificateRequest,
    WorkflowAssignment,
    WorkflowConfiguration,
    WorkflowHistory,
)


class WorkflowStore(Protocol):
    """Protocol for workflow state persistence backends.

    Mutations that the engine relies on for concurrency safety are
    conditional: ``create_assignment`` refuses to insert a second pending row
    for the same (request, step, user) and ``complete_assignments`` only
    touches rows still in ``pending`` state, reporting how many it changed.
    """

    async def get_configuration(
        self, certificate_type: str
    ) -> WorkflowConfiguration | None:
        """Return the configuration for ``certificate_type`` if one exists."""

    async def save_configuration(self, config: WorkflowConfiguration) -> None:
        """Insert or replace the configuration keyed by certificate type."""

    async def list_configurations(self) -> list[WorkflowConfiguration]:
        """Return all stored configurations."""

    async def create_request(self, request: CertificateRequest) -> None:
        """Persist a new certificate request."""

    async def get_request(self, request_id: str) -> CertificateRequest | None:
        """Retrieve a certificate request by id."""

    async def list_requests(
        self,
        status: Optional[str] = None,
        certificate_type: Optional[str] = None,
    ) -> list[CertificateRequest]:
        """Return requests, optionally filtered, oldest first."""

    async def advance_request(
        self,
        request_id: str,
        expected_revision: int,
        status: str,
        current_step_id: Optional[str],
        transition: Optional[WorkflowHistory] = None,
    ) -> bool:
        """Set status and step pointer if the request is still at ``expected_revision``.

        A successful update increments the revision and records ``transition``
        as the request's ``last_transition``. Returns ``False`` when another
        writer advanced the request first.
        """

    async def create_assignment(self, assignment: WorkflowAssignment) -> bool:
        """Insert a pending assignment unless an identical one is pending.

        Returns ``True`` when the row was inserted.
        """

    async def complete_assignments(self, request_id: str, step_id: str) -> int:
        """Mark pending assignments of a request step completed.

        Returns the number of rows that moved from pending to completed.
        """

    async def list_assignments(
        self,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        step_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[WorkflowAssignment]:
        """Return assignments matching every given filter, newest first."""

    async def append_history(self, entry: WorkflowHistory) -> None:
        """Append an entry to the history ledger.

        Appending an entry whose id is already recorded is a no-op.
        """

    async def list_history(self, request_id: str) -> list[WorkflowHistory]:
        """Return the ledger for a request in the order it was written."""
