import pytest

from barangay_workflow import (
    AssignmentQueries,
    CertificateRequest,
    WorkflowConfiguration,
    WorkflowEngine,
)
from barangay_workflow.models import WorkflowAssignment
from barangay_workflow.persistence import InMemoryWorkflowStore


async def _setup():
    store = InMemoryWorkflowStore()
    await store.save_configuration(
        WorkflowConfiguration(
            certificate_type="natural_death",
            steps=[
                {"id": 1, "name": "Review Request Team", "status": "staff_review", "assignedUsers": ["U1", "U2"]},
                {"id": 2, "name": "Captain Approval", "status": "captain_approval", "assignedUsers": ["U3"]},
            ],
        )
    )
    return store, WorkflowEngine(store), AssignmentQueries(store)


@pytest.mark.asyncio
async def test_list_pending_for_user_joins_request_and_step():
    store, engine, queries = await _setup()
    older = await engine.initiate(
        CertificateRequest(certificate_type="natural_death", applicant_name="Ana Reyes")
    )
    newer = await engine.initiate(
        CertificateRequest(certificate_type="natural_death", applicant_name="Jose Cruz")
    )

    tasks = await queries.list_pending_for_user("U1")

    assert [t.request.id for t in tasks] == [newer.id, older.id]
    task = tasks[0]
    assert task.request.applicant_name == "Jose Cruz"
    assert task.request.status == "staff_review"
    assert task.step is not None
    assert task.step.name == "Review Request Team"
    assert task.assignment.status == "pending"
    assert await queries.list_pending_for_user("U3") == []


@pytest.mark.asyncio
async def test_pending_list_excludes_resolved_assignments():
    store, engine, queries = await _setup()
    request = await engine.initiate(CertificateRequest(certificate_type="natural_death"))
    await engine.record_action(request.id, 1, "U2", "approve")

    assert await queries.list_pending_for_user("U1") == []
    [task] = await queries.list_pending_for_user("U3")
    assert task.assignment.step_id == "2"

    history_rows = await queries.list_for_user("U1")
    assert [a.status for a in history_rows] == ["completed"]


@pytest.mark.asyncio
async def test_pending_task_for_orphaned_assignment_is_skipped():
    store, _, queries = await _setup()
    await store.create_assignment(
        WorkflowAssignment(
            request_id="deleted-request",
            certificate_type="natural_death",
            step_id="1",
            step_name="Review Request Team",
            assigned_user_id="U1",
        )
    )
    assert await queries.list_pending_for_user("U1") == []


@pytest.mark.asyncio
async def test_is_assigned_reflects_pending_rows_only():
    store, engine, queries = await _setup()
    request = await engine.initiate(CertificateRequest(certificate_type="natural_death"))

    check = await queries.is_assigned("U1", request.id)
    assert check.is_assigned
    assert check.assignment.step_id == "1"
    assert not (await queries.is_assigned("U3", request.id)).is_assigned

    await engine.record_action(request.id, 1, "U1", "approve")

    missing = await queries.is_assigned("U1", request.id)
    assert not missing.is_assigned
    assert missing.assignment is None
    assert (await queries.is_assigned("U3", request.id)).is_assigned
