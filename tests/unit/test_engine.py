"""Advancement engine tests."""

import pytest

from barangay_workflow import (
    AlreadyResolved,
    CertificateRequest,
    ConfigMissing,
    NotAuthorizedForStep,
    RequestNotFound,
    WorkflowAction,
    WorkflowAssignment,
    WorkflowConfiguration,
    WorkflowEngine,
)
from barangay_workflow.persistence import InMemoryWorkflowStore


def _two_step_config() -> WorkflowConfiguration:
    return WorkflowConfiguration(
        certificate_type="cohabitation",
        steps=[
            {"id": 1, "name": "Staff Review", "status": "staff_review", "assignedUsers": ["U1", "U2"]},
            {"id": 2, "name": "Captain Approval", "status": "captain_approval", "assignedUsers": ["U3"]},
        ],
    )


async def _setup(config=None):
    store = InMemoryWorkflowStore()
    await store.save_configuration(config or _two_step_config())
    engine = WorkflowEngine(store)
    request = await engine.initiate(
        CertificateRequest(certificate_type="cohabitation", applicant_name="Maria Santos")
    )
    return store, engine, request


async def _pending(store, request_id):
    rows = await store.list_assignments(request_id=request_id, status="pending")
    return sorted((a.step_id, a.assigned_user_id) for a in rows)


@pytest.mark.asyncio
async def test_two_step_scenario():
    store, engine, request = await _setup()

    assert request.status == "staff_review"
    assert request.current_step_id == "1"
    assert await _pending(store, request.id) == [("1", "U1"), ("1", "U2")]

    entry = await engine.record_action(request.id, 1, "U1", "approve")
    assert entry.previous_status == "staff_review"
    assert entry.new_status == "captain_approval"
    assert entry.step_name == "Staff Review"

    step_one = await store.list_assignments(request_id=request.id, step_id="1")
    assert {a.status for a in step_one} == {"completed"}
    assert all(a.completed_at is not None for a in step_one)
    assert await _pending(store, request.id) == [("2", "U3")]
    current = await store.get_request(request.id)
    assert current.status == "captain_approval"
    assert current.current_step_id == "2"

    final = await engine.record_action(request.id, 2, "U3", WorkflowAction.APPROVE)
    assert final.new_status == "completed"

    current = await store.get_request(request.id)
    assert current.status == "completed"
    assert current.current_step_id is None
    assert await _pending(store, request.id) == []
    assert len(await engine.history(request.id)) == 2


@pytest.mark.asyncio
async def test_initiate_without_configuration_writes_nothing():
    store = InMemoryWorkflowStore()
    engine = WorkflowEngine(store)

    with pytest.raises(ConfigMissing):
        await engine.initiate(CertificateRequest(certificate_type="natural_death"))

    assert await store.list_requests() == []
    assert await store.list_assignments() == []


@pytest.mark.asyncio
async def test_initiate_generates_reference_number():
    store, engine, request = await _setup()
    assert request.reference_number.startswith("CH-")
    assert request.reference_number.endswith("-00001")

    second = await engine.initiate(CertificateRequest(certificate_type="cohabitation"))
    assert second.reference_number.endswith("-00002")


@pytest.mark.asyncio
async def test_next_reference_number_skips_other_years_and_types():
    store, engine, _ = await _setup()
    await store.create_request(
        CertificateRequest(certificate_type="cohabitation", reference_number="CH-2025-00041")
    )
    await store.create_request(
        CertificateRequest(certificate_type="cohabitation", reference_number="CH-2026-00007")
    )

    assert await engine.next_reference_number("cohabitation", year=2026) == "CH-2026-00008"
    assert await engine.next_reference_number("barangay_clearance", year=2026) == "BC-2026-00001"
    assert await engine.next_reference_number("unknown_type", year=2026) == "REF-2026-00001"


@pytest.mark.asyncio
async def test_repeated_approve_is_already_resolved():
    store, engine, request = await _setup()
    await engine.record_action(request.id, 1, "U1", "approve")

    with pytest.raises(AlreadyResolved):
        await engine.record_action(request.id, 1, "U1", "approve")

    assert len(await engine.history(request.id)) == 1
    assert await _pending(store, request.id) == [("2", "U3")]


@pytest.mark.asyncio
async def test_second_approver_after_step_resolved():
    store, engine, request = await _setup()
    await engine.record_action(request.id, 1, "U1", "approve")

    with pytest.raises(AlreadyResolved):
        await engine.record_action(request.id, 1, "U2", "approve")
    assert len(await engine.history(request.id)) == 1


@pytest.mark.asyncio
async def test_unassigned_actor_is_rejected_without_mutation():
    store, engine, request = await _setup()

    with pytest.raises(NotAuthorizedForStep):
        await engine.record_action(request.id, 1, "U3", "approve")
    with pytest.raises(NotAuthorizedForStep):
        await engine.record_action(request.id, 2, "U3", "approve")

    assert await engine.history(request.id) == []
    assert await _pending(store, request.id) == [("1", "U1"), ("1", "U2")]
    assert (await store.get_request(request.id)).status == "staff_review"


@pytest.mark.asyncio
async def test_unknown_request():
    _, engine, _ = await _setup()
    with pytest.raises(RequestNotFound):
        await engine.record_action("missing", 1, "U1", "approve")


@pytest.mark.asyncio
async def test_unknown_action_value():
    _, engine, request = await _setup()
    with pytest.raises(ValueError):
        await engine.record_action(request.id, 1, "U1", "escalate")


@pytest.mark.asyncio
async def test_return_routes_back_to_first_step():
    store, engine, request = await _setup()
    await engine.record_action(request.id, 1, "U2", "approve")

    entry = await engine.record_action(
        request.id, 2, "U3", "return", comment="Missing barangay ID"
    )

    assert entry.action is WorkflowAction.RETURN
    assert entry.previous_status == "captain_approval"
    assert entry.new_status == "staff_review"
    assert entry.comment == "Missing barangay ID"
    assert await _pending(store, request.id) == [("1", "U1"), ("1", "U2")]
    current = await store.get_request(request.id)
    assert current.status == "staff_review"
    assert current.current_step_id == "1"

    # the request can go through the workflow again
    await engine.record_action(request.id, 1, "U1", "approve")
    await engine.record_action(request.id, 2, "U3", "approve")
    assert (await store.get_request(request.id)).status == "completed"


@pytest.mark.asyncio
async def test_replayed_return_on_first_step_is_already_resolved():
    store, engine, request = await _setup()
    await engine.record_action(request.id, 1, "U1", "return")
    assert await _pending(store, request.id) == [("1", "U1"), ("1", "U2")]

    with pytest.raises(AlreadyResolved):
        await engine.record_action(request.id, 1, "U1", "return")

    assert len(await engine.history(request.id)) == 1
    assert await _pending(store, request.id) == [("1", "U1"), ("1", "U2")]


@pytest.mark.asyncio
async def test_reject_is_terminal():
    store, engine, request = await _setup()

    entry = await engine.record_action(request.id, 1, "U2", "reject", comment="Duplicate")

    assert entry.new_status == "rejected"
    assert await _pending(store, request.id) == []
    current = await store.get_request(request.id)
    assert current.status == "rejected"
    assert current.current_step_id is None

    for action in ("approve", "return", "reject"):
        with pytest.raises(AlreadyResolved):
            await engine.record_action(request.id, 1, "U1", action)
    assert len(await engine.history(request.id)) == 1


@pytest.mark.asyncio
async def test_completed_request_rejects_further_actions():
    store, engine, request = await _setup()
    await engine.record_action(request.id, 1, "U1", "approve")
    await engine.record_action(request.id, 2, "U3", "approve")

    with pytest.raises(AlreadyResolved):
        await engine.record_action(request.id, 2, "U3", "return")


@pytest.mark.asyncio
async def test_history_follows_configured_path():
    config = WorkflowConfiguration(
        certificate_type="cohabitation",
        steps=[
            {"id": 111, "name": "Review Request Team", "status": "staff_review", "assignedUsers": ["U1"]},
            {"id": 2, "name": "Secretary", "status": "secretary_approval", "assignedUsers": ["U2"]},
            {"id": 3, "name": "Captain", "status": "captain_approval", "assignedUsers": ["U3"]},
            {"id": 999, "name": "Releasing Team", "status": "oic_review", "assignedUsers": ["U4"]},
        ],
    )
    store, engine, request = await _setup(config)

    await engine.record_action(request.id, 111, "U1", "approve")
    await engine.record_action(request.id, 2, "U2", "approve")
    await engine.record_action(request.id, 3, "U3", "return")
    await engine.record_action(request.id, 111, "U1", "approve")
    await engine.record_action(request.id, 2, "U2", "approve")
    await engine.record_action(request.id, 3, "U3", "approve")
    await engine.record_action(request.id, 999, "U4", "approve")

    history = await engine.history(request.id)
    assert [(h.step_id, h.action.value, h.new_status) for h in history] == [
        ("111", "approve", "secretary_approval"),
        ("2", "approve", "captain_approval"),
        ("3", "return", "staff_review"),
        ("111", "approve", "secretary_approval"),
        ("2", "approve", "captain_approval"),
        ("3", "approve", "oic_review"),
        ("999", "approve", "completed"),
    ]
    for previous, current in zip(history, history[1:]):
        assert config.step_by_id(current.step_id).status == previous.new_status


@pytest.mark.asyncio
async def test_action_on_step_request_has_left_is_refused():
    config = WorkflowConfiguration(
        certificate_type="cohabitation",
        steps=[
            {"id": 1, "name": "Review", "status": "staff_review", "assignedUsers": ["U1"]},
            {"id": 2, "name": "Secretary", "status": "secretary_approval", "assignedUsers": ["U2"]},
            {"id": 3, "name": "Captain", "status": "captain_approval", "assignedUsers": ["U3"]},
        ],
    )
    store, engine, request = await _setup(config)
    await engine.record_action(request.id, 1, "U1", "approve")
    await engine.record_action(request.id, 2, "U2", "approve")
    # leftover pending row on a step the request already passed
    await store.create_assignment(
        WorkflowAssignment(
            request_id=request.id,
            certificate_type="cohabitation",
            step_id="1",
            step_name="Review",
            assigned_user_id="U1",
        )
    )

    with pytest.raises(AlreadyResolved):
        await engine.record_action(request.id, 1, "U1", "approve")

    current = await store.get_request(request.id)
    assert current.status == "captain_approval"
    assert current.current_step_id == "3"
    assert len(await engine.history(request.id)) == 2
    assert await _pending(store, request.id) == [("1", "U1"), ("3", "U3")]
