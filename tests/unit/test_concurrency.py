"""Concurrent actions on the same request step."""

import asyncio

import pytest

from barangay_workflow import (
    AlreadyResolved,
    CertificateRequest,
    WorkflowConfiguration,
    WorkflowEngine,
)
from barangay_workflow.persistence import InMemoryWorkflowStore


class YieldingStore(InMemoryWorkflowStore):
    """In-memory store that yields to the event loop before every call.

    Forces concurrent engine calls to interleave between reads and writes
    the way they would against a remote database.
    """

    async def get_request(self, request_id):
        await asyncio.sleep(0)
        return await super().get_request(request_id)

    async def list_history(self, request_id):
        await asyncio.sleep(0)
        return await super().list_history(request_id)

    async def list_assignments(self, **filters):
        await asyncio.sleep(0)
        return await super().list_assignments(**filters)

    async def get_configuration(self, certificate_type):
        await asyncio.sleep(0)
        return await super().get_configuration(certificate_type)

    async def advance_request(self, *args):
        await asyncio.sleep(0)
        return await super().advance_request(*args)

    async def complete_assignments(self, request_id, step_id):
        await asyncio.sleep(0)
        return await super().complete_assignments(request_id, step_id)

    async def create_assignment(self, assignment):
        await asyncio.sleep(0)
        return await super().create_assignment(assignment)


async def _setup():
    store = YieldingStore()
    await store.save_configuration(
        WorkflowConfiguration(
            certificate_type="certification_same_person",
            steps=[
                {"id": 1, "name": "Review", "status": "staff_review", "assignedUsers": ["U1", "U2"]},
                {"id": 2, "name": "Captain", "status": "captain_approval", "assignedUsers": ["U3"]},
            ],
        )
    )
    engine = WorkflowEngine(store)
    request = await engine.initiate(
        CertificateRequest(certificate_type="certification_same_person")
    )
    return store, engine, request


@pytest.mark.asyncio
async def test_concurrent_approvals_apply_once():
    store, engine, request = await _setup()

    results = await asyncio.gather(
        engine.record_action(request.id, 1, "U1", "approve"),
        engine.record_action(request.id, 1, "U2", "approve"),
        return_exceptions=True,
    )

    applied = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(applied) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], AlreadyResolved)

    assert len(await store.list_history(request.id)) == 1
    next_step = await store.list_assignments(
        request_id=request.id, step_id="2", status="pending"
    )
    assert [a.assigned_user_id for a in next_step] == ["U3"]
    assert (await store.get_request(request.id)).status == "captain_approval"


@pytest.mark.asyncio
async def test_concurrent_approve_and_reject_apply_once():
    store, engine, request = await _setup()

    results = await asyncio.gather(
        engine.record_action(request.id, 1, "U1", "reject"),
        engine.record_action(request.id, 1, "U2", "approve"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, AlreadyResolved) for r in results) == 1
    history = await store.list_history(request.id)
    assert len(history) == 1
    current = await store.get_request(request.id)
    assert current.status == history[0].new_status


@pytest.mark.asyncio
async def test_duplicate_return_submissions_apply_once():
    store, engine, request = await _setup()

    results = await asyncio.gather(
        engine.record_action(request.id, 1, "U1", "return"),
        engine.record_action(request.id, 1, "U1", "return"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, AlreadyResolved) for r in results) == 1
    assert len(await store.list_history(request.id)) == 1
    pending = await store.list_assignments(request_id=request.id, status="pending")
    assert sorted(a.assigned_user_id for a in pending) == ["U1", "U2"]


@pytest.mark.asyncio
async def test_independent_requests_progress_concurrently():
    store, engine, first = await _setup()
    second = await engine.initiate(
        CertificateRequest(certificate_type="certification_same_person")
    )

    await asyncio.gather(
        engine.record_action(first.id, 1, "U1", "approve"),
        engine.record_action(second.id, 1, "U2", "approve"),
    )

    for request in (first, second):
        assert (await store.get_request(request.id)).status == "captain_approval"
        assert len(await store.list_history(request.id)) == 1
