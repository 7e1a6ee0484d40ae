"""Command line interface for operating certificate request workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Coroutine, Optional, TypeVar

import typer

from barangay_workflow import (
    AssignmentQueries,
    CertificateRequest,
    ConfigurationLoader,
    WorkflowEngine,
    WorkflowError,
    get_repository,
    reconcile,
)
from barangay_workflow.config import load_config

T = TypeVar("T")

app = typer.Typer(help="CLI for barangay certificate workflows")

config_app = typer.Typer(help="Commands for managing workflow configurations")
request_app = typer.Typer(help="Commands for certificate requests")
assignments_app = typer.Typer(help="Commands for approver assignments")

app.add_typer(config_app, name="config")
app.add_typer(request_app, name="request")
app.add_typer(assignments_app, name="assignments")


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a store-backed coroutine, turning workflow errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except WorkflowError as exc:
        _fail(str(exc))


@app.callback()
def main() -> None:
    """Barangay workflow CLI entry point."""
    logging.basicConfig(
        level=load_config().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@config_app.command("list")
def config_list() -> None:
    """List certificate types that have a workflow configured."""
    repo = get_repository()
    configs = _run(repo.list_configurations())
    if not configs:
        typer.echo("No workflows configured")
        return
    for config in configs:
        state = "active" if config.is_active else "inactive"
        typer.echo(f"{config.certificate_type}\t{len(config.steps)} steps\t{state}")


@config_app.command("show")
def config_show(certificate_type: str) -> None:
    """Show the ordered steps of one workflow."""
    loader = ConfigurationLoader(get_repository())
    try:
        config = asyncio.run(loader.get_configuration(certificate_type))
    except WorkflowError as exc:
        _fail(str(exc))
    typer.echo(f"Workflow {config.certificate_type}: {config.config_name or ''}")
    for step in config.steps:
        typer.echo(
            f"- [{step.id}] {step.name} ({step.status}): "
            f"{', '.join(step.assigned_users)}"
        )


@config_app.command("load")
def config_load(
    path: Optional[Path] = typer.Argument(
        None, help="Workflow YAML file (defaults to workflows_file from config)"
    ),
) -> None:
    """
    Save every workflow defined in a YAML file.

    Example:
        barangay-workflow config load ./workflows.yaml
    """
    path = path or load_config().workflows_path
    if not path.exists():
        _fail("Specified path does not exist")
    loader = ConfigurationLoader(get_repository())
    try:
        configs = asyncio.run(loader.seed(path))
    except WorkflowError as exc:
        _fail(str(exc))
    for config in configs:
        typer.echo(f"Saved {config.certificate_type} ({len(config.steps)} steps)")


@request_app.command("create")
def request_create(
    certificate_type: str,
    applicant: str = typer.Option(..., help="Applicant full name"),
    reference: Optional[str] = typer.Option(
        None, help="Reference number (generated when omitted)"
    ),
    payload: Optional[str] = typer.Option(
        None, help="JSON object with certificate-specific fields"
    ),
) -> None:
    """
    Create a certificate request and route it to its first step.

    Example:
        barangay-workflow request create natural_death --applicant "Juan Dela Cruz"
    """
    try:
        data = json.loads(payload) if payload else {}
    except json.JSONDecodeError as exc:
        _fail(f"Invalid payload JSON: {exc}")
    request = CertificateRequest(
        certificate_type=certificate_type,
        applicant_name=applicant,
        reference_number=reference or "",
        payload=data,
    )
    engine = WorkflowEngine(get_repository())
    try:
        created = asyncio.run(engine.initiate(request))
    except WorkflowError as exc:
        _fail(str(exc))
    typer.echo(f"Request {created.id}")
    typer.echo(f"Reference: {created.reference_number}")
    typer.echo(f"Status: {created.status}")


@request_app.command("show")
def request_show(request_id: str) -> None:
    """Show a request with its transition history."""
    repo = get_repository()
    request = _run(repo.get_request(request_id))
    if request is None:
        _fail("Request not found")
    typer.echo(f"Request {request.reference_number}: {request.status}")
    typer.echo(f"Type: {request.certificate_type}")
    typer.echo(f"Applicant: {request.applicant_name}")
    if request.payload:
        typer.echo(f"Payload: {request.payload}")
    for entry in _run(repo.list_history(request_id)):
        line = (
            f"- {entry.created_at:%Y-%m-%d %H:%M} {entry.step_name}: "
            f"{entry.action.value} by {entry.performed_by} "
            f"({entry.previous_status} -> {entry.new_status})"
        )
        if entry.comment:
            line += f" \"{entry.comment}\""
        typer.echo(line)


@request_app.command("act")
def request_act(
    request_id: str,
    step_id: str,
    actor_id: str,
    action: str,
    comment: Optional[str] = typer.Option(None, help="Reason or remark"),
) -> None:
    """
    Approve, return or reject the current step of a request.

    Example:
        barangay-workflow request act <request-id> 1 <user-id> approve
    """
    engine = WorkflowEngine(get_repository())
    try:
        entry = asyncio.run(
            engine.record_action(request_id, step_id, actor_id, action, comment)
        )
    except ValueError:
        _fail(f"Unknown action '{action}', expected approve, return or reject")
    except WorkflowError as exc:
        _fail(str(exc))
    typer.echo(f"{entry.step_name}: {entry.previous_status} -> {entry.new_status}")


@assignments_app.command("list")
def assignments_list(user_id: str) -> None:
    """List pending assignments for a user."""
    queries = AssignmentQueries(get_repository())
    tasks = _run(queries.list_pending_for_user(user_id))
    if not tasks:
        typer.echo("No pending assignments")
        return
    for task in tasks:
        typer.echo(
            f"{task.request.reference_number}\t{task.request.certificate_type}\t"
            f"{task.assignment.step_name}\t{task.request.applicant_name}"
        )


@assignments_app.command("check")
def assignments_check(user_id: str, request_id: str) -> None:
    """Check whether a user holds a pending assignment on a request."""
    queries = AssignmentQueries(get_repository())
    check = _run(queries.is_assigned(user_id, request_id))
    if not check.is_assigned:
        typer.echo("Not assigned")
        raise typer.Exit(code=1)
    assignment = check.assignment
    typer.echo(f"Assigned at step {assignment.step_id} ({assignment.step_name})")


@app.command("reconcile")
def reconcile_command() -> None:
    """
    Recreate pending assignments missing for open requests.

    Also finishes transitions interrupted by a store failure. Safe to run
    repeatedly; existing pending assignments are never duplicated.
    """
    report = _run(reconcile(get_repository()))
    for assignment in report.created:
        typer.echo(
            f"created\t{assignment.request_id}\t{assignment.step_name}\t"
            f"{assignment.assigned_user_id}"
        )
    for request_id, reason in report.skipped.items():
        typer.echo(f"skipped\t{request_id}\t{reason}")
    for request_id in report.resumed:
        typer.echo(f"resumed\t{request_id}")
    for assignment in report.stale:
        typer.echo(
            f"stale\t{assignment.request_id}\t{assignment.step_name}\t"
            f"{assignment.assigned_user_id}"
        )
    typer.echo(
        f"{len(report.created)} created, {len(report.skipped)} skipped, "
        f"{len(report.stale)} stale, {len(report.resumed)} resumed"
    )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
