"""Persistence layer for certificate request workflows."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import BarangayWorkflowConfig, database_url_from_env, load_config
from .inmemory import InMemoryWorkflowStore
from .postgres import PostgresWorkflowStore
from .repository import WorkflowStore
from .sqlite import SQLiteWorkflowStore

logger = logging.getLogger(__name__)

_repository_instance: WorkflowStore | None = None


def _open_store(database_url: Optional[str]) -> WorkflowStore:
    if not database_url:
        return InMemoryWorkflowStore()
    scheme, sep, rest = database_url.partition("://")
    if not sep:
        raise ValueError(f"Malformed database URL: {database_url}")
    if scheme == "sqlite":
        return SQLiteWorkflowStore(rest)
    if scheme in ("postgres", "postgresql"):
        return PostgresWorkflowStore(database_url)
    raise ValueError(f"Unsupported database backend: {scheme}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[BarangayWorkflowConfig] = None
) -> WorkflowStore:
    """Return the process-wide workflow store, opening it on first use.

    Resolution order for the database URL: the ``database_url`` argument,
    ``BARANGAY_WORKFLOW_DATABASE_URL`` / ``DATABASE_URL``, then
    ``config.database_url``. Without any, workflow state lives in memory and
    is lost on exit. Passing either argument replaces the cached store.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = database_url or database_url_from_env() or config.database_url
    _repository_instance = _open_store(database_url)
    logger.debug(f"Using {type(_repository_instance).__name__}")
    return _repository_instance


__all__ = [
    "WorkflowStore",
    "SQLiteWorkflowStore",
    "PostgresWorkflowStore",
    "InMemoryWorkflowStore",
    "get_repository",
]
