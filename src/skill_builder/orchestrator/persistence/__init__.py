"""Persistence layer for skill builder workflow runs."""

from __future__ import annotations

from skill_builder.orchestrator.config import WorkflowSettings

from .inmemory import InMemorySessionStore, InMemoryWorkflowRepository
from .json_store import JsonSessionStore, JsonWorkflowRepository
from .models import ArtifactRow, HydratedRun, RunMeta, SessionRow, StepRow, WorkflowRunRow
from .repository import PersistenceError, SessionSink, WorkflowRepository


def get_repository(settings: WorkflowSettings | None = None) -> WorkflowRepository:
    """File-backed repository under the configured state path, or in-memory without settings."""

    if settings is None:
        return InMemoryWorkflowRepository()
    return JsonWorkflowRepository(settings.runs_state_dir)


def get_session_store(settings: WorkflowSettings | None = None) -> SessionSink:
    if settings is None:
        return InMemorySessionStore()
    return JsonSessionStore(settings.sessions_state_file)


__all__ = [
    "ArtifactRow",
    "HydratedRun",
    "InMemorySessionStore",
    "InMemoryWorkflowRepository",
    "JsonSessionStore",
    "JsonWorkflowRepository",
    "PersistenceError",
    "RunMeta",
    "SessionRow",
    "SessionSink",
    "StepRow",
    "WorkflowRepository",
    "WorkflowRunRow",
    "get_repository",
    "get_session_store",
]
