"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from skill_builder.orchestrator.agents.adapter import (
    AgentCompletion,
    AgentFlags,
    AgentStartError,
    StepResetPreview,
)
from skill_builder.orchestrator.persistence import (
    InMemorySessionStore,
    InMemoryWorkflowRepository,
    PersistenceError,
    RunMeta,
    StepRow,
)
from skill_builder.orchestrator.workflow.catalog import DEFAULT_CATALOG, StepCatalog
from skill_builder.orchestrator.workflow.coordinator import WorkflowCoordinator


@dataclass
class StartCall:
    artifact_name: str
    step_id: int
    domain: str
    workspace_path: Path | None
    flags: AgentFlags
    token: str


@dataclass
class FakeAdapter:
    """Agent adapter that never spawns anything and records every call."""

    previews: list[StepResetPreview] = field(default_factory=list)
    fail_start: bool = False
    start_error: Exception | None = None
    starts: list[StartCall] = field(default_factory=list)
    cancels: list[str] = field(default_factory=list)
    discarded: list[tuple[str, int]] = field(default_factory=list)
    completions: list[AgentCompletion] = field(default_factory=list)

    def start(
        self,
        artifact_name: str,
        step_id: int,
        domain: str,
        workspace_path: Path | None,
        flags: AgentFlags,
    ) -> str:
        if self.fail_start:
            raise AgentStartError("agent binary not found", step_id=step_id)
        if self.start_error is not None:
            raise self.start_error
        token = f"run-{len(self.starts) + 1}"
        self.starts.append(
            StartCall(artifact_name, step_id, domain, workspace_path, flags, token)
        )
        return token

    @property
    def last_token(self) -> str:
        return self.starts[-1].token

    def finish(self, success: bool = True, token: str | None = None) -> None:
        self.completions.append(AgentCompletion(token=token or self.last_token, success=success))

    def cancel(self, artifact_name: str) -> None:
        self.cancels.append(artifact_name)

    def preview_reset(self, artifact_name: str, from_step: int) -> list[StepResetPreview]:
        return [p for p in self.previews if p.step_id >= from_step]

    def discard_outputs(self, artifact_name: str, from_step: int) -> list[str]:
        self.discarded.append((artifact_name, from_step))
        return []

    def poll_completions(self) -> list[AgentCompletion]:
        drained, self.completions = self.completions, []
        return drained


class RecordingRepository(InMemoryWorkflowRepository):
    """In-memory repository that records saves and can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.saves: list[tuple[str, RunMeta, list[StepRow]]] = []
        self.fail_saves = False
        self.fail_hydrate = False
        self.fail_artifacts = False

    def hydrate(self, skill_name: str):
        if self.fail_hydrate:
            raise PersistenceError("database is locked")
        return super().hydrate(skill_name)

    def save(self, skill_name: str, run_meta: RunMeta, steps: Sequence[StepRow]) -> None:
        if self.fail_saves:
            raise PersistenceError("disk full")
        self.saves.append((skill_name, run_meta, list(steps)))
        super().save(skill_name, run_meta, steps)

    def save_artifact_content(
        self, skill_name: str, step_id: int, relative_path: str, content: str
    ) -> None:
        if self.fail_artifacts:
            raise PersistenceError("disk full")
        super().save_artifact_content(skill_name, step_id, relative_path, content)


@pytest.fixture()
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture()
def repository() -> RecordingRepository:
    return RecordingRepository()


@pytest.fixture()
def sessions() -> InMemorySessionStore:
    return InMemorySessionStore()


CoordinatorFactory = Callable[..., WorkflowCoordinator]


@pytest.fixture()
def make_coordinator(
    adapter: FakeAdapter,
    repository: RecordingRepository,
    sessions: InMemorySessionStore,
) -> CoordinatorFactory:
    def _make(
        *,
        catalog: StepCatalog = DEFAULT_CATALOG,
        debug_mode: bool = False,
        workspace_path: Path | None = None,
        skills_path: Path | None = None,
    ) -> WorkflowCoordinator:
        return WorkflowCoordinator(
            adapter=adapter,
            persistence=repository,
            sessions=sessions,
            catalog=catalog,
            debug_mode=debug_mode,
            workspace_path=workspace_path,
            skills_path=skills_path,
        )

    return _make


@pytest.fixture()
def coordinator(make_coordinator: CoordinatorFactory) -> WorkflowCoordinator:
    return make_coordinator()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep a developer's .env and SKILL_BUILDER_* variables out of the tests."""

    for key in (
        "SKILL_BUILDER_WORKSPACE_PATH",
        "SKILL_BUILDER_SKILLS_PATH",
        "SKILL_BUILDER_STATE_PATH",
        "SKILL_BUILDER_DEBUG_MODE",
        "SKILL_BUILDER_AGENT_BINARY",
        "SKILL_BUILDER_AGENT_TIMEOUT_SECONDS",
        "SKILL_BUILDER_HOST",
        "SKILL_BUILDER_PORT",
        "SKILL_BUILDER_CORS_ORIGINS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
