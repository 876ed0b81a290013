"""Contract between the coordinator and whatever runs agent steps."""

from __future__ import annotations

import queue
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from skill_builder.orchestrator.workflow.events import AgentCompletion

__all__ = [
    "AgentAdapter",
    "AgentCompletion",
    "AgentFlags",
    "AgentStartError",
    "CompletionQueue",
    "StepResetPreview",
]


class AgentStartError(RuntimeError):
    """Raised when an agent process cannot be started at all."""

    def __init__(self, message: str, *, step_id: int | None = None) -> None:
        super().__init__(message)
        self.step_id = step_id


@dataclass(frozen=True, slots=True)
class AgentFlags:
    model: str | None = None
    resume: bool = False
    rerun: bool = False
    message: str | None = None
    debug_mode: bool = False


@dataclass(frozen=True, slots=True)
class StepResetPreview:
    """Files that would be discarded for one step by a reset."""

    step_id: int
    step_name: str
    files: tuple[str, ...] = field(default_factory=tuple)


class AgentAdapter(Protocol):
    def start(
        self,
        artifact_name: str,
        step_id: int,
        domain: str,
        workspace_path: Path | None,
        flags: AgentFlags,
    ) -> str:
        """Start an agent invocation and return its run token.

        Exactly one `AgentCompletion` for the token is later made available
        through `poll_completions`.
        """
        ...

    def cancel(self, artifact_name: str) -> None: ...

    def preview_reset(self, artifact_name: str, from_step: int) -> list[StepResetPreview]: ...

    def discard_outputs(self, artifact_name: str, from_step: int) -> list[str]:
        """Delete on-disk outputs of steps >= from_step."""
        ...

    def poll_completions(self) -> list[AgentCompletion]: ...


class CompletionQueue:
    """Thread-safe mailbox for terminal agent events.

    Worker threads `post`; the coordinator `drain`s on its own turn.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[AgentCompletion] = queue.Queue()

    def post(self, completion: AgentCompletion) -> None:
        self._queue.put(completion)

    def drain(self) -> list[AgentCompletion]:
        items: list[AgentCompletion] = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def wait(self, timeout: float | None = None) -> AgentCompletion | None:
        """Block for the next event; used by the CLI while a step runs."""

        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
