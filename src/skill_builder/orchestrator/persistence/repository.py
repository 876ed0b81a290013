"""Storage contracts consumed by the workflow coordinator."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from .models import HydratedRun, RunMeta, StepRow


class PersistenceError(RuntimeError):
    """A read or write against durable storage failed."""


class WorkflowRepository(Protocol):
    """Durable run, step and artifact rows keyed by skill name and step id."""

    def hydrate(self, skill_name: str) -> HydratedRun | None:
        """Return the stored run, or None when the skill was never saved."""

    def save(self, skill_name: str, run_meta: RunMeta, steps: Sequence[StepRow]) -> None:
        """Upsert the run row and every submitted step row."""

    def save_artifact_content(
        self, skill_name: str, step_id: int, relative_path: str, content: str
    ) -> None:
        """Store a document exactly as given."""

    def get_artifact_content(
        self, skill_name: str, step_id: int, relative_path: str
    ) -> str | None:
        """Return a stored document, or None when it was never saved."""

    def reset_steps_from(self, skill_name: str, step_id: int) -> None:
        """Return steps >= step_id to pending and drop their artifacts."""


class SessionSink(Protocol):
    def create_session(self, skill_name: str) -> str:
        """Open a usage session and return its id."""

    def end_session(self, session_id: str) -> None:
        """Close a session. Closing twice is a no-op."""
