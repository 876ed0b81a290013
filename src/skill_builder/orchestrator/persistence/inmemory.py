"""In-memory persistence.

Useful for tests and for the REST server when no state directory should be
touched. Data is not kept across process restarts.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from .models import HydratedRun, RunDocument, RunMeta, SessionRow, StepRow, utc_iso_now
from .repository import PersistenceError


class InMemoryWorkflowRepository:
    def __init__(self) -> None:
        self._documents: dict[str, RunDocument] = {}

    def hydrate(self, skill_name: str) -> HydratedRun | None:
        document = self._documents.get(skill_name)
        return document.hydrated() if document is not None else None

    def save(self, skill_name: str, run_meta: RunMeta, steps: Sequence[StepRow]) -> None:
        document = self._documents.get(skill_name) or RunDocument.new(skill_name, run_meta)
        document.apply_save(run_meta, steps)
        self._documents[skill_name] = document

    def save_artifact_content(
        self, skill_name: str, step_id: int, relative_path: str, content: str
    ) -> None:
        document = self._documents.get(skill_name)
        if document is None:
            raise PersistenceError(f"No workflow run for {skill_name}")
        document.put_artifact(step_id, relative_path, content)

    def get_artifact_content(
        self, skill_name: str, step_id: int, relative_path: str
    ) -> str | None:
        document = self._documents.get(skill_name)
        return document.get_artifact(step_id, relative_path) if document is not None else None

    def reset_steps_from(self, skill_name: str, step_id: int) -> None:
        document = self._documents.get(skill_name)
        if document is not None:
            document.reset_from(step_id)


class InMemorySessionStore:
    def __init__(self) -> None:
        self.sessions: dict[str, SessionRow] = {}

    def create_session(self, skill_name: str) -> str:
        session = SessionRow(session_id=uuid.uuid4().hex, skill_name=skill_name)
        self.sessions[session.session_id] = session
        return session.session_id

    def end_session(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        if session is None or session.ended_at is not None:
            return
        self.sessions[session_id] = session.model_copy(update={"ended_at": utc_iso_now()})

    def open_sessions(self) -> list[SessionRow]:
        return [s for s in self.sessions.values() if s.ended_at is None]
