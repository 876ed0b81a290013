"""File-backed persistence.

One JSON document per skill under `runs/`, plus a single `sessions.json`.
Documents are rewritten whole on every save; this is a local, single-user
store.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from .models import HydratedRun, RunDocument, RunMeta, SessionRow, StepRow, utc_iso_now
from .repository import PersistenceError

logger = logging.getLogger(__name__)


def _document_name(skill_name: str) -> str:
    name = skill_name.strip()
    if not name or "/" in name or "\\" in name or name in {".", ".."}:
        raise PersistenceError(f"Invalid skill name: {skill_name!r}")
    return f"{name}.json"


@dataclass
class JsonWorkflowRepository:
    root: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _path(self, skill_name: str) -> Path:
        return self.root / _document_name(skill_name)

    def _load_unlocked(self, skill_name: str) -> RunDocument | None:
        path = self._path(skill_name)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return RunDocument.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise PersistenceError(f"Could not read workflow state for {skill_name}: {e}") from e

    def _save_unlocked(self, skill_name: str, document: RunDocument) -> None:
        path = self._path(skill_name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(document.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )
        except OSError as e:
            raise PersistenceError(f"Could not write workflow state for {skill_name}: {e}") from e

    def hydrate(self, skill_name: str) -> HydratedRun | None:
        with self._lock:
            document = self._load_unlocked(skill_name)
        return document.hydrated() if document is not None else None

    def save(self, skill_name: str, run_meta: RunMeta, steps: Sequence[StepRow]) -> None:
        with self._lock:
            document = self._load_unlocked(skill_name) or RunDocument.new(skill_name, run_meta)
            document.apply_save(run_meta, steps)
            self._save_unlocked(skill_name, document)

    def save_artifact_content(
        self, skill_name: str, step_id: int, relative_path: str, content: str
    ) -> None:
        with self._lock:
            document = self._load_unlocked(skill_name)
            if document is None:
                raise PersistenceError(f"No workflow run for {skill_name}")
            document.put_artifact(step_id, relative_path, content)
            self._save_unlocked(skill_name, document)

    def get_artifact_content(
        self, skill_name: str, step_id: int, relative_path: str
    ) -> str | None:
        with self._lock:
            document = self._load_unlocked(skill_name)
        if document is None:
            return None
        return document.get_artifact(step_id, relative_path)

    def reset_steps_from(self, skill_name: str, step_id: int) -> None:
        with self._lock:
            document = self._load_unlocked(skill_name)
            if document is None:
                return
            document.reset_from(step_id)
            self._save_unlocked(skill_name, document)
        logger.info("Persisted steps reset", extra={"artifact": skill_name, "step_id": step_id})


@dataclass
class JsonSessionStore:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[SessionRow]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise PersistenceError(f"Sessions file is not a list: {self.path}")
            return [SessionRow.model_validate(item) for item in raw]
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise PersistenceError(f"Could not read sessions from {self.path}: {e}") from e

    def _save_unlocked(self, sessions: list[SessionRow]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = [s.model_dump(mode="json") for s in sessions]
            self.path.write_text(
                json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
            )
        except OSError as e:
            raise PersistenceError(f"Could not write sessions: {e}") from e

    def list(self) -> list[SessionRow]:
        with self._lock:
            return self._load_unlocked()

    def create_session(self, skill_name: str) -> str:
        with self._lock:
            sessions = self._load_unlocked()
            session = SessionRow(session_id=uuid.uuid4().hex, skill_name=skill_name)
            sessions.append(session)
            self._save_unlocked(sessions)
            return session.session_id

    def end_session(self, session_id: str) -> None:
        with self._lock:
            sessions = self._load_unlocked()
            for idx, session in enumerate(sessions):
                if session.session_id != session_id or session.ended_at is not None:
                    continue
                sessions[idx] = session.model_copy(update={"ended_at": utc_iso_now()})
                self._save_unlocked(sessions)
                return
