"""Locate step output across the places it may live.

Lookup order is fixed:
1. the skills context directory (`<skills_path>/<skill>/<relative path>`), when configured
2. the artifact table of the persistence service
3. the raw workspace file (`<workspace_path>/<skill>/<relative path>`)

A source that has nothing (missing file, no stored row, empty content) hands
over to the next one. Any other read failure stops the lookup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from skill_builder.orchestrator.persistence.repository import PersistenceError, WorkflowRepository

logger = logging.getLogger(__name__)


class ArtifactReadError(RuntimeError):
    pass


class ArtifactSource(str, Enum):
    CONTEXT_DIR = "context_dir"
    PERSISTENCE = "persistence"
    WORKSPACE = "workspace"


@dataclass(frozen=True, slots=True)
class ResolvedArtifact:
    source: ArtifactSource
    path: str
    content: str


def _read_file(path: Path) -> str | None:
    try:
        with path.open(encoding="utf-8", newline="") as fh:
            content = fh.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ArtifactReadError(f"Could not read {path}: {e}") from e
    return content or None


@dataclass
class ArtifactResolver:
    persistence: WorkflowRepository
    skills_path: Path | None = None
    workspace_path: Path | None = None

    def resolve(self, skill_name: str, step_id: int, relative_path: str) -> ResolvedArtifact | None:
        if self.skills_path is not None:
            path = self.skills_path / skill_name / relative_path
            content = _read_file(path)
            if content is not None:
                return ResolvedArtifact(ArtifactSource.CONTEXT_DIR, str(path), content)

        try:
            content = self.persistence.get_artifact_content(skill_name, step_id, relative_path)
        except PersistenceError as e:
            raise ArtifactReadError(str(e)) from e
        if content:
            return ResolvedArtifact(ArtifactSource.PERSISTENCE, relative_path, content)

        if self.workspace_path is not None:
            path = self.workspace_path / skill_name / relative_path
            content = _read_file(path)
            if content is not None:
                return ResolvedArtifact(ArtifactSource.WORKSPACE, str(path), content)

        logger.debug(
            "No artifact found",
            extra={"artifact": skill_name, "step_id": step_id, "path": relative_path},
        )
        return None

    def write(self, skill_name: str, relative_path: str, content: str) -> Path | None:
        """Write a document to the first configured file location, byte for byte.

        Returns None when neither a skills path nor a workspace is configured.
        """

        base = self.skills_path or self.workspace_path
        if base is None:
            return None
        path = base / skill_name / relative_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8", newline="") as fh:
                fh.write(content)
        except OSError as e:
            raise PersistenceError(f"Could not write {path}: {e}") from e
        return path
