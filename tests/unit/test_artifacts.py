from __future__ import annotations

from pathlib import Path

import pytest

from skill_builder.orchestrator.persistence import (
    InMemoryWorkflowRepository,
    PersistenceError,
    RunMeta,
)
from skill_builder.orchestrator.workflow.artifacts import (
    ArtifactReadError,
    ArtifactResolver,
    ArtifactSource,
)
from skill_builder.orchestrator.workflow.editor import EditorDraft

RELATIVE = "context/clarifications.md"


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


@pytest.fixture()
def stored() -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    repo.save("demo", RunMeta(domain="sales"), [])
    return repo


def test_context_dir_wins_over_other_sources(stored, tmp_path: Path) -> None:
    skills, workspace = tmp_path / "skills", tmp_path / "workspace"
    _write(skills / "demo" / RELATIVE, "from skills")
    _write(workspace / "demo" / RELATIVE, "from workspace")
    stored.save_artifact_content("demo", 3, RELATIVE, "from db")

    resolved = ArtifactResolver(stored, skills, workspace).resolve("demo", 3, RELATIVE)

    assert resolved is not None
    assert resolved.source is ArtifactSource.CONTEXT_DIR
    assert resolved.content == "from skills"


def test_persistence_is_consulted_before_the_workspace(stored, tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"
    _write(workspace / "demo" / RELATIVE, "from workspace")
    stored.save_artifact_content("demo", 3, RELATIVE, "from db")

    resolved = ArtifactResolver(stored, tmp_path / "skills", workspace).resolve("demo", 3, RELATIVE)

    assert resolved is not None
    assert resolved.source is ArtifactSource.PERSISTENCE
    assert resolved.content == "from db"


def test_falls_back_to_workspace_file(stored, tmp_path: Path) -> None:
    skills, workspace = tmp_path / "skills", tmp_path / "workspace"
    _write(skills / "demo" / RELATIVE, "")
    _write(workspace / "demo" / RELATIVE, "from workspace")

    resolved = ArtifactResolver(stored, skills, workspace).resolve("demo", 3, RELATIVE)

    assert resolved is not None
    assert resolved.source is ArtifactSource.WORKSPACE
    assert resolved.path == str(workspace / "demo" / RELATIVE)


def test_nothing_found_returns_none(stored, tmp_path: Path) -> None:
    resolver = ArtifactResolver(stored, tmp_path / "skills", tmp_path / "workspace")
    assert resolver.resolve("demo", 3, RELATIVE) is None
    assert ArtifactResolver(stored).resolve("demo", 3, RELATIVE) is None


def test_read_errors_stop_the_lookup(stored, tmp_path: Path) -> None:
    skills = tmp_path / "skills"
    # A directory where a file is expected cannot be read.
    (skills / "demo" / RELATIVE).mkdir(parents=True)

    with pytest.raises(ArtifactReadError):
        ArtifactResolver(stored, skills).resolve("demo", 3, RELATIVE)


def test_persistence_errors_surface_as_read_errors(tmp_path: Path) -> None:
    class Broken(InMemoryWorkflowRepository):
        def get_artifact_content(self, skill_name: str, step_id: int, relative_path: str):
            raise PersistenceError("database is locked")

    with pytest.raises(ArtifactReadError):
        ArtifactResolver(Broken()).resolve("demo", 3, RELATIVE)


def test_write_is_verbatim_and_prefers_skills_path(stored, tmp_path: Path) -> None:
    skills, workspace = tmp_path / "skills", tmp_path / "workspace"
    content = "a\r\nb\n\n"

    path = ArtifactResolver(stored, skills, workspace).write("demo", RELATIVE, content)

    assert path == skills / "demo" / RELATIVE
    assert path.read_bytes() == content.encode("utf-8")
    assert not (workspace / "demo").exists()
    assert ArtifactResolver(stored).write("demo", RELATIVE, content) is None


def test_editor_draft_tracks_unsaved_changes() -> None:
    draft = EditorDraft(step_id=1, relative_path=RELATIVE, loaded="x", current="x")
    assert not draft.has_unsaved_changes

    edited = draft.edited("y")
    assert edited.has_unsaved_changes
    assert not edited.saved().has_unsaved_changes
    assert not edited.edited("x").has_unsaved_changes
