"""Data models for persisted workflow state."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from pydantic import BaseModel, Field


def utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class StepRow(BaseModel):
    step_id: int
    status: str = "pending"
    started_at: str | None = None
    completed_at: str | None = None


class RunMeta(BaseModel):
    """Run-level fields the coordinator submits with every save."""

    domain: str
    current_step: int = 0
    status: str = "pending"
    skill_type: str | None = None


class WorkflowRunRow(BaseModel):
    skill_name: str
    domain: str
    current_step: int = 0
    status: str = "pending"
    skill_type: str | None = None
    created_at: str = Field(default_factory=utc_iso_now)
    updated_at: str = Field(default_factory=utc_iso_now)


class ArtifactRow(BaseModel):
    step_id: int
    relative_path: str
    content: str
    updated_at: str = Field(default_factory=utc_iso_now)


class SessionRow(BaseModel):
    session_id: str
    skill_name: str
    started_at: str = Field(default_factory=utc_iso_now)
    ended_at: str | None = None


class RunDocument(BaseModel):
    """Everything stored for one skill."""

    run: WorkflowRunRow
    steps: list[StepRow] = Field(default_factory=list)
    artifacts: list[ArtifactRow] = Field(default_factory=list)

    @classmethod
    def new(cls, skill_name: str, meta: RunMeta) -> RunDocument:
        return cls(
            run=WorkflowRunRow(
                skill_name=skill_name,
                domain=meta.domain,
                skill_type=meta.skill_type,
                current_step=meta.current_step,
                status=meta.status,
            )
        )

    def apply_save(self, meta: RunMeta, steps: Sequence[StepRow]) -> None:
        """Upsert submitted rows.

        A run whose submitted steps are all completed is stored as completed
        whatever status was submitted. Missing timestamps are stamped when a
        step is saved in progress or completed, and cleared when pending.
        """

        now = utc_iso_now()
        by_id = {s.step_id: s for s in self.steps}
        for row in steps:
            started_at, completed_at = row.started_at, row.completed_at
            if row.status == "pending":
                started_at = completed_at = None
            elif row.status == "in_progress":
                started_at = started_at or now
                completed_at = None
            elif row.status == "completed":
                completed_at = completed_at or now
            by_id[row.step_id] = StepRow(
                step_id=row.step_id,
                status=row.status,
                started_at=started_at,
                completed_at=completed_at,
            )
        self.steps = [by_id[k] for k in sorted(by_id)]

        status = meta.status
        if steps and all(s.status == "completed" for s in steps):
            status = "completed"
        self.run = self.run.model_copy(
            update={
                "domain": meta.domain,
                "skill_type": meta.skill_type or self.run.skill_type,
                "current_step": meta.current_step,
                "status": status,
                "updated_at": now,
            }
        )

    def reset_from(self, step_id: int) -> None:
        self.steps = [
            StepRow(step_id=s.step_id) if s.step_id >= step_id else s for s in self.steps
        ]
        self.artifacts = [a for a in self.artifacts if a.step_id < step_id]
        self.run = self.run.model_copy(
            update={
                "current_step": min(self.run.current_step, step_id),
                "status": "pending",
                "updated_at": utc_iso_now(),
            }
        )

    def put_artifact(self, step_id: int, relative_path: str, content: str) -> None:
        self.artifacts = [
            a
            for a in self.artifacts
            if not (a.step_id == step_id and a.relative_path == relative_path)
        ]
        self.artifacts.append(
            ArtifactRow(step_id=step_id, relative_path=relative_path, content=content)
        )

    def get_artifact(self, step_id: int, relative_path: str) -> str | None:
        for artifact in self.artifacts:
            if artifact.step_id == step_id and artifact.relative_path == relative_path:
                return artifact.content
        return None

    def hydrated(self) -> HydratedRun:
        return HydratedRun(run=self.run, steps=list(self.steps))


class HydratedRun(BaseModel):
    run: WorkflowRunRow
    steps: list[StepRow] = Field(default_factory=list)

    def completed_step_ids(self) -> list[int]:
        return [s.step_id for s in self.steps if s.status == "completed"]
