"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from skill_builder.orchestrator.workflow.actions import Notify
from skill_builder.orchestrator.workflow.coordinator import ResetPreview, WorkflowView

NavReason = Literal["agent_running", "unsaved_changes"]


class OpenRequest(BaseModel):
    domain: str | None = None
    skill_type: str | None = None


class ReviewDraftRequest(BaseModel):
    content: str


class ReviewCompleteRequest(BaseModel):
    # Omitted means "complete with the current draft".
    content: str | None = None


class LastStepRequest(BaseModel):
    skipped: bool = False


class RerunMessageRequest(BaseModel):
    text: str = Field(min_length=1)


class ResetPreviewRequest(BaseModel):
    step_id: int = Field(ge=0)


class ApiNotification(BaseModel):
    level: Literal["success", "error", "info"]
    message: str

    @classmethod
    def from_notify(cls, notification: Notify) -> ApiNotification:
        return cls(level=notification.level.value, message=notification.message)


class ApiStep(BaseModel):
    id: int
    name: str
    kind: str
    status: str


class ApiNavGuard(BaseModel):
    blocked: bool
    reason: NavReason | None = None


class ApiResetStep(BaseModel):
    step_id: int
    step_name: str
    files: list[str] = Field(default_factory=list)


class ApiResetPreview(BaseModel):
    step_id: int
    affected: list[ApiResetStep] = Field(default_factory=list)

    @classmethod
    def from_preview(cls, preview: ResetPreview) -> ApiResetPreview:
        return cls(
            step_id=preview.step_id,
            affected=[
                ApiResetStep(step_id=a.step_id, step_name=a.step_name, files=list(a.files))
                for a in preview.affected
            ],
        )


class ApiPartialOutput(BaseModel):
    source: str
    path: str


class ApiWorkflow(BaseModel):
    artifact_name: str | None
    domain: str | None
    current_step: int
    steps: list[ApiStep]
    is_running: bool
    hydrated: bool
    unsaved_changes: bool
    can_start: bool
    can_resume: bool
    can_rerun: bool
    rerun_active: bool
    terminal: bool
    nav_guard: ApiNavGuard
    partial_output: ApiPartialOutput | None = None
    pending_reset: ApiResetPreview | None = None
    review_content: str | None = None
    notifications: list[ApiNotification] = Field(default_factory=list)

    @classmethod
    def from_view(
        cls, view: WorkflowView, notifications: list[Notify] | None = None
    ) -> ApiWorkflow:
        partial = view.partial_output
        return cls(
            artifact_name=view.artifact_name,
            domain=view.domain,
            current_step=view.current_step,
            steps=[
                ApiStep(id=s.id, name=s.name, kind=s.kind.value, status=s.status.value)
                for s in view.steps
            ],
            is_running=view.is_running,
            hydrated=view.hydrated,
            unsaved_changes=view.unsaved_changes,
            can_start=view.can_start,
            can_resume=view.can_resume,
            can_rerun=view.can_rerun,
            rerun_active=view.rerun_active,
            terminal=view.terminal,
            nav_guard=ApiNavGuard(blocked=view.nav_guard.blocked, reason=view.nav_guard.reason),
            partial_output=(
                ApiPartialOutput(source=partial.source.value, path=partial.path)
                if partial is not None
                else None
            ),
            pending_reset=(
                ApiResetPreview.from_preview(view.pending_reset)
                if view.pending_reset is not None
                else None
            ),
            review_content=view.review_content,
            notifications=[
                ApiNotification.from_notify(n)
                for n in (notifications if notifications is not None else view.notifications)
            ],
        )
