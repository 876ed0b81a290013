"""Workflow REST API.

One coordinator serves the whole process. Every handler takes the app lock,
drains finished agent runs, performs its operation and returns the refreshed
view together with the notifications raised along the way.

All routes are mounted under `/api`.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager

from fastapi import APIRouter, HTTPException, Request

from skill_builder.orchestrator.workflow.coordinator import (
    WorkflowCoordinator,
    WorkflowNotOpenError,
)
from skill_builder.server.models import (
    ApiResetPreview,
    ApiWorkflow,
    LastStepRequest,
    OpenRequest,
    RerunMessageRequest,
    ResetPreviewRequest,
    ReviewCompleteRequest,
    ReviewDraftRequest,
)

router = APIRouter()


@contextmanager
def _locked(request: Request) -> Iterator[WorkflowCoordinator]:
    coordinator = getattr(request.app.state, "coordinator", None)
    lock = getattr(request.app.state, "coordinator_lock", None)
    if not isinstance(coordinator, WorkflowCoordinator) or lock is None:
        raise HTTPException(status_code=500, detail="Workflow coordinator not configured")
    with lock:
        coordinator.pump_events()
        yield coordinator


def _require(coordinator: WorkflowCoordinator, name: str) -> None:
    if coordinator.snapshot.artifact_name != name:
        raise HTTPException(status_code=409, detail=f"Workflow '{name}' is not open")


def _respond(coordinator: WorkflowCoordinator) -> ApiWorkflow:
    return ApiWorkflow.from_view(coordinator.view(), coordinator.drain_notifications())


def _run(request: Request, name: str, op: Callable[[WorkflowCoordinator], object]) -> ApiWorkflow:
    with _locked(request) as coordinator:
        _require(coordinator, name)
        try:
            op(coordinator)
        except WorkflowNotOpenError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return _respond(coordinator)


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/workflows/{name}/open")
def open_workflow(name: str, request: Request, body: OpenRequest | None = None) -> ApiWorkflow:
    body = body or OpenRequest()
    with _locked(request) as coordinator:
        coordinator.open_artifact(name, domain=body.domain, skill_type=body.skill_type)
        return _respond(coordinator)


@router.get("/workflows/{name}")
def get_workflow(name: str, request: Request) -> ApiWorkflow:
    return _run(request, name, lambda c: None)


@router.post("/workflows/{name}/start")
def start_step(name: str, request: Request) -> ApiWorkflow:
    return _run(request, name, lambda c: c.start_step())


@router.post("/workflows/{name}/resume")
def resume_step(name: str, request: Request) -> ApiWorkflow:
    return _run(request, name, lambda c: c.resume_step())


@router.post("/workflows/{name}/steps/{step_id}/select")
def select_step(name: str, step_id: int, request: Request, force: bool = False) -> ApiWorkflow:
    with _locked(request) as coordinator:
        _require(coordinator, name)
        if not coordinator.catalog.contains(step_id):
            raise HTTPException(status_code=404, detail=f"Unknown step {step_id}")
        guard = coordinator.select_step(step_id, force=force)
        if guard is not None:
            raise HTTPException(status_code=409, detail=guard.reason)
        return _respond(coordinator)


@router.post("/workflows/{name}/rerun")
def rerun_step(name: str, request: Request) -> ApiWorkflow:
    return _run(request, name, lambda c: c.rerun_step())


@router.post("/workflows/{name}/rerun/message")
def rerun_message(name: str, body: RerunMessageRequest, request: Request) -> ApiWorkflow:
    return _run(request, name, lambda c: c.send_rerun_message(body.text))


@router.post("/workflows/{name}/rerun/finish")
def rerun_finish(name: str, request: Request) -> ApiWorkflow:
    return _run(request, name, lambda c: c.finish_rerun())


@router.put("/workflows/{name}/review/draft")
def review_draft(name: str, body: ReviewDraftRequest, request: Request) -> ApiWorkflow:
    return _run(request, name, lambda c: c.edit_review(body.content))


@router.post("/workflows/{name}/review/complete")
def review_complete(
    name: str, request: Request, body: ReviewCompleteRequest | None = None
) -> ApiWorkflow:
    content = body.content if body is not None else None
    return _run(request, name, lambda c: c.complete_review_step(content))


@router.post("/workflows/{name}/last-step/complete")
def last_step_complete(
    name: str, request: Request, body: LastStepRequest | None = None
) -> ApiWorkflow:
    skipped = body.skipped if body is not None else False
    return _run(request, name, lambda c: c.complete_last_step(skipped=skipped))


@router.post("/workflows/{name}/reset/preview")
def reset_preview(name: str, body: ResetPreviewRequest, request: Request) -> ApiResetPreview:
    with _locked(request) as coordinator:
        _require(coordinator, name)
        preview = coordinator.request_reset(body.step_id)
        if preview is None:
            raise HTTPException(
                status_code=409, detail="Can only reset to a step before the current one"
            )
        return ApiResetPreview.from_preview(preview)


@router.post("/workflows/{name}/reset/confirm")
def reset_confirm(name: str, request: Request) -> ApiWorkflow:
    with _locked(request) as coordinator:
        _require(coordinator, name)
        if not coordinator.confirm_reset():
            raise HTTPException(status_code=409, detail="No reset is pending")
        return _respond(coordinator)


@router.post("/workflows/{name}/reset/cancel")
def reset_cancel(name: str, request: Request) -> ApiWorkflow:
    return _run(request, name, lambda c: c.cancel_reset())


@router.post("/workflows/{name}/retry-save")
def retry_save(name: str, request: Request) -> ApiWorkflow:
    return _run(request, name, lambda c: c.retry_save())


@router.post("/workflows/{name}/leave")
def leave(name: str, request: Request) -> ApiWorkflow:
    return _run(request, name, lambda c: c.confirm_leave())
