"""The workflow coordinator.

The coordinator is the only component that reads both the run state store and
the agent run tracker, and the only one that mutates either. Every user intent
or external trigger becomes an event; `policy.decide_transition` turns it into
a new snapshot plus side-effect requests, and the coordinator commits the
snapshot and executes the requests in order.

Persistence is write-through: a store subscription saves every committed
snapshot once the run is hydrated. Failed saves are reported as error
notifications and never roll back in-memory state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from skill_builder.orchestrator.agents.adapter import (
    AgentAdapter,
    AgentFlags,
    AgentStartError,
    StepResetPreview,
)
from skill_builder.orchestrator.agents.claude_cli import ClaudeCliAdapter
from skill_builder.orchestrator.config import WorkflowSettings
from skill_builder.orchestrator.persistence import get_repository, get_session_store
from skill_builder.orchestrator.persistence.models import RunMeta, StepRow
from skill_builder.orchestrator.persistence.repository import (
    PersistenceError,
    SessionSink,
    WorkflowRepository,
)

from . import actions as act
from .actions import (
    Action,
    CancelAgent,
    ClearAgentRuns,
    CloseSession,
    NotificationLevel,
    Notify,
    OpenSession,
    ResetPersistedSteps,
    StartAgent,
)
from .agent_runs import AgentRunTracker
from .artifacts import ArtifactReadError, ArtifactResolver, ResolvedArtifact
from .catalog import DEFAULT_CATALOG, StepCatalog, StepKind
from .editor import EditorDraft
from .events import (
    AgentFinished,
    AgentStartFailed,
    CurrentStepEntered,
    LastStepCompleted,
    RerunFinished,
    RerunMessageSent,
    RerunRequested,
    ResetConfirmed,
    ReviewCompleted,
    StartStep,
    StepSelected,
    Unmounted,
    WorkflowEvent,
)
from .policy import AGENT_DRIVEN_KINDS, Transition, decide_transition
from .run_state import RunStateStore
from .state_machine import RunSnapshot, StepStatus

logger = logging.getLogger(__name__)

REASON_AGENT_RUNNING = "agent_running"
REASON_UNSAVED_CHANGES = "unsaved_changes"


class WorkflowNotOpenError(RuntimeError):
    """An operation needs an open artifact and none is open."""


@dataclass(frozen=True, slots=True)
class NavGuard:
    blocked: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ResetPreview:
    step_id: int
    affected: tuple[StepResetPreview, ...] = ()


@dataclass(frozen=True, slots=True)
class StepView:
    id: int
    name: str
    kind: StepKind
    status: StepStatus


@dataclass(frozen=True, slots=True)
class WorkflowView:
    """Everything a UI needs to render the workflow page."""

    artifact_name: str | None
    domain: str | None
    current_step: int
    steps: tuple[StepView, ...]
    is_running: bool
    hydrated: bool
    unsaved_changes: bool
    can_start: bool
    can_resume: bool
    can_rerun: bool
    rerun_active: bool
    terminal: bool
    nav_guard: NavGuard
    partial_output: ResolvedArtifact | None = None
    pending_reset: ResetPreview | None = None
    review_content: str | None = None
    notifications: tuple[Notify, ...] = field(default_factory=tuple)


class WorkflowCoordinator:
    def __init__(
        self,
        *,
        adapter: AgentAdapter,
        persistence: WorkflowRepository,
        sessions: SessionSink,
        catalog: StepCatalog = DEFAULT_CATALOG,
        debug_mode: bool = False,
        workspace_path: Path | None = None,
        skills_path: Path | None = None,
    ) -> None:
        self.adapter = adapter
        self.persistence = persistence
        self.sessions = sessions
        self.catalog = catalog
        self.debug_mode = debug_mode
        self.workspace_path = workspace_path
        self.store = RunStateStore(catalog)
        self.tracker = AgentRunTracker()
        self.resolver = ArtifactResolver(
            persistence=persistence, skills_path=skills_path, workspace_path=workspace_path
        )

        self._notifications: list[Notify] = []
        self._draft: EditorDraft | None = None
        self._pending_reset: ResetPreview | None = None
        self._partial_key: tuple[str, int, StepStatus] | None = None
        self._partial: ResolvedArtifact | None = None
        self._last_saved: tuple[object, ...] | None = None
        self._retry: Callable[[], bool] | None = None

        self.store.subscribe(self._write_through)

    @classmethod
    def from_settings(
        cls,
        settings: WorkflowSettings,
        *,
        adapter: AgentAdapter | None = None,
        persistence: WorkflowRepository | None = None,
        sessions: SessionSink | None = None,
        catalog: StepCatalog = DEFAULT_CATALOG,
    ) -> WorkflowCoordinator:
        """Wire a coordinator from settings with file-backed storage."""

        if adapter is None:
            adapter = ClaudeCliAdapter(
                binary=settings.agent_binary,
                catalog=catalog,
                skills_path=settings.skills_path,
                workspace_path=settings.workspace_path,
                timeout_seconds=settings.agent_timeout_seconds,
            )
        return cls(
            adapter=adapter,
            persistence=persistence or get_repository(settings),
            sessions=sessions or get_session_store(settings),
            catalog=catalog,
            debug_mode=settings.debug_mode,
            workspace_path=settings.workspace_path,
            skills_path=settings.skills_path,
        )

    # ------------------------------------------------------------------
    # Plumbing

    @property
    def snapshot(self) -> RunSnapshot:
        return self.store.snapshot

    @property
    def draft(self) -> EditorDraft | None:
        return self._draft

    @property
    def notifications(self) -> list[Notify]:
        return list(self._notifications)

    def drain_notifications(self) -> list[Notify]:
        drained, self._notifications = self._notifications, []
        return drained

    def _require_open(self) -> str:
        name = self.snapshot.artifact_name
        if name is None:
            raise WorkflowNotOpenError("No workflow is open")
        return name

    def _notify(self, notification: Notify) -> None:
        self._notifications.append(notification)
        log = logger.warning if notification.level is NotificationLevel.ERROR else logger.info
        log(
            notification.message,
            extra={"artifact": self.snapshot.artifact_name, "notification": notification.level.value},
        )

    def _apply(self, event: WorkflowEvent) -> Transition:
        before = self.store.snapshot
        transition = decide_transition(
            state=before, event=event, catalog=self.catalog, debug_mode=self.debug_mode
        )
        self.store.commit(transition.snapshot)
        for action in transition.actions:
            self._execute(action)
        return transition

    def _execute(self, action: Action) -> None:
        name = self.snapshot.artifact_name
        if isinstance(action, Notify):
            self._notify(action)
        elif isinstance(action, StartAgent):
            self._start_agent(action)
        elif isinstance(action, OpenSession):
            self._open_session()
        elif isinstance(action, CloseSession):
            self._close_session()
        elif isinstance(action, ClearAgentRuns):
            self.tracker.clear_runs()
        elif isinstance(action, CancelAgent):
            if name is not None:
                self._cancel_agent(name)
        elif isinstance(action, ResetPersistedSteps):
            if name is not None:
                self._reset_persisted(name, action.step_id)
        else:
            raise TypeError(f"Unknown action {type(action).__name__}")

    def _start_agent(self, action: StartAgent) -> None:
        snapshot = self.snapshot
        name = self._require_open()
        step = self.catalog[action.step_id]
        flags = AgentFlags(
            model=step.model,
            resume=action.resume,
            rerun=action.rerun,
            message=action.message,
            debug_mode=self.debug_mode,
        )
        try:
            token = self.adapter.start(
                name, action.step_id, snapshot.domain or "", self.workspace_path, flags
            )
        except AgentStartError as e:
            logger.warning(
                "Agent failed to start",
                extra={"artifact": name, "step_id": action.step_id, "error": str(e)},
            )
            self._apply(AgentStartFailed(step_id=action.step_id, reason=str(e)))
            return
        except Exception as e:
            logger.exception(
                "Agent adapter crashed on start",
                extra={"artifact": name, "step_id": action.step_id},
            )
            self._apply(AgentStartFailed(step_id=action.step_id, reason=str(e)))
            return
        self.tracker.start_run(token, step.model or "", action.step_id)
        logger.info(
            "Step started",
            extra={"artifact": name, "step_id": action.step_id, "run_token": token},
        )

    def _cancel_agent(self, name: str) -> None:
        try:
            self.adapter.cancel(name)
        except Exception:
            # Best-effort teardown.
            logger.warning("Agent cancel failed", extra={"artifact": name}, exc_info=True)

    def _open_session(self) -> None:
        snapshot = self.snapshot
        if snapshot.session_id is not None or snapshot.artifact_name is None:
            return
        try:
            session_id = self.sessions.create_session(snapshot.artifact_name)
        except PersistenceError as e:
            logger.exception("Could not open session", extra={"artifact": snapshot.artifact_name})
            self._notify(act.error(f"Failed to record session: {e}"))
            return
        self.store.set_session_id(session_id)

    def _close_session(self) -> None:
        session_id = self.snapshot.session_id
        if session_id is None:
            return
        self.store.set_session_id(None)
        try:
            self.sessions.end_session(session_id)
        except PersistenceError as e:
            logger.exception("Could not close session", extra={"session_id": session_id})
            self._notify(act.error(f"Failed to record session: {e}"))

    def _reset_persisted(self, name: str, step_id: int) -> None:
        try:
            self.persistence.reset_steps_from(name, step_id)
        except PersistenceError as e:
            logger.exception("Persisted reset failed", extra={"artifact": name, "step_id": step_id})
            self._notify(act.error(f"Failed to reset saved steps: {e}"))
        try:
            self.adapter.discard_outputs(name, step_id)
        except OSError as e:
            logger.warning(
                "Could not discard step outputs",
                extra={"artifact": name, "step_id": step_id, "error": str(e)},
            )
        self._partial_key = None

    # ------------------------------------------------------------------
    # Write-through persistence

    @staticmethod
    def _persisted_view(snapshot: RunSnapshot) -> tuple[object, ...]:
        return (
            snapshot.artifact_name,
            snapshot.domain,
            snapshot.skill_type,
            snapshot.current_step,
            snapshot.steps,
        )

    def _write_through(self, snapshot: RunSnapshot) -> None:
        # Never save before hydration; the fresh default is all pending.
        if not snapshot.hydrated or snapshot.artifact_name is None:
            return
        key = self._persisted_view(snapshot)
        if key == self._last_saved:
            return
        self._save(snapshot)

    def _save(self, snapshot: RunSnapshot) -> bool:
        name = snapshot.artifact_name
        if name is None:
            return False
        meta = RunMeta(
            domain=snapshot.domain or "",
            skill_type=snapshot.skill_type,
            current_step=snapshot.current_step,
            status=snapshot.overall_status().value,
        )
        rows = [
            StepRow(
                step_id=s.step_id,
                status=s.status.value,
                started_at=s.started_at,
                completed_at=s.completed_at,
            )
            for s in snapshot.steps
        ]
        try:
            self.persistence.save(name, meta, rows)
        except PersistenceError as e:
            logger.exception("Failed to save workflow state", extra={"artifact": name})
            self._notify(act.error(f"Failed to save workflow state: {e}"))
            self._retry = lambda: self._save(self.snapshot)
            return False
        self._last_saved = self._persisted_view(snapshot)
        return True

    def retry_save(self) -> bool:
        """Re-issue the last save that failed."""

        retry, self._retry = self._retry, None
        if retry is None:
            return False
        return retry()

    # ------------------------------------------------------------------
    # Artifact lifecycle

    def open_artifact(
        self, name: str, domain: str | None = None, skill_type: str | None = None
    ) -> WorkflowView:
        """Switch to `name` and hydrate it from persistence.

        Persisted state wins over the fresh default. The tracker is cleared
        before hydration so a completion from the previous artifact can never
        be applied to this one.
        """

        previous = self.snapshot.artifact_name
        if previous is not None:
            self.unmount()

        self.tracker.clear_runs()
        self._draft = None
        self._pending_reset = None
        self._partial_key = None
        self._last_saved = None
        self._retry = None
        self.store.init_workflow(name, domain or "", skill_type)

        try:
            hydrated = self.persistence.hydrate(name)
        except PersistenceError as e:
            logger.exception("Failed to load workflow state", extra={"artifact": name})
            self._notify(act.error(f"Failed to load workflow state: {e}"))
            return self.view()

        completed: list[int] = []
        if hydrated is not None:
            row = hydrated.run
            self.store.init_workflow(
                name, domain or row.domain, skill_type or row.skill_type
            )
            completed = hydrated.completed_step_ids()
        self.store.load_workflow_state(completed)
        logger.info(
            "Workflow opened",
            extra={
                "artifact": name,
                "step_id": self.snapshot.current_step,
                "completed_steps": completed,
            },
        )
        self._apply(CurrentStepEntered())
        self._load_review_draft()
        return self.view()

    def unmount(self) -> None:
        """Leave the workflow page.

        Stops treating any live run as authoritative, reverts an in-progress
        step to pending, closes the session and always asks the adapter to
        clean up, even when nothing is running.
        """

        if self.snapshot.artifact_name is None:
            return
        self._apply(Unmounted())
        self._pending_reset = None

    # ------------------------------------------------------------------
    # Agent steps

    def start_step(self, resume: bool = False) -> bool:
        self._require_open()
        before = self.snapshot
        step_id = before.current_step
        rerun = resume and self.catalog[step_id].supports_rerun_chat
        self._apply(StartStep(step_id=step_id, resume=resume, rerun=rerun))
        return self.snapshot is not before

    def resume_step(self) -> bool:
        """Continue a step that left partial output behind.

        Steps that support rerun chat resume through it instead of a cold start.
        """

        return self.start_step(resume=True)

    def handle_agent_completion(self, token: str, success: bool, detail: str | None = None) -> bool:
        """Apply a terminal agent event. Returns False when it was stale."""

        record = self.tracker.complete_run(token, success)
        if record is None or not self.tracker.is_active(token):
            logger.debug("Stale agent completion ignored", extra={"run_token": token})
            return False
        self.tracker.clear_active()

        before = self.snapshot
        if before.status_of(record.step_id) is not StepStatus.IN_PROGRESS:
            logger.debug(
                "Stale agent completion ignored",
                extra={"run_token": token, "step_id": record.step_id},
            )
            return False
        if not success and detail:
            logger.warning(
                "Agent run failed",
                extra={"artifact": before.artifact_name, "step_id": record.step_id, "error": detail},
            )
        self._apply(AgentFinished(step_id=record.step_id, success=success))
        self._load_review_draft()
        return True

    def pump_events(self) -> int:
        """Drain agent completions posted since the last call."""

        handled = 0
        for completion in self.adapter.poll_completions():
            if self.handle_agent_completion(completion.token, completion.success, completion.detail):
                handled += 1
        return handled

    # ------------------------------------------------------------------
    # Rerun

    def rerun_step(self) -> bool:
        self._require_open()
        before = self.snapshot
        self._apply(RerunRequested(step_id=before.current_step))
        return self.snapshot is not before

    def send_rerun_message(self, text: str) -> bool:
        self._require_open()
        before = self.snapshot
        self._apply(RerunMessageSent(text=text))
        return self.snapshot is not before

    def finish_rerun(self) -> bool:
        self._require_open()
        before = self.snapshot
        self._apply(RerunFinished())
        self._load_review_draft()
        return self.snapshot is not before

    # ------------------------------------------------------------------
    # Human review and the last step

    def _load_review_draft(self) -> EditorDraft | None:
        snapshot = self.snapshot
        step_id = snapshot.current_step
        name = snapshot.artifact_name
        if name is None or not self.catalog.is_human_review_step(step_id):
            self._draft = None
            return None
        if self._draft is not None and self._draft.step_id == step_id:
            return self._draft

        relative = self.catalog.artifact_path_for(step_id) or ""
        try:
            resolved = self.resolver.resolve(name, step_id, relative)
        except ArtifactReadError as e:
            logger.warning(
                "Could not load review content",
                extra={"artifact": name, "step_id": step_id, "error": str(e)},
            )
            self._notify(act.error(f"Failed to load review content: {e}"))
            resolved = None
        content = resolved.content if resolved is not None else ""
        self._draft = EditorDraft(
            step_id=step_id, relative_path=relative, loaded=content, current=content
        )
        return self._draft

    def edit_review(self, content: str) -> EditorDraft:
        self._require_open()
        draft = self._load_review_draft()
        if draft is None:
            raise ValueError(f"Step {self.snapshot.current_step} is not a review step")
        self._draft = draft.edited(content)
        return self._draft

    def complete_review_step(self, content: str | None = None) -> bool:
        """Save the review document exactly as given and advance.

        Empty answers stay empty. When the save fails the step does not
        change and `retry_save` re-issues it.
        """

        name = self._require_open()
        snapshot = self.snapshot
        step_id = snapshot.current_step
        if not self.catalog.is_human_review_step(step_id) or snapshot.status_of(step_id) not in {
            StepStatus.PENDING,
            StepStatus.WAITING_FOR_USER,
        }:
            logger.debug("Review completion ignored", extra={"artifact": name, "step_id": step_id})
            return False

        draft = self._load_review_draft()
        if draft is None:
            return False
        text = content if content is not None else draft.current
        try:
            self.persistence.save_artifact_content(name, step_id, draft.relative_path, text)
            self.resolver.write(name, draft.relative_path, text)
        except PersistenceError as e:
            logger.exception("Failed to save review", extra={"artifact": name, "step_id": step_id})
            self._notify(act.error(f"Failed to save review: {e}"))
            self._draft = draft.edited(text)
            self._retry = lambda: self.complete_review_step(text)
            return False

        self._draft = draft.edited(text).saved()
        self._apply(ReviewCompleted(step_id=step_id))
        self._load_review_draft()
        return True

    def complete_last_step(self, skipped: bool = False) -> bool:
        self._require_open()
        before = self.snapshot
        self._apply(LastStepCompleted(skipped=skipped))
        return self.snapshot is not before

    # ------------------------------------------------------------------
    # Reset

    def request_reset(self, step_id: int) -> ResetPreview | None:
        """Preview a reset back to `step_id`. Nothing changes until confirmed."""

        name = self._require_open()
        if not self.catalog.contains(step_id) or step_id >= self.snapshot.current_step:
            logger.debug("Reset request ignored", extra={"artifact": name, "step_id": step_id})
            return None
        affected = tuple(self.adapter.preview_reset(name, step_id))
        self._pending_reset = ResetPreview(step_id=step_id, affected=affected)
        return self._pending_reset

    def confirm_reset(self) -> bool:
        self._require_open()
        pending, self._pending_reset = self._pending_reset, None
        if pending is None:
            return False
        self._apply(ResetConfirmed(step_id=pending.step_id))
        self._draft = None
        self._partial_key = None
        self._apply(CurrentStepEntered())
        self._load_review_draft()
        return True

    def cancel_reset(self) -> None:
        self._pending_reset = None

    @property
    def pending_reset(self) -> ResetPreview | None:
        return self._pending_reset

    # ------------------------------------------------------------------
    # Navigation

    def navigation_guard(self) -> NavGuard:
        if self.snapshot.is_running:
            return NavGuard(blocked=True, reason=REASON_AGENT_RUNNING)
        if self._draft is not None and self._draft.has_unsaved_changes:
            return NavGuard(blocked=True, reason=REASON_UNSAVED_CHANGES)
        return NavGuard(blocked=False)

    def confirm_leave(self) -> None:
        self.unmount()
        self._draft = None

    def select_step(self, step_id: int, force: bool = False) -> NavGuard | None:
        """Show another step. Returns the guard that blocked the switch, if any."""

        self._require_open()
        guard = self.navigation_guard()
        if guard.blocked and not force:
            return guard
        before = self.snapshot
        self._apply(StepSelected(step_id=step_id, force=force))
        if self.snapshot.current_step != before.current_step:
            self._draft = None
            self._load_review_draft()
        return None

    # ------------------------------------------------------------------
    # Partial output

    def _resolve_partial(self, snapshot: RunSnapshot) -> ResolvedArtifact | None:
        name = snapshot.artifact_name
        step_id = snapshot.current_step
        if name is None or snapshot.status_of(step_id) not in {
            StepStatus.PENDING,
            StepStatus.ERROR,
        }:
            return None
        relative = self.catalog.primary_output(step_id)
        if relative is None:
            return None
        return self.resolver.resolve(name, step_id, relative)

    def detect_partial_output(self) -> bool:
        """Look for output of the current, not yet completed step."""

        snapshot = self.snapshot
        key = (snapshot.artifact_name or "", snapshot.current_step, snapshot.current_status)
        try:
            self._partial = self._resolve_partial(snapshot)
        except ArtifactReadError as e:
            logger.warning(
                "Partial output check failed",
                extra={"artifact": snapshot.artifact_name, "step_id": snapshot.current_step, "error": str(e)},
            )
            self._partial = None
        self._partial_key = key
        return self._partial is not None

    def _cached_partial(self) -> ResolvedArtifact | None:
        snapshot = self.snapshot
        key = (snapshot.artifact_name or "", snapshot.current_step, snapshot.current_status)
        if key != self._partial_key:
            self.detect_partial_output()
        return self._partial

    # ------------------------------------------------------------------
    # View

    def view(self) -> WorkflowView:
        snapshot = self.snapshot
        step_id = snapshot.current_step
        step = self.catalog[step_id]
        status = snapshot.current_status
        is_open = snapshot.artifact_name is not None and snapshot.hydrated
        idle = is_open and not snapshot.is_running

        agent_driven = step.kind in AGENT_DRIVEN_KINDS
        can_start = idle and agent_driven and status in {StepStatus.PENDING, StepStatus.ERROR}
        partial = self._cached_partial() if can_start else None
        can_rerun = (
            idle
            and status in {StepStatus.COMPLETED, StepStatus.ERROR}
            and (step.kind is StepKind.REASONING or step.supports_rerun_chat)
        )

        draft = self._draft if self._draft is not None and self._draft.step_id == step_id else None
        return WorkflowView(
            artifact_name=snapshot.artifact_name,
            domain=snapshot.domain,
            current_step=step_id,
            steps=tuple(
                StepView(id=s.id, name=s.name, kind=s.kind, status=snapshot.status_of(s.id))
                for s in self.catalog
            ),
            is_running=snapshot.is_running,
            hydrated=snapshot.hydrated,
            unsaved_changes=draft is not None and draft.has_unsaved_changes,
            can_start=can_start,
            can_resume=partial is not None,
            can_rerun=can_rerun,
            rerun_active=snapshot.rerun_step is not None,
            terminal=snapshot.status_of(self.catalog.last_step_id) is StepStatus.COMPLETED,
            nav_guard=self.navigation_guard(),
            partial_output=partial,
            pending_reset=self._pending_reset,
            review_content=draft.current if draft is not None else None,
            notifications=tuple(self._notifications),
        )
