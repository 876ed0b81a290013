"""Unit tests for the pure transition functions."""

from __future__ import annotations

from dataclasses import replace

import pytest

from skill_builder.orchestrator.workflow.actions import (
    CancelAgent,
    ClearAgentRuns,
    CloseSession,
    NotificationLevel,
    Notify,
    OpenSession,
    ResetPersistedSteps,
    StartAgent,
)
from skill_builder.orchestrator.workflow.catalog import (
    DEFAULT_CATALOG,
    StepDefinition,
    StepKind,
    build_catalog,
)
from skill_builder.orchestrator.workflow.events import (
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
)
from skill_builder.orchestrator.workflow.policy import decide_transition
from skill_builder.orchestrator.workflow.state_machine import RunSnapshot, StepStatus


def _hydrated(completed: int = 0) -> RunSnapshot:
    snap = RunSnapshot.fresh(DEFAULT_CATALOG, artifact_name="demo", domain="sales")
    for step_id in range(completed):
        snap = snap.with_step_status(step_id, StepStatus.COMPLETED)
    return replace(snap, current_step=completed, hydrated=True)


def _running(step_id: int) -> RunSnapshot:
    snap = _hydrated(step_id)
    return replace(snap.with_step_status(step_id, StepStatus.IN_PROGRESS).with_running(True), session_id="s1")


def _notes(actions: tuple[object, ...]) -> list[str]:
    return [a.message for a in actions if isinstance(a, Notify)]


def test_start_step_marks_in_progress_and_requests_agent() -> None:
    t = decide_transition(state=_hydrated(), event=StartStep(step_id=0), catalog=DEFAULT_CATALOG)

    assert t.snapshot.status_of(0) is StepStatus.IN_PROGRESS
    assert t.snapshot.is_running
    assert t.actions == (
        OpenSession(),
        StartAgent(step_id=0, resume=False, rerun=False, message=None),
    )


def test_start_step_is_a_noop_when_not_startable() -> None:
    done = _hydrated(1)
    t = decide_transition(state=done, event=StartStep(step_id=0), catalog=DEFAULT_CATALOG)
    assert t.snapshot is done
    assert t.actions == ()

    running = _running(0)
    t = decide_transition(state=running, event=StartStep(step_id=0), catalog=DEFAULT_CATALOG)
    assert t.snapshot is running

    review = _hydrated(1)
    t = decide_transition(state=review, event=StartStep(step_id=1), catalog=DEFAULT_CATALOG)
    assert t.snapshot is review


def test_reasoning_step_can_be_started() -> None:
    t = decide_transition(state=_hydrated(4), event=StartStep(step_id=4), catalog=DEFAULT_CATALOG)
    assert t.snapshot.status_of(4) is StepStatus.IN_PROGRESS


def test_agent_success_advances_to_waiting_review() -> None:
    t = decide_transition(
        state=_running(0), event=AgentFinished(step_id=0, success=True), catalog=DEFAULT_CATALOG
    )

    assert t.snapshot.status_of(0) is StepStatus.COMPLETED
    assert t.snapshot.current_step == 1
    assert t.snapshot.status_of(1) is StepStatus.WAITING_FOR_USER
    assert not t.snapshot.is_running
    assert _notes(t.actions) == ["Step 1 completed"]
    assert not any(isinstance(a, StartAgent) for a in t.actions)


def test_agent_failure_marks_error_without_advancing() -> None:
    t = decide_transition(
        state=_running(2), event=AgentFinished(step_id=2, success=False), catalog=DEFAULT_CATALOG
    )

    assert t.snapshot.status_of(2) is StepStatus.ERROR
    assert t.snapshot.current_step == 2
    assert not t.snapshot.is_running
    assert t.actions == (Notify(level=NotificationLevel.ERROR, message="Step 3 failed"),)


def test_agent_start_failure_is_handled_like_a_failed_run() -> None:
    t = decide_transition(
        state=_running(0),
        event=AgentStartFailed(step_id=0, reason="binary missing"),
        catalog=DEFAULT_CATALOG,
    )
    assert t.snapshot.status_of(0) is StepStatus.ERROR


def test_stale_agent_completion_is_ignored() -> None:
    idle = _hydrated(1)
    t = decide_transition(
        state=idle, event=AgentFinished(step_id=0, success=True), catalog=DEFAULT_CATALOG
    )
    assert t.snapshot is idle
    assert t.actions == ()


def test_debug_mode_cascades_through_skippable_steps() -> None:
    catalog = build_catalog(
        [
            StepDefinition(id=i, name=f"s{i}", description="", kind=StepKind.AGENT)
            for i in range(6)
        ]
        + [
            StepDefinition(
                id=i, name=f"s{i}", description="", kind=StepKind.AGENT, debug_skippable=True
            )
            for i in range(6, 9)
        ]
        + [StepDefinition(id=9, name="s9", description="", kind=StepKind.AGENT)]
    )
    snap = RunSnapshot.fresh(catalog, artifact_name="demo")
    for step_id in range(5):
        snap = snap.with_step_status(step_id, StepStatus.COMPLETED)
    snap = replace(
        snap.with_step_status(5, StepStatus.IN_PROGRESS).with_running(True),
        current_step=5,
        hydrated=True,
        session_id="s1",
    )

    t = decide_transition(
        state=snap, event=AgentFinished(step_id=5, success=True), catalog=catalog, debug_mode=True
    )

    for step_id in (5, 6, 7, 8):
        assert t.snapshot.status_of(step_id) is StepStatus.COMPLETED
    assert t.snapshot.current_step == 9
    assert t.snapshot.status_of(9) is StepStatus.IN_PROGRESS
    assert t.snapshot.is_running
    assert _notes(t.actions) == [
        "Step 6 completed",
        "Step 7 auto-completed (debug)",
        "Step 8 auto-completed (debug)",
        "Step 9 auto-completed (debug)",
    ]
    assert t.actions[-1] == StartAgent(step_id=9)


def test_debug_mode_completes_review_steps_on_the_default_catalog() -> None:
    t = decide_transition(
        state=_running(0),
        event=AgentFinished(step_id=0, success=True),
        catalog=DEFAULT_CATALOG,
        debug_mode=True,
    )
    assert t.snapshot.status_of(1) is StepStatus.COMPLETED
    assert t.snapshot.current_step == 2
    assert t.snapshot.status_of(2) is StepStatus.IN_PROGRESS


def test_review_completed_advances_from_waiting() -> None:
    snap = _hydrated(1).with_step_status(1, StepStatus.WAITING_FOR_USER)
    t = decide_transition(state=snap, event=ReviewCompleted(step_id=1), catalog=DEFAULT_CATALOG)
    assert t.snapshot.status_of(1) is StepStatus.COMPLETED
    assert t.snapshot.current_step == 2
    assert t.snapshot.status_of(2) is StepStatus.PENDING
    assert _notes(t.actions) == ["Step 2 completed"]


def test_last_step_completion_closes_the_session() -> None:
    snap = replace(_hydrated(8), session_id="s1")

    t = decide_transition(
        state=snap, event=LastStepCompleted(skipped=True), catalog=DEFAULT_CATALOG
    )

    assert t.snapshot.all_completed()
    assert _notes(t.actions) == ["Step 9 skipped"]
    assert CloseSession() in t.actions

    t = decide_transition(state=snap, event=LastStepCompleted(), catalog=DEFAULT_CATALOG)
    assert _notes(t.actions) == ["Step 9 marked complete"]


def test_unmount_reverts_in_progress_and_always_cancels() -> None:
    t = decide_transition(state=_running(2), event=Unmounted(), catalog=DEFAULT_CATALOG)
    assert t.snapshot.status_of(2) is StepStatus.PENDING
    assert not t.snapshot.is_running
    assert t.actions == (ClearAgentRuns(), CloseSession(), CancelAgent())

    t = decide_transition(state=_hydrated(2), event=Unmounted(), catalog=DEFAULT_CATALOG)
    assert t.actions == (ClearAgentRuns(), CancelAgent())


def test_rerun_of_agent_step_enters_rerun_mode() -> None:
    snap = _hydrated(1)
    snap = replace(snap, current_step=0)

    t = decide_transition(state=snap, event=RerunRequested(step_id=0), catalog=DEFAULT_CATALOG)

    assert t.snapshot.rerun_step == 0
    assert t.snapshot.status_of(0) is StepStatus.IN_PROGRESS
    assert t.actions[-1] == StartAgent(step_id=0, rerun=True)

    done = decide_transition(
        state=t.snapshot, event=AgentFinished(step_id=0, success=True), catalog=DEFAULT_CATALOG
    )
    assert done.snapshot.current_step == 0
    assert done.snapshot.rerun_step == 0

    msg = decide_transition(
        state=done.snapshot, event=RerunMessageSent(text="tighten it"), catalog=DEFAULT_CATALOG
    )
    assert msg.actions[-1] == StartAgent(step_id=0, rerun=True, message="tighten it")

    finished = decide_transition(
        state=done.snapshot, event=RerunFinished(), catalog=DEFAULT_CATALOG
    )
    assert finished.snapshot.rerun_step is None
    assert finished.snapshot.current_step == 1
    assert finished.snapshot.status_of(1) is StepStatus.WAITING_FOR_USER


def test_rerun_of_reasoning_step_starts_over() -> None:
    snap = replace(_hydrated(6), current_step=4, session_id="s1")

    t = decide_transition(state=snap, event=RerunRequested(step_id=4), catalog=DEFAULT_CATALOG)

    assert t.snapshot.status_of(4) is StepStatus.IN_PROGRESS
    assert t.snapshot.status_of(5) is StepStatus.PENDING
    assert t.snapshot.rerun_step is None
    assert t.actions == (
        CancelAgent(),
        ResetPersistedSteps(step_id=4),
        StartAgent(step_id=4),
    )


def test_rerun_of_review_step_is_a_noop() -> None:
    snap = replace(_hydrated(2), current_step=1)
    t = decide_transition(state=snap, event=RerunRequested(step_id=1), catalog=DEFAULT_CATALOG)
    assert t.snapshot is snap


def test_reset_confirmed_truncates_and_requests_cleanup() -> None:
    snap = replace(_hydrated(3), session_id="s1")

    t = decide_transition(state=snap, event=ResetConfirmed(step_id=0), catalog=DEFAULT_CATALOG)

    assert t.snapshot.current_step == 0
    assert all(s.status is StepStatus.PENDING for s in t.snapshot.steps)
    assert t.actions == (
        CancelAgent(),
        ClearAgentRuns(),
        ResetPersistedSteps(step_id=0),
        CloseSession(),
        Notify(level=NotificationLevel.SUCCESS, message="Workflow reset successfully"),
    )

    with pytest.raises(IndexError):
        decide_transition(state=snap, event=ResetConfirmed(step_id=99), catalog=DEFAULT_CATALOG)


def test_step_selection_rules() -> None:
    snap = _hydrated(3)

    back = decide_transition(state=snap, event=StepSelected(step_id=1), catalog=DEFAULT_CATALOG)
    assert back.snapshot.current_step == 1

    ahead = decide_transition(state=snap, event=StepSelected(step_id=5), catalog=DEFAULT_CATALOG)
    assert ahead.snapshot is snap

    running = _running(2)
    blocked = decide_transition(
        state=running, event=StepSelected(step_id=0), catalog=DEFAULT_CATALOG
    )
    assert blocked.snapshot is running

    forced = decide_transition(
        state=running, event=StepSelected(step_id=0, force=True), catalog=DEFAULT_CATALOG
    )
    assert forced.snapshot.current_step == 0
    assert forced.snapshot.status_of(2) is StepStatus.PENDING
    assert forced.actions == (ClearAgentRuns(), CancelAgent())


def test_entering_a_pending_review_step_waits_for_the_user() -> None:
    t = decide_transition(state=_hydrated(1), event=CurrentStepEntered(), catalog=DEFAULT_CATALOG)
    assert t.snapshot.status_of(1) is StepStatus.WAITING_FOR_USER


def test_unknown_event_type_raises() -> None:
    with pytest.raises(TypeError):
        decide_transition(state=_hydrated(), event=object(), catalog=DEFAULT_CATALOG)  # type: ignore[arg-type]
