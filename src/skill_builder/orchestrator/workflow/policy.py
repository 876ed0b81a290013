"""Policy: (snapshot, event) -> Transition.

One function per edge of the step state machine. Each takes the current
snapshot and returns the next snapshot plus the side effects the coordinator
must perform. Nothing here touches the filesystem, the agent process or the
clock beyond the timestamps stamped onto step states.

Invalid requests (starting a completed step, completing a step that is not in
progress, stale agent completions) return the snapshot unchanged with no
actions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from . import actions as act
from .actions import Action
from .catalog import StepCatalog, StepKind
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
from .state_machine import RunSnapshot, StepStatus

logger = logging.getLogger(__name__)

# Step kinds that run through the agent adapter.
AGENT_DRIVEN_KINDS = frozenset({StepKind.AGENT, StepKind.REASONING})
_STARTABLE = frozenset({StepStatus.PENDING, StepStatus.ERROR})
_RERUNNABLE = frozenset({StepStatus.COMPLETED, StepStatus.ERROR})


@dataclass(frozen=True, slots=True)
class Transition:
    snapshot: RunSnapshot
    actions: tuple[Action, ...] = ()


def _unchanged(state: RunSnapshot, why: str) -> Transition:
    logger.debug("Ignoring workflow event", extra={"reason": why, "step_id": state.current_step})
    return Transition(snapshot=state)


def _begin_agent(
    state: RunSnapshot,
    step_id: int,
    out: list[Action],
    *,
    resume: bool = False,
    rerun: bool = False,
    message: str | None = None,
) -> RunSnapshot:
    state = state.with_step_status(step_id, StepStatus.IN_PROGRESS).with_running(True)
    if state.session_id is None:
        out.append(act.OpenSession())
    out.append(act.StartAgent(step_id=step_id, resume=resume, rerun=rerun, message=message))
    return state


def _advance_from(
    state: RunSnapshot, catalog: StepCatalog, step_id: int, *, debug_mode: bool, out: list[Action]
) -> RunSnapshot:
    """Move past a just-completed step.

    In debug mode this loops over every debug-skippable step, completing each
    one, then auto-starts the next plain agent step. The loop stops at the
    first step that needs human judgement or past the last step.
    """

    next_id = step_id + 1
    if debug_mode:
        while (
            catalog.contains(next_id)
            and catalog[next_id].debug_skippable
            and state.status_of(next_id) is not StepStatus.ERROR
        ):
            if state.status_of(next_id) is not StepStatus.COMPLETED:
                state = state.with_step_status(next_id, StepStatus.COMPLETED)
                out.append(act.success(f"Step {next_id + 1} auto-completed (debug)"))
            next_id += 1

    if not catalog.contains(next_id):
        state = state.with_current_step(catalog.last_step_id)
        if state.all_completed():
            out.append(act.CloseSession())
        return state

    state = state.with_current_step(next_id)
    step = catalog[next_id]
    status = state.status_of(next_id)
    if step.kind is StepKind.HUMAN_REVIEW and status is StepStatus.PENDING:
        state = state.with_step_status(next_id, StepStatus.WAITING_FOR_USER)
    elif debug_mode and step.kind is StepKind.AGENT and status in _STARTABLE:
        state = _begin_agent(state, next_id, out)
    return state


def start_step(
    state: RunSnapshot, event: StartStep, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    step_id = event.step_id
    if not state.hydrated:
        return _unchanged(state, "run state not loaded")
    if step_id != state.current_step:
        return _unchanged(state, "start requested for a step that is not current")
    if catalog.step_kind(step_id) not in AGENT_DRIVEN_KINDS:
        return _unchanged(state, "step kind is not agent driven")
    if state.is_running or state.in_progress_step() is not None:
        return _unchanged(state, "an agent is already running")
    if state.status_of(step_id) not in _STARTABLE:
        return _unchanged(state, "step already completed")

    out: list[Action] = []
    state = replace(state, rerun_step=step_id if event.rerun else None)
    state = _begin_agent(state, step_id, out, resume=event.resume, rerun=event.rerun)
    return Transition(snapshot=state, actions=tuple(out))


def agent_finished(
    state: RunSnapshot, event: AgentFinished, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    step_id = event.step_id
    if state.status_of(step_id) is not StepStatus.IN_PROGRESS:
        return _unchanged(state, "stale agent completion")

    out: list[Action] = []
    if not event.success:
        state = state.with_step_status(step_id, StepStatus.ERROR).with_running(False)
        out.append(act.error(f"Step {step_id + 1} failed"))
        return Transition(snapshot=state, actions=tuple(out))

    state = state.with_step_status(step_id, StepStatus.COMPLETED).with_running(False)
    out.append(act.success(f"Step {step_id + 1} completed"))
    if state.rerun_step == step_id:
        # Rerun mode keeps the user on the step until they finish the rerun.
        return Transition(snapshot=state, actions=tuple(out))

    state = _advance_from(state, catalog, step_id, debug_mode=debug_mode, out=out)
    return Transition(snapshot=state, actions=tuple(out))


def agent_start_failed(
    state: RunSnapshot, event: AgentStartFailed, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    """An agent that cannot be reached is handled like a failed run."""

    return agent_finished(
        state,
        AgentFinished(step_id=event.step_id, success=False),
        catalog=catalog,
        debug_mode=debug_mode,
    )


def review_completed(
    state: RunSnapshot, event: ReviewCompleted, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    step_id = event.step_id
    if step_id != state.current_step or not catalog.is_human_review_step(step_id):
        return _unchanged(state, "not the current review step")
    if state.status_of(step_id) not in {StepStatus.PENDING, StepStatus.WAITING_FOR_USER}:
        return _unchanged(state, "review step is not awaiting input")

    out: list[Action] = [act.success(f"Step {step_id + 1} completed")]
    state = state.with_step_status(step_id, StepStatus.COMPLETED)
    state = _advance_from(state, catalog, step_id, debug_mode=debug_mode, out=out)
    return Transition(snapshot=state, actions=tuple(out))


def last_step_completed(
    state: RunSnapshot, event: LastStepCompleted, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    step_id = catalog.last_step_id
    if state.current_step != step_id:
        return _unchanged(state, "last step is not current")
    if state.status_of(step_id) not in {StepStatus.PENDING, StepStatus.WAITING_FOR_USER}:
        return _unchanged(state, "last step cannot be completed from its status")

    label = "skipped" if event.skipped else "marked complete"
    out: list[Action] = [act.success(f"Step {step_id + 1} {label}")]
    state = state.with_step_status(step_id, StepStatus.COMPLETED)
    if state.all_completed():
        out.append(act.CloseSession())
    return Transition(snapshot=state, actions=tuple(out))


def unmounted(
    state: RunSnapshot, event: Unmounted, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    active = state.in_progress_step()
    if active is not None:
        state = state.with_step_status(active, StepStatus.PENDING)
    state = replace(state.with_running(False), rerun_step=None)

    out: list[Action] = [act.ClearAgentRuns()]
    if state.session_id is not None:
        out.append(act.CloseSession())
    out.append(act.CancelAgent())
    return Transition(snapshot=state, actions=tuple(out))


def rerun_requested(
    state: RunSnapshot, event: RerunRequested, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    step_id = event.step_id
    if step_id != state.current_step or state.is_running:
        return _unchanged(state, "rerun needs the idle current step")
    if state.status_of(step_id) not in _RERUNNABLE:
        return _unchanged(state, "only completed or failed steps can be rerun")

    step = catalog[step_id]
    out: list[Action] = []
    if step.kind is StepKind.REASONING:
        # Reasoning reruns start from scratch.
        out.extend([act.CancelAgent(), act.ResetPersistedSteps(step_id=step_id)])
        state = replace(state.truncated_from(step_id), rerun_step=None)
        state = state.with_current_step(step_id)
        state = _begin_agent(state, step_id, out)
        return Transition(snapshot=state, actions=tuple(out))

    if step.kind is not StepKind.AGENT or not step.supports_rerun_chat:
        return _unchanged(state, "step kind does not support rerun")

    state = _begin_agent(replace(state, rerun_step=step_id), step_id, out, rerun=True)
    return Transition(snapshot=state, actions=tuple(out))


def rerun_message_sent(
    state: RunSnapshot, event: RerunMessageSent, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    step_id = state.rerun_step
    if step_id is None or state.is_running:
        return _unchanged(state, "not waiting for a rerun message")
    if state.status_of(step_id) not in _RERUNNABLE:
        return _unchanged(state, "rerun step is not idle")

    out: list[Action] = []
    state = _begin_agent(state, step_id, out, rerun=True, message=event.text)
    return Transition(snapshot=state, actions=tuple(out))


def rerun_finished(
    state: RunSnapshot, event: RerunFinished, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    step_id = state.rerun_step
    if step_id is None or state.is_running:
        return _unchanged(state, "no idle rerun to finish")

    state = replace(state, rerun_step=None)
    out: list[Action] = []
    if state.status_of(step_id) is StepStatus.COMPLETED:
        state = _advance_from(state, catalog, step_id, debug_mode=debug_mode, out=out)
    return Transition(snapshot=state, actions=tuple(out))


def reset_confirmed(
    state: RunSnapshot, event: ResetConfirmed, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    step_id = event.step_id
    if not catalog.contains(step_id):
        raise IndexError(f"Unknown step id {step_id}")
    state = replace(state.truncated_from(step_id), rerun_step=None).with_running(False)
    state = state.with_current_step(step_id)

    out: list[Action] = [
        act.CancelAgent(),
        act.ClearAgentRuns(),
        act.ResetPersistedSteps(step_id=step_id),
    ]
    if state.session_id is not None:
        out.append(act.CloseSession())
    out.append(act.success("Workflow reset successfully"))
    return Transition(snapshot=state, actions=tuple(out))


def step_selected(
    state: RunSnapshot, event: StepSelected, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    step_id = event.step_id
    first_incomplete = next(
        (s.step_id for s in state.steps if s.status is not StepStatus.COMPLETED),
        catalog.last_step_id,
    )
    if state.status_of(step_id) is not StepStatus.COMPLETED and step_id != first_incomplete:
        return _unchanged(state, "step is not reachable yet")
    if step_id == state.current_step:
        return Transition(snapshot=state)

    out: list[Action] = []
    if state.is_running:
        if not event.force:
            return _unchanged(state, "agent running")
        active = state.in_progress_step()
        if active is not None:
            state = state.with_step_status(active, StepStatus.PENDING)
        state = state.with_running(False)
        out.extend([act.ClearAgentRuns(), act.CancelAgent()])

    state = replace(state, rerun_step=None).with_current_step(step_id)
    entered = current_step_entered(
        state, CurrentStepEntered(), catalog=catalog, debug_mode=debug_mode
    )
    return Transition(snapshot=entered.snapshot, actions=tuple(out) + entered.actions)


def current_step_entered(
    state: RunSnapshot, event: CurrentStepEntered, *, catalog: StepCatalog, debug_mode: bool
) -> Transition:
    """A human review step that is current waits for the user."""

    step_id = state.current_step
    if catalog.is_human_review_step(step_id) and state.status_of(step_id) is StepStatus.PENDING:
        state = state.with_step_status(step_id, StepStatus.WAITING_FOR_USER)
    return Transition(snapshot=state)


_Handler = Callable[..., Transition]

_HANDLERS: dict[type, _Handler] = {
    StartStep: start_step,
    AgentFinished: agent_finished,
    AgentStartFailed: agent_start_failed,
    ReviewCompleted: review_completed,
    LastStepCompleted: last_step_completed,
    Unmounted: unmounted,
    RerunRequested: rerun_requested,
    RerunMessageSent: rerun_message_sent,
    RerunFinished: rerun_finished,
    ResetConfirmed: reset_confirmed,
    StepSelected: step_selected,
    CurrentStepEntered: current_step_entered,
}


def decide_transition(
    *, state: RunSnapshot, event: WorkflowEvent, catalog: StepCatalog, debug_mode: bool = False
) -> Transition:
    """Policy entry point: route the event to its transition function."""

    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"No transition for event {type(event).__name__}")
    return handler(state, event, catalog=catalog, debug_mode=debug_mode)
