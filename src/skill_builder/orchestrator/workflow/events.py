"""Commands and trigger events consumed by the workflow policy.

User intents (start, complete, rerun, reset, leave) and external facts (an
agent process finished) are all modelled as small immutable events. The
coordinator turns each one into exactly one call of a transition function in
`policy.py`.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AgentCompletion:
    """The single terminal event an agent invocation emits."""

    token: str
    success: bool
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class StartStep:
    step_id: int
    resume: bool = False
    # Resume through the rerun conversation instead of a cold start.
    rerun: bool = False


@dataclass(frozen=True, slots=True)
class AgentFinished:
    """A completion that passed the run-token check in the coordinator."""

    step_id: int
    success: bool


@dataclass(frozen=True, slots=True)
class AgentStartFailed:
    step_id: int
    reason: str


@dataclass(frozen=True, slots=True)
class ReviewCompleted:
    step_id: int


@dataclass(frozen=True, slots=True)
class LastStepCompleted:
    skipped: bool = False


@dataclass(frozen=True, slots=True)
class Unmounted:
    pass


@dataclass(frozen=True, slots=True)
class RerunRequested:
    step_id: int


@dataclass(frozen=True, slots=True)
class RerunMessageSent:
    text: str


@dataclass(frozen=True, slots=True)
class RerunFinished:
    pass


@dataclass(frozen=True, slots=True)
class ResetConfirmed:
    step_id: int


@dataclass(frozen=True, slots=True)
class StepSelected:
    step_id: int
    force: bool = False


@dataclass(frozen=True, slots=True)
class CurrentStepEntered:
    """Emitted after hydration or navigation lands on the current step."""


WorkflowEvent = (
    StartStep
    | AgentFinished
    | AgentStartFailed
    | ReviewCompleted
    | LastStepCompleted
    | Unmounted
    | RerunRequested
    | RerunMessageSent
    | RerunFinished
    | ResetConfirmed
    | StepSelected
    | CurrentStepEntered
)
