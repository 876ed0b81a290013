from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum

from .catalog import StepCatalog


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    WAITING_FOR_USER = "waiting_for_user"
    COMPLETED = "completed"
    ERROR = "error"


class RunStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# Any status may go back to PENDING (reset, or the unmount revert of an
# in-progress step), so PENDING is added to every entry in `transition_step`.
ALLOWED_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.PENDING: {
        StepStatus.IN_PROGRESS,
        StepStatus.WAITING_FOR_USER,
        StepStatus.COMPLETED,
    },
    StepStatus.IN_PROGRESS: {StepStatus.COMPLETED, StepStatus.ERROR},
    StepStatus.WAITING_FOR_USER: {StepStatus.COMPLETED},
    # Rerun entry is the only way out of COMPLETED other than a reset.
    StepStatus.COMPLETED: {StepStatus.IN_PROGRESS},
    StepStatus.ERROR: {StepStatus.IN_PROGRESS},
}


class IllegalTransitionError(ValueError):
    pass


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def transition_step(*, current: StepStatus, to: StepStatus) -> StepStatus:
    if to is current or to is StepStatus.PENDING:
        return to
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


@dataclass(frozen=True, slots=True)
class StepState:
    step_id: int
    status: StepStatus = StepStatus.PENDING
    started_at: str | None = None
    completed_at: str | None = None

    def moved_to(self, status: StepStatus, *, now: str | None = None) -> StepState:
        if status is self.status:
            return self
        new_status = transition_step(current=self.status, to=status)
        stamp = now or _utcnow_iso()
        if new_status is StepStatus.PENDING:
            return StepState(step_id=self.step_id)
        if new_status is StepStatus.IN_PROGRESS:
            return StepState(step_id=self.step_id, status=new_status, started_at=stamp)
        if new_status is StepStatus.COMPLETED:
            return replace(self, status=new_status, completed_at=stamp)
        return replace(self, status=new_status)

    def to_json(self) -> dict[str, object]:
        return {
            "step_id": self.step_id,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True, slots=True)
class RunSnapshot:
    """The complete in-memory state of one workflow run.

    Snapshots are immutable. Every mutation returns a new snapshot, which is
    what lets the policy functions stay free of I/O: they take a snapshot and
    hand back another one plus a list of side effects.
    """

    artifact_name: str | None
    domain: str | None
    steps: tuple[StepState, ...]
    skill_type: str | None = None
    current_step: int = 0
    is_running: bool = False
    hydrated: bool = False
    session_id: str | None = None
    # Step currently in interactive rerun mode, if any.
    rerun_step: int | None = None

    @staticmethod
    def fresh(
        catalog: StepCatalog,
        *,
        artifact_name: str | None = None,
        domain: str | None = None,
        skill_type: str | None = None,
    ) -> RunSnapshot:
        return RunSnapshot(
            artifact_name=artifact_name,
            domain=domain,
            skill_type=skill_type,
            steps=tuple(StepState(step_id=step.id) for step in catalog),
        )

    def status_of(self, step_id: int) -> StepStatus:
        return self.steps[step_id].status

    @property
    def current_status(self) -> StepStatus:
        return self.steps[self.current_step].status

    def in_progress_step(self) -> int | None:
        for step in self.steps:
            if step.status is StepStatus.IN_PROGRESS:
                return step.step_id
        return None

    def all_completed(self) -> bool:
        return all(step.status is StepStatus.COMPLETED for step in self.steps)

    def overall_status(self) -> RunStatus:
        if self.current_status is StepStatus.IN_PROGRESS:
            return RunStatus.IN_PROGRESS
        if self.all_completed():
            return RunStatus.COMPLETED
        return RunStatus.PENDING

    def with_step_status(
        self, step_id: int, status: StepStatus, *, now: str | None = None
    ) -> RunSnapshot:
        if status is StepStatus.IN_PROGRESS:
            active = self.in_progress_step()
            if active is not None and active != step_id:
                raise IllegalTransitionError(
                    f"Step {active} is already in progress; cannot start step {step_id}"
                )
        steps = list(self.steps)
        steps[step_id] = steps[step_id].moved_to(status, now=now)
        return replace(self, steps=tuple(steps))

    def with_current_step(self, step_id: int) -> RunSnapshot:
        if step_id < 0 or step_id >= len(self.steps):
            raise IndexError(f"Unknown step id {step_id}")
        return replace(self, current_step=step_id)

    def with_running(self, running: bool) -> RunSnapshot:
        return replace(self, is_running=running)

    def truncated_from(self, step_id: int) -> RunSnapshot:
        """All steps with id >= step_id back to a clean PENDING state."""

        steps = tuple(
            StepState(step_id=s.step_id) if s.step_id >= step_id else s for s in self.steps
        )
        return replace(self, steps=steps)

    def to_json(self) -> dict[str, object]:
        return {
            "artifact_name": self.artifact_name,
            "domain": self.domain,
            "skill_type": self.skill_type,
            "current_step": self.current_step,
            "status": self.overall_status().value,
            "is_running": self.is_running,
            "hydrated": self.hydrated,
            "session_id": self.session_id,
            "rerun_step": self.rerun_step,
            "steps": [s.to_json() for s in self.steps],
        }
