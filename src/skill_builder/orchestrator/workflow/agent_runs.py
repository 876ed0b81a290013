"""Record of agent invocations, kept apart from step status.

The tracker is the single writer-of-record for run-token outcomes. It never
decides what happens next; keeping it separate from `RunStateStore` is what
lets the coordinator notice that a completion belongs to a run it no longer
cares about.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum

logger = logging.getLogger(__name__)


class RunOutcome(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class AgentRunRecord:
    token: str
    model: str
    step_id: int
    started_at: datetime
    outcome: RunOutcome = RunOutcome.RUNNING


class AgentRunTracker:
    def __init__(self) -> None:
        self._runs: dict[str, AgentRunRecord] = {}
        self._active_token: str | None = None

    @property
    def active(self) -> AgentRunRecord | None:
        if self._active_token is None:
            return None
        return self._runs.get(self._active_token)

    def get(self, token: str) -> AgentRunRecord | None:
        return self._runs.get(token)

    def is_active(self, token: str) -> bool:
        return token == self._active_token

    def start_run(self, token: str, model: str, step_id: int) -> AgentRunRecord:
        """Make `token` the active run. Any previous active run is orphaned."""

        if self._active_token is not None and self._active_token != token:
            logger.debug(
                "Orphaning previous agent run",
                extra={"run_token": self._active_token, "replaced_by": token},
            )
        record = AgentRunRecord(
            token=token, model=model, step_id=step_id, started_at=datetime.now(UTC)
        )
        self._runs[token] = record
        self._active_token = token
        return record

    def complete_run(self, token: str, success: bool) -> AgentRunRecord | None:
        """Record the outcome of `token`. Orphaned runs are forgotten once finished."""

        record = self._runs.get(token)
        if record is None:
            logger.debug("Completion for unknown agent run", extra={"run_token": token})
            return None
        outcome = RunOutcome.SUCCEEDED if success else RunOutcome.FAILED
        updated = replace(record, outcome=outcome)
        if token == self._active_token:
            self._runs[token] = updated
        else:
            del self._runs[token]
        return updated

    def clear_active(self) -> None:
        record = self.active
        if record is not None and record.outcome is not RunOutcome.RUNNING:
            del self._runs[record.token]
        self._active_token = None

    def clear_runs(self) -> None:
        self._runs.clear()
        self._active_token = None

    def __len__(self) -> int:
        return len(self._runs)
