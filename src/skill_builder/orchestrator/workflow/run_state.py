"""Observable in-memory state for the live workflow run.

The store is the single writer-of-record for step status. It holds exactly one
run at a time; opening another artifact replaces it via `init_workflow`.

Only the coordinator mutates the store. Everything else reads `snapshot` or
subscribes for change notifications.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace

from .catalog import StepCatalog
from .state_machine import RunSnapshot, StepStatus

logger = logging.getLogger(__name__)

Listener = Callable[[RunSnapshot], None]


class RunStateStore:
    def __init__(self, catalog: StepCatalog) -> None:
        self._catalog = catalog
        self._snapshot = RunSnapshot.fresh(catalog)
        self._listeners: list[Listener] = []

    @property
    def catalog(self) -> StepCatalog:
        return self._catalog

    @property
    def snapshot(self) -> RunSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def commit(self, snapshot: RunSnapshot) -> RunSnapshot:
        """Replace the live snapshot and notify subscribers (only on change)."""

        if snapshot == self._snapshot:
            return snapshot
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)
        return snapshot

    def init_workflow(
        self, artifact_name: str, domain: str, skill_type: str | None = None
    ) -> RunSnapshot:
        """Start a fresh, not-yet-hydrated run. Safe to call repeatedly; last call wins."""

        return self.commit(
            RunSnapshot.fresh(
                self._catalog,
                artifact_name=artifact_name,
                domain=domain,
                skill_type=skill_type,
            )
        )

    def set_hydrated(self, hydrated: bool) -> RunSnapshot:
        return self.commit(replace(self._snapshot, hydrated=hydrated))

    def load_workflow_state(
        self, completed_step_ids: Iterable[int], current_step: int | None = None
    ) -> RunSnapshot:
        """Merge persisted completions into the fresh run and mark it hydrated.

        Ids the catalog no longer knows about are dropped. Without an explicit
        current step, the first incomplete step becomes current.
        """

        known = {i for i in completed_step_ids if self._catalog.contains(i)}
        snapshot = self._snapshot
        for step_id in sorted(known):
            snapshot = snapshot.with_step_status(step_id, StepStatus.COMPLETED)

        if current_step is None or not self._catalog.contains(current_step):
            first_incomplete = next(
                (s.step_id for s in snapshot.steps if s.status is not StepStatus.COMPLETED),
                self._catalog.last_step_id,
            )
            current_step = first_incomplete

        return self.commit(replace(snapshot, current_step=current_step, hydrated=True))

    def update_step_status(self, step_id: int, status: StepStatus) -> RunSnapshot:
        """Mutate one step.

        Raises `IllegalTransitionError` when another step is still in progress;
        callers move the previous step out of IN_PROGRESS first.
        """

        if not self._catalog.contains(step_id):
            raise IndexError(f"Unknown step id {step_id}")
        return self.commit(self._snapshot.with_step_status(step_id, status))

    def set_current_step(self, step_id: int) -> RunSnapshot:
        return self.commit(self._snapshot.with_current_step(step_id))

    def set_running(self, running: bool) -> RunSnapshot:
        return self.commit(self._snapshot.with_running(running))

    def set_session_id(self, session_id: str | None) -> RunSnapshot:
        return self.commit(replace(self._snapshot, session_id=session_id))

    def reset(self) -> RunSnapshot:
        """Forget the current artifact entirely."""

        logger.debug("Run state reset", extra={"artifact": self._snapshot.artifact_name})
        return self.commit(RunSnapshot.fresh(self._catalog))
