"""Side-effect requests produced by the policy.

Policy functions never perform I/O. They describe what should happen and the
coordinator executes the requests in order after committing the new snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class Notify:
    level: NotificationLevel
    message: str


@dataclass(frozen=True, slots=True)
class StartAgent:
    step_id: int
    resume: bool = False
    rerun: bool = False
    message: str | None = None


@dataclass(frozen=True, slots=True)
class CancelAgent:
    """Ask the adapter to tear down any agent process for the artifact.

    Idempotent: issued on every unmount whether or not a run is live.
    """


@dataclass(frozen=True, slots=True)
class ClearAgentRuns:
    pass


@dataclass(frozen=True, slots=True)
class ResetPersistedSteps:
    step_id: int


@dataclass(frozen=True, slots=True)
class OpenSession:
    pass


@dataclass(frozen=True, slots=True)
class CloseSession:
    pass


Action = (
    Notify
    | StartAgent
    | CancelAgent
    | ClearAgentRuns
    | ResetPersistedSteps
    | OpenSession
    | CloseSession
)


def success(message: str) -> Notify:
    return Notify(level=NotificationLevel.SUCCESS, message=message)


def error(message: str) -> Notify:
    return Notify(level=NotificationLevel.ERROR, message=message)
