"""Skill Builder.

Coordinates the step workflow that turns a domain into a skill:
- a fixed catalog of agent and human review steps
- a persisted step state machine with write-through JSON storage
- agent runs through the `claude` CLI, tracked by run token
- a CLI and a small REST server on top of the coordinator
"""

__version__ = "0.1.0"

from skill_builder.orchestrator.config import WorkflowSettings

__all__ = ["__version__", "WorkflowSettings"]
