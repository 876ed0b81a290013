"""Explicit workflow domain concepts.

This package introduces first-class types for:
- the step catalog and step state machine
- the run state store and agent run tracker
- events (user intents and agent completions) and side-effect actions
- pure transition policy and the coordinator that executes it
"""

__all__: list[str] = []
