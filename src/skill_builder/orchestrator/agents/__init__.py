"""Agent process adapters."""

from __future__ import annotations

from .adapter import (
    AgentAdapter,
    AgentCompletion,
    AgentFlags,
    AgentStartError,
    CompletionQueue,
    StepResetPreview,
)
from .claude_cli import ClaudeCliAdapter

__all__ = [
    "AgentAdapter",
    "AgentCompletion",
    "AgentFlags",
    "AgentStartError",
    "ClaudeCliAdapter",
    "CompletionQueue",
    "StepResetPreview",
]
