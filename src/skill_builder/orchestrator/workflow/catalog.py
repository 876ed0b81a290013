"""The fixed, ordered list of workflow steps.

The catalog is pure data. Step ids are list positions, so they are contiguous
from 0 by construction. Asking about an id outside the catalog is a
programming error and raises `IndexError`.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum


class StepKind(str, Enum):
    AGENT = "agent"
    HUMAN_REVIEW = "human_review"
    # Multi-turn decisions step with its own conversational UI.
    REASONING = "reasoning"
    REFINEMENT = "refinement"


MODEL_IDS: dict[str, str] = {
    "sonnet": "claude-sonnet-4-5-20250929",
    "haiku": "claude-haiku-4-5-20251001",
    "opus": "claude-opus-4-6",
}


def resolve_model_id(shorthand: str) -> str:
    """Map a model shorthand to a full model id; full ids pass through."""

    return MODEL_IDS.get(shorthand, shorthand)


@dataclass(frozen=True, slots=True)
class StepDefinition:
    id: int
    name: str
    description: str
    kind: StepKind
    output_files: tuple[str, ...] = ()
    # Relative path of the document a human review step edits.
    review_path: str | None = None
    model: str | None = None
    # Completed automatically when debug mode fast-forwards past it.
    debug_skippable: bool = False
    supports_rerun_chat: bool = False


@dataclass(frozen=True, slots=True)
class StepCatalog:
    steps: tuple[StepDefinition, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        for index, step in enumerate(self.steps):
            if step.id != index:
                raise ValueError(f"Step ids must be contiguous from 0 (got {step.id} at {index})")
            if step.kind is StepKind.HUMAN_REVIEW and not step.review_path:
                raise ValueError(f"Human review step {step.id} needs a review_path")

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[StepDefinition]:
        return iter(self.steps)

    def __getitem__(self, step_id: int) -> StepDefinition:
        if step_id < 0 or step_id >= len(self.steps):
            raise IndexError(f"Unknown step id {step_id} (catalog has {len(self.steps)} steps)")
        return self.steps[step_id]

    @property
    def last_step_id(self) -> int:
        return len(self.steps) - 1

    def step_kind(self, step_id: int) -> StepKind:
        return self[step_id].kind

    def is_last_step(self, step_id: int) -> bool:
        return self[step_id].id == self.last_step_id

    def is_human_review_step(self, step_id: int) -> bool:
        return self[step_id].kind is StepKind.HUMAN_REVIEW

    def artifact_path_for(self, step_id: int) -> str | None:
        """The document a human review step edits (None for other kinds)."""

        return self[step_id].review_path

    def primary_output(self, step_id: int) -> str | None:
        """First declared output file; used to detect partial output."""

        outputs = self[step_id].output_files
        return outputs[0] if outputs else None

    def contains(self, step_id: int) -> bool:
        return 0 <= step_id < len(self.steps)


def build_catalog(steps: Sequence[StepDefinition]) -> StepCatalog:
    return StepCatalog(steps=tuple(steps))


DEFAULT_CATALOG = build_catalog(
    [
        StepDefinition(
            id=0,
            name="Research Concepts",
            description="Research key concepts, terminology, and frameworks for the domain",
            kind=StepKind.AGENT,
            output_files=("context/clarifications-concepts.md",),
            model="sonnet",
            supports_rerun_chat=True,
        ),
        StepDefinition(
            id=1,
            name="Concepts Review",
            description="Review and answer clarification questions about domain concepts",
            kind=StepKind.HUMAN_REVIEW,
            review_path="context/clarifications-concepts.md",
            debug_skippable=True,
        ),
        StepDefinition(
            id=2,
            name="Perform Research",
            description="Research business patterns, data modeling, and merge results",
            kind=StepKind.AGENT,
            output_files=(
                "context/clarifications-patterns.md",
                "context/clarifications-data.md",
                "context/clarifications.md",
            ),
            model="sonnet",
            supports_rerun_chat=True,
        ),
        StepDefinition(
            id=3,
            name="Human Review",
            description="Review and answer merged clarification questions",
            kind=StepKind.HUMAN_REVIEW,
            review_path="context/clarifications.md",
            debug_skippable=True,
        ),
        StepDefinition(
            id=4,
            name="Reasoning",
            description="Analyze responses for implications, gaps, and contradictions",
            kind=StepKind.REASONING,
            output_files=("context/decisions.md",),
            model="opus",
        ),
        StepDefinition(
            id=5,
            name="Build Skill",
            description="Generate skill files from decisions",
            kind=StepKind.AGENT,
            output_files=("skill/SKILL.md", "skill/references/"),
            model="sonnet",
            supports_rerun_chat=True,
        ),
        StepDefinition(
            id=6,
            name="Validate",
            description="Validate skill against best practices",
            kind=StepKind.AGENT,
            output_files=("context/agent-validation-log.md",),
            model="sonnet",
            debug_skippable=True,
            supports_rerun_chat=True,
        ),
        StepDefinition(
            id=7,
            name="Test",
            description="Generate and evaluate test prompts",
            kind=StepKind.AGENT,
            output_files=("context/test-skill.md",),
            model="sonnet",
            debug_skippable=True,
            supports_rerun_chat=True,
        ),
        StepDefinition(
            id=8,
            name="Refine",
            description="Chat with an agent to review, iterate, and polish the skill output",
            kind=StepKind.REFINEMENT,
            debug_skippable=True,
        ),
    ]
)
