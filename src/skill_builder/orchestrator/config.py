"""Configuration for the local-first skill builder.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Nothing here is required at startup. A workflow can be opened and inspected
without a workspace; starting an agent step validates the workspace at call
time.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkflowSettings(BaseSettings):
    """Settings for the workflow coordinator.

    Environment variables:
    - SKILL_BUILDER_WORKSPACE_PATH
    - SKILL_BUILDER_SKILLS_PATH            (optional)
    - SKILL_BUILDER_STATE_PATH             (optional)
    - SKILL_BUILDER_DEBUG_MODE             (optional)
    - SKILL_BUILDER_AGENT_BINARY           (optional)
    - SKILL_BUILDER_AGENT_TIMEOUT_SECONDS  (optional)
    - LOG_LEVEL                            (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `WorkflowSettings(_env_file=path_to_env)`.
    """

    workspace_path: Path | None = Field(
        default=None,
        validation_alias="SKILL_BUILDER_WORKSPACE_PATH",
        description="Directory where agents write their raw output (one folder per skill)",
    )
    skills_path: Path | None = Field(
        default=None,
        validation_alias="SKILL_BUILDER_SKILLS_PATH",
        description=(
            "Optional skills output directory. When set, `<skills_path>/<skill>/context` "
            "is the first place partial output and review documents are looked up."
        ),
    )

    state_path: Path = Field(
        default=Path("skill_builder_state"),
        validation_alias="SKILL_BUILDER_STATE_PATH",
        description="Directory where workflow runs, artifacts and sessions are persisted",
    )

    debug_mode: bool = Field(
        default=False,
        validation_alias="SKILL_BUILDER_DEBUG_MODE",
        description=(
            "Fast-forward review and non-interactive steps after an agent step completes. "
            "Human review steps are marked completed without touching their content."
        ),
    )

    agent_binary: str = Field(
        default="claude",
        validation_alias="SKILL_BUILDER_AGENT_BINARY",
        description="Executable used to run agent steps",
    )
    agent_timeout_seconds: float = Field(
        default=1800.0,
        validation_alias="SKILL_BUILDER_AGENT_TIMEOUT_SECONDS",
        description="Wall-clock limit for a single agent run (0 means no timeout)",
        ge=0,
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL: {value!r}")
        return normalized

    @property
    def runs_state_dir(self) -> Path:
        """Directory holding one JSON document per workflow run."""

        return self.state_path / "runs"

    @property
    def sessions_state_file(self) -> Path:
        """Path where workflow sessions are persisted."""

        return self.state_path / "sessions.json"
