"""Configuration for the REST server.

The server starts without a workspace configured; workflows can be opened and
inspected, and starting an agent step fails at request time instead.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    host: str = Field(default="127.0.0.1", validation_alias="SKILL_BUILDER_HOST")
    port: int = Field(default=8765, validation_alias="SKILL_BUILDER_PORT", ge=1, le=65535)

    # Dev-friendly CORS (Vite). Override via SKILL_BUILDER_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="SKILL_BUILDER_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
