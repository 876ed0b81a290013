"""FastAPI app factory.

Endpoints are thin wrappers over a single `WorkflowCoordinator`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skill_builder import __version__
from skill_builder.orchestrator.config import WorkflowSettings
from skill_builder.orchestrator.workflow.coordinator import WorkflowCoordinator
from skill_builder.server.config import ServerSettings
from skill_builder.server.workflow_router import router as workflow_router

logger = logging.getLogger(__name__)


def create_app(
    coordinator: WorkflowCoordinator | None = None,
    *,
    settings: ServerSettings | None = None,
) -> FastAPI:
    settings = settings or ServerSettings()
    if coordinator is None:
        coordinator = WorkflowCoordinator.from_settings(WorkflowSettings())
    lock = threading.Lock()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        # A step must not stay in progress after the server goes away.
        with lock:
            coordinator.unmount()

    app = FastAPI(
        title="Skill Builder",
        version=__version__,
        description="REST API over the skill builder workflow coordinator.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.coordinator = coordinator
    app.state.coordinator_lock = lock

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(workflow_router, prefix="/api")

    logger.info("Server app created", extra={"debug_mode": coordinator.debug_mode})
    return app
