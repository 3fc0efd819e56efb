"""FastAPI application exposing the agent/job marketplace routers."""

from __future__ import annotations

import logging
import os
from typing import Final

import prometheus_client
from fastapi import FastAPI, Response

from backend.database import get_database
from orchestrator.config import get_settings
from routes.agents import router as agents_router
from routes.jobs import router as jobs_router

LOGGER: Final[logging.Logger] = logging.getLogger("marketplace.api")

API_PREFIX: Final[str] = "/api"


def _configure_logging() -> None:
    level = get_settings().log_level
    logging.basicConfig(level=getattr(logging, level, logging.INFO))
    LOGGER.info("Marketplace API logging configured", extra={"level": level})


def create_app() -> FastAPI:
    """Instantiate the FastAPI application with the registry and matching routers."""

    _configure_logging()
    app = FastAPI(title="Agent Job Marketplace API", version="0.1.0", docs_url="/docs")

    app.include_router(agents_router, prefix=API_PREFIX)
    app.include_router(jobs_router, prefix=API_PREFIX)

    @app.on_event("startup")
    async def _open_database() -> None:  # pragma: no cover - FastAPI lifecycle wiring
        get_database(get_settings().database_url)

    @app.get("/healthz", tags=["health"])
    def root_health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/metrics", tags=["health"])
    def metrics() -> Response:
        return Response(
            content=prometheus_client.generate_latest(),
            media_type=prometheus_client.CONTENT_TYPE_LATEST,
        )

    return app


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual launch
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("MARKETPLACE_PORT", "3001")))
