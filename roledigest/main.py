"""Role Model Digest FastAPI application entrypoint."""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roledigest.config import get_settings
from roledigest.routers import auth, digests, pipeline, role_model
from roledigest.scheduler import start_scheduler, stop_scheduler

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "asctime": self.formatTime(record, self.datefmt),
            "levelname": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _configure_logging() -> None:
    """Configure root logger based on ENV (dev=DEBUG, prod=INFO) and LOG_FORMAT."""
    settings = get_settings()
    level = logging.DEBUG if settings.env != "prod" else logging.INFO
    handler = logging.StreamHandler()
    if settings.log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%H:%M:%S"))
    logging.basicConfig(level=level, handlers=[handler], force=True)
    logging.getLogger("httpx").setLevel(logging.WARNING)


_configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    settings = get_settings()

    scheduler_started = False
    if settings.enable_internal_scheduler:
        start_scheduler()
        scheduler_started = True
    else:
        logger.info("Internal scheduler disabled by configuration")

    try:
        yield
    finally:
        if scheduler_started:
            stop_scheduler()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="Role Model Digest",
        description="Weekly sourced digests about the people you look up to",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router)
    app.include_router(role_model.router)
    app.include_router(digests.router)
    app.include_router(pipeline.router)

    return app


app = create_app()


@app.get("/api/health")
async def health_check() -> dict[str, str]:
    """Return application health status."""
    return {"status": "ok"}
