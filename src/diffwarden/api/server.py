"""Diffwarden API Server.

FastAPI server receiving GitHub webhooks and running reviews on a
background queue worker.

Usage:
    diffwarden serve

    # Or with uvicorn directly:
    uvicorn diffwarden.api.server:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
import uvicorn
from fastapi import FastAPI

from diffwarden.api.queue import ReviewQueue
from diffwarden.api.webhook import router as webhook_router
from diffwarden.config import ReviewerConfig
from diffwarden.review.pipeline import ReviewPipeline
from diffwarden.utils.cache import TTLCache

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at ``level``."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    logging.basicConfig(
        level=numeric,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    config: ReviewerConfig = app.state.config

    # Startup
    logger.info(
        "Starting diffwarden server",
        scm=config.scm_backend,
        llm=f"{config.llm_provider}/{config.llm_model}",
        storage=config.storage_backend,
    )

    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        config.validate()
        pipeline = ReviewPipeline.from_config(config)
        app.state.pipeline = pipeline

    queue = ReviewQueue(pipeline.handle, dedup=TTLCache(ttl_seconds=config.dedup_ttl_seconds))
    await queue.start()
    app.state.queue = queue
    logger.info("Review queue started")

    yield

    # Shutdown
    logger.info("Shutting down diffwarden server", pending=queue.pending)
    await queue.stop()
    app.state.queue = None


def create_app(config: ReviewerConfig | None = None, pipeline: ReviewPipeline | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration (read from the environment when omitted)
        pipeline: Prebuilt pipeline; built from ``config`` at startup otherwise
    """
    app = FastAPI(
        title="Diffwarden API",
        description="Retrieval-augmented pull request review",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config or ReviewerConfig.from_env()
    app.state.pipeline = pipeline
    app.state.queue = None

    app.include_router(webhook_router)

    @app.get("/health")
    async def health():
        queue = app.state.queue
        return {
            "status": "healthy" if queue is not None and queue.is_running else "starting",
            "pipeline": app.state.pipeline.describe() if app.state.pipeline else None,
        }

    return app


# Create the app instance
app = create_app()


def run(
    host: str = "0.0.0.0",
    port: int = 8000,
    reload: bool = False,
    log_level: str = "INFO",
) -> None:
    """Run the diffwarden server.

    Args:
        host: Host to bind to
        port: Port to listen on
        reload: Enable auto-reload for development
        log_level: Root log level
    """
    configure_logging(log_level)
    logger.info("Starting server", url=f"http://{host}:{port}")
    uvicorn.run(
        "diffwarden.api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level.lower(),
    )


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Diffwarden API Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()
    run(host=args.host, port=args.port, reload=args.reload)
