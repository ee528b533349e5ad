"""
LiveRelay Main Application

FastAPI application entry point: loads configuration, opens the database,
starts the relay runtime and serves the control API.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from liverelay import __version__
from liverelay.api import api_router
from liverelay.config import load_config
from liverelay.database import close_db, init_db
from liverelay.runtime import RelayRuntime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Startup: load configuration, initialize the database, start the runtime
    (schedule trigger, duration backstop, reconciliation, broadcast sync).
    Shutdown: stop every running stream, then close the database.
    """
    logger.info(f"Starting LiveRelay v{__version__}")

    # A runtime injected by create_app (tests) is used as is
    owns_runtime = getattr(app.state, "runtime", None) is None
    if owns_runtime:
        config = load_config()
        logger.info(f"Configuration loaded, server port: {config.server.port}")

        session_factory = await init_db(config.database.url)
        logger.info("Database initialized")

        app.state.runtime = RelayRuntime(config, session_factory)

    await app.state.runtime.start()
    logger.info("LiveRelay started successfully")

    yield

    logger.info("Shutting down LiveRelay")
    try:
        await app.state.runtime.stop()
    except Exception as e:
        logger.warning(f"Error stopping runtime: {e}")

    if owns_runtime:
        try:
            await close_db()
            logger.info("Database connections closed")
        except Exception as e:
            logger.warning(f"Error closing database: {e}")
        app.state.runtime = None

    logger.info("LiveRelay shutdown complete")


def create_app(runtime: Optional[RelayRuntime] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        runtime: Pre-built runtime; when omitted the lifespan builds one
            from the loaded configuration

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="LiveRelay",
        description="Scheduled live video relay to RTMP platforms",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.runtime = runtime
    app.include_router(api_router)
    return app


app = create_app()


def main() -> None:
    """
    Main entry point for running the server.

    Called when running `python -m liverelay.main` or via the `liverelay`
    console script.
    """
    import uvicorn

    from liverelay.utils.logging_setup import setup_logging_from_config

    config = load_config()
    setup_logging_from_config(config.logging)

    logger.info(f"Starting LiveRelay v{__version__}")

    uvicorn.run(
        "liverelay.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.debug,
        log_level=config.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
