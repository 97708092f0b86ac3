"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from campaign_engine.api.v1.endpoints import health
from campaign_engine.api.v1.routes import api_router
from campaign_engine.core.config import get_settings
from campaign_engine.core.container import build_container

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: build the engine container (store, rate limiter, services).
    Shutdown: close provider and store connections.
    """
    logger.info("Starting campaign engine API...")

    # Tests install their own container before startup
    owns_container = getattr(app.state, "container", None) is None
    if owns_container:
        app.state.container = await build_container(get_settings())

    logger.info("Campaign engine API started")

    yield

    logger.info("Shutting down campaign engine API...")
    if owns_container:
        try:
            await app.state.container.close()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
        app.state.container = None
    logger.info("Campaign engine API shutdown complete")


def create_app() -> FastAPI:
    application = FastAPI(
        title="Campaign Engine",
        description="Outbound campaign execution and orchestration",
        version="1.0.0",
        lifespan=lifespan
    )
    application.include_router(health.router)
    application.include_router(api_router, prefix="/api/v1")
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
