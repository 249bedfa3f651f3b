"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from buddy.api.v1.router import api_router
from buddy.config import get_settings
from buddy.core.errors import register_exception_handlers
from buddy.core.logging import get_logger, setup_logging
from buddy.core.middleware import ObservabilityMiddleware
from buddy.database import engine
from buddy.services.llm import close_completion_client

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("app_started", debug=settings.debug)
    yield
    await close_completion_client()
    await engine.dispose()
    logger.info("app_stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="buddy", lifespan=lifespan)

    app.add_middleware(ObservabilityMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-request-id"],
    )
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
