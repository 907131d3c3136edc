"""
FastAPI Application Factory

Creates and configures the policy engine API application.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI

from config import Settings, get_settings
from src.logging_config import configure_logging
from src.security.policies import PolicyEngine

from .dependencies import build_policy_engine
from .middleware import RequestLoggingMiddleware
from .routes import health, policies


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    The engine is created with the app; shutdown releases its cache client.
    """
    logger.info(
        "policy_engine_started",
        environment=app.state.settings.environment.value,
        cache_backend=app.state.settings.cache_backend.value,
    )

    yield

    await app.state.policy_engine.cache.close()


def create_app(
    settings: Optional[Settings] = None,
    policy_engine: Optional[PolicyEngine] = None,
    title: str = "Policy Engine API",
    description: str = "RBAC + ABAC authorization policy engine",
    version: str = "0.1.0",
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings (loaded from the environment if omitted)
        policy_engine: Pre-built engine (built from settings if omitted)
        title: API title
        description: API description
        version: API version

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=title,
        description=description,
        version=version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.state.settings = settings
    app.state.policy_engine = policy_engine or build_policy_engine(settings)

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(policies.router, prefix="/api/v1", tags=["Policies"])

    return app
