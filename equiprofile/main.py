"""
Application factory for the EquiProfile access backend.

Run with:
    uvicorn equiprofile.main:create_app --factory

Middleware order (outermost first):
    ErrorHandlerMiddleware -> TrialLockMiddleware -> routes

The gateway check therefore runs inside the correlation-id/500 handler
and before any route, including routes that declare no guard at all.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker

from equiprofile import __version__
from equiprofile.api.routes import (
    admin_procedures,
    auth,
    billing,
    billing_procedures,
    health,
    user_procedures,
)
from equiprofile.config.settings import Settings, get_settings, validate_settings
from equiprofile.database.session import create_db_engine, create_session_factory
from equiprofile.entitlements.middleware import TrialLockMiddleware
from equiprofile.platform.errors import AppError, ErrorHandlerMiddleware, app_error_handler
from equiprofile.utils.clock import utcnow

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def register_routes(app: FastAPI) -> None:
    """Mount every router. Shared by create_app and tests."""
    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(billing.router)
    app.include_router(user_procedures.router)
    app.include_router(billing_procedures.router)
    app.include_router(admin_procedures.router)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """
    Build the ASGI app.

    Args:
        settings: Defaults to settings read from the environment
        session_factory: Defaults to a factory over settings.database_url
        clock: Current-time source shared by both enforcement layers

    Raises:
        ConfigurationError: production settings are incomplete or unsafe
    """
    configure_logging()
    settings = settings or get_settings()
    validate_settings(settings)

    if session_factory is None:
        session_factory = create_session_factory(create_db_engine(settings.database_url))
    clock = clock or utcnow

    app = FastAPI(title="EquiProfile API", version=__version__)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.clock = clock

    # Added first = innermost
    app.add_middleware(
        TrialLockMiddleware,
        session_factory=session_factory,
        jwt_secret=settings.jwt_secret,
        clock=clock,
    )
    app.add_middleware(ErrorHandlerMiddleware)

    register_error_handlers(app)
    register_routes(app)

    logger.info(
        "Application created",
        extra={
            "environment": settings.environment,
            "enable_stripe": settings.enable_stripe,
            "version": settings.app_version,
        },
    )
    return app
