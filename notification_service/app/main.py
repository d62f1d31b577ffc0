"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from notification_service.app.exception_handlers import configure_exception_handlers
from notification_service.app.lifespan import lifespan
from notification_service.app.router import setup_routers
from notification_service.core.settings import get_app_settings, get_websocket_settings


def create_app() -> FastAPI:
    settings = get_app_settings()
    app = FastAPI(
        title=settings.title,
        description=settings.description,
        version=settings.version,
        debug=settings.debug,
        docs_url=settings.get_docs_url(),
        openapi_url=settings.get_openapi_url(),
        redoc_url=None,
        lifespan=lifespan,
    )
    configure_exception_handlers(app)
    setup_routers(app, settings, get_websocket_settings())
    return app


app = create_app()
