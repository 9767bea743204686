"""Middleware registration."""

from fastapi import FastAPI

from vitality.config import Settings
from vitality.middleware.error_handler import setup_error_handlers
from vitality.middleware.logging import AccessLogMiddleware, setup_logging
from vitality.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register middleware. Starlette runs them in reverse-add order, so the request id is bound first."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIdMiddleware)
