"""Shared FastAPI dependencies."""

from fastapi import Request

from vitality.progress.engine import ProgressEngine


def get_progress_engine(request: Request) -> ProgressEngine:
    """Return the engine built during application startup."""
    return request.app.state.progress_engine
