"""Progress engine error taxonomy.

``NotFoundError`` and ``ValidationError`` reach the caller unchanged.
``ConflictError`` is raised when an optimistic write loses a race; the engine
retries it and converts exhaustion into ``PersistenceError``.
"""

from __future__ import annotations

from typing import Any


class ProgressError(Exception):
    """Base class for all progress engine errors."""

    def __init__(self, message: str, **context: Any) -> None:  # noqa: ANN401
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and structured logs."""
        return {"error": self.__class__.__name__, "detail": self.message, **self.context}


class NotFoundError(ProgressError):
    """Referenced user, progress record or badge does not exist."""


class ValidationError(ProgressError, ValueError):
    """Negative amount, unknown activity type, unknown criterion, malformed date."""


class ConflictError(ProgressError):
    """An optimistic update lost a race. Retried internally, never surfaced."""


class PersistenceError(ProgressError):
    """The storage layer failed, or conflict retries were exhausted."""
