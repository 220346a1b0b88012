from __future__ import annotations
from typing import Optional


class EngineError(Exception):
    """Base class for failures reported back to the caller."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(EngineError):
    status_code = 404


class NoTableAvailableError(EngineError):
    status_code = 409


class InvalidTransitionError(EngineError):
    status_code = 409


class ConflictError(EngineError):
    status_code = 409


class ValidationError(EngineError):
    status_code = 422


class MissingPreconditionError(EngineError):
    status_code = 400


class PermissionDeniedError(EngineError):
    status_code = 403
