"""
Application error kinds.

Services raise these; the API layer renders them through a single
exception handler registered in ``app.main``.
"""
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base class for every error a service raises on purpose."""

    code = "APP_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            result["details"] = self.details
        return result


class NotFoundError(AppError):
    """A referenced entity does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(AppError):
    """Required input is missing or invalid."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidStateError(AppError):
    """The operation is not allowed in the entity's current state."""

    code = "INVALID_STATE"
    status_code = 409


class ConflictError(AppError):
    """A referential constraint would be violated."""

    code = "CONFLICT"
    status_code = 409


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
