import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AppError(Exception):
    def __init__(self, message: str, code: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class ValidationError(AppError):
    def __init__(self, message: str, field: Optional[str] = None):
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code, 400)
        self.field = field


class NotFoundError(AppError):
    def __init__(self, resource: str, id: Any = None):
        message = f"{resource} with ID {id} not found" if id is not None else f"{resource} not found"
        super().__init__(message, f"{resource.upper().replace(' ', '_')}_NOT_FOUND", 404)
        self.resource = resource


class ConflictError(AppError):
    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, code, 409)


class DatabaseError(AppError):
    def __init__(self, message: str):
        super().__init__(message, "DATABASE_ERROR", 500)


def to_failure(error: Exception) -> Dict[str, Any]:
    """Tagged failure result handed back to callers instead of a raw exception."""
    if isinstance(error, AppError):
        return {"success": False, "error": error.message, "code": error.code}
    logger.error("Unhandled error: %s", error, exc_info=error)
    return {"success": False, "error": "An unexpected error occurred", "code": "INTERNAL_ERROR"}
