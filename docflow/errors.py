"""
Domain Errors Module

Centralized exception hierarchy for the document workflow system. Every error
carries a stable code so callers can decide whether to retry, ask for more
input, or give up.
"""

from typing import Any, Dict, Optional


class DocflowError(Exception):
    """Base domain error - all errors extend this"""

    error_code: str = "DOCFLOW_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to API response dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


class NotFoundError(DocflowError):
    """Referenced workflow, document or user does not exist"""
    error_code = "NOT_FOUND"
    http_status = 404


class ForbiddenError(DocflowError):
    """Caller lacks the authority the operation requires"""
    error_code = "FORBIDDEN"
    http_status = 403


class InvalidStateError(DocflowError):
    """Transition not allowed from the current state (includes lost races)"""
    error_code = "INVALID_STATE"
    http_status = 409


class ValidationError(DocflowError):
    """Malformed or missing input"""
    error_code = "VALIDATION_ERROR"
    http_status = 400


class ConflictError(DocflowError):
    """Document already has an active workflow"""
    error_code = "CONFLICT"
    http_status = 409


class PersistenceError(DocflowError):
    """Storage layer failure"""
    error_code = "PERSISTENCE_ERROR"
    http_status = 500
