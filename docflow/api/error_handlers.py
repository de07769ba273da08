"""
Error Handlers

Centralized exception handlers for the FastAPI application.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder

from ..errors import DocflowError
from ..logging_config import get_logger

logger = get_logger("docflow.api")


async def domain_error_handler(request: Request, exc: DocflowError) -> JSONResponse:
    """
    Handle domain errors: not found, forbidden, invalid state, validation,
    conflict and persistence failures.
    """
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(f"Domain error: {exc.error_code} - {exc.message} ({request.method} {request.url.path})")
    return JSONResponse(status_code=exc.http_status, content=jsonable_encoder(exc.to_dict()))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request bodies or query parameters that do not match the schema"""
    logger.warning(f"Validation error: {exc.errors()}, path={request.url.path}, method={request.method}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder({
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": {"errors": exc.errors()}
            }
        })
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected errors"""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": {"hint": "Check server logs for details"}
            }
        }
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(DocflowError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
