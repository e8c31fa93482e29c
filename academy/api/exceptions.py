"""
Exception handlers: every error leaves the API as
{"success": false, "error": {"code", "message", "retryable", ...}}
"""

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from academy.core.exceptions import BusinessException, PersistenceError, SignatureInvalid

logger = logging.getLogger(__name__)


def error_response(status_code: int, error: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request body or parameters"""
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {
            "code": "validation_error",
            "message": "Invalid request",
            "retryable": False,
            "details": jsonable_errors(exc),
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(
        exc.status_code,
        {"code": "http_error", "message": str(exc.detail), "retryable": False}
    )


async def business_exception_handler(request: Request, exc: BusinessException):
    """Typed business failures"""
    if isinstance(exc, SignatureInvalid):
        # never echo verification details back to the caller
        return error_response(exc.status_code, {"code": exc.code, "message": "invalid signature", "retryable": False})
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.to_dict())


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """Database failures surface as a generic retryable error"""
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    error = PersistenceError("A temporary error occurred, please try again")
    return error_response(error.status_code, error.to_dict())


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"code": "internal_error", "message": "Internal server error", "retryable": True}
    )
