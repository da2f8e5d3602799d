from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette import status
import logging

from app.logic.exceptions import BaseCustomError, DatabaseError

logger = logging.getLogger("app.errors")


def _body(error: str, message: str, details=None) -> dict:
    return {"error": error, "message": message, "details": details}


def custom_error_handler(request: Request, exc: BaseCustomError):
    if isinstance(exc, DatabaseError):
        # Driver messages stay in the log
        logger.error("Database error on %s %s: %s", request.method, request.url.path, exc.message)
        message = "A database error occurred"
    else:
        message = exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(exc.error_code or "ERROR", message, exc.details),
    )


def validation_error_handler(request: Request, exc: RequestValidationError):
    details = {
        ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "body": error.get("msg", "invalid")
        for error in exc.errors()
    }
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_body("VALIDATION_ERROR", "Request validation failed", details),
    )


def server_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled exception")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_body("INTERNAL_ERROR", "An unexpected error occurred."),
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(BaseCustomError, custom_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, server_error_handler)
