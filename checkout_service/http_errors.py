"""
http_errors.py — Translation of domain errors into HTTP responses.

Both services render failures as `{"error": message}` with the status code
carried by the error class. Anything unexpected becomes a 500 with a fixed
message, so internal details never reach the caller.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import CheckoutError
from .logging_config import get_logger

log = get_logger(__name__)


def register_error_handlers(app: FastAPI, internal_message: str = "Internal server error"):
    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        if exc.status_code >= 500:
            log.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
        else:
            message = "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        log.error(f"{request.method} {request.url.path} failed unexpectedly: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": internal_message})
