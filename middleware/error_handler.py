# middleware/error_handler.py
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse

from errors import FeedbackServiceError, RedirectRequired

logger = logging.getLogger(__name__)


async def catch_exceptions_middleware(request: Request, call_next):
    """
    Global exception handler that catches all unhandled exceptions
    and returns a generic error response without exposing stack traces.
    """
    try:
        return await call_next(request)
    except Exception as e:  # noqa: BLE001
        logger.error(
            "Unhandled exception: %s\nURL: %s\nMethod: %s\nTraceback: %s",
            e,
            request.url,
            request.method,
            traceback.format_exc(),
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def feedback_error_handler(request: Request, exc: FeedbackServiceError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def redirect_handler(request: Request, exc: RedirectRequired) -> RedirectResponse:
    return RedirectResponse(exc.location, status_code=307)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Invalid payload on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": "Invalid request payload."})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FeedbackServiceError, feedback_error_handler)
    app.add_exception_handler(RedirectRequired, redirect_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.middleware("http")(catch_exceptions_middleware)
