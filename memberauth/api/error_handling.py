from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from memberauth.api.schemas import Envelope, ErrorBody
from memberauth.logging import get_correlation_id, get_logger, set_correlation_id
from memberauth.service.errors import ServiceError

logger = get_logger(__name__)


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str = "server_error",
) -> JSONResponse:
    error_body = ErrorBody(code=code, message=message, details=details or None)
    envelope = Envelope(status="error", error=error_body)
    cid = get_correlation_id()
    if cid:
        envelope.request_id = cid
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Render service errors as the JSON error envelope.

    Error responses are built fresh, so cookies staged on the endpoint's
    response object are never sent along with a failure.
    """

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return _error_response(exc.status_code, exc.message, exc.detail, code=exc.error_code)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return _error_response(500, "Internal Server Error", code="server_error")


__all__ = ["register_exception_handlers"]
