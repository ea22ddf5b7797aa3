from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog.contextvars import bind_contextvars, reset_contextvars

from video_feed.api.routes import router
from video_feed.config import ingestion_config_error
from video_feed.dependencies import (
    build_ingestion_scheduler,
    get_database,
    get_settings,
    get_telemetry,
)
from video_feed.logging_config import configure_application_logging
from video_feed.models.video_contracts import ErrorResponse
from video_feed.services.ingestion_scheduler import IngestionScheduler
from video_feed.services.video_query_service import (
    VideoNotFoundError,
    VideoQueryValidationError,
    VideoStorageError,
)
from video_feed.telemetry import elapsed_ms

LOGGER = logging.getLogger("video_feed.http")
INTERNAL_ERROR_MESSAGE = "Internal server error"


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    get_database()
    scheduler: IngestionScheduler | None = None

    if settings.scheduler_enabled:
        config_error = ingestion_config_error(settings)
        if config_error is not None:
            LOGGER.warning("%s Serving stored videos only.", config_error)
        else:
            scheduler = build_ingestion_scheduler(settings)
            scheduler.start()

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message).model_dump(by_alias=True),
    )


async def _handle_validation_error(_: Request, exc: Exception) -> JSONResponse:
    return _error_response(400, str(exc))


async def _handle_request_validation_error(_: Request, exc: Exception) -> JSONResponse:
    message = "Invalid request parameters"
    if isinstance(exc, RequestValidationError) and exc.errors():
        first_error = exc.errors()[0]
        message = f"{message}: {first_error.get('msg', 'invalid value')}"
    return _error_response(400, message)


async def _handle_not_found(_: Request, exc: Exception) -> JSONResponse:
    return _error_response(404, str(exc))


async def _handle_storage_error(_: Request, exc: Exception) -> JSONResponse:
    # Logged by the query service.
    _ = exc
    return _error_response(500, INTERNAL_ERROR_MESSAGE)


async def _handle_http_exception(_: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, StarletteHTTPException):
        return _error_response(500, INTERNAL_ERROR_MESSAGE)
    response = _error_response(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def create_app() -> FastAPI:
    app = FastAPI(title="Video Feed API", version="0.1.0", lifespan=app_lifespan)
    settings = get_settings()

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            LOGGER.exception("%s %s failed", request.method, request.url.path)
            telemetry.emit(
                "http.request.error",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=elapsed_ms(started_at),
                error_type=type(exc).__name__,
            )
            response = _error_response(500, INTERNAL_ERROR_MESSAGE)
            response.headers["X-Request-ID"] = request_id
            return response
        else:
            response.headers["X-Request-ID"] = request_id
            duration_ms = elapsed_ms(started_at)
            LOGGER.info(
                "%s %s %s %sms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
            )
            telemetry.emit(
                "http.request.finish",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=duration_ms,
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_exception_handler(VideoQueryValidationError, _handle_validation_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation_error)
    app.add_exception_handler(VideoNotFoundError, _handle_not_found)
    app.add_exception_handler(VideoStorageError, _handle_storage_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )

    return app


app = create_app()
