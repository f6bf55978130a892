"""
EZ Casino Ledger API - FastAPI application.

Startup order: logging, optional migrations, tracing, middleware, routers.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.api.admin_routes import router as admin_router
from app.api.dependencies import close_payment_provider
from app.api.routes import router
from app.config import settings
from app.db.migration_runner import run_migrations
from app.db.session import close_engines
from app.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from app.observability.tracing import instrument_fastapi

setup_logging()
logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        paypal_mode=settings.paypal_mode,
        tracing_enabled=settings.tracing_enabled,
    )
    if settings.run_migrations_on_startup:
        await asyncio.to_thread(run_migrations)

    yield

    await close_payment_provider()
    await close_engines()
    logger.info("application_stopped")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)

setup_tracing()
instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
    expose_headers=[REQUEST_ID_HEADER],
)
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.forwarded_allow_ips)


def _jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Validation errors with ctx values stringified (they can hold exceptions)."""
    errors = []
    for error in exc.errors():
        item = {key: error.get(key) for key in ("type", "loc", "msg", "input")}
        if "ctx" in error:
            item["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(item)
    return errors


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = _jsonable_errors(exc)
    logger.warning(
        "request_validation_failed",
        method=request.method,
        path=request.url.path,
        errors=errors,
    )
    return JSONResponse(status_code=422, content={"detail": errors})


@app.middleware("http")
async def request_logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Bind a request id to every log line of the request and record HTTP metrics."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
    method = request.method
    path = request.url.path
    started = time.perf_counter()
    in_progress = metrics.http_requests_in_progress.labels(endpoint=path, method=method)
    in_progress.inc()

    with log_context(request_id=request_id):
        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - started
            metrics.record_http_request(path, method, 500, elapsed)
            metrics.record_error(type(e).__name__, "http_request")
            logger.error(
                "request_failed", method=method, path=path, duration_seconds=elapsed, exc_info=True
            )
            raise
        finally:
            in_progress.dec()

        elapsed = time.perf_counter() - started
        metrics.record_http_request(path, method, response.status_code, elapsed)
        logger.info(
            "request_completed",
            method=method,
            path=path,
            status_code=response.status_code,
            duration_seconds=elapsed,
        )

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


app.include_router(router)
app.include_router(admin_router)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus text exposition."""
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
