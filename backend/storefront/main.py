"""
FastAPI application entry point with health endpoints and order routing.

Provides the application instance with CORS configuration, request logging,
health checks and the exception handlers that turn order engine errors into
``{error, message, details, request_id}`` responses.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import ConnectionError as RedisConnectionError

from storefront.api.v1.orders import router as orders_router
from storefront.cache.redis_client import close_redis_client, get_redis_client
from storefront.core.config import get_settings
from storefront.core.exceptions import OrderEngineError
from storefront.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from storefront.database.connection import (
    check_database_health,
    close_database_connections,
)

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Connect the cache on startup and release pools on shutdown."""
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    if settings.cache_enabled:
        try:
            await get_redis_client().connect()
        except RedisConnectionError as e:
            # Listings fall back to the database until Redis is reachable
            logger.warning("Starting without order cache", error=str(e))

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await close_redis_client()
        await close_database_connections()


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Storefront order placement and lifecycle API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Set the correlation id, log the request and time the response."""
    request_id = set_request_id(request.headers.get("X-Request-ID"))

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response
    finally:
        clear_context()


@app.exception_handler(OrderEngineError)
async def order_engine_exception_handler(
    request: Request, exc: OrderEngineError
) -> JSONResponse:
    body = exc.to_dict()
    body["request_id"] = get_request_id()

    log_method = logger.error if exc.http_status >= 500 else logger.info
    log_method(
        "Order request rejected",
        method=request.method,
        path=request.url.path,
        error_code=exc.code,
        status_code=exc.http_status,
    )

    headers = {"Retry-After": "1"} if getattr(exc, "retryable", False) else None
    return JSONResponse(status_code=exc.http_status, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=exc.errors(),
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors()),
            "request_id": get_request_id(),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected errors and hide their details from the client."""
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "details": {},
            "request_id": get_request_id(),
        },
    )


@app.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get("/ready", status_code=status.HTTP_200_OK, tags=["Health"])
async def readiness_check():
    """
    Ready when the database answers. The cache is reported but optional.
    """
    database_ready = await check_database_health(max_retries=1)
    cache_ready = await get_redis_client().health_check()

    body = {
        "status": "ready" if database_ready else "not_ready",
        "service": settings.app_name,
        "database": "healthy" if database_ready else "unhealthy",
        "cache": "healthy" if cache_ready else "unavailable",
    }
    if not database_ready:
        logger.warning("Readiness check failed", database=body["database"])
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body


app.include_router(orders_router, prefix=settings.api_v1_prefix)
