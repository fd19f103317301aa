"""coursetrack API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from redis.asyncio import Redis
from starlette.exceptions import HTTPException as StarletteHTTPException

from coursetrack.catalog.service import (
    CassandraCourseCatalog,
    CourseCatalog,
    StaticCourseCatalog,
)
from coursetrack.config import Settings, get_settings
from coursetrack.core.context import get_request_id
from coursetrack.core.database import init_async_cassandra, shutdown_async_cassandra
from coursetrack.core.logging import configure_structlog, get_logger
from coursetrack.core.middleware import RequestContextMiddleware
from coursetrack.core.redis import init_redis, shutdown_redis
from coursetrack.enrollments.locks import KeyedLock, LocalKeyedLock, RedisKeyedLock
from coursetrack.enrollments.router import admin_router as enrollments_admin_router
from coursetrack.enrollments.router import (
    integrations_router as enrollments_integrations_router,
)
from coursetrack.enrollments.router import router as enrollments_router
from coursetrack.enrollments.service import EnrollmentService
from coursetrack.enrollments.store import (
    CassandraEnrollmentStore,
    EnrollmentStore,
    InMemoryEnrollmentStore,
)
from coursetrack.health import router as health_router


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


def create_enrollment_service(
    settings: Settings,
    store: EnrollmentStore,
    catalog: CourseCatalog,
    redis_client: Redis | None = None,
) -> EnrollmentService:
    """Wire the enrollment service from settings."""
    lock: KeyedLock
    if settings.enrollment_lock_backend == "redis" and redis_client is not None:
        lock = RedisKeyedLock(redis_client, ttl_seconds=settings.enrollment_lock_ttl_seconds)
    else:
        if settings.enrollment_lock_backend == "redis":
            logger.warning(
                "enrollment_lock_fallback",
                message="Redis unavailable - using in-process enrollment locks",
            )
        lock = LocalKeyedLock()

    return EnrollmentService(
        store=store,
        catalog=catalog,
        lock=lock,
        lock_timeout_seconds=settings.enrollment_lock_timeout_seconds,
        completion_threshold=settings.progress_completion_threshold,
        trust_completed_hint=settings.progress_trust_completed_hint,
        retry_attempts=settings.storage_retry_attempts,
        retry_backoff_seconds=settings.storage_retry_backoff_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        storage_backend=settings.storage_backend,
    )

    # Redis backs cross-instance locks and the course outline cache
    redis_client = None
    if (
        settings.enrollment_lock_backend == "redis"
        or settings.storage_backend == "cassandra"
    ):
        try:
            redis_client = await init_redis()
            logger.info("redis_initialized")
        except Exception as e:
            logger.warning(
                "redis_init_skipped",
                error=str(e),
                message="Running without Redis",
            )

    if settings.storage_backend == "memory":
        app.state.enrollment_service = create_enrollment_service(
            settings, InMemoryEnrollmentStore(), StaticCourseCatalog(), redis_client
        )
        logger.info("enrollment_service_initialized", backend="memory")
    else:
        try:
            session = await init_async_cassandra()
            logger.info("cassandra_initialized")

            app.state.enrollment_service = create_enrollment_service(
                settings,
                CassandraEnrollmentStore(
                    session=session, keyspace=settings.cassandra_keyspace
                ),
                CassandraCourseCatalog(
                    session=session,
                    keyspace=settings.cassandra_keyspace,
                    redis=redis_client,
                    cache_ttl_seconds=settings.catalog_cache_ttl_seconds,
                ),
                redis_client,
            )
            logger.info("enrollment_service_initialized", backend="cassandra")
        except Exception as e:
            logger.warning(
                "database_init_skipped",
                error=str(e),
                message="Running without database connection",
            )

    yield

    # Shutdown
    logger.info("shutting_down_application")
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # debug=False keeps Starlette from rendering stack traces; the handlers
    # below log full details instead
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Enrollment and progress tracking API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        # 503 messages are written for clients (retry later); other 5xx are not
        message = str(exc.detail)
        if (
            exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR
            and exc.status_code != status.HTTP_503_SERVICE_UNAVAILABLE
        ):
            message = "Internal server error"

        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "message": message,
                "status_code": exc.status_code,
                "request_id": request_id,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions.

        Details go to the logs only, never to the response.
        """
        request_id = _get_request_id_safe(request)

        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(enrollments_router)
    app.include_router(enrollments_integrations_router)
    app.include_router(enrollments_admin_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "coursetrack API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
