from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from redis.exceptions import RedisError

from bucketgate.app.core.config import Settings, settings as default_settings
from bucketgate.app.core.logging import get_logger, setup_logging
from bucketgate.app.middleware.rate_limit import AdmissionGate, RateLimitMiddleware
from bucketgate.app.middleware.request_id import RequestIdMiddleware, get_request_id
from bucketgate.app.services.token_bucket import TokenBucketTransactor


def create_redis_client(settings: Settings) -> aioredis.Redis:
    """Create the shared Redis client; connections are opened lazily from its pool."""
    return aioredis.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.store_timeout_seconds,
        socket_connect_timeout=settings.store_timeout_seconds,
    )


def create_app(
    settings: Optional[Settings] = None,
    redis_client: Optional[Any] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to the environment)
        redis_client: Pre-built redis.asyncio client, mainly for tests

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or default_settings

    setup_logging(settings)
    logger = get_logger(__name__)

    owns_client = redis_client is None
    if redis_client is None:
        redis_client = create_redis_client(settings)

    transactor = TokenBucketTransactor(
        redis_client,
        max_tokens=settings.rate_limit_max_tokens,
        refill_rate_per_hour=settings.rate_limit_refill_rate_per_hour,
        max_retries=settings.rate_limit_max_retries,
        timeout=settings.store_timeout_seconds,
        ttl_seconds=settings.bucket_ttl,
    )
    gate = AdmissionGate(
        transactor,
        fail_closed=settings.rate_limit_fail_closed,
        expose_headers=settings.rate_limit_expose_headers,
        key_prefix=settings.rate_limit_key_prefix,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        The Redis client lives exactly as long as the application and is
        closed on shutdown when this factory created it.
        """
        logger.info(
            "Application startup complete",
            extra={
                "max_tokens": settings.rate_limit_max_tokens,
                "refill_rate_per_hour": settings.rate_limit_refill_rate_per_hour,
                "max_retries": settings.rate_limit_max_retries,
                "fail_closed": settings.rate_limit_fail_closed,
            },
        )
        yield
        if owns_client:
            await redis_client.aclose()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="bucketgate",
        description="Per-client token bucket admission control shared through Redis",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.redis = redis_client
    app.state.transactor = transactor

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        RateLimitMiddleware,
        gate=gate,
        exempt_paths=settings.rate_limit_exempt_paths,
    )
    # Outermost so the request id is set before admission logs
    app.add_middleware(RequestIdMiddleware)

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "Hello, World!"

    @app.get("/health")
    async def health() -> JSONResponse:
        """Health check with Redis connectivity."""
        try:
            await redis_client.ping()
        except RedisError as e:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "degraded",
                    "components": {"redis": {"status": "error", "error": str(e)[:100]}},
                },
            )
        return JSONResponse(
            content={"status": "ok", "components": {"redis": {"status": "ok"}}}
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; full details are logged.
        """
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={"request_id": request_id, "exception_type": type(exc).__name__},
        )
        content = {
            "error": "internal_error",
            "message": str(exc) if settings.debug else "Internal server error",
            "request_id": request_id,
        }
        return JSONResponse(status_code=500, content=content)

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(
        "bucketgate.app.main:create_app",
        factory=True,
        host=default_settings.host,
        port=default_settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
