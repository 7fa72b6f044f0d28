from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import asyncio
import contextlib
import time
from loguru import logger
import uuid
from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST
from fastapi.responses import Response

from app.api.v1 import auth, permissions
from app.core.config import settings
from app.core.dependencies import OTP_NAMESPACE, RESET_NAMESPACE
from app.core.errors import ServiceError
from app.core.security import extract_bearer_token
from app.db.redis import connect_redis
from app.services.auth import sliding_refresh
from app.services.secret_store import build_secret_store
from app.services.token_blacklist import TokenBlacklist

APP_NAME = "backoffice-auth"
PURGE_INTERVAL_SECONDS = 60

REQUEST_COUNT = Counter(
    "app_request_count",
    "Application Request Count",
    ["app_name", "method", "endpoint", "http_status"]
)
REQUEST_LATENCY = Histogram(
    "app_request_latency_seconds",
    "Application Request Latency",
    ["app_name", "method", "endpoint"]
)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Аутентификация и права доступа back-office MediConnect",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-New-Token"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=exc.headers,
    )


@app.middleware("http")
async def refresh_expiring_token(request: Request, call_next):
    """Выдаёт X-New-Token, если токен запроса скоро истечёт"""
    response = await call_next(request)
    if not settings.TOKEN_AUTO_REFRESH_ENABLED or response.status_code >= 400:
        return response

    token = extract_bearer_token(request.headers.get("Authorization"))
    blacklist = getattr(request.app.state, "token_blacklist", None)
    if token is None or blacklist is None:
        return response

    try:
        new_token = await sliding_refresh(token, blacklist)
    except Exception as e:
        logger.error(f"Sliding token refresh failed: {str(e)}")
        return response

    if new_token:
        response.headers["X-New-Token"] = new_token
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = str(uuid.uuid4())
    logger.info(f"[{request_id}] {request.method} {request.url.path}")

    start_time = time.time()

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        REQUEST_LATENCY.labels(
            APP_NAME,
            request.method,
            request.url.path
        ).observe(process_time)

        REQUEST_COUNT.labels(
            APP_NAME,
            request.method,
            request.url.path,
            response.status_code
        ).inc()

        logger.info(f"[{request_id}] Completed {response.status_code} in {process_time:.4f}s")

        return response
    except Exception as e:
        process_time = time.time() - start_time
        if settings.is_production:
            logger.error(f"[{request_id}] Failed in {process_time:.4f}s: {str(e)}")
        else:
            logger.exception(f"[{request_id}] Failed in {process_time:.4f}s: {str(e)}")

        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error"}
        )


app.include_router(
    auth.router,
    prefix=f"{settings.API_V1_STR}/auth",
    tags=["authentication"]
)

app.include_router(
    permissions.router,
    prefix=f"{settings.API_V1_STR}/permissions",
    tags=["permissions"]
)


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


async def purge_expired_codes():
    """Периодически чистит истёкшие коды в хранилищах в памяти процесса"""
    while True:
        await asyncio.sleep(PURGE_INTERVAL_SECONDS)
        for name in ("otp_store", "reset_store"):
            store = getattr(app.state, name, None)
            if store is None:
                continue
            try:
                await store.purge_expired()
            except Exception as e:
                logger.error(f"Failed to purge expired codes from {name}: {str(e)}")


@app.on_event("startup")
async def startup():
    logger.info(f"Connecting to Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}...")
    try:
        app.state.redis = await connect_redis()
        logger.info("Connected to Redis")
    except ConnectionError as e:
        logger.error(f"Failed to connect to Redis: {str(e)}")
        if settings.is_production:
            raise
        logger.warning("Continuing startup without Redis, it will be retried on the first request")
        app.state.redis = None

    if app.state.redis is not None:
        app.state.token_blacklist = TokenBlacklist(app.state.redis)

    if settings.SECRET_STORE_BACKEND.lower() == "memory" or app.state.redis is not None:
        app.state.otp_store = build_secret_store(OTP_NAMESPACE, app.state.redis)
        app.state.reset_store = build_secret_store(RESET_NAMESPACE, app.state.redis)
        logger.info(f"Secret stores ready ({settings.SECRET_STORE_BACKEND} backend)")

    app.state.purge_task = asyncio.create_task(purge_expired_codes())


@app.on_event("shutdown")
async def shutdown():
    purge_task = getattr(app.state, "purge_task", None)
    if purge_task is not None:
        purge_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await purge_task

    redis = getattr(app.state, "redis", None)
    if redis is not None:
        logger.info("Closing Redis connection...")
        await redis.aclose()
        logger.info("Redis connection closed")
