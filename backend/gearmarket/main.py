"""GearMarket account API - application wiring"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
import logging
import time
import traceback
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gearmarket.api.deps import get_cache
from gearmarket.api.v1 import auth
from gearmarket.config import settings
from gearmarket.core import metrics
from gearmarket.core.database import SessionLocal, init_db
from gearmarket.core.exceptions import BaseAPIException, RateLimitExceededError
from gearmarket.schemas.response import ErrorResponse, HealthResponse
from gearmarket.services.cache import RedisCache
from gearmarket.services.cleanup_worker import cleanup_worker

# Log to file and stderr; the log directory is created on import.
Path(settings.get_log_file()).parent.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings.get_log_file()),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 1.0

ERROR_RESPONSES = {
    code: {"model": ErrorResponse}
    for code in (
        status.HTTP_400_BAD_REQUEST,
        status.HTTP_401_UNAUTHORIZED,
        status.HTTP_403_FORBIDDEN,
        status.HTTP_409_CONFLICT,
        status.HTTP_429_TOO_MANY_REQUESTS,
    )
}


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Uniform error envelope for every handler below"""
    body = ErrorResponse(
        error=error,
        details=details,
        path=request.url.path,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None
)

app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers_and_metrics(request: Request, call_next):
    """Tag each request with an id, harden headers, record timing"""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    # Auth responses carry credentials and must not be cached.
    response.headers["Cache-Control"] = "no-store"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    response.headers["X-Request-ID"] = request_id

    path = request.url.path
    metrics.HTTP_REQUESTS.labels(request.method, path, str(response.status_code)).inc()
    metrics.HTTP_LATENCY.labels(request.method, path).observe(elapsed)
    if elapsed > SLOW_REQUEST_SECONDS:
        logger.warning("Slow request %s %s: %.2fs (request_id=%s)", request.method, path, elapsed, request_id)

    return response


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Map the service-layer error taxonomy onto the JSON envelope"""
    metrics.AUTH_FAILURES.labels(type(exc).__name__).inc()

    headers = None
    if isinstance(exc, RateLimitExceededError):
        metrics.RATE_LIMITED.labels(request.url.path).inc()
        headers = {"Retry-After": str(exc.retry_after)}

    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s", type(exc).__name__, request.method, request.url.path)

    return _error_response(request, exc.status_code, exc.message, exc.details, headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    # Field names only: submitted values may contain passwords.
    logger.warning("Validation failed on %s: %s", request.url.path, [e["field"] for e in errors])
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        {"errors": errors},
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(
        "Database error on %s %s: %s\n%s",
        request.method,
        request.url.path,
        exc,
        traceback.format_exc(),
    )
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "A database error occurred. Please try again later.",
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.critical(
        "Unhandled %s on %s %s\n%s",
        type(exc).__name__,
        request.method,
        request.url.path,
        traceback.format_exc(),
    )
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
    )


@app.on_event("startup")
async def startup_event():
    """Fail fast on insecure config, missing schema or unreachable Redis"""
    settings.validate_security_settings()
    logger.info("Starting %s v%s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)

    init_db()

    cache = get_cache()
    if isinstance(cache, RedisCache):
        cache.verify_connection()
        logger.info("Redis reachable at startup")

    if settings.RUN_EMBEDDED_WORKER:
        cleanup_worker.start()
        metrics.CLEANUP_WORKER_UP.set(1)


@app.on_event("shutdown")
async def shutdown_event():
    if cleanup_worker.is_running():
        cleanup_worker.stop()
    metrics.CLEANUP_WORKER_UP.set(0)

    cache = get_cache()
    if isinstance(cache, RedisCache):
        cache.close()
    logger.info("%s stopped", settings.APP_NAME)


def _probe_database() -> Optional[str]:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return None
    except SQLAlchemyError as exc:
        return str(exc)
    finally:
        db.close()


def _probe_cache() -> Optional[str]:
    cache = get_cache()
    if not isinstance(cache, RedisCache):
        return None
    try:
        cache.verify_connection()
        return None
    except Exception as exc:
        return str(exc)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Readiness of the store, the cache and the cleanup worker"""
    db_error = _probe_database()
    cache_error = _probe_cache()
    worker = cleanup_worker.status()
    metrics.CLEANUP_WORKER_UP.set(1 if worker["running"] else 0)

    healthy = db_error is None and cache_error is None
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.APP_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        readiness={
            "database": {"ok": db_error is None, "error": db_error},
            "cache": {"ok": cache_error is None, "error": cache_error, "backend": type(get_cache()).__name__},
            "worker": worker,
        },
    )


@app.get("/metrics")
async def prometheus_metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/api/docs" if settings.DEBUG else "disabled"
    }


app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"], responses=ERROR_RESPONSES)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gearmarket.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS
    )
