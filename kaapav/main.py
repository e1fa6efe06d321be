import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from kaapav.core.config import (
    API_RATE_LIMIT,
    API_RATE_WINDOW_SECONDS,
    CORS_ORIGINS,
    DATABASE_URL,
    IS_DEV,
    IS_TEST,
    SCHEDULER_ENABLED,
)
from kaapav.core.database import Base, SessionLocal, engine
from kaapav.core.errors import KaapavError
from kaapav.core.kv_store import SqlTTLStore
from kaapav.core.logging_setup import configure_logging
from kaapav.core.rate_limiter import InMemoryRateLimiterService, KeyValueRateLimiterService
from kaapav.core.request_context import get_phone, get_request_id
from kaapav.middleware.observability import ObservabilityMiddleware
from kaapav.middleware.rate_limit import ApiRateLimitMiddleware
import kaapav.models  # registers every table on Base.metadata
from kaapav.models.error_log import ErrorLog
from kaapav.routers.admin import router as admin_router
from kaapav.routers.auth import router as auth_router
from kaapav.routers.broadcasts import router as broadcasts_router
from kaapav.routers.chats import router as chats_router
from kaapav.routers.customers import router as customers_router
from kaapav.routers.orders import router as orders_router
from kaapav.routers.payments import router as payments_router
from kaapav.routers.products import router as products_router
from kaapav.routers.quick_replies import router as quick_replies_router
from kaapav.routers.webhook import router as webhook_router
from kaapav.runtime import build_runtime
from kaapav.scheduler.runner import start_scheduler
from kaapav.services.auth import ensure_bootstrap_admin

configure_logging()

logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    429: "rate_limited",
}


def _startup_tasks() -> None:
    if DATABASE_URL.startswith("sqlite") or IS_DEV:
        Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        ensure_bootstrap_admin(db)
    except Exception:
        logger.exception("startup failed")
        raise
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    _startup_tasks()
    runtime = build_runtime(SessionLocal)
    app.state.runtime = runtime
    scheduler = start_scheduler(runtime) if SCHEDULER_ENABLED else None
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await runtime.aclose()


def _api_rate_limiter():
    if IS_TEST:
        return InMemoryRateLimiterService(limit=API_RATE_LIMIT, window_seconds=API_RATE_WINDOW_SECONDS)
    return KeyValueRateLimiterService(
        SqlTTLStore(SessionLocal), limit=API_RATE_LIMIT, window_seconds=API_RATE_WINDOW_SECONDS
    )


app = FastAPI(title="KAAPAV WhatsApp Commerce API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ApiRateLimitMiddleware, rate_limiter=_api_rate_limiter())
app.add_middleware(ObservabilityMiddleware)


def error_response(request: Request, status_code: int, code: str, message: str, exc: Exception | None = None):
    content = {
        "error": {"code": code, "message": message},
        "request_id": getattr(request.state, "request_id", None) or get_request_id(),
    }
    if IS_DEV and exc is not None:
        content["trace"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=content)


def _store_error(request: Request, exc: Exception) -> None:
    db = SessionLocal()
    try:
        db.add(
            ErrorLog(
                source="api",
                endpoint=f"{request.method} {request.url.path}"[:255],
                phone=get_phone(),
                error_message=str(exc)[:2000] or type(exc).__name__,
                stack=traceback.format_exc()[:8000],
                request_id=get_request_id(),
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("could not store error log")
    finally:
        db.close()


@app.exception_handler(KaapavError)
async def handle_kaapav_error(request: Request, exc: KaapavError):
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.code, exc.message, extra={"endpoint": request.url.path})
    return error_response(request, exc.status_code, exc.code, exc.message, exc)


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException):
    response = error_response(
        request,
        exc.status_code,
        HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
        str(exc.detail),
    )
    for key, value in (exc.headers or {}).items():
        response.headers[key] = value
    return response


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg") or "Invalid request")
    return error_response(request, 400, "validation_error", message)


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    _store_error(request, exc)
    return error_response(request, 500, "internal_error", "Internal server error", exc)


# Routers
app.include_router(webhook_router)
app.include_router(payments_router)
app.include_router(auth_router)
app.include_router(chats_router)
app.include_router(customers_router)
app.include_router(orders_router)
app.include_router(products_router)
app.include_router(quick_replies_router)
app.include_router(broadcasts_router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {"status": "ok", "service": "kaapav"}


@app.get("/health")
def health():
    return {"status": "healthy"}
