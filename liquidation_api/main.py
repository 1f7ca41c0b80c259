from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import httpx
import structlog

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from liquidation_api.config import settings
from liquidation_api.database import init_db, close_db, get_db
from liquidation_api.exceptions import LiquidationError
from liquidation_api.logging_config import setup_logging
from liquidation_api.services.cache import cache
from liquidation_api.services.email_service import close_http_client
from liquidation_api.middleware.correlation import CorrelationIdMiddleware

# Import models so they are registered with Base.metadata
import liquidation_api.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_liquidation_api", env=settings.ENVIRONMENT)
    await init_db()
    yield
    await close_http_client()
    await cache.close()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers. Normalize all errors to structured format:
# {"error": {"code": "...", "message": "..."}}
# ---------------------------------------------------------------------------

@app.exception_handler(LiquidationError)
async def liquidation_error_handler(request: Request, exc: LiquidationError) -> JSONResponse:
    logger.warning(
        "liquidation_error",
        code=exc.code,
        message=exc.message,
        path=request.url.path,
        **{k: str(v) for k, v in exc.context.items()},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": exc.errors(),
            }
        },
    )


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError) -> JSONResponse:
    # 55P03: lock_timeout hit while waiting on a row another reviewer holds
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate == "55P03":
        logger.warning("row_lock_timeout", path=request.url.path)
        return JSONResponse(
            status_code=409,
            content={
                "error": {
                    "code": "CONFLICT",
                    "message": "The record is being changed by another request; retry shortly",
                }
            },
        )
    logger.error("database_error", path=request.url.path, error=str(exc.orig))
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "Database error" if settings.is_production else str(exc.orig),
            }
        },
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    # 1. Check DB
    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except SQLAlchemyError as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"

    # 2. Check Redis; the app keeps working without it, so this only degrades
    if not cache.enabled:
        health_status["checks"]["redis"] = "disabled"
    else:
        try:
            ok = await cache.ping()
            health_status["checks"]["redis"] = "ok" if ok else "error"
        except httpx.HTTPError as e:
            logger.error("health_check_redis_failed", error=str(e))
            health_status["checks"]["redis"] = "error"
        if health_status["checks"]["redis"] == "error" and health_status["status"] == "healthy":
            health_status["status"] = "degraded"

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from liquidation_api.routes.liquidations import router as liquidations_router  # noqa: E402
from liquidation_api.routes.reference_data import router as reference_router  # noqa: E402
from liquidation_api.routes.notifications import router as notifications_router  # noqa: E402
from liquidation_api.routes.activity_logs import router as activity_logs_router  # noqa: E402

app.include_router(liquidations_router, prefix="/api/v1/liquidations", tags=["Liquidations"])
app.include_router(reference_router, prefix="/api/v1/reference", tags=["Reference Data"])
app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["Notifications"])
app.include_router(activity_logs_router, prefix="/api/v1/activity-logs", tags=["Activity Logs"])
