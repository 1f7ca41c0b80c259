from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from liquidation_api.config import settings
import structlog

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


def _connect_args() -> dict:
    """asyncpg options: SSL, plus a lock timeout for FOR UPDATE waits."""
    args: dict = {
        "server_settings": {
            "application_name": settings.APP_NAME,
            "lock_timeout": str(settings.DB_LOCK_TIMEOUT_MS),
        }
    }
    if settings.DB_SSL_REQUIRED:
        args["ssl"] = "require"
    return args


def _async_url(url: str) -> str:
    # asyncpg rejects libpq's sslmode query parameter
    for param in ("?sslmode=require", "&sslmode=require"):
        url = url.replace(param, "")
    return url


engine: AsyncEngine = create_async_engine(
    _async_url(settings.DATABASE_URL),
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_recycle=settings.DB_POOL_RECYCLE,
    pool_pre_ping=True,
    echo=settings.DEBUG,
    connect_args=_connect_args(),
)

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db():
    """Request-scoped session: commits when the request succeeds, rolls back otherwise.

    Services only flush, so every workflow transition (status change, review
    row, sub-records, activity log) lands in this single transaction.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: IntegrityError, constraint: str) -> bool:
    """True only for a unique-key violation on the named constraint.

    asyncpg puts ``constraint_name`` on the driver error that SQLAlchemy's
    adapted exception wraps (``orig.__cause__``); psycopg2 exposes it on ``diag``.
    """
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate != UNIQUE_VIOLATION:
        return False
    name = (
        getattr(orig, "constraint_name", None)
        or getattr(getattr(orig, "__cause__", None), "constraint_name", None)
        or getattr(getattr(orig, "diag", None), "constraint_name", None)
    )
    if name:
        return name == constraint
    return f'"{constraint}"' in str(orig)


async def init_db():
    async with engine.connect() as conn:
        version = (await conn.execute(text("SHOW server_version"))).scalar()
    logger.info("db_connected", server_version=version, pool_size=settings.DB_POOL_SIZE)


async def close_db():
    await engine.dispose()
    logger.info("db_disconnected")
