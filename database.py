# --- models + engine lifecycle for the bundle record store ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import JSON, String, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Optional
import logging, os, time, uuid

# Load environment variables early (before reading DATABASE_URL)
from dotenv import load_dotenv
load_dotenv()

logger = logging.getLogger(__name__)

# JSONB on Postgres, plain JSON elsewhere (SQLite has no JSONB compiler)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")

# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "")


def _normalize_database_url(url: str) -> str:
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    # asyncpg uses 'ssl', not 'sslmode'; SSL is configured via connect_args instead
    for suffix in ("?sslmode=verify-full", "&sslmode=verify-full", "?sslmode=require", "&sslmode=require"):
        url = url.replace(suffix, "")
    return url


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine for the given URL (in-memory SQLite when empty)."""
    url = url if url is not None else DATABASE_URL
    echo = os.getenv("NODE_ENV") == "development"

    if url and url.startswith(("postgresql", "postgres")):
        return create_async_engine(
            _normalize_database_url(url),
            echo=echo,
            pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
            pool_pre_ping=True,  # Verify connections before use
            pool_recycle=1800,  # Recycle connections after 30 minutes
            pool_timeout=15,
            connect_args={
                "ssl": "require" if os.getenv("DB_SSL", "true").lower() == "true" else None,
                "server_settings": {"application_name": "bundle_tiers"},
                "command_timeout": 60,
                "timeout": 30,
            },
        )

    if url:
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=echo,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


engine: AsyncEngine = build_engine()
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _redact_db_url(url: str) -> str:
    try:
        if "@" in url and "://" in url:
            head, tail = url.split("://", 1)
            creds, hostpart = tail.split("@", 1)
            if ":" in creds:
                user, _pwd = creds.split(":", 1)
                return f"{head}://{user}:******@{hostpart}"
            return url
        if url:
            return url
    except ValueError:
        pass
    return "sqlite+aiosqlite:///:memory:"

logger.info(f"Creating SQL engine for { _redact_db_url(DATABASE_URL) }")

async def probe_db_connection():
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("DB connectivity probe: OK")
    except Exception as e:
        logger.exception(f"DB connectivity probe failed: {e}")

# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass

# -------------------------------------------------------------------
# MODELS
# -------------------------------------------------------------------

class Bundle(Base):
    __tablename__ = "bundles"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shop_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    # Immutable after creation; scopes discount eligibility
    collection_id: Mapped[str] = mapped_column(String, nullable=False)
    collection_title: Mapped[str] = mapped_column(Text, nullable=False)

    # Ordered list of camelCase rule dicts (see services.rule_set.BundleRule)
    rules: Mapped[list] = mapped_column(JsonColumn, nullable=False, default=list)
    # Append-only audit log of issued codes
    discount_codes: Mapped[list] = mapped_column(JsonColumn, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


Index('ix_bundles_created_at', Bundle.created_at)

# -------------------------------------------------------------------
# DI + lifecycle helpers
# -------------------------------------------------------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def init_db():
    """Ensure tables exist."""
    await probe_db_connection()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")

async def dispose_db():
    """Release pooled connections at shutdown."""
    await engine.dispose()
    logger.info("DB engine disposed.")

async def check_db_health() -> Dict[str, Any]:
    start = time.time()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", "latency_ms": int((time.time() - start) * 1000)}
    except Exception as e:
        logger.warning(f"DB health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
