from sqlalchemy import (
    Column,
    String,
    Integer,
    Float,
    Date,
    DateTime,
    Index,
    event,
)
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
import logging

from config import settings
from utils.utcnow import utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


# ==================== USER STATS ====================


class UserStatsRecord(Base):
    """Per-address activity aggregates plus the last computed DNA score."""

    __tablename__ = "user_stats"

    address = Column(String, primary_key=True)  # lower-cased hex
    ens_name = Column(String, nullable=True)
    total_volume_usd = Column(Float, nullable=False, default=0.0)
    total_fees_earned = Column(Float, nullable=False, default=0.0)
    total_positions = Column(Integer, nullable=False, default=0)
    total_swaps = Column(Integer, nullable=False, default=0)
    active_days = Column(Integer, nullable=False, default=0)
    first_action_at = Column(DateTime, nullable=True)
    last_action_at = Column(DateTime, nullable=True)
    last_active_date = Column(Date, nullable=True)
    dna_score = Column(Integer, nullable=False, default=0)
    tier = Column(String, nullable=False, default="Novice")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_user_stats_score", "dna_score"),
        Index("idx_user_stats_tier", "tier"),
    )


# ==================== DATABASE SETUP ====================

# SQLite-specific: improve concurrency (WAL + busy_timeout applied in _set_sqlite_pragma)
_engine_kw: dict = {"echo": False}
if "sqlite" in settings.DATABASE_URL:
    _engine_kw["connect_args"] = {"timeout": 30}  # Wait up to 30s when DB is locked

async_engine = create_async_engine(settings.DATABASE_URL, **_engine_kw)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite for concurrent readers (WAL mode, busy timeout)."""
    if "sqlite" not in settings.DATABASE_URL:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


event.listens_for(async_engine.sync_engine, "connect")(_set_sqlite_pragma)

AsyncSessionLocal = sessionmaker(
    async_engine, class_=AsyncSession, expire_on_commit=False
)


async def init_database():
    """Create tables that do not exist yet."""
    if "sqlite" in settings.DATABASE_URL and ":memory:" not in settings.DATABASE_URL:
        from pathlib import Path

        db_path = Path(settings.DATABASE_URL.split("///", 1)[-1])
        db_path.parent.mkdir(parents=True, exist_ok=True)

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")
