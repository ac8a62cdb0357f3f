"""
User stats persistence.

``StatsStore`` is the narrow contract the update coordinator depends on;
``SqlStatsStore`` implements it on the async SQLAlchemy session factory.
``apply_activity`` is the pure merge of one activity event into a user's
aggregates.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Callable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.activity import ActivityDelta, ActivityType, UserStats
from models.database import UserStatsRecord
from services.dna_score import InvalidInput, ScoreAggregates
from utils.logger import get_logger
from utils.utcnow import to_naive_utc

logger = get_logger("stats_store")

_STAT_FIELDS = (
    "ens_name",
    "total_volume_usd",
    "total_fees_earned",
    "total_positions",
    "total_swaps",
    "active_days",
    "first_action_at",
    "last_action_at",
    "last_active_date",
    "dna_score",
    "tier",
)


class PersistenceFailure(RuntimeError):
    """A read or write against the stats store did not complete."""


class StatsStore(Protocol):
    async def get_aggregates(self, address: str) -> Optional[UserStats]: ...

    async def save_aggregates(self, address: str, stats: UserStats) -> None: ...

    async def load_all_scores(self) -> list[tuple[str, int, str]]: ...


# ==================== MERGE ====================


def _non_negative_amount(name: str, value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInput(f"{name} must be a number, got {value!r}")
    try:
        amount = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"{name} must be a number, got {value!r}") from exc
    if not math.isfinite(amount) or amount < 0:
        raise InvalidInput(f"{name} must be a finite non-negative amount, got {value!r}")
    return amount


def apply_activity(stats: UserStats, activity: ActivityDelta) -> UserStats:
    """Return new aggregates with ``activity`` folded in; ``stats`` is untouched."""
    amount = _non_negative_amount("amount_usd", activity.amount_usd)
    fees = _non_negative_amount("fees_usd", activity.fees_usd)
    if not isinstance(activity.timestamp, datetime):
        raise InvalidInput(f"timestamp must be a datetime, got {activity.timestamp!r}")
    ts = to_naive_utc(activity.timestamp)

    merged = stats.copy()
    if activity.activity_type == ActivityType.SWAP:
        merged.total_swaps += 1
        if amount is not None:
            merged.total_volume_usd += amount
    elif activity.activity_type == ActivityType.POSITION_OPEN:
        merged.total_positions += 1
        if amount is not None:
            merged.total_volume_usd += amount
    elif activity.activity_type == ActivityType.POSITION_CLOSE:
        if amount is not None:
            merged.total_volume_usd += amount
    elif activity.activity_type == ActivityType.FEE_COLLECT:
        collected = fees if fees is not None else amount
        if collected is not None:
            merged.total_fees_earned += collected

    if merged.first_action_at is None or ts < merged.first_action_at:
        merged.first_action_at = ts
    if merged.last_action_at is None or ts > merged.last_action_at:
        merged.last_action_at = ts

    # Active days only advance; an out-of-order event on an earlier day is not recounted
    day = ts.date()
    if merged.last_active_date is None or day > merged.last_active_date:
        merged.active_days += 1
        merged.last_active_date = day

    return merged


def score_inputs(stats: UserStats, now: datetime) -> ScoreAggregates:
    return ScoreAggregates(
        volume=stats.total_volume_usd,
        fees=stats.total_fees_earned,
        positions=stats.total_positions,
        active_days=stats.active_days,
        days_since_first=stats.days_since_first(to_naive_utc(now)),
    )


# ==================== SQL STORE ====================


def _record_to_stats(record: UserStatsRecord) -> UserStats:
    return UserStats(
        address=record.address,
        ens_name=record.ens_name,
        total_volume_usd=float(record.total_volume_usd or 0.0),
        total_fees_earned=float(record.total_fees_earned or 0.0),
        total_positions=int(record.total_positions or 0),
        total_swaps=int(record.total_swaps or 0),
        active_days=int(record.active_days or 0),
        first_action_at=record.first_action_at,
        last_action_at=record.last_action_at,
        last_active_date=record.last_active_date,
        dna_score=int(record.dna_score or 0),
        tier=record.tier or "Novice",
    )


class SqlStatsStore:
    """``StatsStore`` backed by the ``user_stats`` table."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def get_aggregates(self, address: str) -> Optional[UserStats]:
        try:
            async with self._session_factory() as session:
                record = await session.get(UserStatsRecord, address)
                return _record_to_stats(record) if record is not None else None
        except SQLAlchemyError as e:
            logger.error("Stats read failed", address=address, error=str(e))
            raise PersistenceFailure(f"read of {address} failed") from e

    async def save_aggregates(self, address: str, stats: UserStats) -> None:
        try:
            async with self._session_factory() as session:
                record = await session.get(UserStatsRecord, address)
                if record is None:
                    record = UserStatsRecord(address=address)
                    session.add(record)
                for name in _STAT_FIELDS:
                    setattr(record, name, getattr(stats, name))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Stats write failed", address=address, error=str(e))
            raise PersistenceFailure(f"write of {address} failed") from e

    async def load_all_scores(self) -> list[tuple[str, int, str]]:
        try:
            async with self._session_factory() as session:
                rows = (
                    await session.execute(
                        select(UserStatsRecord.address, UserStatsRecord.dna_score, UserStatsRecord.tier)
                    )
                ).all()
        except SQLAlchemyError as e:
            logger.error("Score bootstrap read failed", error=str(e))
            raise PersistenceFailure("load of all scores failed") from e
        return [(address, int(score or 0), tier) for address, score, tier in rows]
