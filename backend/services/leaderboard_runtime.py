"""Process-scoped wiring of the ranking pipeline, built once per app lifespan."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings
from services.delta_broadcaster import DeltaBroadcaster
from services.leaderboard_refresher import LeaderboardRefresher
from services.rank_tracker import RankTracker
from services.stats_store import SqlStatsStore, StatsStore
from services.update_coordinator import UpdateCoordinator
from utils.logger import get_logger

logger = get_logger("leaderboard_runtime")


@dataclass
class LeaderboardRuntime:
    store: StatsStore
    rank_tracker: RankTracker
    broadcaster: DeltaBroadcaster
    coordinator: UpdateCoordinator
    refresher: LeaderboardRefresher
    snapshot_limit: int
    refresh_interval_seconds: float

    async def startup(self) -> None:
        """Bootstrap ranks from persisted scores, then start periodic refreshes."""
        await self.refresher.rebuild(broadcast=False)
        await self.refresher.start(self.refresh_interval_seconds)
        logger.info("Leaderboard runtime started", users=len(self.rank_tracker))

    async def shutdown(self) -> None:
        await self.refresher.stop()
        await self.broadcaster.close_all()
        logger.info("Leaderboard runtime stopped")


def build_runtime(settings: Settings, store: StatsStore) -> LeaderboardRuntime:
    rank_tracker = RankTracker(top_n=settings.LEADERBOARD_TOP_N)
    broadcaster = DeltaBroadcaster(send_timeout=settings.WS_SEND_TIMEOUT_SECONDS)
    coordinator = UpdateCoordinator(
        store,
        rank_tracker,
        broadcaster,
        failure_history=settings.COORDINATOR_FAILURE_HISTORY,
    )
    refresher = LeaderboardRefresher(
        store,
        rank_tracker,
        broadcaster,
        snapshot_limit=settings.LEADERBOARD_SNAPSHOT_LIMIT,
    )
    return LeaderboardRuntime(
        store=store,
        rank_tracker=rank_tracker,
        broadcaster=broadcaster,
        coordinator=coordinator,
        refresher=refresher,
        snapshot_limit=settings.LEADERBOARD_SNAPSHOT_LIMIT,
        refresh_interval_seconds=settings.LEADERBOARD_FULL_REFRESH_INTERVAL_SECONDS,
    )


def build_sql_runtime(settings: Settings, session_factory: Callable[[], AsyncSession]) -> LeaderboardRuntime:
    return build_runtime(settings, SqlStatsStore(session_factory))
