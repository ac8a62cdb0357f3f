"""
Leaderboard refresher.

Rebuilds the in-memory rank snapshot from persisted scores: once at startup
(bootstrap, no broadcast) and then on a fixed interval, after which connected
clients get a single ``leaderboard_update`` with ``updateType=full_refresh``
carrying the top page.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from services.delta_broadcaster import BroadcastResult, DeltaBroadcaster
from services.rank_tracker import RankTracker
from services.stats_store import PersistenceFailure, StatsStore
from utils.logger import get_logger

logger = get_logger("leaderboard_refresher")


def snapshot_payload(
    tracker: RankTracker, limit: int, offset: int = 0, tier: Optional[str] = None
) -> dict:
    """Leaderboard page in wire form, shared by full refreshes and client snapshot requests."""
    return {
        "total": len(tracker),
        "offset": offset,
        "limit": limit,
        "tier": tier,
        "entries": [entry.to_wire() for entry in tracker.top(limit, offset=offset, tier=tier)],
    }


class LeaderboardRefresher:
    def __init__(
        self,
        store: StatsStore,
        tracker: RankTracker,
        broadcaster: DeltaBroadcaster,
        snapshot_limit: int = 100,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._broadcaster = broadcaster
        self._snapshot_limit = snapshot_limit
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def rebuild(self, broadcast: bool = True) -> Optional[BroadcastResult]:
        """Reload every score from the store; raises ``PersistenceFailure``."""
        mark = self._tracker.generation
        rows = await self._store.load_all_scores()
        # Updates applied while the read was suspended are newer than its rows
        self._tracker.load(rows, since=mark)
        if not broadcast:
            return None
        result = await self._broadcaster.broadcast_leaderboard_update(
            "full_refresh", snapshot_payload(self._tracker, self._snapshot_limit)
        )
        logger.info("Leaderboard full refresh broadcast", users=len(self._tracker), sent=result.sent)
        return result

    async def start(self, interval_seconds: float) -> None:
        """Start the periodic refresh loop (idempotent; interval <= 0 disables)."""
        if self._running or interval_seconds <= 0:
            return
        self._running = True
        self._task = asyncio.create_task(
            self._run_loop(interval_seconds),
            name="leaderboard-refresher",
        )
        logger.info("Leaderboard refresher started", interval_seconds=interval_seconds)

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Leaderboard refresher stopped")

    async def _run_loop(self, interval_seconds: float) -> None:
        while self._running:
            await asyncio.sleep(interval_seconds)
            try:
                await self.rebuild(broadcast=True)
            except PersistenceFailure as e:
                # Keep serving the incrementally patched snapshot until the next cycle
                logger.warning("Leaderboard refresh skipped", error=str(e))
