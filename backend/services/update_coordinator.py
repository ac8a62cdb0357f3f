"""
Update coordinator.

Entry point for decoded on-chain activity. For one address at a time it runs
read -> merge -> score -> persist -> rank -> broadcast. Events for the same
address queue behind a per-address lock in arrival order, so a stale score
can never overwrite a newer one and rank deltas for an address are broadcast
in order. Different addresses proceed concurrently.

Expected failures (bad input, persistence errors) drop the event, are logged,
and are surfaced through ``on_error`` callbacks and ``recent_failures``; they
are never raised to the activity source.
"""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Optional

from models.activity import ActivityDelta, UserStats
from models.messages import LeaderInfo, RankingChange
from services.delta_broadcaster import DeltaBroadcaster
from services.dna_score import InvalidInput, compute_score
from services.rank_tracker import RankChangeEvent, RankTracker
from services.stats_store import PersistenceFailure, StatsStore, apply_activity, score_inputs
from utils.logger import get_logger
from utils.utcnow import utcnow
from utils.validation import normalize_address

logger = get_logger("update_coordinator")


@dataclass(frozen=True)
class ActivityFailure:
    address: str
    activity_type: str
    stage: str  # validate | read | merge | score | write
    error: str
    kind: str  # InvalidInput | PersistenceFailure
    at: datetime = field(default_factory=utcnow)


class AddressLocks:
    """Lock table keyed by address; entries live only while someone holds or waits."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, address: str) -> AsyncIterator[None]:
        lock = self._locks.get(address)
        if lock is None:
            lock = self._locks[address] = asyncio.Lock()
        self._users[address] = self._users.get(address, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[address] - 1
            if remaining:
                self._users[address] = remaining
            else:
                del self._users[address]
                del self._locks[address]


class UpdateCoordinator:
    def __init__(
        self,
        store: StatsStore,
        rank_tracker: RankTracker,
        broadcaster: DeltaBroadcaster,
        failure_history: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._tracker = rank_tracker
        self._broadcaster = broadcaster
        self._clock = clock
        self._locks = AddressLocks()
        self._error_callbacks: list[Callable[[ActivityFailure], Any]] = []
        self.recent_failures: deque[ActivityFailure] = deque(maxlen=max(failure_history, 1))
        self._stats = {
            "processed": 0,
            "dropped_invalid": 0,
            "dropped_persistence": 0,
            "rank_events": 0,
            "new_leaders": 0,
        }

    @property
    def stats(self) -> dict[str, int]:
        return {**self._stats, "addresses_in_flight": len(self._locks)}

    def on_error(self, callback: Callable[[ActivityFailure], Any]) -> None:
        """Register a callback for dropped activity events (sync or async)."""
        self._error_callbacks.append(callback)

    async def handle_source_event(
        self, address: str, activity_type: str, payload: Optional[dict], timestamp: datetime
    ) -> None:
        """Adapter for the activity source's ``(address, type, payload, timestamp)`` tuples."""
        try:
            activity = ActivityDelta.from_source(activity_type, payload, timestamp)
        except ValueError as e:
            await self._fail(str(address), str(activity_type), "validate", InvalidInput(str(e)))
            return
        await self.handle_activity(address, activity)

    async def handle_activity(self, address: str, activity: ActivityDelta) -> None:
        try:
            address = normalize_address(address)
        except ValueError as e:
            await self._fail(str(address), activity.activity_type.value, "validate", InvalidInput(str(e)))
            return

        async with self._locks.hold(address):
            await self._process(address, activity)

    async def _process(self, address: str, activity: ActivityDelta) -> None:
        stage = "read"
        try:
            current = await self._store.get_aggregates(address) or UserStats(address=address)
            stage = "merge"
            updated = apply_activity(current, activity)
            stage = "score"
            result = compute_score(score_inputs(updated, self._clock()))
            updated.dna_score = result.score
            updated.tier = result.tier
            stage = "write"
            await self._store.save_aggregates(address, updated)
        except (InvalidInput, PersistenceFailure) as e:
            await self._fail(address, activity.activity_type.value, stage, e)
            return

        self._stats["processed"] += 1
        event = self._tracker.apply_score_change(address, result.score, result.tier)
        logger.info(
            "DNA score updated",
            address=address,
            activity=activity.activity_type.value,
            dna_score=result.score,
            tier=result.tier,
            rank=event.new_rank if event else self._tracker.rank_of(address),
        )
        await self._publish(updated, event, activity)

    async def _publish(self, stats: UserStats, event: Optional[RankChangeEvent], activity: ActivityDelta) -> None:
        address = stats.address
        await self._broadcaster.broadcast_user_update(address, stats.dna_score, stats.tier)

        if event is not None:
            self._stats["rank_events"] += 1
            if event.rank_changed:
                await self._broadcaster.broadcast_ranking_changes(
                    [
                        RankingChange(
                            address=address,
                            old_rank=event.old_rank,
                            new_rank=event.new_rank,
                            dna_score=event.score,
                            tier=event.tier,
                        )
                    ]
                )
            if event.new_rank <= self._tracker.top_n:
                await self._broadcaster.broadcast_leaderboard_update(
                    "incremental",
                    {
                        "address": address,
                        "oldRank": event.old_rank,
                        "newRank": event.new_rank,
                        "dnaScore": event.score,
                        "tier": event.tier,
                        "events": sorted(kind.value for kind in event.kinds),
                    },
                )
            if event.is_new_leader:
                await self._announce_leader(stats)
            elif event.lost_lead:
                await self._announce_successor(address)

        await self._broadcaster.broadcast_user_action(
            address,
            activity.activity_type.value,
            pool_id=activity.pool_id,
            amount_usd=activity.amount_usd,
        )

    async def _announce_leader(self, stats: UserStats) -> None:
        self._stats["new_leaders"] += 1
        await self._broadcaster.broadcast_new_leader(
            LeaderInfo(
                address=stats.address,
                ens_name=stats.ens_name,
                dna_score=stats.dna_score,
                tier=stats.tier,
                total_positions=stats.total_positions,
                total_volume_usd=stats.total_volume_usd,
            )
        )

    async def _announce_successor(self, previous_leader: str) -> None:
        """The previous #1 dropped; announce whoever holds rank 1 now."""
        top = self._tracker.top(1)
        if not top or top[0].address == previous_leader:
            return
        leader = top[0]
        try:
            stats = await self._store.get_aggregates(leader.address)
        except PersistenceFailure as e:
            logger.warning("Leader profile unavailable", address=leader.address, error=str(e))
            stats = None
        if stats is None:
            stats = UserStats(address=leader.address)
        # Rank order is authoritative for the score and tier shown
        await self._announce_leader(stats.copy(dna_score=leader.dna_score, tier=leader.tier))

    async def _fail(self, address: str, activity_type: str, stage: str, error: Exception) -> None:
        persistence = isinstance(error, PersistenceFailure)
        kind = "PersistenceFailure" if persistence else "InvalidInput"
        if persistence:
            self._stats["dropped_persistence"] += 1
            logger.error("Activity dropped: persistence failure", address=address, stage=stage, error=str(error))
        else:
            self._stats["dropped_invalid"] += 1
            logger.warning("Activity dropped: invalid input", address=address, stage=stage, error=str(error))

        failure = ActivityFailure(
            address=address,
            activity_type=activity_type,
            stage=stage,
            error=str(error),
            kind=kind,
        )
        self.recent_failures.append(failure)
        for callback in list(self._error_callbacks):
            try:
                outcome = callback(failure)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                logger.exception("Activity error callback raised", address=address)
