"""
Delta broadcaster.

Owns the set of live WebSocket subscribers and fans typed leaderboard delta
messages out to them. One send attempt per subscriber per message: a send
that raises or exceeds the send timeout prunes that subscriber and is counted
as failed, without holding up delivery to anyone else. Subscribers that are
no longer open are skipped and pruned, never queued.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from models.messages import (
    LeaderInfo,
    LeaderboardUpdateMessage,
    NewLeaderMessage,
    OutboundMessage,
    RankingChange,
    RankingChangesMessage,
    UserActionMessage,
    UserUpdateMessage,
)
from utils.logger import get_logger
from utils.utcnow import utcnow

logger = get_logger("delta_broadcaster")

CLOSE_TIMEOUT_SECONDS = 2.0


class SubscriberTransport(Protocol):
    def is_open(self) -> bool: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class SendFailure(Exception):
    """A single subscriber send failed (raised, or timed out)."""

    def __init__(self, subscriber_id: str, cause: BaseException):
        super().__init__(f"send to {subscriber_id} failed: {cause!r}")
        self.subscriber_id = subscriber_id
        self.cause = cause


@dataclass
class Subscriber:
    transport: SubscriberTransport
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    alive: bool = True
    connected_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class BroadcastResult:
    sent: int = 0
    failed: int = 0
    skipped: int = 0  # not open at send time, pruned without an attempt

    def to_dict(self) -> dict[str, int]:
        return {"sent": self.sent, "failed": self.failed}


class DeltaBroadcaster:
    """Process-scoped fan-out of leaderboard deltas to live subscribers."""

    def __init__(self, send_timeout: Optional[float] = 5.0):
        self._subscribers: dict[str, Subscriber] = {}
        self._send_timeout = send_timeout if send_timeout and send_timeout > 0 else None
        self._close_tasks: set[asyncio.Task] = set()
        self._stats = {
            "connected": 0,
            "disconnected": 0,
            "pruned": 0,
            "messages": 0,
            "sends_ok": 0,
            "sends_failed": 0,
        }

    # ---------------- connection lifecycle ----------------

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def stats(self) -> dict[str, int]:
        return {**self._stats, "subscribers": len(self._subscribers)}

    def is_connected(self, subscriber_id: str) -> bool:
        return subscriber_id in self._subscribers

    def connect(self, transport: SubscriberTransport) -> Subscriber:
        """Register an already-accepted transport. Every call gets a fresh id."""
        subscriber = Subscriber(transport=transport)
        self._subscribers[subscriber.id] = subscriber
        self._stats["connected"] += 1
        logger.info("Subscriber connected", subscriber_id=subscriber.id, subscribers=len(self._subscribers))
        return subscriber

    def disconnect(self, subscriber_id: str) -> bool:
        subscriber = self._subscribers.pop(subscriber_id, None)
        if subscriber is None:
            return False
        subscriber.alive = False
        self._stats["disconnected"] += 1
        logger.info("Subscriber disconnected", subscriber_id=subscriber_id, subscribers=len(self._subscribers))
        return True

    def _prune(self, subscriber: Subscriber, reason: str) -> None:
        if self._subscribers.pop(subscriber.id, None) is None:
            return
        subscriber.alive = False
        self._stats["pruned"] += 1
        logger.info("Subscriber pruned", subscriber_id=subscriber.id, reason=reason)
        if reason == "send_failed":
            task = asyncio.create_task(self._close_quietly(subscriber, 1011), name=f"ws-close-{subscriber.id}")
            self._close_tasks.add(task)
            task.add_done_callback(self._close_tasks.discard)

    async def _close_quietly(self, subscriber: Subscriber, code: int) -> None:
        try:
            await asyncio.wait_for(subscriber.transport.close(code=code), timeout=CLOSE_TIMEOUT_SECONDS)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug("Close after failed send did not complete", subscriber_id=subscriber.id, error=repr(e))

    # ---------------- sending ----------------

    async def _deliver(self, subscriber: Subscriber, payload: str) -> None:
        try:
            if self._send_timeout is None:
                await subscriber.transport.send_text(payload)
            else:
                await asyncio.wait_for(subscriber.transport.send_text(payload), timeout=self._send_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise SendFailure(subscriber.id, e) from e

    async def _send_one(self, subscriber: Subscriber, payload: str) -> bool:
        try:
            await self._deliver(subscriber, payload)
        except SendFailure as e:
            self._stats["sends_failed"] += 1
            logger.warning("Subscriber send failed", subscriber_id=subscriber.id, error=repr(e.cause))
            self._prune(subscriber, reason="send_failed")
            return False
        self._stats["sends_ok"] += 1
        return True

    @staticmethod
    def _is_open(subscriber: Subscriber) -> bool:
        if not subscriber.alive:
            return False
        try:
            return bool(subscriber.transport.is_open())
        except Exception as e:
            logger.debug("Subscriber liveness check raised", subscriber_id=subscriber.id, error=repr(e))
            return False

    async def broadcast(self, message: OutboundMessage) -> BroadcastResult:
        """Send one message to every open subscriber concurrently."""
        if not self._subscribers:
            return BroadcastResult()

        payload = json.dumps(message.to_wire(), default=str)
        self._stats["messages"] += 1

        targets: list[Subscriber] = []
        skipped = 0
        for subscriber in list(self._subscribers.values()):
            if self._is_open(subscriber):
                targets.append(subscriber)
            else:
                skipped += 1
                self._prune(subscriber, reason="not_open")

        if not targets:
            return BroadcastResult(skipped=skipped)

        outcomes = await asyncio.gather(*(self._send_one(s, payload) for s in targets))
        sent = sum(1 for ok in outcomes if ok)
        result = BroadcastResult(sent=sent, failed=len(outcomes) - sent, skipped=skipped)

        logger.debug(
            "Broadcast delivered",
            message_type=message.type,
            sent=result.sent,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result

    async def send_personal(self, subscriber_id: str, message: OutboundMessage) -> bool:
        """Send to one subscriber (replies, explicitly requested snapshots)."""
        subscriber = self._subscribers.get(subscriber_id)
        if subscriber is None:
            return False
        if not self._is_open(subscriber):
            self._prune(subscriber, reason="not_open")
            return False
        return await self._send_one(subscriber, json.dumps(message.to_wire(), default=str))

    # ---------------- typed helpers ----------------

    async def broadcast_leaderboard_update(
        self, update_type: str = "incremental", data: Optional[dict] = None
    ) -> BroadcastResult:
        return await self.broadcast(LeaderboardUpdateMessage(update_type=update_type, data=data))

    async def broadcast_ranking_changes(self, changes: list[RankingChange]) -> BroadcastResult:
        if not changes:
            return BroadcastResult()
        return await self.broadcast(RankingChangesMessage(changes=changes))

    async def broadcast_new_leader(self, leader: LeaderInfo) -> BroadcastResult:
        result = await self.broadcast(NewLeaderMessage(leader=leader))
        logger.info("Broadcast new leader", address=leader.address, sent=result.sent)
        return result

    async def broadcast_user_update(self, address: str, dna_score: int, tier: str) -> BroadcastResult:
        return await self.broadcast(UserUpdateMessage(address=address, dna_score=dna_score, tier=tier))

    async def broadcast_user_action(
        self,
        address: str,
        action_type: str,
        pool_id: Optional[str] = None,
        amount_usd: Optional[float] = None,
    ) -> BroadcastResult:
        return await self.broadcast(
            UserActionMessage(address=address, action_type=action_type, pool_id=pool_id, amount_usd=amount_usd)
        )

    async def close_all(self) -> None:
        """Shutdown: close every subscriber and forget it."""
        subscribers = list(self._subscribers.values())
        self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.alive = False
        await asyncio.gather(*(self._close_quietly(s, 1001) for s in subscribers))
        if self._close_tasks:
            await asyncio.gather(*list(self._close_tasks), return_exceptions=True)
