"""Tests for subscriber fan-out, pruning and message shapes on the wire."""

import logging
import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from models.messages import LeaderInfo, RankingChange, UserUpdateMessage  # noqa: E402
from services.delta_broadcaster import BroadcastResult, DeltaBroadcaster  # noqa: E402
from tests.conftest import FakeTransport, addr  # noqa: E402


@pytest.mark.asyncio
async def test_broken_connection_does_not_block_others():
    broadcaster = DeltaBroadcaster()
    healthy_a = FakeTransport()
    broken = FakeTransport(fail=True)
    healthy_b = FakeTransport()
    for transport in (healthy_a, broken, healthy_b):
        broadcaster.connect(transport)

    result = await broadcaster.broadcast_user_update(addr(1), 72, "Expert")

    assert result.to_dict() == {"sent": 2, "failed": 1}
    assert len(healthy_a.sent) == 1
    assert len(healthy_b.sent) == 1
    assert broadcaster.subscriber_count == 2

    # pruned, so the next broadcast does not try it again
    result = await broadcaster.broadcast_user_update(addr(1), 73, "Expert")
    assert result == BroadcastResult(sent=2, failed=0, skipped=0)

    await broadcaster.close_all()
    assert broken.closed_with == 1011


@pytest.mark.asyncio
async def test_slow_subscriber_times_out_and_is_pruned():
    broadcaster = DeltaBroadcaster(send_timeout=0.05)
    fast = FakeTransport()
    slow = FakeTransport(delay=1.0)
    broadcaster.connect(fast)
    broadcaster.connect(slow)

    result = await broadcaster.broadcast_leaderboard_update("incremental", {"address": addr(1)})

    assert result.to_dict() == {"sent": 1, "failed": 1}
    assert fast.types() == ["leaderboard_update"]
    assert broadcaster.subscriber_count == 1


@pytest.mark.asyncio
async def test_closed_connection_is_skipped_and_pruned_without_send():
    broadcaster = DeltaBroadcaster()
    open_ = FakeTransport()
    closed = FakeTransport(open_=False)
    broadcaster.connect(open_)
    broadcaster.connect(closed)

    result = await broadcaster.broadcast_user_update(addr(1), 10, "Novice")

    assert result == BroadcastResult(sent=1, failed=0, skipped=1)
    assert closed.sent == []
    assert broadcaster.subscriber_count == 1


class _UnreadableStateTransport(FakeTransport):
    def is_open(self) -> bool:
        raise RuntimeError("state unavailable")


@pytest.mark.asyncio
async def test_liveness_check_error_is_logged_and_subscriber_pruned(caplog):
    broadcaster = DeltaBroadcaster()
    healthy = FakeTransport()
    unreadable = _UnreadableStateTransport()
    broadcaster.connect(healthy)
    subscriber = broadcaster.connect(unreadable)

    with caplog.at_level(logging.DEBUG, logger="delta_broadcaster"):
        result = await broadcaster.broadcast_user_update(addr(1), 10, "Novice")

    assert result == BroadcastResult(sent=1, failed=0, skipped=1)
    assert unreadable.sent == []
    assert not broadcaster.is_connected(subscriber.id)
    record = next(r for r in caplog.records if r.getMessage() == "Subscriber liveness check raised")
    assert record.levelno == logging.DEBUG
    assert record.fields["subscriber_id"] == subscriber.id
    assert "state unavailable" in record.fields["error"]


@pytest.mark.asyncio
async def test_broadcast_with_no_subscribers_is_a_noop():
    broadcaster = DeltaBroadcaster()
    result = await broadcaster.broadcast(UserUpdateMessage(address=addr(1), dna_score=1, tier="Novice"))
    assert result.to_dict() == {"sent": 0, "failed": 0}


@pytest.mark.asyncio
async def test_reconnect_gets_a_new_subscriber_id():
    broadcaster = DeltaBroadcaster()
    transport = FakeTransport()
    first = broadcaster.connect(transport)
    assert broadcaster.disconnect(first.id)
    assert not broadcaster.disconnect(first.id)

    second = broadcaster.connect(transport)

    assert second.id != first.id
    assert not first.alive
    assert broadcaster.is_connected(second.id)


@pytest.mark.asyncio
async def test_send_personal_only_reaches_one_subscriber():
    broadcaster = DeltaBroadcaster()
    target, other = FakeTransport(), FakeTransport()
    subscriber = broadcaster.connect(target)
    broadcaster.connect(other)

    delivered = await broadcaster.send_personal(
        subscriber.id, UserUpdateMessage(address=addr(1), dna_score=5, tier="Novice")
    )

    assert delivered is True
    assert target.types() == ["user_update"]
    assert other.sent == []
    assert await broadcaster.send_personal("missing", UserUpdateMessage(address=addr(1), dna_score=5, tier="Novice")) is False


@pytest.mark.asyncio
async def test_per_connection_order_follows_send_order():
    broadcaster = DeltaBroadcaster()
    transport = FakeTransport()
    broadcaster.connect(transport)

    for score in (10, 20, 30):
        await broadcaster.broadcast_user_update(addr(1), score, "Novice")

    assert [m["dnaScore"] for m in transport.messages] == [10, 20, 30]


class TestWireShapes:
    @pytest.mark.asyncio
    async def test_ranking_changes_carry_rank_change(self):
        broadcaster = DeltaBroadcaster()
        transport = FakeTransport()
        broadcaster.connect(transport)

        await broadcaster.broadcast_ranking_changes(
            [
                RankingChange(address=addr(1), old_rank=10, new_rank=8, dna_score=85, tier="Whale"),
                RankingChange(address=addr(2), old_rank=None, new_rank=3, dna_score=90, tier="Whale"),
            ]
        )

        message = transport.messages[0]
        assert message["type"] == "ranking_changes"
        assert isinstance(message["timestamp"], int)
        assert message["changes"][0] == {
            "address": addr(1),
            "oldRank": 10,
            "newRank": 8,
            "dnaScore": 85,
            "tier": "Whale",
            "rankChange": 2,
        }
        assert message["changes"][1]["oldRank"] is None
        assert message["changes"][1]["rankChange"] is None

    @pytest.mark.asyncio
    async def test_empty_ranking_changes_are_not_sent(self):
        broadcaster = DeltaBroadcaster()
        transport = FakeTransport()
        broadcaster.connect(transport)

        result = await broadcaster.broadcast_ranking_changes([])

        assert result.sent == 0
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_new_leader_omits_missing_ens_name(self):
        broadcaster = DeltaBroadcaster()
        transport = FakeTransport()
        broadcaster.connect(transport)

        await broadcaster.broadcast_new_leader(
            LeaderInfo(
                address=addr(1),
                dna_score=98,
                tier="Whale",
                total_positions=150,
                total_volume_usd=5_000_000.0,
            )
        )

        leader = transport.messages[0]["leader"]
        assert leader == {
            "address": addr(1),
            "dnaScore": 98,
            "tier": "Whale",
            "totalPositions": 150,
            "totalVolumeUsd": 5_000_000.0,
        }

    @pytest.mark.asyncio
    async def test_leaderboard_update_keeps_null_data_and_user_action_drops_missing_pool(self):
        broadcaster = DeltaBroadcaster()
        transport = FakeTransport()
        broadcaster.connect(transport)

        await broadcaster.broadcast_leaderboard_update("full_refresh")
        await broadcaster.broadcast_user_action(addr(1), "swap", amount_usd=12.5)

        update, action = transport.messages
        assert update["updateType"] == "full_refresh"
        assert "data" in update and update["data"] is None
        assert action["actionType"] == "swap"
        assert action["amountUsd"] == 12.5
        assert "poolId" not in action
