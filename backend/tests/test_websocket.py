import json
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocketDisconnect
from starlette.websockets import WebSocketState

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from api.websocket import WebSocketTransport, dispatch_client_message, handle_websocket  # noqa: E402
from services.delta_broadcaster import DeltaBroadcaster  # noqa: E402
from services.rank_tracker import RankTracker  # noqa: E402
from tests.conftest import FakeTransport, addr  # noqa: E402


class FakeWebSocket:
    """Just enough of a Starlette WebSocket for the endpoint handler."""

    def __init__(self, frames):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[str] = []
        self.accept = AsyncMock()
        self.close = AsyncMock()
        self.receive_text = AsyncMock(side_effect=list(frames) + [WebSocketDisconnect(code=1000)])

    async def send_text(self, data: str) -> None:
        self.sent.append(data)

    @property
    def messages(self):
        return [json.loads(frame) for frame in self.sent]


@pytest.fixture
def tracker():
    tracker = RankTracker(top_n=3)
    tracker.load([(addr(1), 91), (addr(2), 72), (addr(3), 65), (addr(4), 41), (addr(5), 5)])
    return tracker


@pytest.fixture
def connected():
    broadcaster = DeltaBroadcaster()
    transport = FakeTransport()
    subscriber = broadcaster.connect(transport)
    return broadcaster, subscriber.id, transport


class TestDispatch:
    @pytest.mark.asyncio
    async def test_ping_gets_pong(self, connected, tracker):
        broadcaster, subscriber_id, transport = connected

        await dispatch_client_message('{"type": "ping"}', subscriber_id, broadcaster, tracker, 100)

        assert transport.types() == ["pong"]

    @pytest.mark.asyncio
    async def test_subscribe_confirms_known_channels(self, connected, tracker):
        broadcaster, subscriber_id, transport = connected

        await dispatch_client_message(
            '{"type": "subscribe", "channels": ["rankings", "weather"]}', subscriber_id, broadcaster, tracker, 100
        )
        await dispatch_client_message('{"type": "subscribe"}', subscriber_id, broadcaster, tracker, 100)

        first, second = transport.messages
        assert first["channels"] == ["rankings"]
        assert second["channels"] == ["leaderboard", "rankings", "users", "actions"]

    @pytest.mark.asyncio
    async def test_snapshot_returns_full_refresh_page(self, connected, tracker):
        broadcaster, subscriber_id, transport = connected

        await dispatch_client_message(
            '{"type": "snapshot", "limit": 2, "offset": 1}', subscriber_id, broadcaster, tracker, 100
        )

        message = transport.messages[0]
        assert message["type"] == "leaderboard_update"
        assert message["updateType"] == "full_refresh"
        data = message["data"]
        assert data["total"] == 5
        assert data["entries"] == [
            {"rank": 2, "address": addr(2), "dnaScore": 72, "tier": "Expert"},
            {"rank": 3, "address": addr(3), "dnaScore": 65, "tier": "Expert"},
        ]

    @pytest.mark.asyncio
    async def test_snapshot_defaults_limit_and_filters_tier(self, connected, tracker):
        broadcaster, subscriber_id, transport = connected

        await dispatch_client_message('{"type": "snapshot", "tier": "Expert"}', subscriber_id, broadcaster, tracker, 50)

        data = transport.messages[0]["data"]
        assert data["limit"] == 50
        assert data["tier"] == "Expert"
        assert [entry["rank"] for entry in data["entries"]] == [2, 3]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '{"type": "teleport"}',
            '{"type": "snapshot", "limit": 0}',
            '{"type": "snapshot", "offset": -1}',
            '{"type": "snapshot", "tier": "Legend"}',
        ],
    )
    async def test_bad_requests_get_error_reply(self, connected, tracker, raw):
        broadcaster, subscriber_id, transport = connected

        await dispatch_client_message(raw, subscriber_id, broadcaster, tracker, 100)

        assert transport.types() == ["error"]
        assert broadcaster.is_connected(subscriber_id)


class TestTransport:
    @pytest.mark.asyncio
    async def test_open_only_when_both_sides_connected(self):
        websocket = FakeWebSocket([])
        transport = WebSocketTransport(websocket)
        assert transport.is_open()

        websocket.client_state = WebSocketState.DISCONNECTED
        assert not transport.is_open()

    @pytest.mark.asyncio
    async def test_close_skips_already_closed_socket(self):
        websocket = FakeWebSocket([])
        transport = WebSocketTransport(websocket)

        await transport.close(code=1011)
        websocket.close.assert_awaited_once_with(code=1011)

        websocket.application_state = WebSocketState.DISCONNECTED
        await transport.close()
        assert websocket.close.await_count == 1


class TestEndpoint:
    @pytest.mark.asyncio
    async def test_serves_requests_and_unregisters_on_disconnect(self, tracker):
        broadcaster = DeltaBroadcaster()
        runtime = SimpleNamespace(broadcaster=broadcaster, rank_tracker=tracker, snapshot_limit=2)
        websocket = FakeWebSocket(['{"type": "ping"}', '{"type": "snapshot"}'])

        await handle_websocket(websocket, runtime)

        websocket.accept.assert_awaited_once()
        assert [m["type"] for m in websocket.messages] == ["pong", "leaderboard_update"]
        assert len(websocket.messages[1]["data"]["entries"]) == 2
        assert broadcaster.subscriber_count == 0
        assert broadcaster.stats["connected"] == 1
        assert broadcaster.stats["disconnected"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_receive_error_still_unregisters(self, tracker):
        broadcaster = DeltaBroadcaster()
        runtime = SimpleNamespace(broadcaster=broadcaster, rank_tracker=tracker, snapshot_limit=10)
        websocket = FakeWebSocket([])
        websocket.receive_text = AsyncMock(side_effect=RuntimeError("socket torn down"))

        await handle_websocket(websocket, runtime)

        assert broadcaster.subscriber_count == 0
