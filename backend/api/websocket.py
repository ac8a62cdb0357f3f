from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from models.messages import (
    ErrorMessage,
    LeaderboardUpdateMessage,
    PingRequest,
    PongMessage,
    SnapshotRequest,
    SubscribedMessage,
    SubscribeRequest,
    parse_client_message,
)
from services.delta_broadcaster import DeltaBroadcaster
from services.dna_score import TIERS
from services.leaderboard_refresher import snapshot_payload
from services.leaderboard_runtime import LeaderboardRuntime
from services.rank_tracker import RankTracker
from utils.logger import get_logger
from utils.validation import validate_limit

logger = get_logger("websocket")

CHANNELS = ("leaderboard", "rankings", "users", "actions")


class WebSocketTransport:
    """Adapts a Starlette WebSocket to the broadcaster's transport contract"""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self, code: int = 1000) -> None:
        if self.websocket.application_state != WebSocketState.DISCONNECTED:
            await self.websocket.close(code=code)


async def dispatch_client_message(
    raw: str,
    subscriber_id: str,
    broadcaster: DeltaBroadcaster,
    rank_tracker: RankTracker,
    default_limit: int,
) -> None:
    """Single dispatch point for inbound client frames"""
    try:
        message = parse_client_message(raw)
    except ValidationError as e:
        logger.debug("Rejected client message", subscriber_id=subscriber_id, errors=e.error_count())
        await broadcaster.send_personal(subscriber_id, ErrorMessage(message="invalid message"))
        return

    if isinstance(message, PingRequest):
        await broadcaster.send_personal(subscriber_id, PongMessage())

    elif isinstance(message, SubscribeRequest):
        # Every subscriber receives every channel; the reply confirms the known ones
        channels = [c for c in message.channels if c in CHANNELS] or list(CHANNELS)
        await broadcaster.send_personal(subscriber_id, SubscribedMessage(channels=channels))

    elif isinstance(message, SnapshotRequest):
        if message.tier is not None and message.tier not in TIERS:
            await broadcaster.send_personal(subscriber_id, ErrorMessage(message=f"unknown tier: {message.tier}"))
            return
        limit = validate_limit(message.limit or default_limit)
        await broadcaster.send_personal(
            subscriber_id,
            LeaderboardUpdateMessage(
                update_type="full_refresh",
                data=snapshot_payload(rank_tracker, limit, offset=message.offset, tier=message.tier),
            ),
        )


async def handle_websocket(websocket: WebSocket, runtime: LeaderboardRuntime):
    """Live leaderboard feed: register, serve client requests, unregister on close"""
    await websocket.accept()
    broadcaster = runtime.broadcaster
    subscriber = broadcaster.connect(WebSocketTransport(websocket))
    log = logger.with_context(subscriber_id=subscriber.id)

    try:
        while True:
            raw = await websocket.receive_text()
            if not broadcaster.is_connected(subscriber.id):
                # Pruned after a failed send; the close is already under way
                break
            await dispatch_client_message(
                raw,
                subscriber.id,
                broadcaster,
                runtime.rank_tracker,
                runtime.snapshot_limit,
            )
    except WebSocketDisconnect:
        pass
    except Exception as e:
        log.warning("WebSocket error", error=repr(e))
    finally:
        broadcaster.disconnect(subscriber.id)
