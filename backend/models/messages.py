"""WebSocket wire messages.

Outbound messages are the stable leaderboard delta protocol: every message has
a ``type`` discriminator and an epoch-millisecond ``timestamp``, with camelCase
field names. Renaming a field requires a new ``type`` value.

Inbound messages are the small set of client requests the endpoint accepts.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, computed_field
from pydantic.alias_generators import to_camel

from utils.utcnow import epoch_ms


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ==================== OUTBOUND ====================


class LeaderboardUpdateMessage(WireModel):
    type: Literal["leaderboard_update"] = "leaderboard_update"
    update_type: Literal["incremental", "full_refresh"] = "incremental"
    data: Optional[dict[str, Any]] = None
    timestamp: int = Field(default_factory=epoch_ms)

    def to_wire(self) -> dict[str, Any]:
        # data is part of the shape even when empty
        return self.model_dump(by_alias=True)


class RankingChange(WireModel):
    address: str
    old_rank: Optional[int]
    new_rank: int
    dna_score: int
    tier: str

    @computed_field(alias="rankChange")
    @property
    def rank_change(self) -> Optional[int]:
        """Positive means the user moved up."""
        if self.old_rank is None:
            return None
        return self.old_rank - self.new_rank

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class RankingChangesMessage(WireModel):
    type: Literal["ranking_changes"] = "ranking_changes"
    changes: list[RankingChange]
    timestamp: int = Field(default_factory=epoch_ms)

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "changes": [change.to_wire() for change in self.changes],
            "timestamp": self.timestamp,
        }


class LeaderInfo(WireModel):
    address: str
    ens_name: Optional[str] = None
    dna_score: int
    tier: str
    total_positions: int
    total_volume_usd: float


class NewLeaderMessage(WireModel):
    type: Literal["new_leader"] = "new_leader"
    leader: LeaderInfo
    timestamp: int = Field(default_factory=epoch_ms)


class UserUpdateMessage(WireModel):
    type: Literal["user_update"] = "user_update"
    address: str
    dna_score: int
    tier: str
    timestamp: int = Field(default_factory=epoch_ms)


class UserActionMessage(WireModel):
    type: Literal["user_action"] = "user_action"
    address: str
    action_type: str
    pool_id: Optional[str] = None
    amount_usd: Optional[float] = None
    timestamp: int = Field(default_factory=epoch_ms)


class PongMessage(WireModel):
    type: Literal["pong"] = "pong"
    timestamp: int = Field(default_factory=epoch_ms)


class SubscribedMessage(WireModel):
    type: Literal["subscribed"] = "subscribed"
    channels: list[str] = Field(default_factory=list)
    timestamp: int = Field(default_factory=epoch_ms)


class ErrorMessage(WireModel):
    type: Literal["error"] = "error"
    message: str
    timestamp: int = Field(default_factory=epoch_ms)


OutboundMessage = Union[
    LeaderboardUpdateMessage,
    RankingChangesMessage,
    NewLeaderMessage,
    UserUpdateMessage,
    UserActionMessage,
    PongMessage,
    SubscribedMessage,
    ErrorMessage,
]


# ==================== INBOUND ====================


class PingRequest(BaseModel):
    type: Literal["ping"]


class SubscribeRequest(BaseModel):
    type: Literal["subscribe"]
    channels: list[str] = Field(default_factory=list)


class SnapshotRequest(BaseModel):
    """Full leaderboard page, requested after (re)connect."""

    type: Literal["snapshot"]
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    tier: Optional[str] = None


ClientMessage = Annotated[
    Union[PingRequest, SubscribeRequest, SnapshotRequest],
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: str) -> ClientMessage:
    """Parse one inbound text frame; raises ``pydantic.ValidationError``."""
    return client_message_adapter.validate_json(raw)
