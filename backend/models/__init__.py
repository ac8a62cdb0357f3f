from .activity import ActivityDelta, ActivityType, UserStats
from .messages import (
    LeaderboardUpdateMessage,
    RankingChange,
    RankingChangesMessage,
    LeaderInfo,
    NewLeaderMessage,
    UserUpdateMessage,
    UserActionMessage,
    OutboundMessage,
    parse_client_message,
)

__all__ = [
    "ActivityDelta",
    "ActivityType",
    "UserStats",
    "LeaderboardUpdateMessage",
    "RankingChange",
    "RankingChangesMessage",
    "LeaderInfo",
    "NewLeaderMessage",
    "UserUpdateMessage",
    "UserActionMessage",
    "OutboundMessage",
    "parse_client_message",
]
