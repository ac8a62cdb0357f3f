"""Activity events and the per-user aggregates they roll up into."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class ActivityType(str, Enum):
    SWAP = "swap"
    POSITION_OPEN = "position_open"
    POSITION_CLOSE = "position_close"
    FEE_COLLECT = "fee_collect"


@dataclass(frozen=True)
class ActivityDelta:
    """One decoded on-chain action, as delivered for a single address.

    ``amount_usd`` is None when no price was available at decode time; the
    action still counts towards activity but adds no volume.
    """

    activity_type: ActivityType
    timestamp: datetime  # naive UTC
    amount_usd: Optional[float] = None
    fees_usd: Optional[float] = None
    pool_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_source(
        cls,
        activity_type: str | ActivityType,
        payload: Optional[dict[str, Any]],
        timestamp: datetime,
    ) -> "ActivityDelta":
        """Build from the ``(type, payload, timestamp)`` part of an activity source tuple.

        Raises ``ValueError`` for an unknown activity type, a payload that is
        not a mapping, or a timestamp that is not a ``datetime``.
        """
        if payload is not None and not isinstance(payload, Mapping):
            raise ValueError(f"payload must be a mapping, got {type(payload).__name__}")
        if not isinstance(timestamp, datetime):
            raise ValueError(f"timestamp must be a datetime, got {timestamp!r}")
        payload = dict(payload or {})
        return cls(
            activity_type=ActivityType(activity_type),
            timestamp=timestamp,
            amount_usd=payload.get("amount_usd"),
            fees_usd=payload.get("fees_usd"),
            pool_id=payload.get("pool_id"),
            payload=payload,
        )


@dataclass
class UserStats:
    address: str
    total_volume_usd: float = 0.0
    total_fees_earned: float = 0.0
    total_positions: int = 0
    total_swaps: int = 0
    active_days: int = 0
    first_action_at: Optional[datetime] = None
    last_action_at: Optional[datetime] = None
    last_active_date: Optional[date] = None
    ens_name: Optional[str] = None
    dna_score: int = 0
    tier: str = "Novice"

    def copy(self, **changes: Any) -> "UserStats":
        return replace(self, **changes)

    def days_since_first(self, now: datetime) -> int:
        """Whole days elapsed since the first recorded action."""
        if self.first_action_at is None:
            return 0
        return max((now - self.first_action_at).days, 0)
