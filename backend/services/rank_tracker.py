"""
In-memory leaderboard ordering.

Keeps every known address in a sorted index keyed by ``(-score, address)`` so
equal scores rank by address ascending and rank numbers are always a
permutation of 1..N. A score change moves one key (binary search + list
insert) and reports how the affected user's rank moved.

The tracker is the only writer of the rank snapshot. It never touches the
network; the coordinator decides what to broadcast from the returned event.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union

from services.dna_score import tier_for_score
from utils.logger import get_logger

logger = get_logger("rank_tracker")

DEFAULT_TOP_N = 100


class RankEventKind(str, Enum):
    RANK_CHANGED = "rank_changed"
    NEW_LEADER = "new_leader"
    ENTERED_TOP_N = "entered_top_n"
    TIER_CHANGED = "tier_changed"


@dataclass(frozen=True)
class RankChangeEvent:
    address: str
    old_rank: Optional[int]  # None on first appearance
    new_rank: int
    score: int
    tier: str
    previous_score: Optional[int]
    previous_tier: Optional[str]
    kinds: frozenset[RankEventKind]

    @property
    def rank_changed(self) -> bool:
        return RankEventKind.RANK_CHANGED in self.kinds

    @property
    def is_new_leader(self) -> bool:
        return RankEventKind.NEW_LEADER in self.kinds

    @property
    def entered_top_n(self) -> bool:
        return RankEventKind.ENTERED_TOP_N in self.kinds

    @property
    def lost_lead(self) -> bool:
        """The user was #1 and no longer is; someone else now leads."""
        return self.old_rank == 1 and self.new_rank != 1

    @property
    def tier_changed(self) -> bool:
        return RankEventKind.TIER_CHANGED in self.kinds

    @property
    def rank_change(self) -> Optional[int]:
        if self.old_rank is None:
            return None
        return self.old_rank - self.new_rank


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    address: str
    dna_score: int
    tier: str

    def to_wire(self) -> dict:
        return {
            "rank": self.rank,
            "address": self.address,
            "dnaScore": self.dna_score,
            "tier": self.tier,
        }


ScoreRow = Union[tuple[str, int], tuple[str, int, str]]


def _key(address: str, score: int) -> tuple[int, str]:
    return (-score, address)


class RankTracker:
    """Ordered-by-score view of all known users."""

    def __init__(self, top_n: int = DEFAULT_TOP_N):
        if top_n < 1:
            raise ValueError("top_n must be >= 1")
        self.top_n = top_n
        self._index: list[tuple[int, str]] = []
        self._entries: dict[str, tuple[int, str]] = {}
        # Bumped by every apply_score_change; _changed_at maps address -> generation of its last change
        self._generation = 0
        self._changed_at: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    @property
    def generation(self) -> int:
        """Mark to pass back to ``load(since=...)`` when the rows are read asynchronously."""
        return self._generation

    def load(self, rows: Iterable[ScoreRow], since: Optional[int] = None) -> int:
        """Replace the whole snapshot (startup bootstrap or full rebuild).

        Rows are ``(address, score)`` or ``(address, score, tier)``; a missing
        tier is derived from the score. Later duplicates win.

        With ``since`` (a ``generation`` taken before the rows were read),
        addresses changed by ``apply_score_change`` after that mark keep their
        current entry instead of the row, which may predate the change.
        """
        entries: dict[str, tuple[int, str]] = {}
        for row in rows:
            address, score = row[0], int(row[1])
            tier = row[2] if len(row) > 2 and row[2] else tier_for_score(score)
            entries[address] = (score, tier)

        kept = 0
        if since is not None:
            for address, changed_at in self._changed_at.items():
                if changed_at > since and address in self._entries:
                    entries[address] = self._entries[address]
                    kept += 1

        index = sorted(_key(address, score) for address, (score, _) in entries.items())
        # Swap in one step so readers never observe a half-built index
        self._entries, self._index = entries, index
        self._changed_at = {a: g for a, g in self._changed_at.items() if a in entries}
        logger.info("Rank snapshot loaded", users=len(index), kept_newer=kept)
        return len(index)

    def _position(self, address: str) -> Optional[int]:
        entry = self._entries.get(address)
        if entry is None:
            return None
        return bisect.bisect_left(self._index, _key(address, entry[0]))

    def rank_of(self, address: str) -> Optional[int]:
        pos = self._position(address)
        return None if pos is None else pos + 1

    def entry(self, address: str) -> Optional[LeaderboardEntry]:
        pos = self._position(address)
        if pos is None:
            return None
        score, tier = self._entries[address]
        return LeaderboardEntry(rank=pos + 1, address=address, dna_score=score, tier=tier)

    def snapshot(self) -> dict[str, int]:
        """address -> rank for every known user."""
        return {address: pos + 1 for pos, (_, address) in enumerate(self._index)}

    def top(self, limit: int, offset: int = 0, tier: Optional[str] = None) -> list[LeaderboardEntry]:
        """One page of the leaderboard. Rank numbers stay global under a tier filter."""
        if limit <= 0:
            return []
        offset = max(offset, 0)

        if tier is None:
            window = self._index[offset : offset + limit]
            return [
                LeaderboardEntry(
                    rank=offset + i + 1,
                    address=address,
                    dna_score=-neg_score,
                    tier=self._entries[address][1],
                )
                for i, (neg_score, address) in enumerate(window)
            ]

        page: list[LeaderboardEntry] = []
        skipped = 0
        for pos, (neg_score, address) in enumerate(self._index):
            entry_tier = self._entries[address][1]
            if entry_tier != tier:
                continue
            if skipped < offset:
                skipped += 1
                continue
            page.append(LeaderboardEntry(rank=pos + 1, address=address, dna_score=-neg_score, tier=entry_tier))
            if len(page) >= limit:
                break
        return page

    def apply_score_change(self, address: str, new_score: int, new_tier: str) -> Optional[RankChangeEvent]:
        """Move one user to its new position and describe the move.

        Returns None when nothing material changed (same rank, same tier).
        """
        new_score = int(new_score)
        previous = self._entries.get(address)
        old_rank: Optional[int] = None
        previous_score: Optional[int] = None
        previous_tier: Optional[str] = None

        if previous is not None:
            previous_score, previous_tier = previous
            old_pos = bisect.bisect_left(self._index, _key(address, previous_score))
            old_rank = old_pos + 1
            del self._index[old_pos]

        new_key = _key(address, new_score)
        new_pos = bisect.bisect_left(self._index, new_key)
        self._index.insert(new_pos, new_key)
        self._entries[address] = (new_score, new_tier)
        self._generation += 1
        self._changed_at[address] = self._generation
        new_rank = new_pos + 1

        kinds: set[RankEventKind] = set()
        if new_rank != old_rank:
            kinds.add(RankEventKind.RANK_CHANGED)
        if new_rank == 1 and old_rank != 1:
            kinds.add(RankEventKind.NEW_LEADER)
        if new_rank <= self.top_n and (old_rank is None or old_rank > self.top_n):
            kinds.add(RankEventKind.ENTERED_TOP_N)
        if previous_tier is not None and previous_tier != new_tier:
            kinds.add(RankEventKind.TIER_CHANGED)

        if not kinds:
            return None

        event = RankChangeEvent(
            address=address,
            old_rank=old_rank,
            new_rank=new_rank,
            score=new_score,
            tier=new_tier,
            previous_score=previous_score,
            previous_tier=previous_tier,
            kinds=frozenset(kinds),
        )
        logger.debug(
            "Rank moved",
            address=address,
            old_rank=old_rank,
            new_rank=new_rank,
            kinds=sorted(kind.value for kind in kinds),
        )
        return event
