"""Shared fixtures for leaderboard pipeline tests."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import asyncio
import json
from datetime import datetime
from typing import Optional

import pytest

from models.activity import UserStats
from services.stats_store import PersistenceFailure


FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0)


def addr(n: int) -> str:
    """Deterministic, valid, lower-case address; larger n sorts later."""
    return "0x" + format(n, "040x")


# ---------------------------------------------------------------------------
# Transport fakes
# ---------------------------------------------------------------------------


class FakeTransport:
    """Records every frame; optionally fails or hangs on send."""

    def __init__(self, open_: bool = True, fail: bool = False, delay: float = 0.0):
        self.open = open_
        self.fail = fail
        self.delay = delay
        self.sent: list[str] = []
        self.closed_with: Optional[int] = None

    def is_open(self) -> bool:
        return self.open

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.open = False
        self.closed_with = code

    @property
    def messages(self) -> list[dict]:
        return [json.loads(frame) for frame in self.sent]

    def types(self) -> list[str]:
        return [message["type"] for message in self.messages]


# ---------------------------------------------------------------------------
# Persistence fake
# ---------------------------------------------------------------------------


class InMemoryStatsStore:
    """``StatsStore`` over a dict, with switchable failures."""

    def __init__(self):
        self.rows: dict[str, UserStats] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.reads = 0
        self.writes = 0

    async def get_aggregates(self, address: str) -> Optional[UserStats]:
        self.reads += 1
        await asyncio.sleep(0)
        if self.fail_reads:
            raise PersistenceFailure("read unavailable")
        row = self.rows.get(address)
        return row.copy() if row is not None else None

    async def save_aggregates(self, address: str, stats: UserStats) -> None:
        self.writes += 1
        await asyncio.sleep(0)
        if self.fail_writes:
            raise PersistenceFailure("write unavailable")
        self.rows[address] = stats.copy()

    async def load_all_scores(self) -> list[tuple[str, int, str]]:
        if self.fail_reads:
            raise PersistenceFailure("read unavailable")
        return [(a, s.dna_score, s.tier) for a, s in self.rows.items()]


@pytest.fixture
def store():
    return InMemoryStatsStore()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
