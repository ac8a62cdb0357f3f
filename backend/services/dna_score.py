"""
DNA score engine.

Turns a user's activity aggregates into a 0-100 composite score and a tier
label. Pure and deterministic: no I/O, no clock reads, no shared state.

Components (each normalized to [0, 100] before weighting):

    EarlyAdopter   20%  capped linear over days since first action
    Volume         25%  log10 over cumulative USD volume
    LPEfficiency   25%  log10 over cumulative fees earned
    Diversity      15%  capped linear over position count
    Consistency    15%  active days / days since first action, capped at 1
"""

from __future__ import annotations

import bisect
import math
from dataclasses import dataclass, fields
from numbers import Real

# Component weights (sum to 1.0)
WEIGHT_EARLY_ADOPTER = 0.20
WEIGHT_VOLUME = 0.25
WEIGHT_LP_EFFICIENCY = 0.25
WEIGHT_DIVERSITY = 0.15
WEIGHT_CONSISTENCY = 0.15

# Normalization caps: the input value that earns a full 100 component score
EARLY_ADOPTER_FULL_DAYS = 180
VOLUME_FULL_USD = 10_000_000.0
FEES_FULL_USD = 100_000.0
DIVERSITY_FULL_POSITIONS = 20

MIN_SCORE = 0
MAX_SCORE = 100

# (inclusive lower bound, tier) in ascending order
TIER_THRESHOLDS: tuple[tuple[int, str], ...] = (
    (0, "Novice"),
    (20, "Beginner"),
    (40, "Intermediate"),
    (60, "Expert"),
    (80, "Whale"),
)
TIERS: tuple[str, ...] = tuple(name for _, name in TIER_THRESHOLDS)
_TIER_BOUNDS: tuple[int, ...] = tuple(bound for bound, _ in TIER_THRESHOLDS)


class InvalidInput(ValueError):
    """Aggregates (or a score) that the engine refuses to coerce."""


@dataclass(frozen=True)
class ScoreAggregates:
    volume: float = 0.0
    fees: float = 0.0
    positions: float = 0
    active_days: float = 0
    days_since_first: float = 0


@dataclass(frozen=True)
class ScoreBreakdown:
    early_adopter: float = 0.0
    volume: float = 0.0
    lp_efficiency: float = 0.0
    diversity: float = 0.0
    consistency: float = 0.0

    def weighted_total(self) -> float:
        return (
            WEIGHT_EARLY_ADOPTER * self.early_adopter
            + WEIGHT_VOLUME * self.volume
            + WEIGHT_LP_EFFICIENCY * self.lp_efficiency
            + WEIGHT_DIVERSITY * self.diversity
            + WEIGHT_CONSISTENCY * self.consistency
        )


@dataclass(frozen=True)
class ScoreResult:
    score: int
    tier: str
    breakdown: ScoreBreakdown


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(value, hi))


def _log_scaled(value: float, full_value: float) -> float:
    return _clamp(math.log10(value + 1.0) / math.log10(full_value + 1.0) * 100.0)


def _linear_capped(value: float, full_value: float) -> float:
    if full_value <= 0:
        return 0.0
    return _clamp(value / full_value * 100.0)


def _validate(aggregates: ScoreAggregates) -> None:
    for f in fields(aggregates):
        value = getattr(aggregates, f.name)
        if isinstance(value, bool) or not isinstance(value, Real):
            raise InvalidInput(f"{f.name} must be a number, got {value!r}")
        if not math.isfinite(value):
            raise InvalidInput(f"{f.name} must be finite, got {value!r}")
        if value < 0:
            raise InvalidInput(f"{f.name} must be non-negative, got {value!r}")


def score_breakdown(aggregates: ScoreAggregates) -> ScoreBreakdown:
    _validate(aggregates)
    return ScoreBreakdown(
        early_adopter=_linear_capped(aggregates.days_since_first, EARLY_ADOPTER_FULL_DAYS),
        volume=_log_scaled(aggregates.volume, VOLUME_FULL_USD),
        lp_efficiency=_log_scaled(aggregates.fees, FEES_FULL_USD),
        diversity=_linear_capped(aggregates.positions, DIVERSITY_FULL_POSITIONS),
        consistency=_linear_capped(aggregates.active_days, max(aggregates.days_since_first, 1)),
    )


def tier_for_score(score: int) -> str:
    """Tier whose inclusive lower bound is the highest one <= score."""
    if isinstance(score, bool) or not isinstance(score, Real) or not math.isfinite(score):
        raise InvalidInput(f"score must be a finite number, got {score!r}")
    if score < MIN_SCORE or score > MAX_SCORE:
        raise InvalidInput(f"score must be within [{MIN_SCORE}, {MAX_SCORE}], got {score!r}")
    return TIER_THRESHOLDS[bisect.bisect_right(_TIER_BOUNDS, score) - 1][1]


def compute_score(aggregates: ScoreAggregates) -> ScoreResult:
    """Score and tier for one user's aggregates.

    Raises ``InvalidInput`` for negative, non-finite or non-numeric values.
    """
    breakdown = score_breakdown(aggregates)
    # Half-up rounding, not banker's rounding
    score = int(math.floor(breakdown.weighted_total() + 0.5))
    score = int(_clamp(score, MIN_SCORE, MAX_SCORE))
    return ScoreResult(score=score, tier=tier_for_score(score), breakdown=breakdown)
