"""
Mergeable accumulators for usage aggregation.

Every accumulator supports add_message() and merge(), and the empty
accumulator is the identity for merge. Merging is commutative and
associative, so messages can be folded in any order on any number of
partitions and combined afterwards with the same result.

Costs are summed as exact fractions and only converted to float when a
result is produced. Plain float addition depends on the order of the
operands, which would make totals depend on how the input was split.
"""

from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, List, Optional, Set, Tuple

from ai_usage_graph.core.tokens import TokenBreakdown, saturating_add
from ai_usage_graph.storage.models import UnifiedMessage

MS_PER_MINUTE = 60_000
# Bounds for the gap between consecutive messages in rate calculations
MIN_RATE_GAP_MS = 5_000
MAX_RATE_GAP_MS = 1_800_000


def source_key(source: str, model_id: str) -> str:
    return f"{source}:{model_id}"


@dataclass(frozen=True)
class SourceContribution:
    """Usage for one (source, model) pair."""
    source: str
    model_id: str
    provider_id: str
    tokens: TokenBreakdown
    cost: float
    messages: int

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "modelId": self.model_id,
            "providerId": self.provider_id,
            "tokens": self.tokens.to_dict(),
            "cost": self.cost,
            "messages": self.messages,
        }


@dataclass(frozen=True)
class DailyTotals:
    """Headline totals for a day."""
    tokens: int = 0
    cost: float = 0.0
    messages: int = 0

    def to_dict(self) -> dict:
        return {"tokens": self.tokens, "cost": self.cost, "messages": self.messages}


@dataclass(frozen=True)
class DailyContribution:
    """Aggregated usage for one calendar day."""
    date: str
    totals: DailyTotals
    token_breakdown: TokenBreakdown
    sources: List[SourceContribution]
    intensity: int = 0  # 0-4, relative to the most expensive day

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "totals": self.totals.to_dict(),
            "intensity": self.intensity,
            "tokenBreakdown": self.token_breakdown.to_dict(),
            "sources": [source.to_dict() for source in self.sources],
        }


@dataclass(frozen=True)
class RateStats:
    """Tokens-per-minute statistics for an interval bucket."""
    avg_tokens_per_min: float
    max_tokens_per_min: float
    min_tokens_per_min: float

    def to_dict(self) -> dict:
        return {
            "avgTokensPerMin": self.avg_tokens_per_min,
            "maxTokensPerMin": self.max_tokens_per_min,
            "minTokensPerMin": self.min_tokens_per_min,
        }


@dataclass(frozen=True)
class IntervalBucket:
    """Aggregated usage for one fixed-width time window."""
    start_ms: int
    end_ms: int
    token_breakdown: TokenBreakdown
    messages: int
    cost_micros: int  # cost * 1_000_000
    rate_stats: Optional[RateStats] = None

    @property
    def cost(self) -> float:
        return self.cost_micros / 1_000_000

    def to_dict(self) -> dict:
        return {
            "startMs": self.start_ms,
            "endMs": self.end_ms,
            "tokenBreakdown": self.token_breakdown.to_dict(),
            "messages": self.messages,
            "costMicros": self.cost_micros,
            "rateStats": self.rate_stats.to_dict() if self.rate_stats else None,
        }

    @classmethod
    def empty(cls, start_ms: int, interval_ms: int) -> "IntervalBucket":
        return cls(
            start_ms=start_ms,
            end_ms=start_ms + interval_ms,
            token_breakdown=TokenBreakdown(),
            messages=0,
            cost_micros=0,
            rate_stats=None,
        )


def cost_to_micros(cost: float) -> int:
    """Convert a cost to integer millionths of a currency unit."""
    return round(cost * 1_000_000)


@dataclass
class SourceAccumulator:
    """Running totals for one (source, model) pair.

    The provider id is taken from the first message seen for the pair.
    """
    source: str
    model_id: str
    provider_id: str
    token_breakdown: TokenBreakdown = field(default_factory=TokenBreakdown)
    messages: int = 0
    exact_cost: Fraction = field(default_factory=Fraction)

    @classmethod
    def for_message(cls, message: UnifiedMessage) -> "SourceAccumulator":
        return cls(
            source=message.source,
            model_id=message.model_id,
            provider_id=message.provider_id,
        )

    @property
    def cost(self) -> float:
        return float(self.exact_cost)

    def add_message(self, message: UnifiedMessage) -> None:
        self.token_breakdown = self.token_breakdown.saturating_add(message.tokens)
        self.exact_cost += Fraction(message.cost)
        self.messages = saturating_add(self.messages, 1)

    def merge(self, other: "SourceAccumulator") -> None:
        self.token_breakdown = self.token_breakdown.saturating_add(other.token_breakdown)
        self.exact_cost += other.exact_cost
        self.messages = saturating_add(self.messages, other.messages)

    def into_contribution(self) -> SourceContribution:
        return SourceContribution(
            source=self.source,
            model_id=self.model_id,
            provider_id=self.provider_id,
            tokens=self.token_breakdown,
            cost=self.cost,
            messages=self.messages,
        )


def _merge_sources(
    target: Dict[str, SourceAccumulator],
    other: Dict[str, SourceAccumulator],
) -> None:
    for key, source in other.items():
        entry = target.get(key)
        if entry is None:
            entry = SourceAccumulator(
                source=source.source,
                model_id=source.model_id,
                provider_id=source.provider_id,
            )
            target[key] = entry
        entry.merge(source)


@dataclass
class DayAccumulator:
    """Running totals for one calendar day, with a per-source breakdown."""
    tokens: int = 0
    messages: int = 0
    exact_cost: Fraction = field(default_factory=Fraction)
    token_breakdown: TokenBreakdown = field(default_factory=TokenBreakdown)
    sources: Dict[str, SourceAccumulator] = field(default_factory=dict)

    @property
    def cost(self) -> float:
        return float(self.exact_cost)

    def add_message(self, message: UnifiedMessage) -> None:
        self.tokens = saturating_add(self.tokens, message.tokens.total)
        self.exact_cost += Fraction(message.cost)
        self.messages = saturating_add(self.messages, 1)
        self.token_breakdown = self.token_breakdown.saturating_add(message.tokens)

        key = source_key(message.source, message.model_id)
        source = self.sources.get(key)
        if source is None:
            source = SourceAccumulator.for_message(message)
            self.sources[key] = source
        source.add_message(message)

    def merge(self, other: "DayAccumulator") -> None:
        self.tokens = saturating_add(self.tokens, other.tokens)
        self.exact_cost += other.exact_cost
        self.messages = saturating_add(self.messages, other.messages)
        self.token_breakdown = self.token_breakdown.saturating_add(other.token_breakdown)
        _merge_sources(self.sources, other.sources)

    def into_contribution(self, date: str) -> DailyContribution:
        """Build the day's contribution; intensity is assigned later."""
        return DailyContribution(
            date=date,
            totals=DailyTotals(tokens=self.tokens, cost=self.cost, messages=self.messages),
            token_breakdown=self.token_breakdown,
            sources=[self.sources[key].into_contribution() for key in sorted(self.sources)],
        )


@dataclass
class IntervalAccumulator:
    """Running totals for one time bucket.

    Keeps (timestamp, total_tokens) for every message so rate statistics
    can be computed once the bucket is complete.
    """
    token_breakdown: TokenBreakdown = field(default_factory=TokenBreakdown)
    messages: int = 0
    exact_cost: Fraction = field(default_factory=Fraction)
    message_data: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def cost(self) -> float:
        return float(self.exact_cost)

    def add_message(self, message: UnifiedMessage) -> None:
        self.token_breakdown = self.token_breakdown.saturating_add(message.tokens)
        self.exact_cost += Fraction(message.cost)
        self.messages = saturating_add(self.messages, 1)
        self.message_data.append((message.timestamp, message.tokens.total))

    def merge(self, other: "IntervalAccumulator") -> None:
        self.token_breakdown = self.token_breakdown.saturating_add(other.token_breakdown)
        self.exact_cost += other.exact_cost
        self.messages = saturating_add(self.messages, other.messages)
        self.message_data.extend(other.message_data)

    def into_bucket(self, start_ms: int, interval_ms: int) -> IntervalBucket:
        return IntervalBucket(
            start_ms=start_ms,
            end_ms=start_ms + interval_ms,
            token_breakdown=self.token_breakdown,
            messages=self.messages,
            cost_micros=cost_to_micros(self.cost),
            rate_stats=self.calculate_rate_stats(interval_ms),
        )

    def calculate_rate_stats(self, interval_ms: int) -> Optional[RateStats]:
        """Compute tokens-per-minute statistics for the bucket.

        The average spreads all tokens over the whole interval. Max and
        min come from the rates between consecutive messages, with each
        gap clamped to [MIN_RATE_GAP_MS, MAX_RATE_GAP_MS] so bursts and
        long idle periods cannot produce extreme values. Max never drops
        below the average and min never rises above it.

        Returns:
            RateStats, or None if the bucket holds no messages
        """
        if not self.message_data:
            return None

        interval_minutes = interval_ms / MS_PER_MINUTE
        avg_tokens_per_min = self.token_breakdown.total / interval_minutes

        if len(self.message_data) == 1:
            return RateStats(
                avg_tokens_per_min=avg_tokens_per_min,
                max_tokens_per_min=avg_tokens_per_min,
                min_tokens_per_min=avg_tokens_per_min,
            )

        # Full-tuple sort so equal timestamps order the same way after any merge
        ordered = sorted(self.message_data)

        max_rate = 0.0
        min_rate = float("inf")
        for (ts1, _), (ts2, tokens2) in zip(ordered, ordered[1:]):
            dt_ms = min(max(ts2 - ts1, MIN_RATE_GAP_MS), MAX_RATE_GAP_MS)
            rate = tokens2 / (dt_ms / MS_PER_MINUTE)
            max_rate = max(max_rate, rate)
            min_rate = min(min_rate, rate)

        return RateStats(
            avg_tokens_per_min=avg_tokens_per_min,
            max_tokens_per_min=max(max_rate, avg_tokens_per_min),
            min_tokens_per_min=min(min_rate, avg_tokens_per_min),
        )


@dataclass
class MonthAccumulator:
    """Running totals for one calendar month."""
    token_breakdown: TokenBreakdown = field(default_factory=TokenBreakdown)
    messages: int = 0
    exact_cost: Fraction = field(default_factory=Fraction)
    models: Set[str] = field(default_factory=set)

    @property
    def cost(self) -> float:
        return float(self.exact_cost)

    def add_message(self, message: UnifiedMessage) -> None:
        self.token_breakdown = self.token_breakdown.saturating_add(message.tokens)
        self.exact_cost += Fraction(message.cost)
        self.messages = saturating_add(self.messages, 1)
        self.models.add(message.model_id)

    def merge(self, other: "MonthAccumulator") -> None:
        self.token_breakdown = self.token_breakdown.saturating_add(other.token_breakdown)
        self.exact_cost += other.exact_cost
        self.messages = saturating_add(self.messages, other.messages)
        self.models |= other.models
