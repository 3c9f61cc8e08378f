"""
Per-model and per-month usage reports.

Both reports reuse the parallel fold from the aggregator with their own
accumulator types.
"""

import logging
import time
from dataclasses import dataclass, field
from fractions import Fraction
from typing import List, Optional, Sequence

from .accumulators import MonthAccumulator, SourceAccumulator, source_key
from .aggregator import fold_messages
from .tokens import TokenBreakdown
from ai_usage_graph.storage.models import UnifiedMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelUsage:
    """Usage and cost for one model within one source."""
    source: str
    model: str
    provider: str
    tokens: TokenBreakdown
    message_count: int
    cost: float

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "model": self.model,
            "provider": self.provider,
            "input": self.tokens.input,
            "output": self.tokens.output,
            "cacheRead": self.tokens.cache_read,
            "cacheWrite": self.tokens.cache_write,
            "reasoning": self.tokens.reasoning,
            "messageCount": self.message_count,
            "cost": self.cost,
        }


@dataclass(frozen=True)
class ModelReport:
    """Model usage entries, most expensive first, with grand totals."""
    entries: List[ModelUsage]
    total_tokens: TokenBreakdown
    total_messages: int
    total_cost: float
    processing_time_ms: int

    def to_dict(self) -> dict:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "totalInput": self.total_tokens.input,
            "totalOutput": self.total_tokens.output,
            "totalCacheRead": self.total_tokens.cache_read,
            "totalCacheWrite": self.total_tokens.cache_write,
            "totalReasoning": self.total_tokens.reasoning,
            "totalMessages": self.total_messages,
            "totalCost": self.total_cost,
            "processingTimeMs": self.processing_time_ms,
        }


@dataclass(frozen=True)
class MonthlyUsage:
    """Usage and cost for one calendar month (YYYY-MM)."""
    month: str
    models: List[str]
    tokens: TokenBreakdown
    message_count: int
    cost: float

    def to_dict(self) -> dict:
        return {
            "month": self.month,
            "models": list(self.models),
            "input": self.tokens.input,
            "output": self.tokens.output,
            "cacheRead": self.tokens.cache_read,
            "cacheWrite": self.tokens.cache_write,
            "reasoning": self.tokens.reasoning,
            "messageCount": self.message_count,
            "cost": self.cost,
        }


@dataclass(frozen=True)
class MonthlyReport:
    """Monthly usage entries in chronological order."""
    entries: List[MonthlyUsage] = field(default_factory=list)
    total_cost: float = 0.0
    processing_time_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "totalCost": self.total_cost,
            "processingTimeMs": self.processing_time_ms,
        }


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def get_model_report(
    messages: Sequence[UnifiedMessage],
    workers: Optional[int] = None,
    processing_time_ms: Optional[int] = None,
) -> ModelReport:
    """Break usage down by (source, model).

    Args:
        messages: Priced messages
        workers: Worker thread count (defaults to the CPU count)
        processing_time_ms: Processing time to report; measured here if None

    Returns:
        ModelReport with entries sorted by cost, highest first
    """
    started = time.perf_counter()
    by_model = fold_messages(
        messages,
        key_fn=lambda message: source_key(message.source, message.model_id),
        factory=SourceAccumulator.for_message,
        workers=workers,
    )

    entries = [
        ModelUsage(
            source=acc.source,
            model=acc.model_id,
            provider=acc.provider_id,
            tokens=acc.token_breakdown,
            message_count=acc.messages,
            cost=acc.cost,
        )
        for acc in by_model.values()
    ]
    entries.sort(key=lambda e: (-e.cost, e.source, e.model))

    total_tokens = TokenBreakdown()
    total_messages = 0
    total_cost = Fraction(0)
    for acc in by_model.values():
        total_tokens = total_tokens.saturating_add(acc.token_breakdown)
        total_messages += acc.messages
        total_cost += acc.exact_cost

    logger.debug(f"Model report: {len(entries)} entries from {len(messages)} messages")
    return ModelReport(
        entries=entries,
        total_tokens=total_tokens,
        total_messages=total_messages,
        total_cost=float(total_cost),
        processing_time_ms=_elapsed_ms(started) if processing_time_ms is None else processing_time_ms,
    )


def get_monthly_report(
    messages: Sequence[UnifiedMessage],
    workers: Optional[int] = None,
    processing_time_ms: Optional[int] = None,
) -> MonthlyReport:
    """Break usage down by calendar month of each message's date."""
    started = time.perf_counter()
    by_month = fold_messages(
        messages,
        key_fn=lambda message: message.date[:7],
        factory=lambda _: MonthAccumulator(),
        workers=workers,
    )

    entries = []
    total_cost = Fraction(0)
    for month in sorted(by_month):
        acc = by_month[month]
        total_cost += acc.exact_cost
        entries.append(MonthlyUsage(
            month=month,
            models=sorted(acc.models),
            tokens=acc.token_breakdown,
            message_count=acc.messages,
            cost=acc.cost,
        ))

    return MonthlyReport(
        entries=entries,
        total_cost=float(total_cost),
        processing_time_ms=_elapsed_ms(started) if processing_time_ms is None else processing_time_ms,
    )
