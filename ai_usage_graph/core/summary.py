"""
Summary rollups and the graph result envelope.

Everything here is derived from a finished, date-sorted list of daily
contributions and rebuilt from scratch on every call.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from fractions import Fraction
from typing import Dict, List, Optional, Sequence, Union

from . import __version__
from .accumulators import DailyContribution
from .aggregator import aggregate_by_date
from .tokens import saturating_add
from ai_usage_graph.storage.models import UnifiedMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataSummary:
    """Totals across every day in the result."""
    total_tokens: int
    total_cost: float
    total_days: int
    active_days: int
    average_per_day: float
    max_cost_in_single_day: float
    sources: List[str] = field(default_factory=list)
    models: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalTokens": self.total_tokens,
            "totalCost": self.total_cost,
            "totalDays": self.total_days,
            "activeDays": self.active_days,
            "averagePerDay": self.average_per_day,
            "maxCostInSingleDay": self.max_cost_in_single_day,
            "sources": list(self.sources),
            "models": list(self.models),
        }


@dataclass(frozen=True)
class YearSummary:
    """Totals for one calendar year."""
    year: str
    total_tokens: int
    total_cost: float
    range_start: str
    range_end: str

    def to_dict(self) -> dict:
        return {
            "year": self.year,
            "totalTokens": self.total_tokens,
            "totalCost": self.total_cost,
            "rangeStart": self.range_start,
            "rangeEnd": self.range_end,
        }


@dataclass(frozen=True)
class GraphMeta:
    """Metadata describing how and when a result was produced."""
    generated_at: str
    version: str
    date_range_start: str
    date_range_end: str
    processing_time_ms: int

    def to_dict(self) -> dict:
        return {
            "generatedAt": self.generated_at,
            "version": self.version,
            "dateRangeStart": self.date_range_start,
            "dateRangeEnd": self.date_range_end,
            "processingTimeMs": self.processing_time_ms,
        }


@dataclass(frozen=True)
class GraphResult:
    """Complete result envelope returned to callers."""
    meta: GraphMeta
    summary: DataSummary
    years: List[YearSummary]
    contributions: List[DailyContribution]

    def to_dict(self) -> dict:
        """JSON-serializable representation with camelCase keys."""
        return {
            "meta": self.meta.to_dict(),
            "summary": self.summary.to_dict(),
            "years": [year.to_dict() for year in self.years],
            "contributions": [c.to_dict() for c in self.contributions],
        }


def calculate_summary(contributions: Sequence[DailyContribution]) -> DataSummary:
    """Calculate totals, activity and the distinct sources and models.

    A day counts as active when its cost is above zero.
    """
    total_tokens = 0
    total_cost = Fraction(0)
    active_days = 0
    max_cost = 0.0
    sources = set()
    models = set()

    for c in contributions:
        total_tokens = saturating_add(total_tokens, c.totals.tokens)
        total_cost += Fraction(c.totals.cost)
        if c.totals.cost > 0:
            active_days += 1
        max_cost = max(max_cost, c.totals.cost)
        for source in c.sources:
            sources.add(source.source)
            models.add(source.model_id)

    total_cost = float(total_cost)
    return DataSummary(
        total_tokens=total_tokens,
        total_cost=total_cost,
        total_days=len(contributions),
        active_days=active_days,
        average_per_day=total_cost / active_days if active_days > 0 else 0.0,
        max_cost_in_single_day=max_cost,
        sources=sorted(sources),
        models=sorted(models),
    )


def calculate_years(contributions: Sequence[DailyContribution]) -> List[YearSummary]:
    """Group contributions by calendar year.

    Each year's range is the earliest and latest date seen for it.

    Raises:
        ValueError: If a contribution's date is too short to hold a year
    """
    years: Dict[str, dict] = {}
    for c in contributions:
        if len(c.date) < 4:
            raise ValueError(f"Invalid contribution date: {c.date!r}")
        entry = years.setdefault(c.date[:4], {
            "tokens": 0,
            "cost": Fraction(0),
            "start": c.date,
            "end": c.date,
        })
        entry["tokens"] = saturating_add(entry["tokens"], c.totals.tokens)
        entry["cost"] += Fraction(c.totals.cost)
        entry["start"] = min(entry["start"], c.date)
        entry["end"] = max(entry["end"], c.date)

    return [
        YearSummary(
            year=year,
            total_tokens=years[year]["tokens"],
            total_cost=float(years[year]["cost"]),
            range_start=years[year]["start"],
            range_end=years[year]["end"],
        )
        for year in sorted(years)
    ]


def generate_graph_result(
    contributions: Sequence[DailyContribution],
    processing_time_ms: int,
) -> GraphResult:
    """Assemble the result envelope from date-sorted contributions.

    Args:
        contributions: Daily contributions sorted ascending by date
        processing_time_ms: Time the caller spent producing the data

    Returns:
        GraphResult with metadata, summary, years and contributions
    """
    contributions = list(contributions)
    meta = GraphMeta(
        generated_at=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        date_range_start=contributions[0].date if contributions else "",
        date_range_end=contributions[-1].date if contributions else "",
        processing_time_ms=processing_time_ms,
    )
    return GraphResult(
        meta=meta,
        summary=calculate_summary(contributions),
        years=calculate_years(contributions),
        contributions=contributions,
    )


def build_graph_result(
    data: Sequence[Union[UnifiedMessage, DailyContribution]],
    processing_time_ms: Optional[int] = None,
    workers: Optional[int] = None,
) -> GraphResult:
    """Build the result envelope from messages or ready-made contributions.

    Args:
        data: UnifiedMessage records to aggregate, or DailyContribution
            records that are already aggregated (not a mix of both)
        processing_time_ms: Processing time to report; measured here if None
        workers: Worker thread count for message aggregation

    Returns:
        GraphResult for the data

    Raises:
        TypeError: If data mixes record types or holds anything else
    """
    started = time.perf_counter()

    if all(isinstance(item, UnifiedMessage) for item in data):
        contributions = aggregate_by_date(data, workers=workers)
    elif all(isinstance(item, DailyContribution) for item in data):
        contributions = sorted(data, key=lambda c: c.date)
    else:
        raise TypeError(
            "data must contain only UnifiedMessage or only DailyContribution records"
        )

    if processing_time_ms is None:
        processing_time_ms = int((time.perf_counter() - started) * 1000)

    logger.debug(f"Built graph result for {len(contributions)} days in {processing_time_ms}ms")
    return generate_graph_result(contributions, processing_time_ms)
