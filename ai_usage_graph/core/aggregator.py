"""
Parallel aggregation of usage messages.

Messages are split into partitions, each partition is folded into a
local map of accumulators on a worker thread, and the partial maps are
merged pairwise. Because accumulator merging is commutative and
associative, the result does not depend on the number of workers or on
where the partition boundaries fall.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from functools import reduce
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Sequence, TypeVar

from .accumulators import (
    DailyContribution,
    DayAccumulator,
    IntervalAccumulator,
    IntervalBucket,
)
from ai_usage_graph.storage.models import UnifiedMessage

logger = logging.getLogger(__name__)

# Below this many messages per partition, threading costs more than it saves
MIN_PARTITION_SIZE = 1024

A = TypeVar("A")
K = TypeVar("K", bound=Hashable)


def resolve_workers(workers: Optional[int] = None) -> int:
    """Return the number of workers to use for a fold."""
    if workers is None:
        return os.cpu_count() or 1
    if workers < 1:
        raise ValueError("workers must be >= 1")
    return workers


def _partition(messages: Sequence[UnifiedMessage], workers: int) -> List[Sequence[UnifiedMessage]]:
    size = max(MIN_PARTITION_SIZE, -(-len(messages) // workers))
    return [messages[i:i + size] for i in range(0, len(messages), size)]


def _fold_partition(
    messages: Iterable[UnifiedMessage],
    key_fn: Callable[[UnifiedMessage], K],
    factory: Callable[[UnifiedMessage], A],
) -> Dict[K, A]:
    accumulators: Dict[K, A] = {}
    for message in messages:
        key = key_fn(message)
        accumulator = accumulators.get(key)
        if accumulator is None:
            accumulator = factory(message)
            accumulators[key] = accumulator
        accumulator.add_message(message)
    return accumulators


def _merge_maps(left: Dict[K, A], right: Dict[K, A]) -> Dict[K, A]:
    # Both maps are owned by the reduction, so right's accumulators can be reused
    for key, accumulator in right.items():
        existing = left.get(key)
        if existing is None:
            left[key] = accumulator
        else:
            existing.merge(accumulator)
    return left


def fold_messages(
    messages: Sequence[UnifiedMessage],
    key_fn: Callable[[UnifiedMessage], K],
    factory: Callable[[UnifiedMessage], A],
    workers: Optional[int] = None,
) -> Dict[K, A]:
    """Fold messages into a map of keyed accumulators.

    Args:
        messages: Messages to fold
        key_fn: Maps a message to its accumulator key
        factory: Creates an empty accumulator for the first message of a key
        workers: Worker thread count (defaults to the CPU count)

    Returns:
        Mapping of key to accumulator holding every message for that key
    """
    workers = resolve_workers(workers)
    partitions = _partition(messages, workers)
    if len(partitions) <= 1:
        return _fold_partition(messages, key_fn, factory)

    logger.debug(f"Folding {len(messages)} messages in {len(partitions)} partitions")
    with ThreadPoolExecutor(
        max_workers=min(workers, len(partitions)),
        thread_name_prefix="usage_fold",
    ) as executor:
        partials = list(executor.map(
            lambda part: _fold_partition(part, key_fn, factory),
            partitions,
        ))
    return reduce(_merge_maps, partials)


def bucket_start(timestamp: int, interval_ms: int) -> int:
    """Start of the interval containing timestamp, aligned to the epoch."""
    return (timestamp // interval_ms) * interval_ms


def aggregate_by_interval(
    messages: Sequence[UnifiedMessage],
    interval_ms: int,
    workers: Optional[int] = None,
) -> List[IntervalBucket]:
    """Aggregate messages into contiguous fixed-width time buckets.

    Every bucket between the first and last populated bucket is returned,
    including empty ones, so the result is a gap-free time series.

    Args:
        messages: Messages to aggregate
        interval_ms: Bucket width in milliseconds
        workers: Worker thread count (defaults to the CPU count)

    Returns:
        Buckets ordered by start time (empty list for no messages)

    Raises:
        ValueError: If interval_ms is not positive
    """
    if interval_ms <= 0:
        raise ValueError("interval_ms must be > 0")
    if not messages:
        return []

    bucket_map = fold_messages(
        messages,
        key_fn=lambda message: bucket_start(message.timestamp, interval_ms),
        factory=lambda _: IntervalAccumulator(),
        workers=workers,
    )

    first_bucket = min(bucket_map)
    last_bucket = max(bucket_map)
    logger.debug(
        f"Materializing {(last_bucket - first_bucket) // interval_ms + 1} buckets "
        f"({len(bucket_map)} populated)"
    )

    buckets = []
    for start in range(first_bucket, last_bucket + 1, interval_ms):
        accumulator = bucket_map.get(start)
        if accumulator is None:
            buckets.append(IntervalBucket.empty(start, interval_ms))
        else:
            buckets.append(accumulator.into_bucket(start, interval_ms))
    return buckets


def aggregate_by_date(
    messages: Sequence[UnifiedMessage],
    workers: Optional[int] = None,
) -> List[DailyContribution]:
    """Aggregate messages into per-day contributions.

    Messages are grouped by their date field as supplied, not by a date
    derived from the timestamp.

    Args:
        messages: Messages to aggregate
        workers: Worker thread count (defaults to the CPU count)

    Returns:
        Contributions sorted by date, with intensity assigned
    """
    if not messages:
        return []

    daily_map = fold_messages(
        messages,
        key_fn=lambda message: message.date,
        factory=lambda _: DayAccumulator(),
        workers=workers,
    )

    # YYYY-MM-DD is fixed width, so lexical order is chronological
    contributions = [daily_map[date].into_contribution(date) for date in sorted(daily_map)]
    return calculate_intensities(contributions)


def _intensity(ratio: float) -> int:
    if ratio >= 0.75:
        return 4
    if ratio >= 0.5:
        return 3
    if ratio >= 0.25:
        return 2
    if ratio > 0.0:
        return 1
    return 0


def calculate_intensities(contributions: Sequence[DailyContribution]) -> List[DailyContribution]:
    """Assign each day an intensity of 0-4 from its cost relative to the max.

    If no day has any cost, every intensity stays 0.
    """
    max_cost = max((c.totals.cost for c in contributions), default=0.0)
    if max_cost == 0.0:
        return list(contributions)
    return [
        replace(c, intensity=_intensity(c.totals.cost / max_cost))
        for c in contributions
    ]


def filter_messages(
    messages: Iterable[UnifiedMessage],
    sources: Optional[Iterable[str]] = None,
    since: Optional[str] = None,
    until: Optional[str] = None,
    year: Optional[str] = None,
) -> List[UnifiedMessage]:
    """Select messages by source and date range.

    Args:
        messages: Messages to filter
        sources: Keep only these sources (all if None)
        since: Earliest date to keep, inclusive (YYYY-MM-DD)
        until: Latest date to keep, inclusive (YYYY-MM-DD)
        year: Keep only dates in this year (YYYY)

    Returns:
        Matching messages in their original order
    """
    allowed = set(sources) if sources is not None else None
    selected = []
    for message in messages:
        if allowed is not None and message.source not in allowed:
            continue
        if since is not None and message.date < since:
            continue
        if until is not None and message.date > until:
            continue
        if year is not None and not message.date.startswith(year):
            continue
        selected.append(message)
    return selected
