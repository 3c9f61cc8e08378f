"""
Data models for usage records.

Defines the normalized message record consumed by the analytics core.
"""

import math
from dataclasses import dataclass, field

from ai_usage_graph.core.tokens import TokenBreakdown


@dataclass(frozen=True)
class UnifiedMessage:
    """Immutable record of a single AI assistant usage event.

    Records are produced upstream from session logs. The analytics core
    only reads them and folds their fields into accumulators.
    """
    source: str
    model_id: str
    provider_id: str
    session_id: str
    timestamp: int  # epoch milliseconds, UTC
    date: str  # YYYY-MM-DD, consistent with timestamp
    tokens: TokenBreakdown = field(default_factory=TokenBreakdown)
    cost: float = 0.0

    def __post_init__(self):
        """Validate cost is finite and non-negative."""
        if not math.isfinite(self.cost):
            raise ValueError("cost must be finite")
        if self.cost < 0:
            raise ValueError("cost cannot be negative")
