"""
Token counting primitives.

Token counters are non-negative and saturate at the largest signed
64-bit value instead of growing without bound.
"""

from dataclasses import dataclass

MAX_TOKEN_COUNT = 2**63 - 1


def saturating_add(a: int, b: int) -> int:
    """Add two counters, clamping the result to MAX_TOKEN_COUNT."""
    return min(a + b, MAX_TOKEN_COUNT)


@dataclass(frozen=True)
class TokenBreakdown:
    """Token counts for a single message or an aggregate of messages.

    Each counter is tracked separately because they are billed at
    different rates.
    """
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    reasoning: int = 0

    def __post_init__(self):
        """Validate token counts are non-negative."""
        for name in ("input", "output", "cache_read", "cache_write", "reasoning"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} tokens cannot be negative")

    @property
    def total(self) -> int:
        """Total tokens across all counters (saturating)."""
        total = 0
        for value in (self.input, self.output, self.cache_read, self.cache_write, self.reasoning):
            total = saturating_add(total, value)
        return total

    def saturating_add(self, other: "TokenBreakdown") -> "TokenBreakdown":
        """Return a new breakdown with each counter summed (saturating)."""
        return TokenBreakdown(
            input=saturating_add(self.input, other.input),
            output=saturating_add(self.output, other.output),
            cache_read=saturating_add(self.cache_read, other.cache_read),
            cache_write=saturating_add(self.cache_write, other.cache_write),
            reasoning=saturating_add(self.reasoning, other.reasoning),
        )

    def to_dict(self) -> dict:
        return {
            "input": self.input,
            "output": self.output,
            "cacheRead": self.cache_read,
            "cacheWrite": self.cache_write,
            "reasoning": self.reasoning,
        }
