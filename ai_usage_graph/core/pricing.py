"""
Pricing resolution and cost calculations.

Maps free-form model identifiers onto a pricing catalog and computes
message costs from token counts.
"""

import logging
import math
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from ai_usage_graph.storage.models import UnifiedMessage

logger = logging.getLogger(__name__)

# Tried in order when the bare model id is not a catalog key
PROVIDER_PREFIXES = ("anthropic/", "openai/", "google/", "bedrock/")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_token: float
    output_cost_per_token: float
    cache_read_input_token_cost: float = 0.0
    cache_creation_input_token_cost: float = 0.0

    def __post_init__(self):
        """Validate rates are finite and non-negative."""
        for name in (
            "input_cost_per_token",
            "output_cost_per_token",
            "cache_read_input_token_cost",
            "cache_creation_input_token_cost",
        ):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite")
            if value < 0:
                raise ValueError(f"{name} cannot be negative")


def normalize_model_name(model_id: str) -> Optional[str]:
    """Rewrite vendor-specific model aliases into canonical form.

    Handles names like "claude-4-sonnet" or "4-opus-thinking" by pulling
    the family and version out of the id ("sonnet-4", "opus-4").

    Args:
        model_id: Model identifier as reported by the integration

    Returns:
        Canonical name, or None if the id is not recognized
    """
    lower = model_id.lower()

    def _has(*markers: str) -> bool:
        return any(marker in lower for marker in markers)

    if "opus" in lower:
        if _has("4.5", "4-5"):
            return "opus-4-5"
        if "4" in lower:
            return "opus-4"
    if "sonnet" in lower:
        if _has("4.5", "4-5"):
            return "sonnet-4-5"
        if "4" in lower:
            return "sonnet-4"
        if _has("3.7", "3-7"):
            return "sonnet-3-7"
        if _has("3.5", "3-5"):
            return "sonnet-3-5"
    if "haiku" in lower and _has("4.5", "4-5"):
        return "haiku-4-5"

    if lower == "o3":
        return "o3"
    if lower.startswith("gpt-4o"):
        return "gpt-4o"
    if "gpt-4.1" in lower:
        return "gpt-4.1"

    if "gemini-2.5-pro" in lower:
        return "gemini-2.5-pro"
    if "gemini-2.5-flash" in lower:
        return "gemini-2.5-flash"

    return None


class PricingResolver:
    """Resolves model identifiers against a read-only pricing catalog.

    Resolution order (first match wins):
    1. Exact catalog key
    2. Exact key after a provider prefix (anthropic/, openai/, google/, bedrock/)
    3. Steps 1-2 again on the normalized name
    4. Case-insensitive substring match in either direction, scanning
       catalog keys in insertion order
    """

    def __init__(self, catalog: Mapping[str, ModelPricing]):
        """Snapshot the catalog.

        Args:
            catalog: Mapping of canonical model key to pricing
        """
        self._catalog = MappingProxyType(dict(catalog))
        self._lower_keys = [(key.lower(), key) for key in self._catalog]

    @property
    def catalog(self) -> Mapping[str, ModelPricing]:
        return self._catalog

    def __len__(self) -> int:
        return len(self._catalog)

    def _lookup_with_prefixes(self, name: str) -> Optional[ModelPricing]:
        pricing = self._catalog.get(name)
        if pricing is not None:
            return pricing
        for prefix in PROVIDER_PREFIXES:
            pricing = self._catalog.get(prefix + name)
            if pricing is not None:
                return pricing
        return None

    def resolve(self, model_id: str) -> Optional[ModelPricing]:
        """Get pricing for a model id.

        Args:
            model_id: Free-form model identifier

        Returns:
            ModelPricing for the best match, or None if nothing matches
        """
        pricing = self._lookup_with_prefixes(model_id)
        if pricing is not None:
            return pricing

        normalized = normalize_model_name(model_id)
        if normalized is not None:
            pricing = self._lookup_with_prefixes(normalized)
            if pricing is not None:
                return pricing

        lower_model = model_id.lower()
        lower_normalized = normalized.lower() if normalized is not None else None
        for lower_key, key in self._lower_keys:
            if lower_model in lower_key or lower_key in lower_model:
                return self._catalog[key]
            if lower_normalized is not None and (
                lower_normalized in lower_key or lower_key in lower_normalized
            ):
                return self._catalog[key]

        return None

    def calculate_cost(
        self,
        model_id: str,
        input: int = 0,
        output: int = 0,
        cache_read: int = 0,
        cache_write: int = 0,
        reasoning: int = 0,
    ) -> float:
        """Calculate cost for token usage.

        Reasoning tokens are billed at the output rate. An unknown model
        costs 0.0 so one exotic id cannot abort a whole aggregation.

        Returns:
            Cost in the catalog's currency unit
        """
        pricing = self.resolve(model_id)
        if pricing is None:
            return 0.0
        return _cost_from_pricing(pricing, input, output, cache_read, cache_write, reasoning)


def _cost_from_pricing(
    pricing: ModelPricing,
    input: int,
    output: int,
    cache_read: int,
    cache_write: int,
    reasoning: int,
) -> float:
    input_cost = input * pricing.input_cost_per_token
    output_cost = (output + reasoning) * pricing.output_cost_per_token
    cache_read_cost = cache_read * pricing.cache_read_input_token_cost
    cache_write_cost = cache_write * pricing.cache_creation_input_token_cost

    return input_cost + output_cost + cache_read_cost + cache_write_cost


def resolve_pricing(catalog: Mapping[str, ModelPricing], model_id: str) -> Optional[ModelPricing]:
    """Resolve pricing for a model id against a catalog.

    Builds a PricingResolver on every call, which copies the catalog.
    Callers resolving many ids should create one PricingResolver and
    reuse it.
    """
    return PricingResolver(catalog).resolve(model_id)


def calculate_cost(
    catalog: Mapping[str, ModelPricing],
    model_id: str,
    input: int = 0,
    output: int = 0,
    cache_read: int = 0,
    cache_write: int = 0,
    reasoning: int = 0,
) -> float:
    """Calculate cost for token usage against a catalog (0.0 if unpriced).

    Like resolve_pricing, this copies the catalog on every call; hold a
    PricingResolver when pricing many messages.
    """
    return PricingResolver(catalog).calculate_cost(
        model_id, input, output, cache_read, cache_write, reasoning
    )


def price_messages(
    messages: Iterable[UnifiedMessage],
    resolver: PricingResolver,
) -> List[UnifiedMessage]:
    """Attach a freshly computed cost to each message.

    Input messages are not modified; priced copies are returned in the
    same order.

    Args:
        messages: Messages whose cost should be (re)computed
        resolver: Resolver holding the pricing catalog

    Returns:
        List of priced messages
    """
    priced = []
    resolved: Dict[str, Optional[ModelPricing]] = {}
    for message in messages:
        if message.model_id not in resolved:
            resolved[message.model_id] = resolver.resolve(message.model_id)
            if resolved[message.model_id] is None:
                logger.warning(f"No pricing found for model '{message.model_id}', cost set to 0")

        pricing = resolved[message.model_id]
        if pricing is None:
            cost = 0.0
        else:
            tokens = message.tokens
            cost = _cost_from_pricing(
                pricing,
                tokens.input,
                tokens.output,
                tokens.cache_read,
                tokens.cache_write,
                tokens.reasoning,
            )
        priced.append(replace(message, cost=cost))
    return priced
