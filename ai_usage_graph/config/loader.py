"""
Configuration and pricing catalog loading.

Handles analytics settings and the pricing dataset pushed in from an
external feed.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from ai_usage_graph.core.pricing import ModelPricing

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
YEAR_PATTERN = re.compile(r"^\d{4}$")


@dataclass(frozen=True)
class AnalyticsConfig:
    """Settings for an aggregation run."""
    workers: Optional[int] = None
    interval_minutes: float = 15
    sources: Optional[Tuple[str, ...]] = None
    since: Optional[str] = None
    until: Optional[str] = None
    year: Optional[str] = None

    def __post_init__(self):
        """Validate settings are usable."""
        if self.workers is not None and self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.interval_minutes <= 0:
            raise ValueError("interval_minutes must be > 0")
        for name in ("since", "until"):
            value = getattr(self, name)
            if value is not None and not DATE_PATTERN.match(value):
                raise ValueError(f"{name} must be a YYYY-MM-DD date")
        if self.year is not None and not YEAR_PATTERN.match(self.year):
            raise ValueError("year must be a 4-digit year")
        if self.since and self.until and self.since > self.until:
            raise ValueError("since must not be after until")

    @property
    def interval_ms(self) -> int:
        return int(self.interval_minutes * 60_000)


def _read_file(path: str, description: str):
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"{description} file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        # YAML 1.1 reads JSON exponent floats such as 3e-06 as strings
        if config_path.suffix.lower() == '.json':
            try:
                return json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in {description.lower()} file {path}: {e}")
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in {description.lower()} file {path}: {e}")


def load_analytics_config(path: str) -> AnalyticsConfig:
    """Load and validate analytics settings from a YAML file.

    Unknown keys are rejected so a typo cannot silently change a report.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AnalyticsConfig

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    raw_config = _read_file(path, "Config")
    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_keys = {'workers', 'interval_minutes', 'sources', 'since', 'until', 'year'}
    unknown_keys = set(raw_config.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    workers = raw_config.get('workers')
    if workers is not None and (isinstance(workers, bool) or not isinstance(workers, int)):
        raise ValueError("'workers' must be an integer")

    interval_minutes = raw_config.get('interval_minutes', 15)
    if isinstance(interval_minutes, bool) or not isinstance(interval_minutes, (int, float)):
        raise ValueError("'interval_minutes' must be a number")

    sources = raw_config.get('sources')
    if sources is not None:
        if not isinstance(sources, list) or not all(isinstance(s, str) for s in sources):
            raise ValueError("'sources' must be a list of strings")
        sources = tuple(sources)

    dates = {}
    for key in ('since', 'until', 'year'):
        value = raw_config.get(key)
        # YAML reads unquoted dates and years as date/int objects
        dates[key] = str(value) if value is not None else None

    return AnalyticsConfig(
        workers=workers,
        interval_minutes=interval_minutes,
        sources=sources,
        since=dates['since'],
        until=dates['until'],
        year=dates['year'],
    )


def _rate(data: dict, key: str, model_key: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' for model '{model_key}' must be a number")
    return float(value)


def load_pricing_catalog(path: str) -> Dict[str, ModelPricing]:
    """Load a pricing catalog from a YAML or JSON dataset.

    The dataset maps model keys to per-token rates in the LiteLLM
    layout. Entries without an input or output rate (placeholders such
    as "sample_spec", image or embedding-only models) are skipped.
    Other fields in an entry are ignored.

    Args:
        path: Path to the pricing dataset

    Returns:
        Catalog of model key to ModelPricing, in file order

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If a YAML file cannot be parsed
        ValueError: If a JSON file cannot be parsed, or the dataset
            structure or a rate is invalid
    """
    raw_catalog = _read_file(path, "Pricing")
    if not raw_catalog:
        raise ValueError("Pricing file is empty")
    if not isinstance(raw_catalog, dict):
        raise ValueError("Pricing data must be a dictionary of models")

    catalog = {}
    skipped = 0
    for model_key, data in raw_catalog.items():
        if not isinstance(data, dict):
            raise ValueError(f"Pricing for model '{model_key}' must be a dictionary")
        if model_key == 'sample_spec' or (
            data.get('input_cost_per_token') is None and data.get('output_cost_per_token') is None
        ):
            skipped += 1
            continue
        catalog[str(model_key)] = ModelPricing(
            input_cost_per_token=_rate(data, 'input_cost_per_token', model_key),
            output_cost_per_token=_rate(data, 'output_cost_per_token', model_key),
            cache_read_input_token_cost=_rate(data, 'cache_read_input_token_cost', model_key),
            cache_creation_input_token_cost=_rate(data, 'cache_creation_input_token_cost', model_key),
        )

    if skipped:
        logger.warning(f"Skipped {skipped} pricing entries without token rates")
    logger.debug(f"Loaded pricing for {len(catalog)} models from {path}")
    return catalog
