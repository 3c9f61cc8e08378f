"""
Repository for normalized usage records.

Reads UnifiedMessage records that an upstream parser has already
extracted from session logs. Accepts a JSON array or JSON lines, with
snake_case or camelCase field names.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ai_usage_graph.core.tokens import TokenBreakdown
from .models import UnifiedMessage

logger = logging.getLogger(__name__)

_TOKEN_FIELDS = {
    "input": ("input",),
    "output": ("output",),
    "cache_read": ("cache_read", "cacheRead"),
    "cache_write": ("cache_write", "cacheWrite"),
    "reasoning": ("reasoning",),
}


def _field(record: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in record:
            return record[name]
    return default


def message_from_record(record: Dict[str, Any]) -> UnifiedMessage:
    """Build a UnifiedMessage from a decoded JSON record.

    Token counts may be nested under "tokens" or given at the top level.

    Raises:
        ValueError: If a required field is missing or has the wrong type
    """
    if not isinstance(record, dict):
        raise ValueError("record must be an object")

    tokens_data = record.get("tokens")
    if tokens_data is None:
        tokens_data = record
    if not isinstance(tokens_data, dict):
        raise ValueError("'tokens' must be an object")

    token_counts = {}
    for name, aliases in _TOKEN_FIELDS.items():
        value = _field(tokens_data, *aliases, default=0)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"token count '{name}' must be an integer")
        token_counts[name] = value

    required = {
        "source": ("source",),
        "model_id": ("model_id", "modelId"),
        "timestamp": ("timestamp",),
        "date": ("date",),
    }
    values = {}
    for name, aliases in required.items():
        value = _field(record, *aliases)
        if value is None:
            raise ValueError(f"missing required field '{name}'")
        values[name] = value

    if isinstance(values["timestamp"], bool) or not isinstance(values["timestamp"], int):
        raise ValueError("'timestamp' must be an integer (epoch milliseconds)")

    cost = _field(record, "cost", default=0.0)
    if isinstance(cost, bool) or not isinstance(cost, (int, float)):
        raise ValueError("'cost' must be a number")

    return UnifiedMessage(
        source=str(values["source"]),
        model_id=str(values["model_id"]),
        provider_id=str(_field(record, "provider_id", "providerId", default="")),
        session_id=str(_field(record, "session_id", "sessionId", default="")),
        timestamp=values["timestamp"],
        date=str(values["date"]),
        tokens=TokenBreakdown(**token_counts),
        cost=float(cost),
    )


class MessageRepository:
    """Read-only access to usage records stored in a JSON file.

    Records are loaded once and cached; call reload() to pick up changes.
    """

    def __init__(self, path: str):
        """Initialize the repository with a file path.

        Args:
            path: Path to a JSON array or JSON lines file
        """
        self.path = Path(path)
        self._messages: Optional[List[UnifiedMessage]] = None

    def _read_records(self) -> List[Any]:
        text = self.path.read_text(encoding="utf-8")
        stripped = text.lstrip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                records = json.loads(text)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in {self.path}: {e}")
            return records

        records = []
        for line_number, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON on line {line_number} of {self.path}: {e}")
        return records

    def load(self) -> List[UnifiedMessage]:
        """Get all messages in file order.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file or any record is malformed
        """
        if self._messages is not None:
            return self._messages

        if not self.path.exists():
            raise FileNotFoundError(f"Messages file not found: {self.path}")

        messages = []
        for index, record in enumerate(self._read_records()):
            try:
                messages.append(message_from_record(record))
            except ValueError as e:
                raise ValueError(f"Invalid message record at index {index}: {e}")

        logger.debug(f"Loaded {len(messages)} messages from {self.path}")
        self._messages = messages
        return messages

    def reload(self) -> List[UnifiedMessage]:
        self._messages = None
        return self.load()
