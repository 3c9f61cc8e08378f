"""
Unit tests for usage record storage.

Tests record decoding and file loading for JSON arrays and JSON lines.
"""

import json
import os
import tempfile

import pytest

from ai_usage_graph.core.tokens import TokenBreakdown
from ai_usage_graph.storage.models import UnifiedMessage
from ai_usage_graph.storage.repository import MessageRepository, message_from_record


RECORD = {
    "source": "claude",
    "modelId": "claude-sonnet-4",
    "providerId": "anthropic",
    "sessionId": "abc",
    "timestamp": 1_704_067_200_000,
    "date": "2024-01-01",
    "tokens": {"input": 100, "output": 50, "cacheRead": 10, "cacheWrite": 5, "reasoning": 2},
    "cost": 0.0125,
}


class TestUnifiedMessage:
    """Test UnifiedMessage validation."""

    def test_defaults(self):
        """Test tokens and cost default to zero."""
        message = UnifiedMessage(
            source="claude",
            model_id="m",
            provider_id="p",
            session_id="s",
            timestamp=0,
            date="2024-01-01",
        )
        assert message.tokens == TokenBreakdown()
        assert message.cost == 0.0

    def test_negative_cost_raises_error(self):
        """Test that negative cost raises error."""
        with pytest.raises(ValueError, match="cost cannot be negative"):
            UnifiedMessage(
                source="claude",
                model_id="m",
                provider_id="p",
                session_id="s",
                timestamp=0,
                date="2024-01-01",
                cost=-0.01,
            )

    @pytest.mark.parametrize("cost", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_cost_raises_error(self, cost):
        """Test that NaN and infinite costs raise error."""
        with pytest.raises(ValueError, match="cost must be finite"):
            UnifiedMessage(
                source="claude",
                model_id="m",
                provider_id="p",
                session_id="s",
                timestamp=0,
                date="2024-01-01",
                cost=cost,
            )


class TestMessageFromRecord:
    """Test record decoding."""

    def test_camel_case_record(self):
        """Test decoding camelCase field names."""
        message = message_from_record(RECORD)

        assert message.source == "claude"
        assert message.model_id == "claude-sonnet-4"
        assert message.provider_id == "anthropic"
        assert message.session_id == "abc"
        assert message.timestamp == 1_704_067_200_000
        assert message.date == "2024-01-01"
        assert message.tokens == TokenBreakdown(
            input=100, output=50, cache_read=10, cache_write=5, reasoning=2,
        )
        assert message.cost == pytest.approx(0.0125)

    def test_snake_case_flat_record(self):
        """Test decoding snake_case names with top-level token counts."""
        message = message_from_record({
            "source": "codex",
            "model_id": "gpt-5",
            "provider_id": "openai",
            "session_id": "s1",
            "timestamp": 5,
            "date": "2024-02-02",
            "input": 7,
            "output": 3,
            "cache_read": 1,
        })

        assert message.model_id == "gpt-5"
        assert message.tokens == TokenBreakdown(input=7, output=3, cache_read=1)
        assert message.cost == 0.0

    def test_optional_fields_default(self):
        """Test provider, session, tokens and cost are optional."""
        message = message_from_record({
            "source": "claude",
            "modelId": "m",
            "timestamp": 0,
            "date": "2024-01-01",
        })

        assert message.provider_id == ""
        assert message.session_id == ""
        assert message.tokens == TokenBreakdown()

    @pytest.mark.parametrize("missing", ["source", "modelId", "timestamp", "date"])
    def test_missing_required_field_raises_error(self, missing):
        """Test that each required field is enforced."""
        record = dict(RECORD)
        del record[missing]
        with pytest.raises(ValueError, match="missing required field"):
            message_from_record(record)

    def test_non_integer_timestamp_raises_error(self):
        """Test that string timestamps are rejected."""
        with pytest.raises(ValueError, match="'timestamp' must be an integer"):
            message_from_record(dict(RECORD, timestamp="2024-01-01T00:00:00Z"))

    def test_non_integer_tokens_raise_error(self):
        """Test that fractional token counts are rejected."""
        with pytest.raises(ValueError, match="token count 'input' must be an integer"):
            message_from_record(dict(RECORD, tokens={"input": 1.5}))

    def test_negative_tokens_raise_error(self):
        """Test that negative token counts are rejected."""
        with pytest.raises(ValueError, match="cannot be negative"):
            message_from_record(dict(RECORD, tokens={"output": -1}))

    def test_non_numeric_cost_raises_error(self):
        """Test that string costs are rejected."""
        with pytest.raises(ValueError, match="'cost' must be a number"):
            message_from_record(dict(RECORD, cost="free"))

    def test_non_object_record_raises_error(self):
        """Test that non-object records are rejected."""
        with pytest.raises(ValueError, match="record must be an object"):
            message_from_record(["claude"])


class TestMessageRepository:
    """Test file loading."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, text: str, filename: str = "messages.json") -> str:
        path = os.path.join(self.temp_dir, filename)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
        return path

    def test_load_json_array(self):
        """Test loading a JSON array of records."""
        second = dict(RECORD, date="2024-01-02", timestamp=RECORD["timestamp"] + 86_400_000)
        repo = MessageRepository(self._write(json.dumps([RECORD, second])))

        messages = repo.load()
        assert [m.date for m in messages] == ["2024-01-01", "2024-01-02"]

    def test_load_json_lines(self):
        """Test loading JSON lines, ignoring blank lines."""
        text = json.dumps(RECORD) + "\n\n" + json.dumps(dict(RECORD, source="codex")) + "\n"
        repo = MessageRepository(self._write(text, "messages.jsonl"))

        assert [m.source for m in repo.load()] == ["claude", "codex"]

    def test_empty_file(self):
        """Test that an empty file has no messages."""
        repo = MessageRepository(self._write("  \n"))
        assert repo.load() == []

    def test_missing_file_raises_error(self):
        """Test that a missing file raises error."""
        repo = MessageRepository(os.path.join(self.temp_dir, "missing.json"))
        with pytest.raises(FileNotFoundError, match="Messages file not found"):
            repo.load()

    def test_invalid_json_raises_error(self):
        """Test that malformed JSON raises error."""
        repo = MessageRepository(self._write("[{\"source\": "))
        with pytest.raises(ValueError, match="Invalid JSON"):
            repo.load()

    def test_invalid_json_line_raises_error(self):
        """Test that a malformed line is reported by number."""
        text = json.dumps(RECORD) + "\n{broken\n"
        repo = MessageRepository(self._write(text, "messages.jsonl"))
        with pytest.raises(ValueError, match="line 2"):
            repo.load()

    def test_invalid_record_reports_index(self):
        """Test that record errors include the record index."""
        bad = dict(RECORD)
        del bad["date"]
        repo = MessageRepository(self._write(json.dumps([RECORD, bad])))
        with pytest.raises(ValueError, match="Invalid message record at index 1"):
            repo.load()

    @pytest.mark.parametrize("literal", ["1e999", "NaN", "-Infinity"])
    def test_non_finite_cost_reports_index(self, literal):
        """Test that overflowing or NaN costs are rejected at load time."""
        record = json.dumps(dict(RECORD, cost=0.5))
        text = record + "\n" + record.replace('"cost": 0.5', f'"cost": {literal}') + "\n"
        repo = MessageRepository(self._write(text, "messages.jsonl"))
        with pytest.raises(ValueError, match="Invalid message record at index 1: cost must be finite"):
            repo.load()

    def test_load_is_cached_until_reload(self):
        """Test that load caches and reload rereads the file."""
        path = self._write(json.dumps([RECORD]))
        repo = MessageRepository(path)
        assert len(repo.load()) == 1

        self._write(json.dumps([RECORD, RECORD]))
        assert len(repo.load()) == 1
        assert len(repo.reload()) == 2
