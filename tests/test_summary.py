"""
Unit tests for summary rollups and the graph result envelope.
"""

import json

import pytest

from ai_usage_graph.core import __version__
from ai_usage_graph.core.accumulators import (
    DailyContribution,
    DailyTotals,
    SourceContribution,
)
from ai_usage_graph.core.summary import (
    build_graph_result,
    calculate_summary,
    calculate_years,
    generate_graph_result,
)
from ai_usage_graph.core.tokens import TokenBreakdown
from ai_usage_graph.storage.models import UnifiedMessage


def make_contribution(date: str, tokens: int, cost: float, sources=None) -> DailyContribution:
    if sources is None:
        sources = [("claude", "sonnet-4")]
    return DailyContribution(
        date=date,
        totals=DailyTotals(tokens=tokens, cost=cost, messages=1),
        token_breakdown=TokenBreakdown(input=tokens),
        sources=[
            SourceContribution(
                source=source,
                model_id=model_id,
                provider_id="provider",
                tokens=TokenBreakdown(input=tokens),
                cost=cost,
                messages=1,
            )
            for source, model_id in sources
        ],
    )


CONTRIBUTIONS = [
    make_contribution("2023-12-30", 100, 1.0, [("codex", "gpt-5")]),
    make_contribution("2023-12-31", 50, 0.0),
    make_contribution("2024-01-01", 300, 3.0, [("claude", "sonnet-4"), ("gemini", "gemini-2.5-pro")]),
    make_contribution("2024-02-10", 200, 2.0),
]


class TestCalculateSummary:
    """Test overall totals."""

    def test_totals(self):
        """Verify token and cost totals."""
        summary = calculate_summary(CONTRIBUTIONS)

        assert summary.total_tokens == 650
        assert summary.total_cost == pytest.approx(6.0)
        assert summary.total_days == 4
        assert summary.max_cost_in_single_day == pytest.approx(3.0)

    def test_active_days_require_cost(self):
        """Verify zero-cost days are not active."""
        summary = calculate_summary(CONTRIBUTIONS)

        assert summary.active_days == 3
        assert summary.average_per_day == pytest.approx(2.0)

    def test_distinct_sources_and_models(self):
        """Verify sources and models are distinct and sorted."""
        summary = calculate_summary(CONTRIBUTIONS)

        assert summary.sources == ["claude", "codex", "gemini"]
        assert summary.models == ["gemini-2.5-pro", "gpt-5", "sonnet-4"]

    def test_empty(self):
        """Verify an empty input gives zeroed totals."""
        summary = calculate_summary([])

        assert summary.total_tokens == 0
        assert summary.total_cost == 0.0
        assert summary.total_days == 0
        assert summary.active_days == 0
        assert summary.average_per_day == 0.0
        assert summary.max_cost_in_single_day == 0.0
        assert summary.sources == []
        assert summary.models == []

    def test_no_active_days_has_zero_average(self):
        """Verify the average is zero without active days."""
        summary = calculate_summary([make_contribution("2024-01-01", 10, 0.0)])
        assert summary.active_days == 0
        assert summary.average_per_day == 0.0


class TestCalculateYears:
    """Test per-year rollups."""

    def test_grouped_and_sorted(self):
        """Verify one summary per year in ascending order."""
        years = calculate_years(CONTRIBUTIONS)

        assert [y.year for y in years] == ["2023", "2024"]
        assert years[0].total_tokens == 150
        assert years[0].total_cost == pytest.approx(1.0)
        assert years[1].total_tokens == 500
        assert years[1].total_cost == pytest.approx(5.0)

    def test_ranges(self):
        """Verify each year spans its earliest and latest date."""
        years = calculate_years(CONTRIBUTIONS)

        assert (years[0].range_start, years[0].range_end) == ("2023-12-30", "2023-12-31")
        assert (years[1].range_start, years[1].range_end) == ("2024-01-01", "2024-02-10")

    def test_unsorted_input(self):
        """Verify ranges are correct even if input is not sorted."""
        years = calculate_years(list(reversed(CONTRIBUTIONS)))
        assert (years[1].range_start, years[1].range_end) == ("2024-01-01", "2024-02-10")

    def test_year_token_totals_match_summary(self):
        """Verify per-year tokens add up to the overall total."""
        years = calculate_years(CONTRIBUTIONS)
        assert sum(y.total_tokens for y in years) == calculate_summary(CONTRIBUTIONS).total_tokens

    def test_empty(self):
        """Verify no contributions give no years."""
        assert calculate_years([]) == []

    def test_short_date_raises_error(self):
        """Verify dates without a full year are rejected."""
        with pytest.raises(ValueError, match="Invalid contribution date"):
            calculate_years([make_contribution("24", 1, 0.1)])


class TestGenerateGraphResult:
    """Test result envelope assembly."""

    def test_meta(self):
        """Verify metadata fields."""
        result = generate_graph_result(CONTRIBUTIONS, processing_time_ms=42)

        assert result.meta.version == __version__
        assert result.meta.processing_time_ms == 42
        assert result.meta.date_range_start == "2023-12-30"
        assert result.meta.date_range_end == "2024-02-10"
        assert result.meta.generated_at.endswith("+00:00")

    def test_sections(self):
        """Verify summary, years and contributions are included."""
        result = generate_graph_result(CONTRIBUTIONS, processing_time_ms=0)

        assert result.summary == calculate_summary(CONTRIBUTIONS)
        assert result.years == calculate_years(CONTRIBUTIONS)
        assert result.contributions == CONTRIBUTIONS

    def test_empty(self):
        """Verify an empty result has an empty date range."""
        result = generate_graph_result([], processing_time_ms=0)

        assert result.meta.date_range_start == ""
        assert result.meta.date_range_end == ""
        assert result.contributions == []
        assert result.years == []

    def test_to_dict_is_json_serializable(self):
        """Verify the envelope serializes with camelCase keys."""
        data = generate_graph_result(CONTRIBUTIONS, processing_time_ms=5).to_dict()
        decoded = json.loads(json.dumps(data))

        assert set(decoded) == {"meta", "summary", "years", "contributions"}
        assert decoded["meta"]["processingTimeMs"] == 5
        assert decoded["meta"]["dateRangeStart"] == "2023-12-30"
        assert decoded["summary"]["totalTokens"] == 650
        assert decoded["summary"]["maxCostInSingleDay"] == pytest.approx(3.0)
        assert decoded["years"][0]["rangeStart"] == "2023-12-30"
        assert decoded["contributions"][2]["sources"][1]["modelId"] == "gemini-2.5-pro"
        assert decoded["contributions"][0]["tokenBreakdown"]["cacheRead"] == 0


class TestBuildGraphResult:
    """Test building results from messages or contributions."""

    def test_from_messages(self):
        """Verify messages are aggregated by day."""
        messages = [
            UnifiedMessage(
                source="claude",
                model_id="sonnet-4",
                provider_id="anthropic",
                session_id="s1",
                timestamp=i * 1000,
                date=date,
                tokens=TokenBreakdown(input=100, output=10),
                cost=cost,
            )
            for i, (date, cost) in enumerate([
                ("2024-01-02", 0.5), ("2024-01-01", 1.0), ("2024-01-02", 0.5),
            ])
        ]
        result = build_graph_result(messages, processing_time_ms=7, workers=2)

        assert [c.date for c in result.contributions] == ["2024-01-01", "2024-01-02"]
        assert [c.intensity for c in result.contributions] == [4, 4]
        assert result.summary.total_tokens == 330
        assert result.summary.total_cost == pytest.approx(2.0)
        assert result.meta.processing_time_ms == 7

    def test_from_contributions(self):
        """Verify contributions are used as given, sorted by date."""
        result = build_graph_result(list(reversed(CONTRIBUTIONS)), processing_time_ms=1)

        assert result.contributions == CONTRIBUTIONS
        assert result.meta.date_range_start == "2023-12-30"

    def test_measures_processing_time(self):
        """Verify processing time is measured when not supplied."""
        result = build_graph_result(CONTRIBUTIONS)
        assert result.meta.processing_time_ms >= 0

    def test_mixed_input_raises_error(self):
        """Verify messages and contributions cannot be combined."""
        message = UnifiedMessage(
            source="claude",
            model_id="sonnet-4",
            provider_id="anthropic",
            session_id="s1",
            timestamp=0,
            date="2024-01-01",
        )
        with pytest.raises(TypeError, match="only UnifiedMessage or only DailyContribution"):
            build_graph_result([message, CONTRIBUTIONS[0]])
        with pytest.raises(TypeError):
            build_graph_result([CONTRIBUTIONS[0], message])

    def test_empty(self):
        """Verify empty input gives an empty envelope."""
        result = build_graph_result([], processing_time_ms=0)

        assert result.contributions == []
        assert result.summary.total_days == 0
