"""
Unit tests for inference response parsing.

Structured decode and heuristic extraction are separate paths and are
tested independently.
"""

import pytest

from intake_gateway.lib.errors import InferenceMalformed
from intake_gateway.services.response_parser import (
    decode_structured,
    extract_confidence,
    extract_heuristic,
    normalize_category,
)


class TestNormalizeCategory:
    """Category alias mapping."""

    @pytest.mark.parametrize("label,expected", [
        ("lawsuit_communication", "lawsuit"),
        ("Emergency Legal", "emergency"),
        ("general-inquiry", "inquiry"),
        ("billing_matter", "billing"),
        ("court_notice", "court_notice"),
    ])
    def test_aliases(self, label, expected):
        assert normalize_category(label) == expected

    def test_unknown_and_non_string(self):
        assert normalize_category("weather") is None
        assert normalize_category(42) is None


class TestDecodeStructured:
    """Strict decode of a JSON classification payload."""

    def test_plain_json(self):
        result = decode_structured(
            '{"category": "billing", "priority": "low", "confidence": 0.92, "reasoning": "invoice"}'
        )

        assert result.category == "billing"
        assert result.priority == "LOW"
        assert result.confidence == 0.92
        assert result.reasoning == "invoice"
        assert result.is_fallback is False

    def test_fenced_json(self):
        text = '```json\n{"category": "emergency", "priority": "CRITICAL", "confidence": 0.95}\n```'
        result = decode_structured(text)

        assert result.category == "emergency"
        assert result.reasoning == "AI classification"

    def test_empty_response(self):
        with pytest.raises(InferenceMalformed, match="Empty"):
            decode_structured("   ")

    def test_prose_is_malformed(self):
        with pytest.raises(InferenceMalformed, match="not JSON"):
            decode_structured('I think this is {"category": "billing"} probably')

    def test_non_object_json(self):
        with pytest.raises(InferenceMalformed, match="not an object"):
            decode_structured('["billing"]')

    def test_missing_fields_are_reported(self):
        with pytest.raises(InferenceMalformed) as exc_info:
            decode_structured('{"category": "billing"}')

        assert "priority" in exc_info.value.context["fields"]
        assert "confidence" in exc_info.value.context["fields"]

    def test_out_of_range_confidence(self):
        with pytest.raises(InferenceMalformed):
            decode_structured('{"category": "billing", "priority": "LOW", "confidence": 3}')

    def test_unknown_category(self):
        with pytest.raises(InferenceMalformed):
            decode_structured('{"category": "weather", "priority": "LOW", "confidence": 0.9}')


class TestExtractConfidence:
    """Confidence recovered from free text."""

    @pytest.mark.parametrize("text,expected", [
        ("I am 85% sure", 0.85),
        ("confidence 0.72 overall", 0.72),
        ("this is definitely billing", 0.9),
        ("probably an inquiry", 0.8),
        ("it might be billing", 0.6),
        ("no signal here", 0.5),
    ])
    def test_sources(self, text, expected):
        assert extract_confidence(text) == pytest.approx(expected)

    def test_percent_capped(self):
        assert extract_confidence("999% sure") == 1.0


class TestExtractHeuristic:
    """Best-effort extraction from unstructured responses."""

    def test_embedded_json_in_prose(self):
        text = 'Sure! Here it is: {"category": "court_notice", "priority": "HIGH", "confidence": 0.66} Thanks.'
        result = extract_heuristic(text)

        assert result.category == "court_notice"
        assert result.priority == "HIGH"
        assert result.confidence == pytest.approx(0.66)
        assert result.is_fallback is True

    def test_keywords_only(self):
        result = extract_heuristic("This looks like a billing matter, probably LOW priority.")

        assert result.category == "billing"
        assert result.priority == "LOW"
        assert result.confidence == pytest.approx(0.8)

    def test_earliest_category_wins(self):
        result = extract_heuristic("An appointment request, not billing.")
        assert result.category == "appointment"

    def test_default_priority_and_confidence(self):
        result = extract_heuristic("inquiry")

        assert result.priority == "NORMAL"
        assert result.confidence == 0.5

    def test_nothing_recoverable(self):
        assert extract_heuristic("I cannot help with that.") is None
        assert extract_heuristic("") is None
        assert extract_heuristic(None) is None
