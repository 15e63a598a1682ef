"""Unit tests for the keyword and address-pattern rule classifier."""

import pytest

from intake_gateway.lib.config import RoutingConfig
from intake_gateway.models.message import Message
from intake_gateway.services.rule_classifier import RuleClassifier, detect_case_id


@pytest.fixture
def rules():
    return RuleClassifier(RoutingConfig())


class TestDetectCaseId:
    """Two-party case addresses."""

    @pytest.mark.parametrize("address,expected", [
        ("smith-v-jones@firm.com", "SMITH_v_JONES"),
        ("Acme-Corp-v-Widget-Inc@firm.com", "ACME_CORP_v_WIDGET_INC"),
        ("intake@firm.com", None),
        ("", None),
        (None, None),
    ])
    def test_addresses(self, address, expected):
        assert detect_case_id(address) == expected


class TestCategorize:
    """Ordered keyword categories."""

    @pytest.mark.parametrize("text,category", [
        ("We are seeking a temporary restraining order", "emergency"),
        ("Hearing set before the judge", "court_notice"),
        ("The plaintiff filed a lawsuit", "lawsuit"),
        ("Signed contract attached", "document_submission"),
        ("Can we schedule a consultation?", "appointment"),
        ("Invoice 42 is overdue", "billing"),
        ("Hello there", "inquiry"),
    ])
    def test_categories(self, rules, text, category):
        assert rules.categorize(text)[0] == category

    def test_earlier_category_wins(self, rules):
        category, keywords = rules.categorize("Court hearing about the invoice")
        assert category == "court_notice"
        assert keywords == ["court", "hearing"]

    def test_word_boundaries(self, rules):
        assert rules.categorize("A showcase of our suitcases")[0] == "inquiry"


class TestPrioritize:
    """Priority rules."""

    def test_critical_keyword(self, rules):
        priority, reason = rules.prioritize("Subpoena received", "emergency")
        assert priority == "CRITICAL"
        assert "subpoena" in reason.lower()

    def test_court_notice_is_critical(self, rules):
        assert rules.prioritize("hearing", "court_notice")[0] == "CRITICAL"

    def test_urgency_keyword(self, rules):
        assert rules.prioritize("Please respond ASAP", "lawsuit")[0] == "HIGH"

    def test_document_submission_is_high(self, rules):
        assert rules.prioritize("see attached", "document_submission")[0] == "HIGH"

    def test_billing_is_low(self, rules):
        assert rules.prioritize("invoice", "billing")[0] == "LOW"

    def test_default_normal(self, rules):
        assert rules.prioritize("let's meet", "appointment")[0] == "NORMAL"


class TestClassify:
    """Full rule decisions."""

    def test_billing_goes_to_default_destination(self, rules, billing_message):
        decision = rules.classify(billing_message)

        assert decision.source == "rule"
        assert decision.classification.category == "billing"
        assert decision.classification.priority == "LOW"
        assert decision.classification.is_fallback is True
        assert decision.destination == "intake@example.com"
        assert decision.case_id is None

    def test_case_address_goes_to_case_destination(self, rules, case_message):
        decision = rules.classify(case_message)

        assert decision.case_id == "SMITH_v_JONES"
        assert decision.destination == "case-management@example.com"
        assert any("SMITH_v_JONES" in entry for entry in decision.trail)

    def test_critical_goes_to_emergency_destination(self, rules, urgent_motion_message):
        decision = rules.classify(urgent_motion_message)

        assert decision.classification.priority == "CRITICAL"
        assert decision.destination == "emergency@example.com"

    def test_confidence_grows_with_keywords(self, rules):
        one = rules.classify(Message(subject="invoice"))
        three = rules.classify(Message(subject="invoice payment retainer"))

        assert one.classification.confidence == pytest.approx(0.6)
        assert three.classification.confidence == pytest.approx(0.8)

    def test_no_keywords_has_neutral_confidence(self, rules):
        decision = rules.classify(Message(subject="hello"))
        assert decision.classification.confidence == 0.5


class TestFallbackDestinations:
    """Ordered alternates."""

    def test_excludes_primary_and_duplicates(self, rules):
        fallbacks = rules.fallback_destinations("lawsuit", "case-management@example.com")
        assert fallbacks == ["partners@example.com", "intake@example.com"]

    def test_includes_route_primary_when_not_chosen(self, rules):
        fallbacks = rules.fallback_destinations("billing", "intake@example.com")
        assert fallbacks == ["billing@example.com"]
