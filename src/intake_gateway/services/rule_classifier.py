"""
Deterministic keyword and address-pattern classifier.

Has no external dependencies and is always evaluated, both as the fallback
when inference fails and as the cross-check for low-confidence AI decisions.
"""

import re
from typing import List, Optional, Pattern, Tuple

from intake_gateway.lib.config import RoutingConfig
from intake_gateway.models.classification import (
    Category,
    ClassificationResult,
    Priority,
    RuleDecision,
)
from intake_gateway.models.message import Message


def _keywords(*words: str) -> Pattern:
    return re.compile(r"\b(" + "|".join(re.escape(w) for w in words) + r")\b", re.IGNORECASE)


# Evaluated in order; the first category with a match wins.
CATEGORY_PATTERNS: List[Tuple[str, Pattern]] = [
    (Category.EMERGENCY.value, _keywords(
        "emergency", "TRO", "temporary restraining order", "subpoena", "injunction"
    )),
    (Category.COURT_NOTICE.value, _keywords(
        "court", "hearing", "judge", "motion", "docket", "summons"
    )),
    (Category.LAWSUIT.value, _keywords(
        "case", "plaintiff", "defendant", "litigation", "legal action", "lawsuit"
    )),
    (Category.DOCUMENT_SUBMISSION.value, _keywords(
        "attached", "document", "documents", "contract", "evidence", "filing", "exhibit"
    )),
    (Category.APPOINTMENT.value, _keywords(
        "meeting", "appointment", "schedule", "consultation", "availability"
    )),
    (Category.BILLING.value, _keywords(
        "invoice", "payment", "bill", "retainer", "fee"
    )),
]

CRITICAL_PATTERN = _keywords("emergency", "TRO", "temporary restraining order", "subpoena")
URGENT_PATTERN = _keywords(
    "urgent", "asap", "immediate", "immediately", "court date", "deadline", "motion"
)
CASE_ADDRESS_PATTERN = re.compile(r"([a-zA-Z-]+)-v-([a-zA-Z-]+)@", re.IGNORECASE)


def detect_case_id(address: Optional[str]) -> Optional[str]:
    """PLAINTIFF_v_DEFENDANT from a two-party case address, if present."""
    if not address:
        return None
    match = CASE_ADDRESS_PATTERN.search(address)
    if not match:
        return None
    plaintiff = match.group(1).strip("-").replace("-", "_").upper()
    defendant = match.group(2).strip("-").replace("-", "_").upper()
    if not plaintiff or not defendant:
        return None
    return f"{plaintiff}_v_{defendant}"


class RuleClassifier:
    """Keyword and pattern rules over subject, body and recipient."""

    def __init__(self, config: Optional[RoutingConfig] = None):
        self.config = config or RoutingConfig()

    def categorize(self, text: str) -> Tuple[str, List[str]]:
        """Category and matched keywords for the given text."""
        for category, pattern in CATEGORY_PATTERNS:
            matches = sorted({m.lower() for m in pattern.findall(text)})
            if matches:
                return category, matches
        return Category.INQUIRY.value, []

    def prioritize(self, text: str, category: str) -> Tuple[str, str]:
        """Priority and the rule that produced it."""
        critical = CRITICAL_PATTERN.search(text)
        if critical:
            return Priority.CRITICAL.value, f"critical keyword '{critical.group(1)}'"
        if category in (Category.EMERGENCY.value, Category.COURT_NOTICE.value):
            return Priority.CRITICAL.value, f"category {category}"

        urgent = URGENT_PATTERN.search(text)
        if urgent:
            return Priority.HIGH.value, f"urgency keyword '{urgent.group(1)}'"
        if category == Category.DOCUMENT_SUBMISSION.value:
            return Priority.HIGH.value, f"category {category}"

        if category in (Category.BILLING.value, Category.INQUIRY.value):
            return Priority.LOW.value, f"category {category}"
        return Priority.NORMAL.value, "no priority rule matched"

    def classify(self, message: Message) -> RuleDecision:
        """Produce a rule-based decision for a readable message."""
        text = f"{message.subject}\n{message.body}"
        trail: List[str] = []

        category, keywords = self.categorize(text)
        if keywords:
            trail.append(f"rule: category {category} from keywords {', '.join(keywords)}")
        else:
            trail.append(f"rule: no category keywords, defaulting to {category}")

        priority, priority_reason = self.prioritize(text, category)
        trail.append(f"rule: priority {priority} ({priority_reason})")

        case_id = detect_case_id(message.recipient)

        if priority == Priority.CRITICAL.value:
            destination = self.config.emergency_destination
            trail.append(f"rule: critical priority routes to {destination}")
        elif case_id:
            destination = self.config.case_destination
            trail.append(f"rule: case address {case_id} routes to {destination}")
        else:
            destination = self.config.default_destination
            trail.append(f"rule: default intake destination {destination}")

        confidence = min(0.8, len(keywords) * 0.2 + 0.4) if keywords else 0.5

        return RuleDecision(
            classification=ClassificationResult(
                category=category,
                priority=priority,
                confidence=confidence,
                reasoning=f"Keyword-based classification: {', '.join(keywords) or 'none'}",
                is_fallback=True
            ),
            destination=destination,
            case_id=case_id,
            trail=trail
        )

    def fallback_destinations(self, category: str, primary: str) -> List[str]:
        """Ordered alternates for a category, excluding the chosen primary."""
        route = self.config.routes.get(category)
        candidates: List[str] = []
        if route is not None:
            candidates.extend([route.primary, *route.fallbacks])
        candidates.append(self.config.default_destination)

        ordered: List[str] = []
        for candidate in candidates:
            if candidate != primary and candidate not in ordered:
                ordered.append(candidate)
        return ordered

