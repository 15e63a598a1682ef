"""
Parsing of inference responses into classifications.

Two independent paths:

* decode_structured() accepts only a response whose whole payload is a JSON
  object (optionally inside a code fence) carrying category, priority and
  confidence. Anything else raises InferenceMalformed.
* extract_heuristic() recovers what it can from free text: an embedded JSON
  object, category keywords, a priority word and a confidence expressed as a
  percentage, a decimal or a certainty word. It returns None when no category
  can be recovered.
"""

import json
import re
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from intake_gateway.lib.errors import InferenceMalformed
from intake_gateway.models.classification import Category, ClassificationResult, Priority


CATEGORY_ALIASES: Dict[str, str] = {
    "lawsuit_communication": Category.LAWSUIT.value,
    "lawsuit": Category.LAWSUIT.value,
    "litigation": Category.LAWSUIT.value,
    "document_submission": Category.DOCUMENT_SUBMISSION.value,
    "document": Category.DOCUMENT_SUBMISSION.value,
    "emergency_legal": Category.EMERGENCY.value,
    "emergency": Category.EMERGENCY.value,
    "court_notice": Category.COURT_NOTICE.value,
    "general_inquiry": Category.INQUIRY.value,
    "inquiry": Category.INQUIRY.value,
    "appointment_request": Category.APPOINTMENT.value,
    "appointment": Category.APPOINTMENT.value,
    "billing_matter": Category.BILLING.value,
    "billing": Category.BILLING.value,
    "client_communication": Category.CLIENT_COMMUNICATION.value,
}

CERTAINTY_WORDS: Tuple[Tuple[Tuple[str, ...], float], ...] = (
    (("certain", "definitely"), 0.9),
    (("likely", "probably"), 0.8),
    (("possibly", "might"), 0.6),
)

DEFAULT_HEURISTIC_CONFIDENCE = 0.5

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_EMBEDDED_JSON_RE = re.compile(r"\{[\s\S]*\}")
_PERCENT_RE = re.compile(r"(\d{1,3})%")
_DECIMAL_RE = re.compile(r"\b0\.\d+")
_PRIORITY_RE = re.compile(r"\b(CRITICAL|HIGH|NORMAL|LOW)\b", re.IGNORECASE)


def normalize_category(value: Any) -> Optional[str]:
    """Map a category label or alias onto a Category value."""
    if not isinstance(value, str):
        return None
    key = re.sub(r"[\s\-]+", "_", value.strip().lower())
    return CATEGORY_ALIASES.get(key)


class StructuredClassification(BaseModel):
    """Exact shape a structured inference response must have."""

    category: str
    priority: Priority
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""

    @field_validator('category', mode='before')
    @classmethod
    def validate_category(cls, v):
        normalized = normalize_category(v)
        if normalized is None:
            raise ValueError(f"Unknown category: {v!r}")
        return normalized

    @field_validator('priority', mode='before')
    @classmethod
    def validate_priority(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


def decode_structured(text: Optional[str]) -> ClassificationResult:
    """Strictly decode a structured classification payload.

    Raises:
        InferenceMalformed: payload is not a JSON object with valid
            category, priority and confidence
    """
    if not text or not text.strip():
        raise InferenceMalformed("Empty inference response")

    payload = text.strip()
    fenced = _FENCE_RE.match(payload)
    if fenced:
        payload = fenced.group(1)

    try:
        data = json.loads(payload)
    except ValueError as e:
        raise InferenceMalformed(f"Response is not JSON: {e}", {"excerpt": text[:200]})

    if not isinstance(data, dict):
        raise InferenceMalformed("Response JSON is not an object", {"excerpt": text[:200]})

    try:
        decoded = StructuredClassification.model_validate(data)
    except ValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise InferenceMalformed(
            f"Response is missing or has invalid fields: {', '.join(missing)}",
            {"fields": missing}
        )

    return ClassificationResult(
        category=decoded.category,
        priority=decoded.priority,
        confidence=decoded.confidence,
        reasoning=decoded.reasoning or "AI classification",
        is_fallback=False
    )


def extract_confidence(text: str) -> float:
    """Best-effort confidence from free text."""
    percent = _PERCENT_RE.search(text)
    if percent:
        return min(int(percent.group(1)) / 100, 1.0)

    decimal = _DECIMAL_RE.search(text)
    if decimal:
        return min(float(decimal.group(0)), 1.0)

    lowered = text.lower()
    for words, confidence in CERTAINTY_WORDS:
        if any(re.search(rf"\b{word}\b", lowered) for word in words):
            return confidence

    return DEFAULT_HEURISTIC_CONFIDENCE


def _from_embedded_json(text: str) -> Optional[Dict[str, Any]]:
    match = _EMBEDDED_JSON_RE.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _find_category_keyword(text: str) -> Optional[str]:
    """Earliest category label mentioned in the text."""
    lowered = text.lower()
    best: Optional[Tuple[int, str]] = None
    for alias, category in CATEGORY_ALIASES.items():
        pattern = r"\b" + r"[\s_\-]".join(re.escape(part) for part in alias.split("_")) + r"\b"
        match = re.search(pattern, lowered)
        if match and (best is None or match.start() < best[0]):
            best = (match.start(), category)
    return best[1] if best else None


def extract_heuristic(text: Optional[str]) -> Optional[ClassificationResult]:
    """Recover a classification from an unstructured response."""
    if not text or not text.strip():
        return None

    embedded = _from_embedded_json(text) or {}

    category = normalize_category(embedded.get("category")) or _find_category_keyword(text)
    if category is None:
        return None

    priority = str(embedded.get("priority", "")).strip().upper()
    if priority not in Priority.__members__:
        word = _PRIORITY_RE.search(text)
        priority = word.group(1).upper() if word else Priority.NORMAL.value

    confidence = embedded.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0 <= confidence <= 1:
        confidence = extract_confidence(text)

    return ClassificationResult(
        category=category,
        priority=priority,
        confidence=float(confidence),
        reasoning=f"Recovered from unstructured response: {text.strip()[:120]}",
        is_fallback=True
    )
