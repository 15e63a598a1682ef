"""
Classification and routing decision engine.

route() always returns a RoutingDecision. The inference capability is raced
against a timeout bounded by the routing budget; every failure mode
(unavailable, timeout, malformed) is recorded in the reasoning trail and
ends in a rule-based decision. AI and rule decisions are combined by a
single arbitrate() function.
"""

import asyncio
import logging
import re
import time
from typing import List, Optional, Tuple
from uuid import uuid4

from intake_gateway.lib.config import InferenceConfig, RoutingConfig
from intake_gateway.lib.errors import (
    InferenceMalformed,
    InferenceTimeout,
    InferenceUnavailable,
)
from intake_gateway.lib.logging_config import AuditLogger, get_audit_logger
from intake_gateway.lib.metrics import MetricsCollector, get_metrics_collector
from intake_gateway.lib.observability import get_tracer
from intake_gateway.models.classification import (
    AIDecision,
    Category,
    DecisionSource,
    Priority,
    RoutingDecision,
    RuleDecision,
    higher_priority,
)
from intake_gateway.models.message import Message
from intake_gateway.services.interfaces.inference import (
    IInferenceCapability,
    InferenceRequest,
    InferenceResponse,
)
from intake_gateway.services.response_parser import decode_structured, extract_heuristic
from intake_gateway.services.rule_classifier import RuleClassifier


logger = logging.getLogger(__name__)

CLASSIFICATION_PROMPT = """Classify this legal email into exactly one category.

CATEGORIES:
- lawsuit (case-related correspondence)
- document_submission (evidence, contracts, filings)
- emergency (urgent legal matters, restraining orders, subpoenas)
- court_notice (official court communications)
- inquiry (questions, information requests)
- appointment (meetings, consultations)
- billing (invoices, payment-related)
- client_communication (updates to or from an existing client)

PRIORITIES: CRITICAL, HIGH, NORMAL, LOW

Respond with only a JSON object:
{"category": "<category>", "priority": "<priority>", "confidence": <0.0-1.0>, "reasoning": "<brief explanation>"}"""

_UNSAFE_CHARS = re.compile(r"[<>]")


def new_message_id() -> str:
    return f"msg-{uuid4().hex}"


def _sanitize(value: str, limit: int) -> str:
    return _UNSAFE_CHARS.sub("", value or "")[:limit].strip()


def build_classification_request(
    message: Message,
    model: str,
    max_output_tokens: int,
    body_excerpt_chars: int
) -> InferenceRequest:
    """Prompt from subject, body excerpt and attachment metadata."""
    if message.attachments:
        attachments = "\n".join(
            f"- {_sanitize(a.name, 120)} ({a.media_type}, {a.size} bytes)" for a in message.attachments
        )
    else:
        attachments = "none"

    content = (
        f"Subject: {_sanitize(message.subject, 200)}\n"
        f"From: {_sanitize(message.sender, 100)}\n"
        f"To: {_sanitize(message.recipient, 100)}\n"
        f"Attachments:\n{attachments}\n"
        f"Content: {_sanitize(message.body_excerpt(body_excerpt_chars), body_excerpt_chars + 3)}"
    )

    return InferenceRequest(
        messages=[
            {"role": "system", "content": CLASSIFICATION_PROMPT},
            {"role": "user", "content": content},
        ],
        model=model,
        max_output_tokens=max_output_tokens
    )


def _route_for(config: RoutingConfig, rules: RuleClassifier, category: str) -> Tuple[str, List[str]]:
    route = config.routes.get(category)
    primary = route.primary if route is not None else config.default_destination
    return primary, rules.fallback_destinations(category, primary)


def arbitrate(
    ai: Optional[AIDecision],
    rule: RuleDecision,
    *,
    message_id: str,
    config: RoutingConfig,
    rules: RuleClassifier,
    trail: Optional[List[str]] = None
) -> RoutingDecision:
    """Combine the optional AI decision with the rule decision.

    Without an AI decision the rule decision is used as a fallback. An AI
    decision at or above the confidence threshold is used as is. Below the
    threshold the rule decision cross-checks it: on agreement the AI
    decision stands, on disagreement the rule destination is used, the more
    urgent of the two priorities is kept and both reasonings are recorded.
    """
    reasoning = list(trail or [])
    rule_cls = rule.classification

    if ai is None:
        reasoning.extend(rule.trail)
        reasoning.append(f"decision: rule-based fallback to {rule.destination}")
        return RoutingDecision(
            message_id=message_id,
            primary_destination=rule.destination,
            fallback_destinations=rules.fallback_destinations(rule_cls.category, rule.destination),
            confidence=rule_cls.confidence,
            is_fallback=True,
            reasoning=reasoning,
            category=rule_cls.category,
            priority=rule_cls.priority,
            source=DecisionSource.RULE,
            case_id=rule.case_id
        )

    ai_cls = ai.classification
    reasoning.extend(ai.trail)
    ai_primary, ai_fallbacks = _route_for(config, rules, ai_cls.category)
    threshold = config.confidence_threshold

    if ai_cls.confidence >= threshold:
        reasoning.append(
            f"decision: AI classification {ai_cls.category} at confidence "
            f"{ai_cls.confidence:.2f} >= threshold {threshold:.2f}"
        )
        agreed = True
    else:
        reasoning.append(
            f"cross-check: AI confidence {ai_cls.confidence:.2f} below threshold {threshold:.2f}"
        )
        reasoning.extend(rule.trail)
        agreed = ai_cls.category == rule_cls.category or ai_primary == rule.destination
        if agreed:
            reasoning.append(f"cross-check: rules agree with AI category {ai_cls.category}")

    if agreed:
        return RoutingDecision(
            message_id=message_id,
            primary_destination=ai_primary,
            fallback_destinations=ai_fallbacks,
            confidence=ai_cls.confidence,
            is_fallback=ai.heuristic or ai_cls.is_fallback,
            reasoning=reasoning,
            category=ai_cls.category,
            priority=ai_cls.priority,
            source=DecisionSource.AI,
            case_id=rule.case_id
        )

    reasoning.append(f"ai reasoning: {ai_cls.reasoning}")
    reasoning.append(f"rule reasoning: {rule_cls.reasoning}")
    reasoning.append(
        f"decision: AI ({ai_cls.category} -> {ai_primary}) and rules "
        f"({rule_cls.category} -> {rule.destination}) disagree; downgraded to rule destination"
    )
    return RoutingDecision(
        message_id=message_id,
        primary_destination=rule.destination,
        fallback_destinations=rules.fallback_destinations(rule_cls.category, rule.destination),
        confidence=min(ai_cls.confidence, rule_cls.confidence),
        is_fallback=True,
        reasoning=reasoning,
        category=rule_cls.category,
        priority=higher_priority(ai_cls.priority, rule_cls.priority),
        source=DecisionSource.RULE,
        case_id=rule.case_id
    )


def default_decision(message_id: str, config: RoutingConfig, reason: str) -> RoutingDecision:
    """Minimal decision for a missing or unreadable message."""
    return RoutingDecision(
        message_id=message_id,
        primary_destination=config.default_destination,
        fallback_destinations=[],
        confidence=0.0,
        is_fallback=True,
        reasoning=[f"corrupt input: {reason}", f"decision: default destination {config.default_destination}"],
        category=Category.INQUIRY,
        priority=Priority.NORMAL,
        source=DecisionSource.DEFAULT
    )


def _consume_abandoned(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class RoutingEngine:
    """Produces a RoutingDecision for every message within a wall-clock budget."""

    def __init__(
        self,
        config: Optional[RoutingConfig] = None,
        inference_config: Optional[InferenceConfig] = None,
        inference: Optional[IInferenceCapability] = None,
        rules: Optional[RuleClassifier] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.config = config or RoutingConfig()
        self.inference_config = inference_config or InferenceConfig()
        self.inference = inference
        self.rules = rules or RuleClassifier(self.config)
        self.metrics = metrics_collector or get_metrics_collector()
        self.audit = audit_logger or get_audit_logger()
        self._tracer = get_tracer()

    async def route(self, message: Optional[Message], message_id: Optional[str] = None) -> RoutingDecision:
        """Classify and route a message. Never raises."""
        started = time.monotonic()
        message_id = message_id or (message.message_id if isinstance(message, Message) else None) or new_message_id()

        with self._tracer.start_as_current_span("routing.route") as span:
            span.set_attribute("intake.message_id", message_id)

            if not isinstance(message, Message):
                decision = default_decision(message_id, self.config, "message is missing or unreadable")
            elif message.is_empty():
                decision = default_decision(message_id, self.config, "message has no subject, body or attachments")
            else:
                try:
                    decision = await self._decide(message, message_id, started)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Unexpected routing failure for {message_id}: {e}", exc_info=True)
                    decision = default_decision(message_id, self.config, f"unexpected routing failure: {e}")

            span.set_attribute("intake.destination", decision.primary_destination)
            span.set_attribute("intake.is_fallback", decision.is_fallback)
            span.set_attribute("intake.decision_source", decision.source)

        duration_ms = (time.monotonic() - started) * 1000
        self.metrics.record_routing_decision(
            source=decision.source,
            is_fallback=decision.is_fallback,
            category=decision.category,
            duration_ms=duration_ms
        )
        self.audit.log_routing_event(
            message_id=decision.message_id,
            destination=decision.primary_destination,
            category=decision.category,
            priority=decision.priority,
            is_fallback=decision.is_fallback,
            reasoning=decision.reasoning,
            metadata={"duration_ms": round(duration_ms, 2), "source": decision.source}
        )
        return decision

    async def _decide(self, message: Message, message_id: str, started: float) -> RoutingDecision:
        rule = self.rules.classify(message)
        ai, trail = await self.classify_with_inference(message, deadline=started + self.config.budget_seconds)
        return arbitrate(
            ai,
            rule,
            message_id=message_id,
            config=self.config,
            rules=self.rules,
            trail=None if ai is not None else trail
        )

    async def classify_with_inference(
        self,
        message: Message,
        deadline: float
    ) -> Tuple[Optional[AIDecision], List[str]]:
        """Ask the inference capability, at most max_attempts times, before the deadline.

        Returns the AI decision (or None) plus the trail of what happened.
        Only an unavailable capability is retried; timeouts and malformed
        responses go straight to the fallback path.
        """
        trail: List[str] = []
        if self.inference is None:
            trail.append("inference unavailable: no inference capability configured")
            self.metrics.record_inference_failure(InferenceUnavailable.failure_mode)
            return None, trail

        models = [self.inference_config.model]
        if self.inference_config.max_attempts > 1:
            models.append(self.inference_config.fallback_model or self.inference_config.model)

        for attempt, model in enumerate(models, start=1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                trail.append("inference timeout: routing budget exhausted before attempt")
                self.metrics.record_inference_failure(InferenceTimeout.failure_mode)
                return None, trail

            timeout = min(self.inference_config.timeout_seconds, remaining)
            request = build_classification_request(
                message,
                model=model,
                max_output_tokens=self.inference_config.max_output_tokens,
                body_excerpt_chars=self.config.body_excerpt_chars
            )

            try:
                response = await self._race(request, timeout)
            except InferenceTimeout as e:
                trail.append(f"inference timeout: {e.message}")
                self.metrics.record_inference_failure(e.failure_mode)
                logger.warning(f"Inference timed out for {message.message_id or 'message'}: {e.message}")
                return None, trail
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e if isinstance(e, InferenceUnavailable) else InferenceUnavailable(str(e) or type(e).__name__)
                trail.append(f"inference unavailable (attempt {attempt}, model {model}): {error.message}")
                self.metrics.record_inference_failure(error.failure_mode)
                logger.warning(f"Inference unavailable on attempt {attempt}: {error.message}")
                continue

            return self._interpret(response, model, trail)

        return None, trail

    def _interpret(
        self,
        response: InferenceResponse,
        model: str,
        trail: List[str]
    ) -> Tuple[Optional[AIDecision], List[str]]:
        answered_by = getattr(response, "model", None) or model
        text = response.text if isinstance(response, InferenceResponse) else str(response)
        try:
            classification = decode_structured(text)
        except InferenceMalformed as e:
            trail.append(f"inference malformed: {e.message}")
            self.metrics.record_inference_failure(e.failure_mode)
            recovered = extract_heuristic(text)
            if recovered is None:
                trail.append("heuristic extraction: nothing usable in response")
                return None, trail
            trail.append(
                f"heuristic extraction: recovered category {recovered.category} "
                f"with confidence {recovered.confidence:.2f}"
            )
            return AIDecision(classification=recovered, model=answered_by, heuristic=True, trail=list(trail)), trail

        trail.append(f"inference: {answered_by} classified as {classification.category}")
        return AIDecision(classification=classification, model=answered_by, trail=list(trail)), trail

    async def _race(self, request: InferenceRequest, timeout: float) -> InferenceResponse:
        """Run inference against a timeout; the loser is abandoned, never awaited."""
        task = asyncio.create_task(self.inference.infer(request))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            task.add_done_callback(_consume_abandoned)
            raise

        if task not in done:
            task.cancel()
            task.add_done_callback(_consume_abandoned)
            raise InferenceTimeout(f"no response within {timeout:.2f}s", {"model": request.model})

        return task.result()
