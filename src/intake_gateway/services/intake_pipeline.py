"""
Intake pipeline: identifier, deduplication, routing, workflow, session state,
delivery and telemetry for one inbound message.

process() always returns an IntakeResult. Collaborator failures are
recorded in the result's errors and never prevent the routing decision
from being produced and handed to delivery.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from pydantic import BaseModel, Field

from intake_gateway.lib.config import PipelineConfig, StorageConfig
from intake_gateway.lib.errors import IntakeError
from intake_gateway.lib.event_channel import EventChannel
from intake_gateway.models.classification import DecisionSource, RoutingDecision
from intake_gateway.models.message import Message
from intake_gateway.models.session_state import SessionState
from intake_gateway.models.workflow import WorkflowResult
from intake_gateway.services.delivery import DeliveryReport, DeliveryService
from intake_gateway.services.identity import IdentityService, MintedIdentity
from intake_gateway.services.interfaces.storage import IStorageAdapter
from intake_gateway.services.routing_engine import RoutingEngine
from intake_gateway.services.session_store import SessionStateStore
from intake_gateway.services.workflow_orchestrator import WorkflowOrchestrator
from intake_gateway.services.workflow_templates import build_task


logger = logging.getLogger(__name__)


class IntakeResult(BaseModel):
    """Everything the pipeline produced for one message."""

    message_id: str
    decision: RoutingDecision
    identity: Optional[MintedIdentity] = None
    duplicate: bool = False
    session_id: Optional[str] = None
    session_saved: bool = False
    workflow: Optional[WorkflowResult] = None
    delivery: Optional[DeliveryReport] = None
    errors: List[str] = Field(default_factory=list)


def session_key(message: Message, decision: RoutingDecision) -> str:
    """Case identifier when present, else the sender, else the message."""
    if decision.case_id:
        return f"case:{decision.case_id}"
    if message.sender.strip():
        return f"sender:{message.sender.strip().lower()}"
    return f"message:{decision.message_id}"


def workflow_context(message: Message, decision: RoutingDecision) -> Dict[str, Any]:
    return {
        "message_id": decision.message_id,
        "subject": message.subject,
        "sender": message.sender,
        "recipient": message.recipient,
        "body_excerpt": message.body_excerpt(800),
        "attachments": [a.model_dump() for a in message.attachments],
        "category": decision.category,
        "priority": decision.priority,
        "case_id": decision.case_id
    }


class IntakePipeline:
    """Composition of the routing engine, orchestrator and state store."""

    def __init__(
        self,
        engine: RoutingEngine,
        store: SessionStateStore,
        storage: IStorageAdapter,
        identity: IdentityService,
        delivery: Optional[DeliveryService] = None,
        orchestrator: Optional[WorkflowOrchestrator] = None,
        events: Optional[EventChannel] = None,
        config: Optional[PipelineConfig] = None,
        storage_config: Optional[StorageConfig] = None
    ):
        self.engine = engine
        self.store = store
        self.storage = storage
        self.identity = identity
        self.delivery = delivery
        self.orchestrator = orchestrator
        self.events = events
        self.config = config or PipelineConfig()
        self.storage_config = storage_config or StorageConfig()

    @staticmethod
    def dedupe_key(message_id: str) -> str:
        return f"processed:{message_id}"

    async def process(self, message: Optional[Message]) -> IntakeResult:
        """Process one message end to end."""
        if not isinstance(message, Message):
            identity = await self.identity.mint("message")
            decision = await self.engine.route(None, message_id=identity.identifier)
            self._emit("message_rejected", decision)
            return IntakeResult(message_id=decision.message_id, decision=decision, identity=identity)

        errors: List[str] = []
        identity: Optional[MintedIdentity] = None
        message_id = message.message_id
        if not message_id:
            identity = await self.identity.mint("message")
            message_id = identity.identifier
            if identity.is_fallback:
                errors.append(f"identity: {identity.error or 'no authority'}; using local identifier")
        message = message.with_id(message_id)

        previous = await self._lookup_processed(message_id, errors)
        if previous is not None:
            logger.info(f"Duplicate message {message_id}; returning stored decision")
            self._emit("message_duplicate", previous)
            return IntakeResult(message_id=message_id, decision=previous, identity=identity, duplicate=True, errors=errors)

        decision = await self.engine.route(message, message_id=message_id)
        result = IntakeResult(message_id=message_id, decision=decision, identity=identity, errors=errors)

        if decision.source != DecisionSource.DEFAULT.value:
            result.workflow = await self._run_workflow(message, decision, errors)

        result.session_id = session_key(message, decision)
        result.session_saved = await self._save_session(result.session_id, decision, result.workflow, errors)

        if self.delivery is not None:
            result.delivery = await self.delivery.deliver(
                message, decision, acknowledge=self.config.send_acknowledgements
            )
            if not result.delivery.delivered:
                errors.append("delivery: no destination accepted the message")

        if result.delivery is None or result.delivery.delivered:
            await self._mark_processed(decision, errors)
        self._emit("message_processed", decision, {
            "workflow_state": result.workflow.state if result.workflow else None,
            "session_saved": result.session_saved,
            "errors": len(errors)
        })
        return result

    async def _lookup_processed(self, message_id: str, errors: List[str]) -> Optional[RoutingDecision]:
        try:
            raw = await self.storage.get(self.dedupe_key(message_id))
            if raw is None:
                return None
            return RoutingDecision.model_validate_json(raw)
        except IntakeError as e:
            errors.append(f"dedupe lookup: {e.message}")
        except ValueError as e:
            errors.append(f"dedupe lookup: stored decision unreadable: {e}")
        except Exception as e:
            errors.append(f"dedupe lookup: {type(e).__name__}: {e}")
            logger.error(f"Unexpected failure reading dedupe marker for {message_id}: {e}", exc_info=True)
        return None

    async def _mark_processed(self, decision: RoutingDecision, errors: List[str]) -> None:
        try:
            await self.storage.put(
                self.dedupe_key(decision.message_id),
                decision.model_dump_json().encode("utf-8"),
                ttl_seconds=self.storage_config.dedupe_ttl_seconds
            )
        except IntakeError as e:
            errors.append(f"dedupe marker: {e.message}")
            logger.warning(f"Could not record {decision.message_id} as processed: {e.message}")

    async def _run_workflow(
        self,
        message: Message,
        decision: RoutingDecision,
        errors: List[str]
    ) -> Optional[WorkflowResult]:
        if not self.config.run_workflows or self.orchestrator is None:
            return None
        template = self.config.workflow_categories.get(decision.category)
        if template is None:
            return None

        task = build_task(template, workflow_context(message, decision), task_id=f"task-{decision.message_id}")
        try:
            return await self.orchestrator.execute_task(task)
        except IntakeError as e:
            errors.append(f"workflow: {e.message}")
        except Exception as e:
            logger.error(f"Workflow {template} failed unexpectedly for {decision.message_id}: {e}", exc_info=True)
            errors.append(f"workflow: {type(e).__name__}: {e}")
        return None

    async def _save_session(
        self,
        session_id: str,
        decision: RoutingDecision,
        workflow: Optional[WorkflowResult],
        errors: List[str]
    ) -> bool:
        history_limit = self.store.config.history_limit

        def record(state: SessionState) -> None:
            state.data["message_count"] = int(state.data.get("message_count", 0)) + 1
            state.data["last_message_id"] = decision.message_id
            state.data["last_category"] = decision.category
            state.data["last_priority"] = decision.priority
            if decision.case_id:
                state.data["case_id"] = decision.case_id
            state.append_history({
                "message_id": decision.message_id,
                "category": decision.category,
                "priority": decision.priority,
                "destination": decision.primary_destination,
                "is_fallback": decision.is_fallback,
                "workflow_state": workflow.state if workflow else None,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }, history_limit)

        try:
            await self.store.update(session_id, record)
            return True
        except IntakeError as e:
            errors.append(f"session state: {e.message}")
            logger.warning(f"Session {session_id} not saved: {e.message}")
        except Exception as e:
            errors.append(f"session state: {type(e).__name__}: {e}")
            logger.error(f"Unexpected failure saving session {session_id}: {e}", exc_info=True)
        return False

    def _emit(self, event_type: str, decision: RoutingDecision, extra: Optional[Dict[str, Any]] = None) -> None:
        if self.events is None:
            return
        payload = {
            "message_id": decision.message_id,
            "category": decision.category,
            "priority": decision.priority,
            "destination": decision.primary_destination,
            "is_fallback": decision.is_fallback,
            "source": decision.source
        }
        payload.update(extra or {})
        self.events.emit(event_type, payload)
