"""Unit tests for the capability registry and the built-in handlers."""

import pytest

from intake_gateway.lib.config import InferenceConfig
from intake_gateway.lib.errors import CorruptInput, InferenceMalformed
from intake_gateway.models.workflow import AgentStep
from intake_gateway.services.agent_handlers import (
    AttachmentInventoryHandler,
    InferenceSpecialistHandler,
    RecipientVerificationHandler,
    StepContext,
    get_profile,
    specialist_capabilities,
)
from intake_gateway.services.capability_registry import CapabilityRegistry, build_default_registry

from tests.conftest import ScriptedInference


def context_for(capability: str, context=None, previous=None) -> StepContext:
    return StepContext(
        task_id="t-1",
        task_type="test",
        step=AgentStep(name=f"{capability}_step", capability=capability, description="Analyze it"),
        context=context or {},
        previous_results=previous or {}
    )


class TestCapabilityRegistry:
    """Registration and one-time resolution."""

    def test_register_and_resolve(self):
        registry = CapabilityRegistry()
        registry.register("attachment_inventory", AttachmentInventoryHandler)

        handlers, unavailable = registry.resolve_all()

        assert "attachment_inventory" in registry
        assert isinstance(handlers["attachment_inventory"], AttachmentInventoryHandler)
        assert unavailable == {}

    def test_duplicate_registration_rejected(self):
        registry = CapabilityRegistry()
        registry.register("x", AttachmentInventoryHandler)

        with pytest.raises(ValueError):
            registry.register("x", AttachmentInventoryHandler)

        registry.register("x", RecipientVerificationHandler, replace=True)
        handlers, _ = registry.resolve_all()
        assert isinstance(handlers["x"], RecipientVerificationHandler)

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            CapabilityRegistry().register("", AttachmentInventoryHandler)

    def test_unregister(self):
        registry = CapabilityRegistry()
        registry.register("x", AttachmentInventoryHandler)

        assert registry.unregister("x") is True
        assert registry.unregister("x") is False
        assert registry.capabilities() == []

    def test_failing_factory_marks_unavailable(self):
        def broken():
            raise RuntimeError("no credentials")

        registry = CapabilityRegistry()
        registry.register("broken", broken)
        handlers, unavailable = registry.resolve_all()

        assert handlers == {}
        assert unavailable["broken"] == "RuntimeError: no credentials"

    def test_disabled_capability(self):
        registry = CapabilityRegistry()
        registry.register("x", AttachmentInventoryHandler)
        handlers, unavailable = registry.resolve_all(disabled=["x"])

        assert handlers == {}
        assert unavailable == {"x": "disabled by configuration"}


class TestDefaultRegistry:
    """Built-in capabilities with and without inference."""

    def test_without_inference_specialists_are_unavailable(self):
        handlers, unavailable = build_default_registry().resolve_all()

        assert set(handlers) == {"recipient_verification", "attachment_inventory"}
        assert set(unavailable) == set(specialist_capabilities())
        assert "CapabilityResolutionFailure" in unavailable["legal_analysis"]

    def test_with_inference_everything_resolves(self):
        inference = ScriptedInference("analysis")
        registry = build_default_registry(inference, InferenceConfig(model="m"))
        handlers, unavailable = registry.resolve_all()

        assert unavailable == {}
        assert isinstance(handlers["legal_analysis"], InferenceSpecialistHandler)
        assert handlers["legal_analysis"].model == "m"


class TestInferenceSpecialistHandler:
    """AI-backed specialists."""

    @pytest.fixture
    def make_handler(self):
        def factory(inference):
            return InferenceSpecialistHandler(
                capability="timeline_building",
                profile=get_profile("timeline_building"),
                inference=inference,
                model="m"
            )
        return factory

    @pytest.mark.asyncio
    async def test_prompt_includes_context_and_previous_results(self, make_handler):
        inference = ScriptedInference("Filed 2024-01-02; hearing 2024-02-01.")
        handler = make_handler(inference)

        output = await handler.execute(context_for(
            "timeline_building",
            context={"subject": "Motion filed"},
            previous={"analysis_step": {"analysis": "earlier"}}
        ))

        prompt = inference.requests[0].messages[0]["content"]
        assert prompt.startswith("You are a timeline specialist.")
        assert "Motion filed" in prompt
        assert "PREVIOUS RESULTS" in prompt
        assert output["analysis"] == "Filed 2024-01-02; hearing 2024-02-01."
        assert output["role"] == "Legal Timeline Specialist"

    @pytest.mark.asyncio
    async def test_empty_response_is_malformed(self, make_handler):
        handler = make_handler(ScriptedInference("   "))

        with pytest.raises(InferenceMalformed):
            await handler.execute(context_for("timeline_building"))


class TestRecipientVerificationHandler:
    """Deterministic address checks."""

    @pytest.mark.asyncio
    async def test_valid_addresses(self):
        output = await RecipientVerificationHandler().execute(context_for(
            "recipient_verification",
            context={"recipient": "Smith-v-Jones@Firm.com", "sender": "client@acme.com"}
        ))

        assert output["verified"] is True
        assert output["recipient"] == "smith-v-jones@firm.com"
        assert output["case_id"] == "SMITH_v_JONES"

    @pytest.mark.asyncio
    async def test_invalid_addresses(self):
        with pytest.raises(CorruptInput) as exc_info:
            await RecipientVerificationHandler().execute(context_for(
                "recipient_verification",
                context={"recipient": "not-an-address", "sender": ""}
            ))

        assert "invalid recipient" in exc_info.value.message
        assert "invalid sender" in exc_info.value.message


class TestAttachmentInventoryHandler:
    """Attachment summaries."""

    @pytest.mark.asyncio
    async def test_counts_and_sizes(self):
        output = await AttachmentInventoryHandler().execute(context_for(
            "attachment_inventory",
            context={"attachments": [
                {"name": "a.pdf", "size": 100, "media_type": "application/pdf"},
                {"name": "b.pdf", "size": 50, "media_type": "application/pdf"},
                {"name": "c.png", "size": -1, "media_type": "image/png"},
                "garbage",
            ]}
        ))

        assert output["count"] == 3
        assert output["names"] == ["a.pdf", "b.pdf", "c.png"]
        assert output["total_size"] == 150
        assert output["media_types"] == {"application/pdf": 2, "image/png": 1}

    @pytest.mark.asyncio
    async def test_no_attachments(self):
        output = await AttachmentInventoryHandler().execute(context_for("attachment_inventory"))
        assert output["count"] == 0
