"""Capability registry: capability name to handler factory.

Factories are invoked once, when the orchestrator is constructed. A factory
that raises marks its capability unavailable; steps requiring it then fail
with CapabilityResolutionFailure instead of aborting the task.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from intake_gateway.lib.config import InferenceConfig
from intake_gateway.lib.errors import CapabilityResolutionFailure
from intake_gateway.services.agent_handlers import (
    AttachmentInventoryHandler,
    BaseCapabilityHandler,
    InferenceSpecialistHandler,
    RecipientVerificationHandler,
    get_profile,
    specialist_capabilities,
)
from intake_gateway.services.interfaces.inference import IInferenceCapability


logger = logging.getLogger(__name__)

HandlerFactory = Callable[[], BaseCapabilityHandler]


class CapabilityRegistry:
    """Table of capability factories."""

    def __init__(self):
        self._factories: Dict[str, HandlerFactory] = {}

    def register(self, capability: str, factory: HandlerFactory, replace: bool = False) -> None:
        """Register a factory for a capability name."""
        if not capability:
            raise ValueError("Capability name must be non-empty")
        if capability in self._factories and not replace:
            raise ValueError(f"Capability already registered: {capability}")
        self._factories[capability] = factory

    def unregister(self, capability: str) -> bool:
        return self._factories.pop(capability, None) is not None

    def capabilities(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, capability: str) -> bool:
        return capability in self._factories

    def resolve_all(
        self,
        disabled: Optional[Iterable[str]] = None
    ) -> Tuple[Dict[str, BaseCapabilityHandler], Dict[str, str]]:
        """Instantiate every handler once.

        Returns:
            (handlers by capability, reason by unavailable capability)
        """
        disabled_set = set(disabled or [])
        handlers: Dict[str, BaseCapabilityHandler] = {}
        unavailable: Dict[str, str] = {}

        for capability, factory in self._factories.items():
            if capability in disabled_set:
                unavailable[capability] = "disabled by configuration"
                continue
            try:
                handlers[capability] = factory()
            except Exception as e:
                unavailable[capability] = f"{type(e).__name__}: {e}"
                logger.warning(f"Capability {capability} unavailable: {e}")

        return handlers, unavailable


def _specialist_factory(
    capability: str,
    inference: Optional[IInferenceCapability],
    inference_config: InferenceConfig
) -> HandlerFactory:
    def factory() -> BaseCapabilityHandler:
        if inference is None:
            raise CapabilityResolutionFailure(
                f"{capability} requires an inference capability and none is configured",
                {"capability": capability}
            )
        return InferenceSpecialistHandler(
            capability=capability,
            profile=get_profile(capability),
            inference=inference,
            model=inference_config.model,
            max_output_tokens=inference_config.max_output_tokens
        )
    return factory


def build_default_registry(
    inference: Optional[IInferenceCapability] = None,
    inference_config: Optional[InferenceConfig] = None
) -> CapabilityRegistry:
    """Registry with the built-in specialist and deterministic capabilities."""
    inference_config = inference_config or InferenceConfig()
    registry = CapabilityRegistry()

    for capability in specialist_capabilities():
        registry.register(capability, _specialist_factory(capability, inference, inference_config))

    registry.register(RecipientVerificationHandler.capability, RecipientVerificationHandler)
    registry.register(AttachmentInventoryHandler.capability, AttachmentInventoryHandler)

    return registry
