"""
Complexity router: maps a message to a model via a ComplexityRoutingConfig.

Flow
────
classify(message, context, has_tools)   → ClassifyResult (fail-open medium)
apply tool floor (tool_min_complexity)  → effective level
config.models[level]                    → ComplexityModelConfig
api_type / vendor == "anthropic"        → anthropic-native, else openai-compatible
highest-priority capability tag         → may force anthropic-native (thinking, cache control)

A request with no user text skips the classifier and routes on its
capability tags alone, starting from the config's medium model.
"""

import logging
from typing import Any, Optional, Sequence, Union

from botrouter.cache import ConfigCache
from botrouter.classifier import ComplexityClassifier, ensure_min_complexity
from botrouter.config import DEFAULT_NATIVE_MODEL
from botrouter.errors import ConfigIntegrityError, ConfigNotFoundError
from botrouter.models import (
    CapabilityTag,
    ChatMessage,
    ClassifyResult,
    ComplexityLevel,
    ComplexityModelConfig,
    ComplexityRouteDecision,
    ComplexityRoutingConfig,
    FallbackFeatures,
    Protocol,
)
from botrouter.protocol import text_of

logger = logging.getLogger(__name__)


def infer_protocol(vendor: str, api_type: Optional[str] = None) -> Protocol:
    if api_type:
        return "anthropic-native" if api_type in ("anthropic", "anthropic-native") else "openai-compatible"
    return "anthropic-native" if vendor == "anthropic" else "openai-compatible"


def extract_message_and_context(
    messages: list[Union[ChatMessage, dict[str, Any]]],
) -> tuple[str, Optional[str]]:
    """
    The last user message is what gets classified.  The nearest preceding
    non-system message, if any, is its context (so "Yes" after a design
    discussion inherits that complexity).
    """
    plain = [m.model_dump() if isinstance(m, ChatMessage) else m for m in messages]
    last_user = None
    for i in range(len(plain) - 1, -1, -1):
        if plain[i].get("role") == "user":
            last_user = i
            break
    if last_user is None:
        return "", None

    message = text_of(plain[last_user].get("content"))
    context = None
    for prev in reversed(plain[:last_user]):
        if prev.get("role") != "system":
            context = text_of(prev.get("content")) or None
            break
    return message, context


def apply_capability_override(
    decision: ComplexityRouteDecision,
    requirements: Sequence[CapabilityTag],
) -> ComplexityRouteDecision:
    """
    Let the highest-priority requirement override a complexity decision.

    Extended thinking forces anthropic-native and, when the routed vendor is
    not anthropic, swaps in the tag's first required model.  Cache control
    is flagged on the decision; the protocol only changes to anthropic-native
    for a model already served by anthropic, since any other vendor's model
    cannot be sent to the Anthropic API.

    A decision made without the classifier follows the capability-only rules
    instead: thinking and cache control both move the request to anthropic,
    and a tag's required_protocol applies otherwise.
    """
    if not requirements:
        return decision
    primary = requirements[0]
    selected = decision.selected_model
    protocol = decision.protocol
    features = decision.features.model_copy()

    if primary.requires_extended_thinking:
        features.extended_thinking = True
        protocol = "anthropic-native"
        if selected.vendor != "anthropic" or decision.classifier_skipped:
            model = (primary.required_models or [DEFAULT_NATIVE_MODEL])[0]
            selected = ComplexityModelConfig(vendor="anthropic", model=model)
    elif primary.requires_cache_control:
        features.cache_control = True
        if decision.classifier_skipped:
            selected = ComplexityModelConfig(vendor="anthropic", model=DEFAULT_NATIVE_MODEL)
            protocol = "anthropic-native"
        elif selected.vendor == "anthropic":
            protocol = "anthropic-native"
    elif primary.required_protocol and decision.classifier_skipped:
        protocol = primary.required_protocol
    else:
        return decision

    logger.info(
        "Capability override | tag=%s model=%s/%s protocol=%s",
        primary.tag_id, selected.vendor, selected.model, protocol,
    )
    return decision.model_copy(update={
        "selected_model": selected,
        "protocol": protocol,
        "features": features,
        "capability_tag": primary.tag_id,
    })


class ComplexityRouter:
    """Resolves complexity levels to models using the cached routing configs."""

    def __init__(self, config_cache: ConfigCache, classifier: ComplexityClassifier) -> None:
        self._cache = config_cache
        self._classifier = classifier

    def get_config(self, config_id: str) -> ComplexityRoutingConfig:
        config = self._cache.get_complexity_config(config_id)
        if config is None or not config.is_enabled:
            raise ConfigNotFoundError("complexity routing config", config_id)
        return config

    def effective_level(
        self, config: ComplexityRoutingConfig, level: ComplexityLevel, has_tools: bool
    ) -> ComplexityLevel:
        if has_tools and config.tool_min_complexity is not None:
            return ensure_min_complexity(level, config.tool_min_complexity)
        return level

    def resolve(
        self, config_id: str, level: ComplexityLevel, has_tools: bool = False
    ) -> ComplexityModelConfig:
        """
        Raises ConfigNotFoundError for a missing or disabled config and
        ConfigIntegrityError if the config has no model for the level.
        """
        config = self.get_config(config_id)
        final = self.effective_level(config, level, has_tools)
        target = config.models.get(final)
        if target is None:
            logger.error(
                "Complexity config has no model for level | config=%s level=%s",
                config_id, final,
            )
            raise ConfigIntegrityError(
                f"complexity routing config {config_id!r} has no model for level {final}"
            )
        return target

    async def route_message(
        self,
        config_id: str,
        message: str,
        context: Optional[str] = None,
        has_tools: bool = False,
        requirements: Sequence[CapabilityTag] = (),
    ) -> ComplexityRouteDecision:
        config = self.get_config(config_id)

        if not message.strip():
            logger.warning("No user text to classify, routing on capabilities | config=%s", config_id)
            result = ClassifyResult(level=ComplexityLevel.MEDIUM, latency_ms=0.0)
            skipped = True
        else:
            result = await self._classifier.with_config(config).classify(message, context, has_tools)
            skipped = False

        final = self.effective_level(config, result.level, has_tools)
        target = self.resolve(config_id, final)
        decision = ComplexityRouteDecision(
            complexity=result,
            level=final,
            selected_model=target,
            protocol=infer_protocol(target.vendor, target.api_type),
            features=FallbackFeatures(),
            classifier_skipped=skipped,
        )
        decision = apply_capability_override(decision, requirements)

        logger.info(
            "Routing decision | config=%s level=%s original=%s model=%s/%s protocol=%s",
            config_id, final, result.level, decision.selected_model.vendor,
            decision.selected_model.model, decision.protocol,
        )
        return decision
