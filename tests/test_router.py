"""Tests for complexity routing."""

import httpx
import pytest

from botrouter.cache import ConfigCache, ConfigSnapshot
from botrouter.classifier import ClassifierConfig, ComplexityClassifier
from botrouter.config import DEFAULT_CAPABILITY_TAGS
from botrouter.errors import ConfigIntegrityError, ConfigNotFoundError
from botrouter.models import (
    ChatMessage,
    ClassifyResult,
    ComplexityLevel,
    ComplexityModelConfig,
    ComplexityRouteDecision,
)
from botrouter.router import (
    ComplexityRouter,
    apply_capability_override,
    extract_message_and_context,
    infer_protocol,
)
from conftest import classifier_transport

L = ComplexityLevel


def _router(config_cache: ConfigCache, reply: str) -> ComplexityRouter:
    classifier = ComplexityClassifier(
        ClassifierConfig(base_url="https://classifier.test/v1", api_key="sk-test"),
        http_client=httpx.AsyncClient(transport=classifier_transport(reply)),
    )
    return ComplexityRouter(config_cache, classifier)


def test_infer_protocol():
    assert infer_protocol("anthropic") == "anthropic-native"
    assert infer_protocol("openai") == "openai-compatible"
    assert infer_protocol("deepseek") == "openai-compatible"
    # api_type wins over the vendor
    assert infer_protocol("openrouter", api_type="anthropic") == "anthropic-native"
    assert infer_protocol("anthropic", api_type="openai") == "openai-compatible"


class TestExtractMessageAndContext:
    def test_last_user_message_with_previous_turn_as_context(self):
        messages = [
            ChatMessage(role="system", content="You are helpful"),
            ChatMessage(role="user", content="Design a distributed cache"),
            ChatMessage(role="assistant", content="Here is a design..."),
            ChatMessage(role="user", content="Try now?"),
        ]
        assert extract_message_and_context(messages) == ("Try now?", "Here is a design...")

    def test_system_prompt_is_not_context(self):
        messages = [
            {"role": "system", "content": "You are helpful"},
            {"role": "user", "content": [{"type": "text", "text": "Hey"}]},
        ]
        assert extract_message_and_context(messages) == ("Hey", None)

    def test_no_user_message(self):
        assert extract_message_and_context([{"role": "assistant", "content": "hi"}]) == ("", None)


class TestComplexityRouter:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply, model, protocol", [
        ("super_easy", "deepseek-v3", "openai-compatible"),
        ("medium", "gpt-4o", "openai-compatible"),
        ("hard", "claude-sonnet-4-20250514", "anthropic-native"),
        ("super_hard", "claude-opus-4-20250514", "anthropic-native"),
    ])
    async def test_level_maps_to_model(self, config_cache, reply, model, protocol):
        decision = await _router(config_cache, reply).route_message("default", "msg")
        assert decision.selected_model.model == model
        assert decision.protocol == protocol
        assert decision.level is decision.complexity.level

    @pytest.mark.asyncio
    async def test_tool_floor_raises_level(self, config_cache):
        config = config_cache.get_complexity_config("default").model_copy(
            update={"tool_min_complexity": L.MEDIUM}
        )
        cache = ConfigCache(ConfigSnapshot.build(complexity_routing_configs=[config]))

        decision = await _router(cache, "easy").route_message("default", "Check status", has_tools=True)

        assert decision.complexity.level is L.EASY
        assert decision.level is L.MEDIUM
        assert decision.selected_model.model == "gpt-4o"

    @pytest.mark.asyncio
    async def test_classifier_failure_routes_to_medium(self, config_cache):
        classifier = ComplexityClassifier(ClassifierConfig())  # no endpoint configured
        decision = await ComplexityRouter(config_cache, classifier).route_message("default", "Hey")
        assert decision.level is L.MEDIUM
        assert decision.selected_model.model == "gpt-4o"

    @pytest.mark.asyncio
    async def test_unknown_config(self, config_cache):
        with pytest.raises(ConfigNotFoundError):
            await _router(config_cache, "easy").route_message("missing", "Hey")

    def test_disabled_config_is_not_found(self, config_cache):
        config = config_cache.get_complexity_config("default").model_copy(update={"is_enabled": False})
        cache = ConfigCache(ConfigSnapshot.build(complexity_routing_configs=[config]))
        with pytest.raises(ConfigNotFoundError):
            _router(cache, "easy").resolve("default", L.EASY)

    def test_missing_level_is_an_integrity_error(self, config_cache):
        config = config_cache.get_complexity_config("default")
        models = dict(config.models)
        del models[L.HARD]
        # model_copy skips validation, standing in for a corrupted row
        broken = config.model_copy(update={"models": models})
        cache = ConfigCache(ConfigSnapshot.build(complexity_routing_configs=[broken]))

        with pytest.raises(ConfigIntegrityError):
            _router(cache, "hard").resolve("default", L.HARD)

    def test_resolve_without_classifier(self, config_cache):
        target = _router(config_cache, "unused").resolve("default", L.SUPER_EASY, has_tools=True)
        assert target == ComplexityModelConfig(vendor="deepseek", model="deepseek-v3")


TAGS = DEFAULT_CAPABILITY_TAGS


class TestCapabilityOverride:
    @pytest.mark.asyncio
    async def test_thinking_moves_a_non_anthropic_pick_to_the_tag_model(self, config_cache):
        decision = await _router(config_cache, "medium").route_message(
            "default", "Write a sort function", requirements=[TAGS["deep-reasoning"]]
        )

        assert decision.level is L.MEDIUM
        assert decision.selected_model.vendor == "anthropic"
        assert decision.selected_model.model == "claude-opus-4-20250514"
        assert decision.protocol == "anthropic-native"
        assert decision.features.extended_thinking is True
        assert decision.capability_tag == "deep-reasoning"

    @pytest.mark.asyncio
    async def test_thinking_keeps_an_anthropic_pick(self, config_cache):
        decision = await _router(config_cache, "hard").route_message(
            "default", "Refactor auth", requirements=[TAGS["deep-reasoning"]]
        )
        assert decision.selected_model.model == "claude-sonnet-4-20250514"
        assert decision.protocol == "anthropic-native"
        assert decision.features.extended_thinking is True

    @pytest.mark.asyncio
    async def test_thinking_without_required_models_uses_default_native_model(self, config_cache):
        tag = TAGS["deep-reasoning"].model_copy(update={"required_models": None})
        decision = await _router(config_cache, "easy").route_message(
            "default", "What is 2+2?", requirements=[tag]
        )
        assert decision.selected_model.model == "claude-sonnet-4-20250514"

    @pytest.mark.asyncio
    async def test_cache_control_on_anthropic_pick(self, config_cache):
        decision = await _router(config_cache, "hard").route_message(
            "default", "Refactor auth", requirements=[TAGS["cost-optimized"]]
        )
        assert decision.protocol == "anthropic-native"
        assert decision.features.cache_control is True
        assert decision.capability_tag == "cost-optimized"

    @pytest.mark.asyncio
    async def test_cache_control_keeps_other_vendors_on_their_protocol(self, config_cache):
        decision = await _router(config_cache, "medium").route_message(
            "default", "Write a sort function", requirements=[TAGS["cost-optimized"]]
        )
        assert decision.selected_model.model == "gpt-4o"
        assert decision.protocol == "openai-compatible"
        assert decision.features.cache_control is True

    @pytest.mark.asyncio
    async def test_only_the_highest_priority_tag_counts(self, config_cache):
        low_thinking = TAGS["deep-reasoning"].model_copy(update={"priority": 10})
        decision = await _router(config_cache, "medium").route_message(
            "default", "Find flights", requirements=[TAGS["web-search"], low_thinking]
        )
        assert decision.selected_model.model == "gpt-4o"
        assert decision.capability_tag is None

    @pytest.mark.asyncio
    async def test_empty_message_skips_the_classifier(self, config_cache):
        calls: list[httpx.Request] = []
        classifier = ComplexityClassifier(
            ClassifierConfig(base_url="https://classifier.test/v1", api_key="sk-test"),
            http_client=httpx.AsyncClient(transport=classifier_transport("super_hard", calls)),
        )
        decision = await ComplexityRouter(config_cache, classifier).route_message("default", "  ")

        assert calls == []
        assert decision.classifier_skipped is True
        assert decision.level is L.MEDIUM
        assert decision.selected_model.model == "gpt-4o"

    @pytest.mark.asyncio
    async def test_capability_only_route_applies_required_protocol(self, config_cache):
        decision = await _router(config_cache, "unused").route_message(
            "default", "", requirements=[TAGS["long-context"]]
        )
        assert decision.protocol == "openai-compatible"
        assert decision.capability_tag == "long-context"

        decision = await _router(config_cache, "unused").route_message(
            "default", "", requirements=[TAGS["cost-optimized"]]
        )
        assert decision.selected_model.vendor == "anthropic"
        assert decision.protocol == "anthropic-native"

    @pytest.mark.asyncio
    async def test_required_protocol_does_not_override_a_classified_pick(self, config_cache):
        decision = await _router(config_cache, "hard").route_message(
            "default", "Refactor auth", requirements=[TAGS["fast-reasoning"]]
        )
        assert decision.protocol == "anthropic-native"
        assert decision.capability_tag is None

    def test_no_requirements_is_a_no_op(self, config_cache):
        decision = ComplexityRouteDecision(
            complexity=ClassifyResult(level=L.EASY, latency_ms=1.0),
            level=L.EASY,
            selected_model=ComplexityModelConfig(vendor="deepseek", model="deepseek-v3"),
            protocol="openai-compatible",
        )
        assert apply_capability_override(decision, []) is decision
