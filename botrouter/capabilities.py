"""
Capability-tag detection and matching.

A request body (OpenAI or Anthropic shaped) is scanned for features that
map onto well-known tags: extended thinking, cache control, web search and
code-execution tools, image content.  An explicit routing hint comes first.
"""

import logging
from typing import Any, Mapping, Optional

from botrouter.models import CapabilityTag, ModelPricing

logger = logging.getLogger(__name__)


def _tool_named(tools: list[dict], name: str, tool_type: str) -> bool:
    for tool in tools:
        if tool.get("type") == tool_type or tool.get("name") == name:
            return True
        if (tool.get("function") or {}).get("name") == name:
            return True
    return False


def has_vision_content(messages: list[dict]) -> bool:
    for msg in messages:
        content = msg.get("content")
        if isinstance(content, list) and any(
            isinstance(part, dict) and part.get("type") in ("image_url", "image")
            for part in content
        ):
            return True
    return False


def _has_cache_control(messages: list[dict]) -> bool:
    for msg in messages:
        if msg.get("cache_control"):
            return True
        content = msg.get("content")
        if isinstance(content, list) and any(
            isinstance(part, dict) and part.get("cache_control") for part in content
        ):
            return True
    return False


def parse_capability_requirements(
    body: dict[str, Any],
    tags: Mapping[str, CapabilityTag],
    routing_hint: Optional[str] = None,
) -> list[CapabilityTag]:
    """Tags the request needs, deduplicated and sorted by priority (highest first)."""
    found: dict[str, CapabilityTag] = {}

    def _add(tag_id: str, why: str) -> None:
        tag = tags.get(tag_id)
        if tag is not None and tag.is_active and tag_id not in found:
            found[tag_id] = tag
            logger.debug("Capability requirement | tag=%s reason=%s", tag_id, why)

    messages = body.get("messages") or []
    tools = body.get("tools") or []

    if routing_hint:
        _add(routing_hint, "routing hint")
    if (body.get("thinking") or {}).get("type") == "enabled":
        _add("deep-reasoning", "extended thinking")
    if _has_cache_control(messages):
        _add("cost-optimized", "cache control")
    if _tool_named(tools, "web_search", "web_search"):
        _add("web-search", "web_search tool")
    if _tool_named(tools, "code_runner", "code_execution"):
        _add("code-execution", "code_runner tool")
    if has_vision_content(messages):
        _add("vision", "image content")

    # sorted() is stable, so equal priorities keep detection order
    return sorted(found.values(), key=lambda t: t.priority, reverse=True)


def check_skills_availability(
    requirements: list[CapabilityTag], installed_skills: list[str]
) -> list[str]:
    """Skills the tags require that the bot does not have, in tag order."""
    installed = set(installed_skills)
    missing: list[str] = []
    for tag in requirements:
        for skill in tag.required_skills or []:
            if skill not in installed and skill not in missing:
                missing.append(skill)
    return missing


def model_satisfies_tag(pricing: ModelPricing, tag: CapabilityTag) -> bool:
    if tag.required_models and pricing.model not in tag.required_models:
        return False
    if tag.requires_extended_thinking and not pricing.supports_extended_thinking:
        return False
    if tag.requires_cache_control and not pricing.supports_cache_control:
        return False
    if tag.requires_vision and not pricing.supports_vision:
        return False
    if tag.max_cost_per_m_token is not None:
        mean_price = (pricing.input_price + pricing.output_price) / 2
        if mean_price > tag.max_cost_per_m_token:
            return False
    return True
