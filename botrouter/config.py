"""
Runtime settings and built-in routing config.

Settings come from the environment (a .env file is honoured).  The
DEFAULT_* tables below are written into an empty store on first start and
by scripts/seed_routing_config.py; after that the store is the source of
truth.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from botrouter.models import (
    CapabilityTag,
    ComplexityLevel,
    ComplexityModelConfig,
    ComplexityRoutingConfig,
    CostStrategy,
    FallbackChain,
    FallbackFeatures,
    FallbackModel,
    ModelPricing,
    ScenarioWeights,
)

DEFAULT_CLASSIFIER_MODEL = "deepseek-v3-250324"
DEFAULT_CLASSIFIER_VENDOR = "deepseek"
DEFAULT_CLASSIFIER_TIMEOUT_MS = 30_000

# Anthropic model used when a capability forces anthropic-native routing and
# the matching tag names no model of its own
DEFAULT_NATIVE_MODEL = "claude-sonnet-4-20250514"

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "routing.db"

# OpenAI-compatible base URL per vendor, used when neither the routed model
# nor the environment overrides it.
VENDOR_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "google": "https://generativelanguage.googleapis.com/v1beta/openai",
    "zhipu": "https://open.bigmodel.cn/api/paas/v4",
    "dashscope": "https://dashscope.aliyuncs.com/compatible-mode/v1",
    "doubao": "https://ark.cn-beijing.volces.com/api/v3",
    "groq": "https://api.groq.com/openai/v1",
}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Settings:
    llm_base_url: Optional[str] = None
    llm_api_key: Optional[str] = None
    classifier_base_url: Optional[str] = None
    classifier_api_key: Optional[str] = None
    classifier_model: str = DEFAULT_CLASSIFIER_MODEL
    classifier_vendor: str = DEFAULT_CLASSIFIER_VENDOR
    classifier_timeout_ms: int = DEFAULT_CLASSIFIER_TIMEOUT_MS
    anthropic_api_key: Optional[str] = None
    anthropic_base_url: Optional[str] = None
    vendor_api_keys: dict[str, str] = field(default_factory=dict)
    vendor_base_urls: dict[str, str] = field(default_factory=dict)
    db_path: Path = DEFAULT_DB_PATH
    default_complexity_config_id: str = "default"
    default_fallback_chain_id: Optional[str] = "default"
    seed_defaults: bool = True
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    """Read Settings from the process environment (after loading .env)."""
    load_dotenv()

    vendor_api_keys = {}
    vendor_base_urls = {}
    for vendor in VENDOR_BASE_URLS:
        key = os.getenv(f"{vendor.upper()}_API_KEY")
        if key:
            vendor_api_keys[vendor] = key
        # ANTHROPIC_BASE_URL is the native SDK endpoint, not an OpenAI-compatible one
        url = None if vendor == "anthropic" else os.getenv(f"{vendor.upper()}_BASE_URL")
        if url:
            vendor_base_urls[vendor] = url

    return Settings(
        llm_base_url=os.getenv("LLM_BASE_URL") or None,
        llm_api_key=os.getenv("LLM_API_KEY") or None,
        classifier_base_url=os.getenv("CLASSIFIER_BASE_URL") or None,
        classifier_api_key=os.getenv("CLASSIFIER_API_KEY") or None,
        classifier_model=os.getenv("CLASSIFIER_MODEL", DEFAULT_CLASSIFIER_MODEL),
        classifier_vendor=os.getenv("CLASSIFIER_VENDOR", DEFAULT_CLASSIFIER_VENDOR),
        classifier_timeout_ms=int(
            os.getenv("CLASSIFIER_TIMEOUT_MS", str(DEFAULT_CLASSIFIER_TIMEOUT_MS))
        ),
        anthropic_api_key=vendor_api_keys.get("anthropic"),
        anthropic_base_url=os.getenv("ANTHROPIC_BASE_URL") or None,
        vendor_api_keys=vendor_api_keys,
        vendor_base_urls=vendor_base_urls,
        db_path=Path(os.getenv("ROUTER_DB_PATH", str(DEFAULT_DB_PATH))),
        default_complexity_config_id=os.getenv("DEFAULT_COMPLEXITY_CONFIG_ID", "default"),
        default_fallback_chain_id=os.getenv("DEFAULT_FALLBACK_CHAIN_ID", "default") or None,
        seed_defaults=_env_flag("ROUTER_SEED_DEFAULTS", True),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("ROUTER_HOST", "127.0.0.1"),
        port=int(os.getenv("ROUTER_PORT", "8000")),
    )


# ---------------------------------------------------------------------------
# Built-in model pricing (USD per 1M tokens, scores 0–100)
# ---------------------------------------------------------------------------

DEFAULT_MODEL_PRICING: dict[str, ModelPricing] = {
    p.model: p
    for p in [
        ModelPricing(
            model="claude-opus-4-20250514", vendor="anthropic",
            display_name="Claude Opus 4",
            input_price=15, output_price=75,
            cache_read_price=1.5, cache_write_price=18.75, thinking_price=15,
            reasoning_score=100, coding_score=98, creativity_score=95, speed_score=60,
            context_length=200,
            supports_extended_thinking=True, supports_cache_control=True, supports_vision=True,
        ),
        ModelPricing(
            model="claude-sonnet-4-20250514", vendor="anthropic",
            display_name="Claude Sonnet 4",
            input_price=3, output_price=15,
            cache_read_price=0.3, cache_write_price=3.75, thinking_price=3,
            reasoning_score=92, coding_score=95, creativity_score=90, speed_score=80,
            context_length=200,
            supports_extended_thinking=True, supports_cache_control=True, supports_vision=True,
        ),
        ModelPricing(
            model="claude-3-5-haiku-20241022", vendor="anthropic",
            display_name="Claude 3.5 Haiku",
            input_price=0.8, output_price=4,
            cache_read_price=0.08, cache_write_price=1.0,
            reasoning_score=75, coding_score=80, creativity_score=70, speed_score=95,
            context_length=200,
            supports_cache_control=True,
        ),
        ModelPricing(
            model="gpt-4o", vendor="openai", display_name="GPT-4o",
            input_price=2.5, output_price=10,
            reasoning_score=90, coding_score=92, creativity_score=88, speed_score=85,
            supports_vision=True,
        ),
        ModelPricing(
            model="gpt-4o-mini", vendor="openai", display_name="GPT-4o mini",
            input_price=0.15, output_price=0.6,
            reasoning_score=75, coding_score=78, creativity_score=72, speed_score=95,
            supports_vision=True,
        ),
        ModelPricing(
            model="o1", vendor="openai", display_name="o1",
            input_price=15, output_price=60,
            reasoning_score=98, coding_score=95, creativity_score=85, speed_score=50,
            context_length=200,
        ),
        ModelPricing(
            model="deepseek-chat", vendor="deepseek", display_name="DeepSeek Chat",
            input_price=0.14, output_price=0.28,
            reasoning_score=85, coding_score=92, creativity_score=80, speed_score=90,
            context_length=64,
        ),
        ModelPricing(
            model="deepseek-v3", vendor="deepseek", display_name="DeepSeek V3",
            input_price=0.27, output_price=1.1,
            reasoning_score=86, coding_score=90, creativity_score=80, speed_score=88,
            context_length=64,
        ),
        ModelPricing(
            model="deepseek-reasoner", vendor="deepseek", display_name="DeepSeek R1",
            input_price=0.55, output_price=2.19,
            reasoning_score=95, coding_score=93, creativity_score=78, speed_score=70,
            context_length=64,
        ),
        ModelPricing(
            model="gemini-2.0-flash", vendor="google", display_name="Gemini 2.0 Flash",
            input_price=0.1, output_price=0.4,
            reasoning_score=80, coding_score=78, creativity_score=75, speed_score=95,
            context_length=1000, supports_vision=True,
        ),
    ]
}


# ---------------------------------------------------------------------------
# Built-in cost strategies
# ---------------------------------------------------------------------------

DEFAULT_COST_STRATEGIES: dict[str, CostStrategy] = {
    s.strategy_id: s
    for s in [
        CostStrategy(
            strategy_id="lowest-cost", name="Lowest cost",
            cost_weight=0.8, performance_weight=0.1, capability_weight=0.1,
            max_cost_per_request=0.01,
            scenario_weights=ScenarioWeights(reasoning=0.2, coding=0.2, creativity=0.2, speed=0.6),
            is_builtin=True,
        ),
        CostStrategy(
            strategy_id="best-value", name="Best value",
            cost_weight=0.5, performance_weight=0.2, capability_weight=0.3,
            scenario_weights=ScenarioWeights(reasoning=0.4, coding=0.4, creativity=0.3, speed=0.4),
            is_builtin=True,
        ),
        CostStrategy(
            strategy_id="performance-first", name="Performance first",
            cost_weight=0.1, performance_weight=0.3, capability_weight=0.6,
            min_capability_score=85,
            scenario_weights=ScenarioWeights(reasoning=0.8, coding=0.7, creativity=0.5, speed=0.3),
            is_builtin=True,
        ),
        CostStrategy(
            strategy_id="balanced", name="Balanced",
            cost_weight=0.4, performance_weight=0.3, capability_weight=0.3,
            scenario_weights=ScenarioWeights(reasoning=0.5, coding=0.5, creativity=0.4, speed=0.5),
            is_builtin=True,
        ),
    ]
}


# ---------------------------------------------------------------------------
# Built-in fallback chains
# ---------------------------------------------------------------------------

_RETRYABLE_STATUS = [429, 500, 502, 503, 504]
_RETRYABLE_TYPES = ["rate_limit", "overloaded", "timeout"]

DEFAULT_FALLBACK_CHAINS: dict[str, FallbackChain] = {
    c.chain_id: c
    for c in [
        FallbackChain(
            chain_id="default", name="Default",
            description="General-purpose failover balancing quality and cost.",
            models=[
                FallbackModel(vendor="anthropic", model="claude-sonnet-4-20250514",
                              protocol="openai-compatible"),
                FallbackModel(vendor="openai", model="gpt-4o"),
                FallbackModel(vendor="deepseek", model="deepseek-chat"),
            ],
            trigger_status_codes=_RETRYABLE_STATUS,
            trigger_error_types=_RETRYABLE_TYPES,
            trigger_timeout_ms=60_000, max_retries=3, retry_delay_ms=2_000,
            preserve_protocol=False, is_builtin=True,
        ),
        FallbackChain(
            chain_id="deep-reasoning", name="Deep reasoning",
            description="Extended-thinking models first, then other reasoning models.",
            models=[
                FallbackModel(vendor="anthropic", model="claude-sonnet-4-20250514",
                              protocol="anthropic-native",
                              features=FallbackFeatures(extended_thinking=True)),
                FallbackModel(vendor="anthropic", model="claude-opus-4-20250514",
                              protocol="anthropic-native",
                              features=FallbackFeatures(extended_thinking=True)),
                FallbackModel(vendor="openai", model="o1"),
                FallbackModel(vendor="deepseek", model="deepseek-reasoner"),
            ],
            trigger_status_codes=_RETRYABLE_STATUS,
            trigger_error_types=_RETRYABLE_TYPES,
            trigger_timeout_ms=120_000, max_retries=3, retry_delay_ms=3_000,
            preserve_protocol=False, is_builtin=True,
        ),
        FallbackChain(
            chain_id="cost-optimized", name="Cost optimized",
            description="Cheap models only.",
            models=[
                FallbackModel(vendor="deepseek", model="deepseek-chat"),
                FallbackModel(vendor="openai", model="gpt-4o-mini"),
                FallbackModel(vendor="google", model="gemini-2.0-flash"),
            ],
            trigger_status_codes=_RETRYABLE_STATUS,
            trigger_error_types=_RETRYABLE_TYPES,
            trigger_timeout_ms=30_000, max_retries=3, retry_delay_ms=1_000,
            preserve_protocol=True, is_builtin=True,
        ),
    ]
}


# ---------------------------------------------------------------------------
# Built-in capability tags
# ---------------------------------------------------------------------------

DEFAULT_CAPABILITY_TAGS: dict[str, CapabilityTag] = {
    t.tag_id: t
    for t in [
        CapabilityTag(
            tag_id="deep-reasoning", name="Deep reasoning", category="reasoning",
            priority=100, required_protocol="anthropic-native",
            required_models=["claude-opus-4-20250514", "claude-sonnet-4-20250514"],
            requires_extended_thinking=True, is_builtin=True,
        ),
        CapabilityTag(
            tag_id="fast-reasoning", name="Fast reasoning", category="reasoning",
            priority=50, required_protocol="openai-compatible",
            required_models=["gpt-4o", "claude-sonnet-4-20250514", "deepseek-chat", "o3-mini"],
            is_builtin=True,
        ),
        CapabilityTag(
            tag_id="web-search", name="Web search", category="search",
            priority=80, required_skills=["web_search"], is_builtin=True,
        ),
        CapabilityTag(
            tag_id="code-execution", name="Code execution", category="code",
            priority=70, required_skills=["code_runner"], is_builtin=True,
        ),
        CapabilityTag(
            tag_id="cost-optimized", name="Cost optimized", category="cost",
            priority=90,
            required_models=["deepseek-chat", "gpt-4o-mini", "gemini-2.0-flash"],
            requires_cache_control=True, max_cost_per_m_token=1.0, is_builtin=True,
        ),
        CapabilityTag(
            tag_id="long-context", name="Long context", category="context",
            priority=60, required_protocol="openai-compatible",
            required_models=["gemini-1.5-pro", "gemini-2.0-flash"], is_builtin=True,
        ),
        CapabilityTag(
            tag_id="vision", name="Vision", category="vision",
            priority=75,
            required_models=["gpt-4o", "claude-sonnet-4-20250514", "gemini-2.0-flash"],
            requires_vision=True, is_builtin=True,
        ),
    ]
}


# ---------------------------------------------------------------------------
# Built-in complexity routing config
# ---------------------------------------------------------------------------

DEFAULT_COMPLEXITY_CONFIGS: dict[str, ComplexityRoutingConfig] = {
    "default": ComplexityRoutingConfig(
        config_id="default",
        name="Default complexity routing",
        description="Cheapest adequate model per complexity level.",
        models={
            ComplexityLevel.SUPER_EASY: ComplexityModelConfig(vendor="deepseek", model="deepseek-v3"),
            ComplexityLevel.EASY: ComplexityModelConfig(vendor="deepseek", model="deepseek-v3"),
            ComplexityLevel.MEDIUM: ComplexityModelConfig(vendor="openai", model="gpt-4o"),
            ComplexityLevel.HARD: ComplexityModelConfig(vendor="anthropic", model="claude-sonnet-4-20250514"),
            ComplexityLevel.SUPER_HARD: ComplexityModelConfig(vendor="anthropic", model="claude-opus-4-20250514"),
        },
        classifier_model=DEFAULT_CLASSIFIER_MODEL,
        classifier_vendor=DEFAULT_CLASSIFIER_VENDOR,
        tool_min_complexity=ComplexityLevel.EASY,
        is_builtin=True,
    ),
}
