"""
Pydantic models for routing config entities, per-request value objects and
the HTTP API.

Python attributes are snake_case; the external JSON representation (API
bodies, export files, stored rows) is camelCase.  Both spellings are
accepted on input.
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


# ---------------------------------------------------------------------------
# Complexity levels
# ---------------------------------------------------------------------------

class ComplexityLevel(str, Enum):
    """Five ordinal buckets.  Ordering uses ``rank``, never string comparison."""

    SUPER_EASY = ("super_easy", 0)
    EASY = ("easy", 1)
    MEDIUM = ("medium", 2)
    HARD = ("hard", 3)
    SUPER_HARD = ("super_hard", 4)

    def __new__(cls, label: str, rank: int) -> "ComplexityLevel":
        member = str.__new__(cls, label)
        member._value_ = label
        member.rank = rank
        return member

    def __str__(self) -> str:
        return self.value


Protocol = Literal["openai-compatible", "anthropic-native"]
Scenario = Literal["reasoning", "coding", "creativity", "speed"]


# ---------------------------------------------------------------------------
# Model pricing / catalog
# ---------------------------------------------------------------------------

class ModelPricing(CamelModel):
    model: str
    vendor: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    # USD per 1M tokens
    input_price: float = Field(ge=0)
    output_price: float = Field(ge=0)
    cache_read_price: Optional[float] = None
    cache_write_price: Optional[float] = None
    thinking_price: Optional[float] = None
    # 0–100
    reasoning_score: float = Field(default=50, ge=0, le=100)
    coding_score: float = Field(default=50, ge=0, le=100)
    creativity_score: float = Field(default=50, ge=0, le=100)
    speed_score: float = Field(default=50, ge=0, le=100)
    context_length: int = 128  # thousands of tokens
    supports_extended_thinking: bool = False
    supports_cache_control: bool = False
    supports_vision: bool = False
    supports_function_calling: bool = True
    supports_streaming: bool = True
    recommended_scenarios: Optional[list[str]] = None
    notes: Optional[str] = None
    is_enabled: bool = True
    is_deprecated: bool = False

    @property
    def average_score(self) -> float:
        return (
            self.reasoning_score + self.coding_score
            + self.creativity_score + self.speed_score
        ) / 4


# ---------------------------------------------------------------------------
# Capability tags
# ---------------------------------------------------------------------------

class CapabilityTag(CamelModel):
    tag_id: str
    name: str
    description: Optional[str] = None
    category: str
    priority: int = 50
    required_protocol: Optional[Protocol] = None
    required_skills: Optional[list[str]] = None
    required_models: Optional[list[str]] = None
    requires_extended_thinking: bool = False
    requires_cache_control: bool = False
    requires_vision: bool = False
    max_cost_per_m_token: Optional[float] = None
    is_active: bool = True
    is_builtin: bool = False


# ---------------------------------------------------------------------------
# Complexity routing config
# ---------------------------------------------------------------------------

class ComplexityModelConfig(CamelModel):
    vendor: str
    model: str
    api_type: Optional[str] = None
    base_url: Optional[str] = None


class ComplexityRoutingConfig(CamelModel):
    config_id: str
    name: str
    description: Optional[str] = None
    is_enabled: bool = True
    models: dict[ComplexityLevel, ComplexityModelConfig]
    classifier_model: str = "deepseek-v3-250324"
    classifier_vendor: str = "deepseek"
    classifier_base_url: Optional[str] = None
    tool_min_complexity: Optional[ComplexityLevel] = None
    is_builtin: bool = False

    @field_validator("models")
    @classmethod
    def _all_levels_present(
        cls, value: dict[ComplexityLevel, ComplexityModelConfig]
    ) -> dict[ComplexityLevel, ComplexityModelConfig]:
        missing = [level.value for level in ComplexityLevel if level not in value]
        if missing:
            raise ValueError(f"models is missing complexity levels: {', '.join(missing)}")
        # Stable level order regardless of input order
        return {level: value[level] for level in ComplexityLevel}


# ---------------------------------------------------------------------------
# Fallback chains
# ---------------------------------------------------------------------------

class FallbackFeatures(CamelModel):
    extended_thinking: Optional[bool] = None
    cache_control: Optional[bool] = None


class FallbackModel(CamelModel):
    vendor: str
    model: str
    protocol: Protocol = "openai-compatible"
    features: Optional[FallbackFeatures] = None
    base_url: Optional[str] = None


class FallbackChain(CamelModel):
    chain_id: str
    name: str
    description: Optional[str] = None
    models: list[FallbackModel]
    trigger_status_codes: list[int] = Field(default_factory=list)
    trigger_error_types: list[str] = Field(default_factory=list)
    trigger_timeout_ms: int = Field(default=60_000, ge=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=2_000, ge=0)
    preserve_protocol: bool = False
    is_active: bool = True
    is_builtin: bool = False

    @field_validator("models")
    @classmethod
    def _non_empty(cls, value: list[FallbackModel]) -> list[FallbackModel]:
        if not value:
            raise ValueError("a fallback chain needs at least one model")
        return value


# ---------------------------------------------------------------------------
# Cost strategies
# ---------------------------------------------------------------------------

class ScenarioWeights(CamelModel):
    reasoning: Optional[float] = None
    coding: Optional[float] = None
    creativity: Optional[float] = None
    speed: Optional[float] = None


class CostStrategy(CamelModel):
    strategy_id: str
    name: str
    description: Optional[str] = None
    cost_weight: float = 0.5
    performance_weight: float = 0.3
    capability_weight: float = 0.2
    max_cost_per_request: Optional[float] = None
    max_latency_ms: Optional[int] = None
    min_capability_score: Optional[float] = None
    scenario_weights: Optional[ScenarioWeights] = None
    is_active: bool = True
    is_builtin: bool = False


# ---------------------------------------------------------------------------
# Per-request value objects
# ---------------------------------------------------------------------------

class ClassifyResult(CamelModel):
    level: ComplexityLevel
    latency_ms: float
    raw_response: Optional[str] = None
    inherited_from_context: bool = False


class ComplexityRouteDecision(CamelModel):
    complexity: ClassifyResult
    level: ComplexityLevel          # after the tool floor is applied
    selected_model: ComplexityModelConfig
    protocol: Protocol
    features: FallbackFeatures = Field(default_factory=FallbackFeatures)
    # tag that overrode the complexity pick, if any
    capability_tag: Optional[str] = None
    classifier_skipped: bool = False


class TokenUsage(CamelModel):
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    thinking_tokens: Optional[int] = None
    cache_read_tokens: Optional[int] = None
    cache_write_tokens: Optional[int] = None


class CostCalculation(CamelModel):
    input_cost: float
    output_cost: float
    thinking_cost: float
    cache_cost: float
    total_cost: float
    currency: Literal["USD"] = "USD"


class BudgetStatus(CamelModel):
    daily_cost: float
    monthly_cost: float
    daily_limit: Optional[float] = None
    monthly_limit: Optional[float] = None
    daily_remaining: Optional[float] = None
    monthly_remaining: Optional[float] = None
    daily_exceeded: bool = False
    monthly_exceeded: bool = False
    alert_threshold: float = 0.8
    alert_triggered: bool = False
    should_downgrade: bool = False


class SelectModelResult(CamelModel):
    selected_model: Optional[str]
    strategy: str
    scenario: Optional[Scenario] = None
    score: Optional[float] = None


class CollectionStatus(CamelModel):
    loaded: bool
    count: int
    last_update: Optional[str] = None


class ConfigLoadStatus(CamelModel):
    model_pricing: CollectionStatus
    capability_tags: CollectionStatus
    fallback_chains: CollectionStatus
    cost_strategies: CollectionStatus
    complexity_routing_configs: CollectionStatus


# ---------------------------------------------------------------------------
# API request bodies
# ---------------------------------------------------------------------------

class ClassifyComplexityInput(CamelModel):
    message: str = Field(..., min_length=1)
    context: Optional[str] = None
    has_tools: bool = False
    config_id: Optional[str] = None


class CalculateCostInput(TokenUsage):
    model: str


class SelectModelInput(CamelModel):
    strategy_id: str
    available_models: list[str]
    scenario: Optional[Scenario] = None
    capability_tags: list[str] = Field(default_factory=list)


class ImportConfigInput(CamelModel):
    model_pricing: Optional[list[ModelPricing]] = None
    capability_tags: Optional[list[CapabilityTag]] = None
    fallback_chains: Optional[list[FallbackChain]] = None
    cost_strategies: Optional[list[CostStrategy]] = None
    complexity_routing_configs: Optional[list[ComplexityRoutingConfig]] = None
    overwrite: bool = False


class ExportConfigResponse(CamelModel):
    model_pricing: list[ModelPricing]
    capability_tags: list[CapabilityTag]
    fallback_chains: list[FallbackChain]
    cost_strategies: list[CostStrategy]
    complexity_routing_configs: list[ComplexityRoutingConfig]
    exported_at: str
    version: str


class ChatMessage(CamelModel):
    role: str
    content: Any = None
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[list[dict[str, Any]]] = None
    cache_control: Optional[dict[str, Any]] = None


class RouteRequest(CamelModel):
    bot_id: str = Field(..., min_length=1)
    messages: list[ChatMessage] = Field(..., min_length=1)
    tools: Optional[list[dict[str, Any]]] = None
    thinking: Optional[dict[str, Any]] = None
    max_tokens: int = Field(default=1024, ge=1, le=65_536)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    config_id: Optional[str] = None
    chain_id: Optional[str] = None
    routing_hint: Optional[str] = None
    installed_skills: list[str] = Field(default_factory=list)
    daily_limit: Optional[float] = None
    monthly_limit: Optional[float] = None
    alert_threshold: float = Field(default=0.8, gt=0, le=1)

    @model_validator(mode="after")
    def _has_user_message(self) -> "RouteRequest":
        if not any(m.role == "user" for m in self.messages):
            raise ValueError("messages must contain at least one user message")
        return self


class RouteResponse(CamelModel):
    response: dict[str, Any]
    model_used: str
    vendor: str
    protocol: Protocol
    complexity: ClassifyResult
    level: ComplexityLevel
    config_id: str
    chain_id: str
    fallback_index: int
    retries_used: int
    input_tokens: int
    output_tokens: int
    cost_usd: float
    latency_ms: float
    budget: BudgetStatus
    missing_skills: list[str] = Field(default_factory=list)
    capability_tag: Optional[str] = None
    routing_reasoning: str
