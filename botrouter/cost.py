"""
Cost calculation and strategy-driven model selection.

Selection logic
───────────────
score = cost_weight        * cost_score
      + performance_weight * scenario_score
      + capability_weight  * capability_fit

cost_score      100 / (1 + input_price + output_price), clamped to [0, 100]
scenario_score  the scenario's *_score field, or the mean of all four
capability_fit  mean of the four scores weighted by the strategy's
                scenario_weights (missing weights count as 0.5); without
                scenario_weights, the mean of reasoning/coding/creativity

Hard filters run before scoring: missing or disabled pricing,
min_capability_score, max_cost_per_request (priced on REFERENCE_USAGE) and
any requested capability tags.  Everything filtered out is a normal
outcome (selected_model=None), not an error.
"""

import logging
from typing import Optional

from botrouter.cache import ConfigCache
from botrouter.capabilities import model_satisfies_tag
from botrouter.errors import ConfigNotFoundError
from botrouter.models import (
    CostCalculation,
    CostStrategy,
    ModelPricing,
    Scenario,
    SelectModelResult,
    TokenUsage,
)

logger = logging.getLogger(__name__)

REFERENCE_USAGE = TokenUsage(input_tokens=2_000, output_tokens=1_000)
DEFAULT_SCENARIO_WEIGHT = 0.5
_PER_MILLION = 1_000_000


# ---------------------------------------------------------------------------
# Cost
# ---------------------------------------------------------------------------

def calculate_cost(pricing: Optional[ModelPricing], usage: TokenUsage) -> CostCalculation:
    """Price a request.  Unknown models (pricing=None) cost nothing."""
    if pricing is None:
        return CostCalculation(
            input_cost=0.0, output_cost=0.0, thinking_cost=0.0, cache_cost=0.0, total_cost=0.0
        )

    input_cost = usage.input_tokens / _PER_MILLION * pricing.input_price
    output_cost = usage.output_tokens / _PER_MILLION * pricing.output_price

    thinking_cost = 0.0
    if usage.thinking_tokens and pricing.thinking_price:
        thinking_cost = usage.thinking_tokens / _PER_MILLION * pricing.thinking_price

    cache_cost = 0.0
    if usage.cache_read_tokens and pricing.cache_read_price:
        cache_cost += usage.cache_read_tokens / _PER_MILLION * pricing.cache_read_price
    if usage.cache_write_tokens and pricing.cache_write_price:
        cache_cost += usage.cache_write_tokens / _PER_MILLION * pricing.cache_write_price

    total = input_cost + output_cost + thinking_cost + cache_cost
    logger.debug(
        "Cost | model=%s total=$%.6f input=$%.6f output=$%.6f thinking=$%.6f cache=$%.6f",
        pricing.model, total, input_cost, output_cost, thinking_cost, cache_cost,
    )
    return CostCalculation(
        input_cost=round(input_cost, 8),
        output_cost=round(output_cost, 8),
        thinking_cost=round(thinking_cost, 8),
        cache_cost=round(cache_cost, 8),
        total_cost=round(total, 8),
    )


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def cost_score(pricing: ModelPricing) -> float:
    return max(0.0, min(100.0, 100.0 / (1.0 + pricing.input_price + pricing.output_price)))


def scenario_score(pricing: ModelPricing, scenario: Optional[Scenario]) -> float:
    if scenario is None:
        return pricing.average_score
    return getattr(pricing, f"{scenario}_score")


def capability_fit(pricing: ModelPricing, strategy: CostStrategy) -> float:
    weights = strategy.scenario_weights
    if weights is None:
        return (pricing.reasoning_score + pricing.coding_score + pricing.creativity_score) / 3

    pairs = []
    for name in ("reasoning", "coding", "creativity", "speed"):
        weight = getattr(weights, name)
        pairs.append((getattr(pricing, f"{name}_score"), DEFAULT_SCENARIO_WEIGHT if weight is None else weight))
    total_weight = sum(w for _, w in pairs)
    if total_weight <= 0:
        return 0.0
    return sum(score * w for score, w in pairs) / total_weight


def blended_score(
    pricing: ModelPricing,
    strategy: CostStrategy,
    scenario: Optional[Scenario] = None,
) -> float:
    return (
        strategy.cost_weight * cost_score(pricing)
        + strategy.performance_weight * scenario_score(pricing, scenario)
        + strategy.capability_weight * capability_fit(pricing, strategy)
    )


# ---------------------------------------------------------------------------
# Selector
# ---------------------------------------------------------------------------

class ModelSelector:
    """Picks a model from a candidate list using a stored CostStrategy."""

    def __init__(self, config_cache: ConfigCache) -> None:
        self._cache = config_cache

    def calculate_cost(self, model: str, usage: TokenUsage) -> CostCalculation:
        pricing = self._cache.get_model_pricing(model)
        if pricing is None:
            logger.warning("No pricing for model, cost recorded as zero | model=%s", model)
        return calculate_cost(pricing, usage)

    def select_optimal_model(
        self,
        strategy_id: str,
        available_models: list[str],
        scenario: Optional[Scenario] = None,
        capability_tags: Optional[list[str]] = None,
    ) -> SelectModelResult:
        """
        Raises ConfigNotFoundError for an unknown or inactive strategy or
        capability tag.
        """
        strategy = self._cache.get_cost_strategy(strategy_id)
        if strategy is None:
            raise ConfigNotFoundError("cost strategy", strategy_id)

        tags = []
        for tag_id in capability_tags or []:
            tag = self._cache.get_capability_tag(tag_id)
            if tag is None:
                raise ConfigNotFoundError("capability tag", tag_id)
            tags.append(tag)

        best_model: Optional[str] = None
        best_score: Optional[float] = None
        for model in available_models:
            pricing = self._cache.get_model_pricing(model)
            if pricing is None or not pricing.is_enabled:
                logger.debug("Skipping %s: no enabled pricing record", model)
                continue
            if not self._passes_filters(pricing, strategy):
                continue
            unmet = [t.tag_id for t in tags if not model_satisfies_tag(pricing, t)]
            if unmet:
                logger.debug("Skipping %s: unmet capability tags %s", model, unmet)
                continue

            score = blended_score(pricing, strategy, scenario)
            # strict > keeps the earlier candidate on exact ties
            if best_score is None or score > best_score:
                best_model, best_score = model, score

        logger.info(
            "Model selection | strategy=%s scenario=%s candidates=%d selected=%s score=%s",
            strategy_id, scenario, len(available_models), best_model,
            None if best_score is None else f"{best_score:.4f}",
        )
        return SelectModelResult(
            selected_model=best_model,
            strategy=strategy_id,
            scenario=scenario,
            score=None if best_score is None else round(best_score, 6),
        )

    def _passes_filters(self, pricing: ModelPricing, strategy: CostStrategy) -> bool:
        if (
            strategy.min_capability_score is not None
            and pricing.average_score < strategy.min_capability_score
        ):
            logger.debug(
                "Skipping %s: capability %.1f < min %.1f",
                pricing.model, pricing.average_score, strategy.min_capability_score,
            )
            return False
        if strategy.max_cost_per_request is not None:
            reference_cost = calculate_cost(pricing, REFERENCE_USAGE).total_cost
            if reference_cost > strategy.max_cost_per_request:
                logger.debug(
                    "Skipping %s: reference cost $%.6f > max $%.6f",
                    pricing.model, reference_cost, strategy.max_cost_per_request,
                )
                return False
        return True
