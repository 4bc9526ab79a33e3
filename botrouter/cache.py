"""
In-memory snapshot of all routing config.

Request-time reads never touch the store: they go to an immutable
ConfigSnapshot that refresh() swaps in after (re)loading every collection.
Admin writes call refresh() afterwards.

Thread-safety: the snapshot reference is swapped under a lock, and a
snapshot is never mutated after construction, so readers holding an old
snapshot stay consistent.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from botrouter import database
from botrouter.models import (
    CapabilityTag,
    CollectionStatus,
    ComplexityRoutingConfig,
    ConfigLoadStatus,
    CostStrategy,
    FallbackChain,
    ModelPricing,
)

logger = logging.getLogger(__name__)


def _frozen(items: Iterable, key: str) -> Mapping:
    return MappingProxyType({getattr(item, key): item for item in items})


@dataclass(frozen=True)
class ConfigSnapshot:
    model_pricing: Mapping[str, ModelPricing] = field(default_factory=lambda: MappingProxyType({}))
    capability_tags: Mapping[str, CapabilityTag] = field(default_factory=lambda: MappingProxyType({}))
    fallback_chains: Mapping[str, FallbackChain] = field(default_factory=lambda: MappingProxyType({}))
    cost_strategies: Mapping[str, CostStrategy] = field(default_factory=lambda: MappingProxyType({}))
    complexity_routing_configs: Mapping[str, ComplexityRoutingConfig] = field(
        default_factory=lambda: MappingProxyType({})
    )
    loaded_at: Optional[str] = None

    @classmethod
    def build(
        cls,
        *,
        model_pricing: Iterable[ModelPricing] = (),
        capability_tags: Iterable[CapabilityTag] = (),
        fallback_chains: Iterable[FallbackChain] = (),
        cost_strategies: Iterable[CostStrategy] = (),
        complexity_routing_configs: Iterable[ComplexityRoutingConfig] = (),
        loaded_at: Optional[str] = None,
    ) -> "ConfigSnapshot":
        return cls(
            model_pricing=_frozen(model_pricing, "model"),
            capability_tags=_frozen(capability_tags, "tag_id"),
            fallback_chains=_frozen(fallback_chains, "chain_id"),
            cost_strategies=_frozen(cost_strategies, "strategy_id"),
            complexity_routing_configs=_frozen(complexity_routing_configs, "config_id"),
            loaded_at=loaded_at,
        )


class ConfigCache:
    """Holds the current ConfigSnapshot and answers request-time lookups."""

    def __init__(self, snapshot: Optional[ConfigSnapshot] = None) -> None:
        self._lock = threading.Lock()
        self._snapshot = snapshot or ConfigSnapshot()
        self._loaded = snapshot is not None

    @property
    def snapshot(self) -> ConfigSnapshot:
        with self._lock:
            return self._snapshot

    def replace(self, snapshot: ConfigSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot
            self._loaded = True

    async def refresh(self) -> ConfigSnapshot:
        """Reload every collection from the store and swap the snapshot in."""
        data = await database.load_all()
        snapshot = ConfigSnapshot.build(
            **data, loaded_at=datetime.now(timezone.utc).isoformat()
        )
        self.replace(snapshot)
        logger.info(
            "Config snapshot loaded | pricing=%d tags=%d chains=%d strategies=%d complexity=%d",
            len(snapshot.model_pricing),
            len(snapshot.capability_tags),
            len(snapshot.fallback_chains),
            len(snapshot.cost_strategies),
            len(snapshot.complexity_routing_configs),
        )
        return snapshot

    def status(self) -> ConfigLoadStatus:
        with self._lock:
            snap, loaded = self._snapshot, self._loaded

        def _one(collection: Mapping) -> CollectionStatus:
            return CollectionStatus(loaded=loaded, count=len(collection), last_update=snap.loaded_at)

        return ConfigLoadStatus(
            model_pricing=_one(snap.model_pricing),
            capability_tags=_one(snap.capability_tags),
            fallback_chains=_one(snap.fallback_chains),
            cost_strategies=_one(snap.cost_strategies),
            complexity_routing_configs=_one(snap.complexity_routing_configs),
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_model_pricing(self, model: str) -> Optional[ModelPricing]:
        return self.snapshot.model_pricing.get(model)

    def get_capability_tag(self, tag_id: str) -> Optional[CapabilityTag]:
        tag = self.snapshot.capability_tags.get(tag_id)
        return tag if tag is not None and tag.is_active else None

    def get_cost_strategy(self, strategy_id: str) -> Optional[CostStrategy]:
        strategy = self.snapshot.cost_strategies.get(strategy_id)
        return strategy if strategy is not None and strategy.is_active else None

    def get_active_chain(self, chain_id: str) -> Optional[FallbackChain]:
        chain = self.snapshot.fallback_chains.get(chain_id)
        return chain if chain is not None and chain.is_active else None

    def get_complexity_config(self, config_id: str) -> Optional[ComplexityRoutingConfig]:
        """Returns disabled configs too; the resolver decides what to do with them."""
        return self.snapshot.complexity_routing_configs.get(config_id)
