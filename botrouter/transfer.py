"""
Bulk export / import of all routing config as one camelCase JSON document.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from botrouter import database
from botrouter.models import ExportConfigResponse, ImportConfigInput

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"

# ImportConfigInput / ExportConfigResponse field -> entity kind
_COLLECTIONS = {
    "model_pricing": database.MODEL_PRICING,
    "capability_tags": database.CAPABILITY_TAGS,
    "fallback_chains": database.FALLBACK_CHAINS,
    "cost_strategies": database.COST_STRATEGIES,
    "complexity_routing_configs": database.COMPLEXITY_CONFIGS,
}


async def export_config() -> ExportConfigResponse:
    collections = {field: await database.list_entities(kind) for field, kind in _COLLECTIONS.items()}
    logger.info(
        "Config exported | %s", " ".join(f"{k}={len(v)}" for k, v in collections.items())
    )
    return ExportConfigResponse(
        **collections,
        exported_at=datetime.now(timezone.utc).isoformat(),
        version=EXPORT_VERSION,
    )


async def import_config(payload: ImportConfigInput) -> dict[str, Any]:
    """
    Upsert every entity in the payload in a single transaction, so a store
    error leaves nothing half-imported.  Existing keys are skipped unless
    payload.overwrite is set.  Returns camelCase per-collection counts.
    """
    batches = [(kind, getattr(payload, field) or []) for field, kind in _COLLECTIONS.items()]
    written = await database.upsert_many(batches, overwrite=payload.overwrite)

    imported: dict[str, int] = {}
    skipped: dict[str, int] = {}
    for (field, kind), (_, entities) in zip(_COLLECTIONS.items(), batches):
        imported[field] = written[kind.table]
        skipped[field] = len(entities) - written[kind.table]

    logger.info(
        "Config imported | overwrite=%s %s",
        payload.overwrite, " ".join(f"{k}={v}" for k, v in imported.items()),
    )
    return {
        "imported": _camel(imported),
        "skipped": _camel(skipped),
    }


def _camel(counts: dict[str, int]) -> dict[str, int]:
    return {
        "modelPricing": counts["model_pricing"],
        "capabilityTags": counts["capability_tags"],
        "fallbackChains": counts["fallback_chains"],
        "costStrategies": counts["cost_strategies"],
        "complexityRoutingConfigs": counts["complexity_routing_configs"],
    }
