"""
SQLite persistence layer for routing config and usage.

All public functions are async (aiosqlite) so they compose naturally with
FastAPI's async request handlers.

DB file: data/routing.db (ROUTER_DB_PATH overrides)
Tables:  one per config entity  (natural key + JSON body, soft delete)
         usage_log              (one row per routed request)

Config bodies are stored as camelCase JSON and re-validated through their
pydantic model on every read, so a row that no longer validates fails
loudly instead of leaking into routing.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Type

import aiosqlite
from pydantic import BaseModel

from botrouter.config import (
    DEFAULT_CAPABILITY_TAGS,
    DEFAULT_COMPLEXITY_CONFIGS,
    DEFAULT_COST_STRATEGIES,
    DEFAULT_DB_PATH,
    DEFAULT_FALLBACK_CHAINS,
    DEFAULT_MODEL_PRICING,
)
from botrouter.errors import DbError, DbErrorKind
from botrouter.models import (
    CapabilityTag,
    ComplexityRoutingConfig,
    CostStrategy,
    FallbackChain,
    ModelPricing,
)

logger = logging.getLogger(__name__)

DB_PATH: Path = DEFAULT_DB_PATH


@dataclass(frozen=True)
class EntityKind:
    table: str
    model: Type[BaseModel]
    key_field: str
    label: str

    def key_of(self, entity: BaseModel) -> str:
        return getattr(entity, self.key_field)


MODEL_PRICING = EntityKind("model_pricing", ModelPricing, "model", "model pricing")
CAPABILITY_TAGS = EntityKind("capability_tags", CapabilityTag, "tag_id", "capability tag")
FALLBACK_CHAINS = EntityKind("fallback_chains", FallbackChain, "chain_id", "fallback chain")
COST_STRATEGIES = EntityKind("cost_strategies", CostStrategy, "strategy_id", "cost strategy")
COMPLEXITY_CONFIGS = EntityKind(
    "complexity_routing_configs", ComplexityRoutingConfig, "config_id", "complexity routing config"
)

ENTITY_KINDS: dict[str, EntityKind] = {
    k.table: k
    for k in (MODEL_PRICING, CAPABILITY_TAGS, FALLBACK_CHAINS, COST_STRATEGIES, COMPLEXITY_CONFIGS)
}

_DEFAULTS: dict[str, list[BaseModel]] = {
    MODEL_PRICING.table: list(DEFAULT_MODEL_PRICING.values()),
    CAPABILITY_TAGS.table: list(DEFAULT_CAPABILITY_TAGS.values()),
    FALLBACK_CHAINS.table: list(DEFAULT_FALLBACK_CHAINS.values()),
    COST_STRATEGIES.table: list(DEFAULT_COST_STRATEGIES.values()),
    COMPLEXITY_CONFIGS.table: list(DEFAULT_COMPLEXITY_CONFIGS.values()),
}

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_ENTITY_TABLE = """
CREATE TABLE IF NOT EXISTS {table} (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    key         TEXT    NOT NULL,
    body        TEXT    NOT NULL,
    is_deleted  INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL
)
"""

# Soft-deleted rows must not block re-creating the same key
_CREATE_ENTITY_INDEX = (
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_key ON {table}(key) WHERE is_deleted = 0"
)

_CREATE_USAGE_TABLE = """
CREATE TABLE IF NOT EXISTS usage_log (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp       TEXT    NOT NULL,
    bot_id          TEXT    NOT NULL,
    model           TEXT    NOT NULL,
    vendor          TEXT    NOT NULL,
    protocol        TEXT    NOT NULL,
    input_tokens    INTEGER NOT NULL,
    output_tokens   INTEGER NOT NULL,
    thinking_tokens INTEGER,
    cost_usd        REAL    NOT NULL,
    complexity      TEXT,
    config_id       TEXT,
    chain_id        TEXT,
    fallback_index  INTEGER NOT NULL DEFAULT 0,
    retries_used    INTEGER NOT NULL DEFAULT 0,
    latency_ms      REAL    NOT NULL,
    status          TEXT    NOT NULL,
    error_message   TEXT
)
"""

_CREATE_USAGE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_usage_bot_time ON usage_log(bot_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_usage_model    ON usage_log(model)",
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def map_db_error(exc: Exception) -> DbError:
    """Translate a driver exception into a DbError with a closed kind."""
    message = str(exc)
    if isinstance(exc, sqlite3.IntegrityError):
        if "UNIQUE" in message:
            kind = DbErrorKind.UNIQUE_CONSTRAINT
        elif "FOREIGN KEY" in message:
            kind = DbErrorKind.FOREIGN_KEY_VIOLATION
        else:
            kind = DbErrorKind.UNKNOWN
    elif isinstance(exc, sqlite3.OperationalError) and (
        "locked" in message or "busy" in message
    ):
        kind = DbErrorKind.TRANSACTION_CONFLICT
    else:
        kind = DbErrorKind.UNKNOWN
    return DbError(kind, message)


def _dump(entity: BaseModel) -> str:
    return entity.model_dump_json(by_alias=True)


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------

async def init_db() -> None:
    """Create the database file, tables, and indexes if they don't exist."""
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(DB_PATH) as db:
        for kind in ENTITY_KINDS.values():
            await db.execute(_CREATE_ENTITY_TABLE.format(table=kind.table))
            await db.execute(_CREATE_ENTITY_INDEX.format(table=kind.table))
        await db.execute(_CREATE_USAGE_TABLE)
        for idx_sql in _CREATE_USAGE_INDEXES:
            await db.execute(idx_sql)
        await db.commit()
    logger.info("Database ready at %s", DB_PATH)


async def seed_defaults(overwrite: bool = False) -> dict[str, int]:
    """
    Write built-in config.  Without overwrite, only empty tables are seeded,
    so an operator who deleted a built-in keeps it deleted.
    """
    counts: dict[str, int] = {}
    for table, entities in _DEFAULTS.items():
        kind = ENTITY_KINDS[table]
        if not overwrite and await count_entities(kind) > 0:
            counts[table] = 0
            continue
        written = 0
        for entity in entities:
            await upsert_entity(kind, entity, overwrite=overwrite)
            written += 1
        counts[table] = written
    logger.info("Seeded defaults | %s", " ".join(f"{k}={v}" for k, v in counts.items()))
    return counts


# ---------------------------------------------------------------------------
# Config entities
# ---------------------------------------------------------------------------

async def create_entity(kind: EntityKind, entity: BaseModel) -> BaseModel:
    """Insert a new entity.  Raises DbError(UNIQUE_CONSTRAINT) if the key exists."""
    ts = _now()
    try:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.execute(
                f"INSERT INTO {kind.table} (key, body, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (kind.key_of(entity), _dump(entity), ts, ts),
            )
            await db.commit()
    except sqlite3.Error as exc:
        raise map_db_error(exc) from exc
    logger.info("Created %s | key=%s", kind.label, kind.key_of(entity))
    return entity


async def get_entity(kind: EntityKind, key: str) -> Optional[BaseModel]:
    async with aiosqlite.connect(DB_PATH) as db:
        row = await (
            await db.execute(
                f"SELECT body FROM {kind.table} WHERE key = ? AND is_deleted = 0", (key,)
            )
        ).fetchone()
    return kind.model.model_validate_json(row[0]) if row else None


async def list_entities(
    kind: EntityKind, limit: Optional[int] = None, offset: int = 0
) -> list[BaseModel]:
    """Live entities in insertion order."""
    sql = f"SELECT body FROM {kind.table} WHERE is_deleted = 0 ORDER BY id"
    params: list[Any] = []
    if limit is not None:
        sql += " LIMIT ? OFFSET ?"
        params += [limit, offset]
    async with aiosqlite.connect(DB_PATH) as db:
        rows = await (await db.execute(sql, params)).fetchall()
    return [kind.model.model_validate_json(r[0]) for r in rows]


async def count_entities(kind: EntityKind) -> int:
    async with aiosqlite.connect(DB_PATH) as db:
        row = await (
            await db.execute(f"SELECT COUNT(*) FROM {kind.table} WHERE is_deleted = 0")
        ).fetchone()
    return row[0] or 0


async def update_entity(kind: EntityKind, key: str, entity: BaseModel) -> BaseModel:
    """
    Replace the body of an existing entity.  The entity may carry a new key
    (a rename); renaming onto an existing key is a UNIQUE_CONSTRAINT error.
    """
    try:
        async with aiosqlite.connect(DB_PATH) as db:
            cursor = await db.execute(
                f"UPDATE {kind.table} SET key = ?, body = ?, updated_at = ? "
                f"WHERE key = ? AND is_deleted = 0",
                (kind.key_of(entity), _dump(entity), _now(), key),
            )
            await db.commit()
    except sqlite3.Error as exc:
        raise map_db_error(exc) from exc
    if cursor.rowcount == 0:
        raise DbError(DbErrorKind.NOT_FOUND, f"{kind.label} not found: {key!r}")
    logger.info("Updated %s | key=%s", kind.label, key)
    return entity


async def upsert_entity(kind: EntityKind, entity: BaseModel, overwrite: bool = True) -> bool:
    """
    Insert, or replace an existing live row when overwrite is set.
    Returns True when a row was written.
    """
    try:
        async with aiosqlite.connect(DB_PATH) as db:
            written = await _upsert_row(db, kind, entity, overwrite)
            await db.commit()
    except sqlite3.Error as exc:
        raise map_db_error(exc) from exc
    return written


async def upsert_many(
    batches: list[tuple[EntityKind, list[BaseModel]]], overwrite: bool = False
) -> dict[str, int]:
    """
    Upsert several collections in one transaction.  Any store error rolls
    the whole batch back.  Returns rows written per table.
    """
    written: dict[str, int] = {}
    try:
        async with aiosqlite.connect(DB_PATH) as db:
            try:
                for kind, entities in batches:
                    count = 0
                    for entity in entities:
                        if await _upsert_row(db, kind, entity, overwrite):
                            count += 1
                    written[kind.table] = count
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
    except sqlite3.Error as exc:
        logger.error("Bulk upsert rolled back | error=%s", exc)
        raise map_db_error(exc) from exc
    return written


async def _upsert_row(
    db: aiosqlite.Connection, kind: EntityKind, entity: BaseModel, overwrite: bool
) -> bool:
    key = kind.key_of(entity)
    ts = _now()
    existing = await (
        await db.execute(
            f"SELECT id FROM {kind.table} WHERE key = ? AND is_deleted = 0", (key,)
        )
    ).fetchone()
    if existing and not overwrite:
        return False
    if existing:
        await db.execute(
            f"UPDATE {kind.table} SET body = ?, updated_at = ? WHERE id = ?",
            (_dump(entity), ts, existing[0]),
        )
    else:
        await db.execute(
            f"INSERT INTO {kind.table} (key, body, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (key, _dump(entity), ts, ts),
        )
    return True


async def delete_entity(kind: EntityKind, key: str) -> None:
    """Soft delete."""
    async with aiosqlite.connect(DB_PATH) as db:
        cursor = await db.execute(
            f"UPDATE {kind.table} SET is_deleted = 1, updated_at = ? WHERE key = ? AND is_deleted = 0",
            (_now(), key),
        )
        await db.commit()
    if cursor.rowcount == 0:
        raise DbError(DbErrorKind.NOT_FOUND, f"{kind.label} not found: {key!r}")
    logger.info("Deleted %s | key=%s", kind.label, key)


async def load_all() -> dict[str, list[BaseModel]]:
    """Every live entity, keyed by table name (which matches ConfigSnapshot fields)."""
    return {table: await list_entities(kind) for table, kind in ENTITY_KINDS.items()}


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------

async def log_usage(
    *,
    bot_id: str,
    model: str,
    vendor: str,
    protocol: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float,
    latency_ms: float,
    status: str,
    thinking_tokens: Optional[int] = None,
    complexity: Optional[str] = None,
    config_id: Optional[str] = None,
    chain_id: Optional[str] = None,
    fallback_index: int = 0,
    retries_used: int = 0,
    error_message: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> None:
    """Insert one usage row."""
    ts = (timestamp or datetime.now(timezone.utc)).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """
            INSERT INTO usage_log (
                timestamp, bot_id, model, vendor, protocol,
                input_tokens, output_tokens, thinking_tokens, cost_usd,
                complexity, config_id, chain_id, fallback_index, retries_used,
                latency_ms, status, error_message
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                ts,
                bot_id,
                model,
                vendor,
                protocol,
                input_tokens,
                output_tokens,
                thinking_tokens,
                cost_usd,
                complexity,
                config_id,
                chain_id,
                fallback_index,
                retries_used,
                latency_ms,
                status,
                error_message,
            ),
        )
        await db.commit()


async def sum_usage_cost(bot_id: str, since: datetime) -> float:
    """Total recorded cost for a bot at or after ``since`` (an aware UTC datetime)."""
    async with aiosqlite.connect(DB_PATH) as db:
        row = await (
            await db.execute(
                "SELECT COALESCE(SUM(cost_usd), 0) FROM usage_log WHERE bot_id = ? AND timestamp >= ?",
                (bot_id, since.isoformat()),
            )
        ).fetchone()
    return float(row[0])
