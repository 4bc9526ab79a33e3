"""Tests for the SQLite persistence layer and the config snapshot."""

import sqlite3

import pytest

from botrouter import database
from botrouter.cache import ConfigCache
from botrouter.config import DEFAULT_COST_STRATEGIES, DEFAULT_MODEL_PRICING
from botrouter.errors import DbError, DbErrorKind
from botrouter.models import CostStrategy


def _strategy(strategy_id: str = "custom", **fields) -> CostStrategy:
    return CostStrategy(strategy_id=strategy_id, name=strategy_id.title(), **fields)


class TestInitAndSeed:
    @pytest.mark.asyncio
    async def test_init_creates_parent_directory(self, tmp_path, monkeypatch):
        path = tmp_path / "nested" / "dir" / "routing.db"
        monkeypatch.setattr(database, "DB_PATH", path)
        await database.init_db()
        await database.init_db()  # idempotent
        assert path.exists()

    @pytest.mark.asyncio
    async def test_seed_fills_empty_tables_once(self, db):
        first = await database.seed_defaults()
        assert first["model_pricing"] == len(DEFAULT_MODEL_PRICING)
        assert first["cost_strategies"] == len(DEFAULT_COST_STRATEGIES)

        second = await database.seed_defaults()
        assert set(second.values()) == {0}
        assert await database.count_entities(database.MODEL_PRICING) == len(DEFAULT_MODEL_PRICING)

    @pytest.mark.asyncio
    async def test_seed_leaves_operator_deletions_alone(self, db):
        await database.seed_defaults()
        await database.delete_entity(database.COST_STRATEGIES, "balanced")

        await database.seed_defaults()
        assert await database.get_entity(database.COST_STRATEGIES, "balanced") is None

        await database.seed_defaults(overwrite=True)
        assert await database.get_entity(database.COST_STRATEGIES, "balanced") is not None


class TestEntityCrud:
    @pytest.mark.asyncio
    async def test_create_get_list(self, db):
        kind = database.COST_STRATEGIES
        await database.create_entity(kind, _strategy("a", cost_weight=0.9))
        await database.create_entity(kind, _strategy("b"))

        fetched = await database.get_entity(kind, "a")
        assert isinstance(fetched, CostStrategy)
        assert fetched.cost_weight == 0.9
        assert [s.strategy_id for s in await database.list_entities(kind)] == ["a", "b"]
        assert [s.strategy_id for s in await database.list_entities(kind, limit=1, offset=1)] == ["b"]

    @pytest.mark.asyncio
    async def test_bodies_are_stored_camel_case(self, db):
        await database.create_entity(database.COST_STRATEGIES, _strategy(max_cost_per_request=0.5))
        with sqlite3.connect(db) as conn:
            (body,) = conn.execute("SELECT body FROM cost_strategies").fetchone()
        assert '"maxCostPerRequest":0.5' in body
        assert "max_cost_per_request" not in body

    @pytest.mark.asyncio
    async def test_duplicate_key_is_unique_constraint(self, db):
        await database.create_entity(database.COST_STRATEGIES, _strategy())
        with pytest.raises(DbError) as excinfo:
            await database.create_entity(database.COST_STRATEGIES, _strategy())
        assert excinfo.value.kind is DbErrorKind.UNIQUE_CONSTRAINT

    @pytest.mark.asyncio
    async def test_update_and_rename(self, db):
        kind = database.COST_STRATEGIES
        await database.create_entity(kind, _strategy("old"))
        await database.update_entity(kind, "old", _strategy("new", cost_weight=0.1))

        assert await database.get_entity(kind, "old") is None
        assert (await database.get_entity(kind, "new")).cost_weight == 0.1

    @pytest.mark.asyncio
    async def test_update_missing_is_not_found(self, db):
        with pytest.raises(DbError) as excinfo:
            await database.update_entity(database.COST_STRATEGIES, "ghost", _strategy("ghost"))
        assert excinfo.value.kind is DbErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_soft_delete_frees_the_key(self, db):
        kind = database.COST_STRATEGIES
        await database.create_entity(kind, _strategy())
        await database.delete_entity(kind, "custom")

        assert await database.get_entity(kind, "custom") is None
        assert await database.count_entities(kind) == 0
        with pytest.raises(DbError) as excinfo:
            await database.delete_entity(kind, "custom")
        assert excinfo.value.kind is DbErrorKind.NOT_FOUND

        await database.create_entity(kind, _strategy())
        assert await database.count_entities(kind) == 1

    @pytest.mark.asyncio
    async def test_upsert(self, db):
        kind = database.COST_STRATEGIES
        assert await database.upsert_entity(kind, _strategy(cost_weight=0.1))
        assert not await database.upsert_entity(kind, _strategy(cost_weight=0.2), overwrite=False)
        assert (await database.get_entity(kind, "custom")).cost_weight == 0.1

        assert await database.upsert_entity(kind, _strategy(cost_weight=0.3))
        assert (await database.get_entity(kind, "custom")).cost_weight == 0.3


def test_map_db_error():
    assert database.map_db_error(
        sqlite3.IntegrityError("UNIQUE constraint failed: t.key")
    ).kind is DbErrorKind.UNIQUE_CONSTRAINT
    assert database.map_db_error(
        sqlite3.IntegrityError("FOREIGN KEY constraint failed")
    ).kind is DbErrorKind.FOREIGN_KEY_VIOLATION
    assert database.map_db_error(
        sqlite3.OperationalError("database is locked")
    ).kind is DbErrorKind.TRANSACTION_CONFLICT
    assert database.map_db_error(RuntimeError("?")).kind is DbErrorKind.UNKNOWN


class TestConfigCacheRefresh:
    @pytest.mark.asyncio
    async def test_refresh_loads_snapshot(self, db):
        await database.seed_defaults()
        cache = ConfigCache()
        assert cache.status().model_pricing.loaded is False

        await cache.refresh()
        status = cache.status()
        assert status.model_pricing.loaded
        assert status.model_pricing.count == len(DEFAULT_MODEL_PRICING)
        assert status.complexity_routing_configs.count == 1
        assert status.fallback_chains.last_update is not None
        assert cache.get_model_pricing("gpt-4o").input_price == 2.5

    @pytest.mark.asyncio
    async def test_old_snapshot_is_unchanged_after_refresh(self, db):
        await database.seed_defaults()
        cache = ConfigCache()
        before = await cache.refresh()

        await database.delete_entity(database.MODEL_PRICING, "gpt-4o")
        after = await cache.refresh()

        assert "gpt-4o" in before.model_pricing
        assert "gpt-4o" not in after.model_pricing
        assert cache.get_model_pricing("gpt-4o") is None

    def test_inactive_entries_are_hidden(self, config_cache, default_snapshot):
        chain = default_snapshot.fallback_chains["default"].model_copy(update={"is_active": False})
        snapshot = type(default_snapshot).build(fallback_chains=[chain])
        assert ConfigCache(snapshot).get_active_chain("default") is None
        assert config_cache.get_active_chain("default") is not None
