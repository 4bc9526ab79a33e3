"""Shared test fixtures."""

from pathlib import Path

import httpx
import pytest

from botrouter import database
from botrouter.cache import ConfigCache, ConfigSnapshot
from botrouter.config import (
    DEFAULT_CAPABILITY_TAGS,
    DEFAULT_COMPLEXITY_CONFIGS,
    DEFAULT_COST_STRATEGIES,
    DEFAULT_FALLBACK_CHAINS,
    DEFAULT_MODEL_PRICING,
)


@pytest.fixture
def db_path(tmp_path: Path, monkeypatch) -> Path:
    """Point the store at a fresh SQLite file."""
    path = tmp_path / "routing.db"
    monkeypatch.setattr(database, "DB_PATH", path)
    return path


@pytest.fixture
async def db(db_path: Path) -> Path:
    await database.init_db()
    return db_path


@pytest.fixture
def default_snapshot() -> ConfigSnapshot:
    return ConfigSnapshot.build(
        model_pricing=DEFAULT_MODEL_PRICING.values(),
        capability_tags=DEFAULT_CAPABILITY_TAGS.values(),
        fallback_chains=DEFAULT_FALLBACK_CHAINS.values(),
        cost_strategies=DEFAULT_COST_STRATEGIES.values(),
        complexity_routing_configs=DEFAULT_COMPLEXITY_CONFIGS.values(),
        loaded_at="2026-01-01T00:00:00+00:00",
    )


@pytest.fixture
def config_cache(default_snapshot: ConfigSnapshot) -> ConfigCache:
    return ConfigCache(default_snapshot)


def chat_completion(content: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> dict:
    """Minimal OpenAI chat-completions response body."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "model": "test-model",
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": "stop",
        }],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


def classifier_transport(reply: str, calls: list | None = None) -> httpx.MockTransport:
    """MockTransport that answers every classifier call with ``reply``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(200, json=chat_completion(reply))

    return httpx.MockTransport(handler)


def anthropic_message(text: str, input_tokens: int = 10, output_tokens: int = 5) -> dict:
    """Minimal Anthropic messages response body."""
    return {
        "id": "msg_test",
        "type": "message",
        "role": "assistant",
        "model": "test-model",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }


class FakeUpstream:
    """
    Stands in for UpstreamClient.call.  Models listed in ``failures`` raise
    an UpstreamError with that status code; ``fail_all`` fails every call.
    """

    def __init__(self, failures: dict | None = None, fail_all: int | None = None) -> None:
        self.failures = failures or {}
        self.fail_all = fail_all
        self.calls: list[tuple] = []

    async def __call__(self, target, payload: dict) -> dict:
        from botrouter.errors import UpstreamError

        self.calls.append((target, payload))
        status = self.fail_all or self.failures.get(target.model)
        if status:
            raise UpstreamError("upstream unavailable", status_code=status, model=target.model)
        if target.protocol == "anthropic-native":
            return anthropic_message(f"hello from {target.model}", 1000, 500)
        return chat_completion(f"hello from {target.model}", 1000, 500)


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def app_main(db_path, monkeypatch):
    """The FastAPI module with seeding on and a classifier that always answers ``medium``."""
    from dataclasses import replace

    from botrouter import main

    # importing main points the store at settings.db_path
    monkeypatch.setattr(database, "DB_PATH", db_path)
    monkeypatch.setattr(main, "settings", replace(
        main.settings,
        seed_defaults=True,
        default_complexity_config_id="default",
        default_fallback_chain_id="default",
    ))
    install_fakes(monkeypatch, main, "medium", FakeUpstream())
    return main


def install_fakes(monkeypatch, main, classifier_reply: str, upstream: FakeUpstream) -> None:
    from botrouter.classifier import ClassifierConfig, ComplexityClassifier
    from botrouter.fallback import FallbackEngine
    from botrouter.router import ComplexityRouter

    classifier = ComplexityClassifier(
        ClassifierConfig(base_url="https://classifier.test/v1", api_key="sk-test"),
        http_client=httpx.AsyncClient(transport=classifier_transport(classifier_reply)),
    )
    monkeypatch.setattr(main, "classifier", classifier)
    monkeypatch.setattr(main, "complexity_router", ComplexityRouter(main.config_cache, classifier))
    monkeypatch.setattr(main, "fallback_engine", FallbackEngine(upstream, sleep=no_sleep))
