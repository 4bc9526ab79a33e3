"""
LLM-backed message complexity classifier.

Buckets a message into one of five ordinal levels:
  super_easy  greetings, acknowledgements, yes/no
  easy        simple questions, reminders, status checks
  medium      write code / an email, research, fix a bug
  hard        refactors, crash debugging, multi-file changes
  super_hard  system or architecture design, distributed systems, proofs

A single chat-completions call to a small model does the work.  The
classifier fails open: any error (missing endpoint, timeout, bad payload)
is logged and the message is treated as ``medium``.
"""

import logging
import re
import time
from dataclasses import dataclass, replace
from typing import Optional

import httpx

from botrouter.config import (
    DEFAULT_CLASSIFIER_MODEL,
    DEFAULT_CLASSIFIER_TIMEOUT_MS,
    DEFAULT_CLASSIFIER_VENDOR,
)
from botrouter.models import ClassifyResult, ComplexityLevel, ComplexityRoutingConfig

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 500
MAX_CONTEXT_CHARS = 200
SHORT_MESSAGE_WORDS = 5

CLASSIFICATION_PROMPT = """Classify complexity. ONE word: super_easy, easy, medium, hard, super_hard

If message has "Context:", classify based on BOTH context and message combined.
Short follow-ups ("Yes", "Try now?") inherit complexity from context.

super_easy: standalone greetings only (hi, hey, thanks, bye) with NO context
easy: simple questions, reminders, status checks
medium: write code, function, email, research, fix bug
hard: refactor, debug crash, multi-file change
super_hard: design system, design architecture, distributed, prove, autonomous

RULE: "design" = super_hard, "refactor" = hard
RULE: short message + complex context = use context complexity

Examples:
"Hey" -> super_easy
"What is 2+2?" -> easy
"Write a sort function" -> medium
"Send email to Bob" -> medium
"Refactor the auth module" -> hard
"Design a distributed system" -> super_hard

Context examples:
"Context: Design a system\\n---\\nMessage: Try now?" -> super_hard
"Context: Write a function\\n---\\nMessage: Yes" -> medium
"Context: Hey how are you\\n---\\nMessage: Good thanks" -> super_easy

Message: {MESSAGE}

Complexity:"""

# super_* first so "super_hard" is never read as "hard"
_SCAN_ORDER = [
    ComplexityLevel.SUPER_HARD,
    ComplexityLevel.SUPER_EASY,
    ComplexityLevel.HARD,
    ComplexityLevel.MEDIUM,
    ComplexityLevel.EASY,
]
_LEVEL_PATTERNS = [(level, re.compile(rf"\b{level.value}\b")) for level in _SCAN_ORDER]
_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)
_THINK_TAG = re.compile(r"</?think>")


# ---------------------------------------------------------------------------
# Ordinal helpers
# ---------------------------------------------------------------------------

def compare_complexity(a: ComplexityLevel, b: ComplexityLevel) -> int:
    """Negative if a < b, zero if equal, positive if a > b."""
    return a.rank - b.rank


def higher_complexity(a: ComplexityLevel, b: ComplexityLevel) -> ComplexityLevel:
    return a if compare_complexity(a, b) >= 0 else b


def ensure_min_complexity(level: ComplexityLevel, floor: ComplexityLevel) -> ComplexityLevel:
    return higher_complexity(level, floor)


# ---------------------------------------------------------------------------
# Prompt building / response parsing
# ---------------------------------------------------------------------------

def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def build_prompt(message: str, context: Optional[str] = None) -> str:
    message = _truncate(message, MAX_MESSAGE_CHARS)
    if context:
        classify_input = (
            f"Context: {_truncate(context, MAX_CONTEXT_CHARS)}\n---\nMessage: {message}"
        )
    else:
        classify_input = message
    return CLASSIFICATION_PROMPT.replace("{MESSAGE}", classify_input)


def extract_complexity(response: str) -> ComplexityLevel:
    """
    Map a raw model reply to a level.

    Reasoning models may wrap their answer in <think> blocks; those are
    stripped first.  An exact label wins, otherwise the first label found
    as a whole word (in _SCAN_ORDER), otherwise medium.
    """
    text = response.strip().lower()
    text = _THINK_TAG.sub("", _THINK_BLOCK.sub("", text)).strip()

    try:
        return ComplexityLevel(text)
    except ValueError:
        pass

    for level, pattern in _LEVEL_PATTERNS:
        if pattern.search(text):
            return level
    return ComplexityLevel.MEDIUM


def is_short_message(message: str) -> bool:
    return len(message.split()) <= SHORT_MESSAGE_WORDS


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClassifierConfig:
    model: str = DEFAULT_CLASSIFIER_MODEL
    vendor: str = DEFAULT_CLASSIFIER_VENDOR
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_ms: int = DEFAULT_CLASSIFIER_TIMEOUT_MS


@dataclass(frozen=True)
class LLMEndpoint:
    """Global OpenAI-compatible endpoint used when the classifier has none."""

    base_url: Optional[str] = None
    api_key: Optional[str] = None


class ComplexityClassifier:
    """Classifies a message (plus optional context) into a ComplexityLevel."""

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        default_endpoint: Optional[LLMEndpoint] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config or ClassifierConfig()
        self._default_endpoint = default_endpoint or LLMEndpoint()
        self._http = http_client
        self._owns_client = http_client is None
        self._parent: Optional["ComplexityClassifier"] = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._parent is not None:
            return self._parent.http
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient()
            self._owns_client = True
        return self._http

    def with_config(self, routing_config: ComplexityRoutingConfig) -> "ComplexityClassifier":
        """
        Return a classifier bound to a routing config's classifier settings.

        Credentials and timeout carry over from this instance.  The derived
        classifier always goes through this instance for its HTTP client, so
        it never opens one of its own.
        """
        config = replace(
            self.config,
            model=routing_config.classifier_model,
            vendor=routing_config.classifier_vendor,
            base_url=routing_config.classifier_base_url or self.config.base_url,
        )
        derived = ComplexityClassifier(config, self._default_endpoint)
        derived._parent = self
        derived._owns_client = False
        return derived

    async def classify(
        self,
        message: str,
        context: Optional[str] = None,
        has_tools: bool = False,
    ) -> ClassifyResult:
        start = time.perf_counter()
        try:
            raw = await self._call_classifier(build_prompt(message, context))
            level = extract_complexity(raw)
            if has_tools and level is ComplexityLevel.SUPER_EASY:
                level = ComplexityLevel.EASY
                logger.debug("Tools present: bumped super_easy -> easy")

            latency_ms = round((time.perf_counter() - start) * 1000, 1)
            logger.info(
                "Classification complete | level=%s latency=%.0fms context=%s tools=%s model=%s",
                level, latency_ms, bool(context), has_tools, self.config.model,
            )
            return ClassifyResult(
                level=level,
                latency_ms=latency_ms,
                raw_response=raw,
                inherited_from_context=bool(context) and is_short_message(message),
            )
        except Exception as exc:
            latency_ms = round((time.perf_counter() - start) * 1000, 1)
            logger.warning(
                "Classification failed, defaulting to medium | error=%s latency=%.0fms",
                exc, latency_ms,
            )
            return ClassifyResult(level=ComplexityLevel.MEDIUM, latency_ms=latency_ms)

    async def _call_classifier(self, prompt: str) -> str:
        base_url = self.config.base_url or self._default_endpoint.base_url
        api_key = self.config.api_key or self._default_endpoint.api_key
        if not base_url or not api_key:
            raise RuntimeError("OpenAI config not available for complexity classifier")

        response = await self.http.post(
            f"{base_url.rstrip('/')}/chat/completions",
            json={
                "model": self.config.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": 50,
                "temperature": 0,
            },
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=self.config.timeout_ms / 1000,
        )
        if response.is_error:
            logger.error(
                "Classifier API call failed | status=%d model=%s",
                response.status_code, self.config.model,
            )
            response.raise_for_status()

        choices = response.json().get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""

    async def aclose(self) -> None:
        if self._owns_client and self._http is not None:
            await self._http.aclose()
