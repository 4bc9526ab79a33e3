"""
Fallback chain engine.

Walks a FallbackChain's models in order.  An attempt that fails with a
triggering error (status code, error type, or timeout) advances to the next
model, spending one retry from the chain-wide budget and waiting
retry_delay_ms first.  Non-triggering errors propagate immediately.  When
the chain is exhausted the last attempt's exception is re-raised as-is,
with a note naming the chain.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx

from botrouter.errors import UpstreamError
from botrouter.models import FallbackChain, FallbackModel, Protocol
from botrouter.protocol import adapt_request, adapt_response

logger = logging.getLogger(__name__)

UpstreamCall = Callable[[FallbackModel, dict], Awaitable[dict]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class AttemptError:
    index: int
    vendor: str
    model: str
    status_code: Optional[int]
    error_type: Optional[str]
    message: str
    elapsed_ms: float


@dataclass
class FallbackResult:
    response: dict
    model: FallbackModel
    index: int
    retries_used: int
    protocol: Protocol
    errors: list[AttemptError] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

def classify_error_type(exc: BaseException) -> Optional[str]:
    """Map an attempt failure to the tag matched against trigger_error_types."""
    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        return "timeout"
    if isinstance(exc, UpstreamError):
        if exc.status_code == 429:
            return "rate_limit"
        if exc.status_code == 529 or exc.error_type == "overloaded_error":
            return "overloaded"
        return exc.error_type
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return "connection_error"
    return None


def status_code_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, UpstreamError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def should_trigger(
    chain: FallbackChain,
    status_code: Optional[int] = None,
    error_type: Optional[str] = None,
    elapsed_ms: Optional[float] = None,
) -> bool:
    if status_code is not None and status_code in chain.trigger_status_codes:
        logger.info("Trigger fallback | chain=%s status=%d", chain.chain_id, status_code)
        return True
    if error_type and error_type in chain.trigger_error_types:
        logger.info("Trigger fallback | chain=%s error_type=%s", chain.chain_id, error_type)
        return True
    if (
        elapsed_ms is not None
        and chain.trigger_timeout_ms > 0
        and elapsed_ms > chain.trigger_timeout_ms
    ):
        logger.info(
            "Trigger fallback | chain=%s elapsed=%.0fms > %dms",
            chain.chain_id, elapsed_ms, chain.trigger_timeout_ms,
        )
        return True
    return False


def apply_features(payload: dict, target: FallbackModel) -> dict:
    """Drop extended thinking from the payload for an entry that turns it off."""
    features = target.features
    if features is not None and features.extended_thinking is False and "thinking" in payload:
        logger.info("Extended thinking disabled for %s/%s", target.vendor, target.model)
        return {k: v for k, v in payload.items() if k != "thinking"}
    return payload


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class FallbackEngine:
    """
    Executes a request against a fallback chain.

    ``call`` performs one attempt: it receives the chain entry and a payload
    already shaped for that entry's protocol.  ``sleep`` is injectable so
    tests don't wait out retry delays.
    """

    def __init__(self, call: UpstreamCall, sleep: Sleep = asyncio.sleep) -> None:
        self._call = call
        self._sleep = sleep

    async def execute(
        self,
        chain: FallbackChain,
        request: dict,
        caller_protocol: Protocol = "openai-compatible",
    ) -> FallbackResult:
        index = 0
        retries_used = 0
        errors: list[AttemptError] = []
        timeout_s = chain.trigger_timeout_ms / 1000 if chain.trigger_timeout_ms > 0 else None

        while True:
            target = chain.models[index]
            payload = adapt_request(request, caller_protocol, target.protocol)
            payload = apply_features({**payload, "model": target.model}, target)

            start = time.perf_counter()
            try:
                response = await asyncio.wait_for(self._call(target, payload), timeout_s)
            except Exception as exc:
                elapsed_ms = (time.perf_counter() - start) * 1000
                status_code = status_code_of(exc)
                error_type = classify_error_type(exc)
                errors.append(AttemptError(
                    index=index,
                    vendor=target.vendor,
                    model=target.model,
                    status_code=status_code,
                    error_type=error_type,
                    message=str(exc),
                    elapsed_ms=round(elapsed_ms, 1),
                ))

                if not should_trigger(chain, status_code, error_type, elapsed_ms):
                    logger.warning(
                        "Non-retryable upstream error | chain=%s model=%s status=%s type=%s",
                        chain.chain_id, target.model, status_code, error_type,
                    )
                    raise

                if index + 1 >= len(chain.models):
                    reason = "all models failed"
                elif retries_used >= chain.max_retries:
                    reason = f"retry budget of {chain.max_retries} spent"
                else:
                    reason = None

                if reason is not None:
                    exc.add_note(
                        f"fallback chain {chain.chain_id!r} exhausted after "
                        f"{len(errors)} attempt(s): {reason}"
                    )
                    logger.error(
                        "Fallback chain exhausted | chain=%s attempts=%d reason=%s",
                        chain.chain_id, len(errors), reason,
                    )
                    raise

                index += 1
                retries_used += 1
                nxt = chain.models[index]
                logger.warning(
                    "Fallback | chain=%s %s/%s -> %s/%s retry=%d/%d",
                    chain.chain_id, target.vendor, target.model,
                    nxt.vendor, nxt.model, retries_used, chain.max_retries,
                )
                if chain.retry_delay_ms > 0:
                    await self._sleep(chain.retry_delay_ms / 1000)
                continue

            protocol = target.protocol
            if chain.preserve_protocol and protocol != caller_protocol:
                response = adapt_response(response, protocol, caller_protocol)
                protocol = caller_protocol

            return FallbackResult(
                response=response,
                model=target,
                index=index,
                retries_used=retries_used,
                protocol=protocol,
                errors=errors,
            )
