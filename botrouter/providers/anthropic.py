"""
Anthropic SDK wrapper for anthropic-native fallback entries.

Responsibilities:
  - Call the Anthropic messages API with a native request body
  - Measure wall-clock latency
  - Normalise SDK errors into UpstreamError
"""

import logging
import time
from typing import Optional

import anthropic

from botrouter.errors import UpstreamError

logger = logging.getLogger(__name__)

# messages.create() keyword arguments; anything else goes through extra_body
_CREATE_KWARGS = {
    "model", "messages", "max_tokens", "system", "temperature", "top_p",
    "top_k", "stop_sequences", "tools", "tool_choice", "thinking", "metadata",
}


class AnthropicProvider:
    """Thin wrapper around the async Anthropic Python SDK."""

    def __init__(self, api_key: Optional[str], base_url: Optional[str] = None) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._client: Optional[anthropic.AsyncAnthropic] = None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                base_url=self._base_url,
                max_retries=0,  # retries are the fallback chain's job
            )
        return self._client

    async def messages(self, body: dict, timeout: Optional[float] = None) -> dict:
        """
        Send a messages request and return the response as a dict in the
        Anthropic wire shape.

        Raises UpstreamError on failure.
        """
        if not self._api_key:
            raise UpstreamError(
                "ANTHROPIC_API_KEY not configured",
                error_type="configuration",
                model=body.get("model"),
            )

        kwargs = {k: v for k, v in body.items() if k in _CREATE_KWARGS and v is not None}
        extra = {k: v for k, v in body.items() if k not in _CREATE_KWARGS and k != "stream"}
        if extra:
            kwargs["extra_body"] = extra
        if timeout is not None:
            kwargs["timeout"] = timeout
        model_id = kwargs.get("model")

        logger.info(
            "Calling Anthropic API | model=%s max_tokens=%s", model_id, kwargs.get("max_tokens")
        )

        start = time.perf_counter()
        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APITimeoutError as exc:
            raise UpstreamError(str(exc), error_type="timeout", model=model_id) from exc
        except anthropic.APIConnectionError as exc:
            raise UpstreamError(str(exc), error_type="connection_error", model=model_id) from exc
        except anthropic.APIStatusError as exc:
            body_error = exc.body.get("error") if isinstance(exc.body, dict) else None
            error_type = body_error.get("type") if isinstance(body_error, dict) else None
            logger.warning(
                "Anthropic API error | model=%s status=%d type=%s",
                model_id, exc.status_code, error_type,
            )
            raise UpstreamError(
                exc.message,
                status_code=exc.status_code,
                error_type=error_type,
                model=model_id,
                body=exc.body,
            ) from exc
        latency_ms = (time.perf_counter() - start) * 1000

        logger.info(
            "Anthropic response | model=%s in_tok=%d out_tok=%d latency=%.0fms",
            model_id,
            response.usage.input_tokens,
            response.usage.output_tokens,
            latency_ms,
        )
        return response.model_dump(mode="json")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
