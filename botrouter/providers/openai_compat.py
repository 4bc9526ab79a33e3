"""
OpenAI-compatible chat-completions client over httpx.

Most vendors (OpenAI, DeepSeek, Gemini's compatibility layer, Zhipu,
DashScope, ...) speak this protocol, so one client covers them all.
"""

import logging
import time
from typing import Optional

import httpx

from botrouter.errors import UpstreamError

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider:
    """POSTs a chat-completions body and returns the decoded JSON response."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self._http = http_client
        self._owns_client = http_client is None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient()
            self._owns_client = True
        return self._http

    async def chat(
        self,
        base_url: str,
        api_key: str,
        body: dict,
        timeout: Optional[float] = None,
    ) -> dict:
        """
        Raises UpstreamError on any HTTP or transport failure.  The error
        carries the status code and the upstream ``error.type`` when present.
        """
        model = body.get("model")
        body = {k: v for k, v in body.items() if v is not None}
        body.pop("stream", None)
        if body.pop("thinking", None) is not None:
            logger.warning(
                "Extended thinking is anthropic-native only, dropped | model=%s", model
            )
        url = f"{base_url.rstrip('/')}/chat/completions"

        logger.info("Calling OpenAI-compatible API | model=%s url=%s", model, url)
        start = time.perf_counter()
        try:
            response = await self.http.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise UpstreamError(
                f"request timed out: {exc}", error_type="timeout", model=model
            ) from exc
        except httpx.TransportError as exc:
            raise UpstreamError(
                f"connection failed: {exc}", error_type="connection_error", model=model
            ) from exc

        latency_ms = (time.perf_counter() - start) * 1000
        if response.is_error:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            error = payload.get("error") if isinstance(payload, dict) else None
            error_type = error.get("type") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(payload)[:200]
            logger.warning(
                "OpenAI-compatible API error | model=%s status=%d type=%s latency=%.0fms",
                model, response.status_code, error_type, latency_ms,
            )
            raise UpstreamError(
                message or response.reason_phrase,
                status_code=response.status_code,
                error_type=error_type,
                model=model,
                body=payload,
            )

        data = response.json()
        usage = data.get("usage") or {}
        logger.info(
            "OpenAI-compatible response | model=%s in_tok=%s out_tok=%s latency=%.0fms",
            model, usage.get("prompt_tokens"), usage.get("completion_tokens"), latency_ms,
        )
        return data

    async def aclose(self) -> None:
        if self._owns_client and self._http is not None:
            await self._http.aclose()
