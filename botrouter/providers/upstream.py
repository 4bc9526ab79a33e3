"""
Dispatches one fallback-chain attempt to the right provider.

anthropic-native targets go through the Anthropic SDK; everything else is
an OpenAI-compatible chat-completions call.  Base URL resolution order:
the target's own base_url, a per-vendor <VENDOR>_BASE_URL override, the
vendor's well-known endpoint, then the global LLM_BASE_URL.  API keys:
<VENDOR>_API_KEY, then LLM_API_KEY.
"""

import logging
from typing import Optional

from botrouter.config import VENDOR_BASE_URLS, Settings
from botrouter.errors import UpstreamError
from botrouter.models import FallbackModel
from botrouter.providers.anthropic import AnthropicProvider
from botrouter.providers.openai_compat import OpenAICompatibleProvider

logger = logging.getLogger(__name__)


class UpstreamClient:
    def __init__(
        self,
        settings: Settings,
        openai_provider: Optional[OpenAICompatibleProvider] = None,
        anthropic_provider: Optional[AnthropicProvider] = None,
    ) -> None:
        self._settings = settings
        self._openai = openai_provider or OpenAICompatibleProvider()
        self._anthropic = anthropic_provider or AnthropicProvider(
            api_key=settings.anthropic_api_key,
            base_url=settings.anthropic_base_url,
        )

    def resolve_base_url(self, target: FallbackModel) -> Optional[str]:
        return (
            target.base_url
            or self._settings.vendor_base_urls.get(target.vendor)
            or VENDOR_BASE_URLS.get(target.vendor)
            or self._settings.llm_base_url
        )

    def resolve_api_key(self, vendor: str) -> Optional[str]:
        return self._settings.vendor_api_keys.get(vendor) or self._settings.llm_api_key

    async def call(self, target: FallbackModel, payload: dict) -> dict:
        """Send a payload already shaped for target.protocol."""
        if target.protocol == "anthropic-native":
            return await self._anthropic.messages(payload)

        base_url = self.resolve_base_url(target)
        api_key = self.resolve_api_key(target.vendor)
        if not base_url or not api_key:
            raise UpstreamError(
                f"no endpoint or API key configured for vendor {target.vendor!r}",
                error_type="configuration",
                model=target.model,
            )
        return await self._openai.chat(base_url, api_key, payload)

    async def aclose(self) -> None:
        await self._openai.aclose()
        await self._anthropic.aclose()
