"""Providers that speak the OpenAI chat-completions protocol elsewhere.

  - Ollama (self-hosted, ``{base_url}/v1``, no key)
  - DeepSeek (``https://api.deepseek.com``, API key)
"""

from __future__ import annotations

from vibe_engine.core.llm.models import ProviderInfo
from vibe_engine.core.llm.providers.openai_provider import OpenAIProvider
from vibe_engine.utils.exceptions import LLMError


class OpenAICompatibleProvider(OpenAIProvider):
    """Provider for an OpenAI-compatible API endpoint.

    Parameters
    ----------
    info:
        Registry metadata; ``base_url`` is required.
    api_key:
        API key, empty for services that do not authenticate.
    timeout:
        SDK-level request timeout in seconds.
    """

    def __init__(self, info: ProviderInfo, api_key: str = "", timeout: float = 60.0):
        if not info.base_url:
            raise LLMError(info.id, "base_url is required but was empty.")
        self.requires_api_key = info.requires_api_key
        super().__init__(info, api_key, timeout)


class OllamaProvider(OpenAICompatibleProvider):
    """Self-hosted Ollama server; the OpenAI-compatible API lives under ``/v1``."""

    def base_url(self) -> str:
        return f"{self.info.base_url}/v1"
