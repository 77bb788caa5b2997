"""Provider metadata and fallback preference.

The registry knows every provider the engine can talk to:

  - ``local``: a GGUF model executed in-process (no key, needs the local runtime)
  - ``ollama``: a self-hosted Ollama server (OpenAI-compatible at ``/v1``)
  - ``anthropic``: Anthropic Claude (API key)
  - ``openai``: OpenAI GPT (API key)
  - ``deepseek``: DeepSeek (API key, OpenAI-compatible at api.deepseek.com)

It also holds the ordered fallback list consulted by
:class:`~vibe_engine.core.llm.selector.ProviderSelector`.
"""

from __future__ import annotations

from vibe_engine.config import Settings
from vibe_engine.core.llm.models import ProviderInfo, ProviderKind
from vibe_engine.utils.exceptions import LLMError
from vibe_engine.utils.logging import get_logger

logger = get_logger("llm.registry")

LOCAL_PROVIDER_ID = "local"

# Well-known OpenAI-compatible cloud providers and their default base URLs.
_KNOWN_COMPATIBLE_PROVIDERS: dict[str, str] = {
    "deepseek": "https://api.deepseek.com",
}

# Fallback tiers: local (only when already loaded) -> self-hosted -> cloud.
_KIND_RANK: dict[ProviderKind, int] = {
    ProviderKind.LOCAL: 0,
    ProviderKind.SELF_HOSTED: 1,
    ProviderKind.CLOUD: 2,
}


class ProviderRegistry:
    """Static/discoverable provider metadata plus the fallback preference list.

    Parameters
    ----------
    settings:
        Application settings; supplies API keys, endpoints and default models.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._providers: dict[str, ProviderInfo] = {}
        self._api_keys: dict[str, str] = {
            "anthropic": settings.anthropic_api_key,
            "openai": settings.openai_api_key,
            "deepseek": settings.deepseek_api_key,
        }

        self.register(
            ProviderInfo(
                id=LOCAL_PROVIDER_ID,
                name="Local model (in-process)",
                kind=ProviderKind.LOCAL,
                max_tokens=4096,
            )
        )
        self.register(
            ProviderInfo(
                id="ollama",
                name="Ollama (self-hosted)",
                kind=ProviderKind.SELF_HOSTED,
                default_model=settings.ollama_model,
                base_url=settings.ollama_base_url.rstrip("/"),
                max_tokens=4096,
            )
        )
        self.register(
            ProviderInfo(
                id="anthropic",
                name="Anthropic Claude",
                kind=ProviderKind.CLOUD,
                requires_api_key=True,
                default_model=settings.anthropic_model,
                max_tokens=8192,
            )
        )
        self.register(
            ProviderInfo(
                id="openai",
                name="OpenAI",
                kind=ProviderKind.CLOUD,
                requires_api_key=True,
                default_model=settings.openai_model,
                max_tokens=16384,
            )
        )
        self.register(
            ProviderInfo(
                id="deepseek",
                name="DeepSeek",
                kind=ProviderKind.CLOUD,
                requires_api_key=True,
                default_model=settings.deepseek_model,
                base_url=_KNOWN_COMPATIBLE_PROVIDERS["deepseek"],
                max_tokens=8192,
            )
        )

    # ------------------------------------------------------------------
    # Registration & lookup
    # ------------------------------------------------------------------

    def register(self, info: ProviderInfo) -> None:
        """Add or replace a provider entry."""
        self._providers[info.id] = info

    def get(self, provider_id: str) -> ProviderInfo:
        """Return provider metadata.  Raises :class:`LLMError` for unknown IDs."""
        info = self._providers.get(provider_id)
        if info is None:
            raise LLMError(
                provider_id,
                f"Unknown provider: {provider_id}. "
                f"Supported: {', '.join(self._providers)}",
            )
        return info

    def has(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def list_all(self) -> list[ProviderInfo]:
        return list(self._providers.values())

    def is_local(self, provider_id: str) -> bool:
        return self.has(provider_id) and self.get(provider_id).kind == ProviderKind.LOCAL

    def api_key_for(self, provider_id: str) -> str:
        """Return the configured key for *provider_id* (empty when unset)."""
        return self._api_keys.get(provider_id, "").strip()

    def set_api_key(self, provider_id: str, api_key: str) -> None:
        self.get(provider_id)
        self._api_keys[provider_id] = api_key

    # ------------------------------------------------------------------
    # Fallback preference
    # ------------------------------------------------------------------

    @property
    def fallback_order(self) -> list[str]:
        """Configured fallback IDs, unknown entries dropped, tiers respected.

        The sort is stable, so the configured order is kept within a tier
        (e.g. ``anthropic`` before ``openai``).
        """
        known: list[str] = []
        for provider_id in self.settings.fallback_order:
            if provider_id not in self._providers:
                logger.warning("unknown_fallback_provider", provider=provider_id)
                continue
            if provider_id not in known:
                known.append(provider_id)
        return sorted(known, key=lambda pid: _KIND_RANK[self._providers[pid].kind])
