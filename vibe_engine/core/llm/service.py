"""Provider layer facade.

:class:`ProviderService` owns all provider and model state for one process:
the registry, availability checker, selector, request manager and model
loader.  It is created once by the application, initialised with
:meth:`~ProviderService.init`, shut down with
:meth:`~ProviderService.shutdown`, and injected wherever generation is
needed.  Adapters are created on first use and cached:

  - ``local``: :class:`~.providers.local_provider.LocalProvider`
  - ``ollama``: :class:`~.providers.openai_compatible_provider.OllamaProvider`
  - ``anthropic``: :class:`~.providers.anthropic_provider.AnthropicProvider`
  - ``openai``: :class:`~.providers.openai_provider.OpenAIProvider`
  - ``deepseek`` and other OpenAI-compatible cloud providers:
    :class:`~.providers.openai_compatible_provider.OpenAICompatibleProvider`
"""

from __future__ import annotations

import time
from collections.abc import Iterable

import httpx

from vibe_engine.config import Settings
from vibe_engine.core.llm.availability import AvailabilityChecker
from vibe_engine.core.llm.local_models import DEFAULT_CATALOG, LocalModelInfo
from vibe_engine.core.llm.model_loader import (
    LlamaCppRuntime,
    LocalModelRuntime,
    ModelLoadController,
)
from vibe_engine.core.llm.models import (
    GenerationRequest,
    GenerationResult,
    ProviderKind,
    ProviderState,
)
from vibe_engine.core.llm.providers.base import BaseProvider
from vibe_engine.core.llm.registry import ProviderRegistry
from vibe_engine.core.llm.request_manager import CancellationToken, RequestManager
from vibe_engine.core.llm.selector import ProviderSelector
from vibe_engine.utils.exceptions import LLMError, VibeError
from vibe_engine.utils.logging import get_logger

logger = get_logger("llm.service")


class ProviderService:
    """Single owner of provider and model state.

    Parameters
    ----------
    settings:
        Application settings.
    runtime:
        Local model backend; defaults to :class:`LlamaCppRuntime`.
    catalog:
        Local models that may be loaded.
    http_client:
        Shared client for availability probes.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        runtime: LocalModelRuntime | None = None,
        catalog: Iterable[LocalModelInfo] = DEFAULT_CATALOG,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.registry = ProviderRegistry(settings)
        self.model_loader = ModelLoadController(
            runtime or LlamaCppRuntime(settings.local_models_dir),
            catalog,
        )
        self.availability = AvailabilityChecker(
            self.registry,
            self.model_loader,
            settings,
            client=http_client,
        )
        self.selector = ProviderSelector(
            self.registry,
            self.availability,
            self.model_loader,
            settings,
        )
        self.requests = RequestManager(settings.request_timeout_seconds)
        self._adapters: dict[str, BaseProvider] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Probe every provider once so state is populated for callers."""
        states = await self.availability.check_all()
        logger.info(
            "provider_service_ready",
            preferred=self.settings.preferred_provider,
            available=[s.provider_id for s in states if s.is_available],
        )

    async def shutdown(self) -> None:
        """Cancel in-flight requests and release models and clients."""
        self.requests.cancel_all("shutdown")
        await self.model_loader.shutdown()
        for provider_id, adapter in list(self._adapters.items()):
            try:
                await adapter.aclose()
            except Exception:
                logger.warning("adapter_close_failed", provider=provider_id, exc_info=True)
        self._adapters.clear()
        await self.availability.aclose()
        logger.info("provider_service_stopped")

    # ------------------------------------------------------------------
    # Adapters
    # ------------------------------------------------------------------

    def adapter(self, provider_id: str) -> BaseProvider:
        """Return the cached adapter for *provider_id*, creating it on first use."""
        adapter = self._adapters.get(provider_id)
        if adapter is None:
            adapter = self._create_adapter(provider_id)
            self._adapters[provider_id] = adapter
            logger.debug("adapter_created", provider=provider_id)
        return adapter

    def register_adapter(self, provider_id: str, adapter: BaseProvider) -> None:
        """Install a pre-built adapter (custom backends, tests)."""
        self.registry.get(provider_id)
        self._adapters[provider_id] = adapter

    def set_api_key(self, provider_id: str, api_key: str) -> None:
        """Replace a provider's key; the cached adapter and state are dropped."""
        self.registry.set_api_key(provider_id, api_key)
        self._adapters.pop(provider_id, None)
        self.availability.invalidate(provider_id)

    def _create_adapter(self, provider_id: str) -> BaseProvider:
        info = self.registry.get(provider_id)
        timeout = self.timeout_for(provider_id)

        if info.kind == ProviderKind.LOCAL:
            from vibe_engine.core.llm.providers.local_provider import LocalProvider

            return LocalProvider(info, self.model_loader)

        if provider_id == "ollama":
            from vibe_engine.core.llm.providers.openai_compatible_provider import OllamaProvider

            return OllamaProvider(info, timeout=timeout)

        if provider_id == "anthropic":
            from vibe_engine.core.llm.providers.anthropic_provider import AnthropicProvider

            return AnthropicProvider(info, self.registry.api_key_for(provider_id), timeout)

        if provider_id == "openai":
            from vibe_engine.core.llm.providers.openai_provider import OpenAIProvider

            return OpenAIProvider(info, self.registry.api_key_for(provider_id), timeout)

        if info.base_url:
            from vibe_engine.core.llm.providers.openai_compatible_provider import (
                OpenAICompatibleProvider,
            )

            return OpenAICompatibleProvider(info, self.registry.api_key_for(provider_id), timeout)

        raise LLMError(provider_id, f"No adapter available for provider: {provider_id}")

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def timeout_for(self, provider_id: str) -> float:
        """Request deadline for *provider_id*; in-process models get longer."""
        if self.registry.is_local(provider_id):
            return self.settings.local_request_timeout_seconds
        return self.settings.request_timeout_seconds

    async def generate(
        self,
        provider_id: str,
        request: GenerationRequest,
        token: CancellationToken,
    ) -> GenerationResult:
        """Route *request* to *provider_id*'s adapter.

        Raises :class:`LLMError` (or another :class:`VibeError`) on failure.
        """
        logger.info(
            "llm_generate",
            provider=provider_id,
            model=request.model_id,
            system_len=len(request.system),
            prompt_len=len(request.prompt),
        )
        started = time.perf_counter()
        try:
            result = await self.adapter(provider_id).generate(request, token)
        except VibeError:
            raise
        except Exception as exc:
            logger.error("llm_generate_error", provider=provider_id, error=str(exc))
            raise self.adapter(provider_id).translate_error(exc) from exc

        logger.info(
            "llm_generate_success",
            provider=provider_id,
            model=result.model,
            response_len=len(result.text),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return result

    async def provider_states(self, *, use_cache: bool = True) -> list[ProviderState]:
        """Current state of every registered provider."""
        return await self.availability.check_all(use_cache=use_cache)
