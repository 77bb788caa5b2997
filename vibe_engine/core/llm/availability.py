"""Provider availability probing.

Rules per provider kind:

  - local: available when the in-process runtime can be imported; a loaded
    model is not required
  - cloud: available when a non-empty API key is configured
  - self-hosted: available when ``GET {base_url}/api/tags`` answers 2xx
    within the probe timeout

Results are cached as :class:`ProviderState` until invalidated, but
callers that make routing decisions pass ``use_cache=False``.
"""

from __future__ import annotations

import httpx

from vibe_engine.config import Settings
from vibe_engine.core.llm.model_loader import ModelLoadController
from vibe_engine.core.llm.models import ProviderInfo, ProviderKind, ProviderState
from vibe_engine.core.llm.registry import ProviderRegistry
from vibe_engine.utils.logging import get_logger

logger = get_logger("llm.availability")

NO_LOCAL_RUNTIME = "no local runtime (install it with: pip install 'vibe-engine[local]')"
MISSING_API_KEY = "missing API key"


class AvailabilityChecker:
    """Answers "can this provider serve a request right now?".

    Parameters
    ----------
    registry:
        Provider metadata and API keys.
    model_loader:
        Source of local runtime support and the loaded model.
    settings:
        Supplies the probe timeout and the fallback probing switch.
    client:
        Optional shared HTTP client; one is created lazily otherwise.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        model_loader: ModelLoadController,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ):
        self.registry = registry
        self.model_loader = model_loader
        self.settings = settings
        self._client = client
        self._owns_client = client is None
        self._states: dict[str, ProviderState] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check(
        self,
        provider_id: str,
        *,
        use_cache: bool = False,
        preferred_id: str | None = None,
    ) -> ProviderState:
        """Return the availability of *provider_id*.

        Parameters
        ----------
        use_cache:
            Return the last stored state when there is one.
        preferred_id:
            The provider the caller originally asked for.  With
            ``probe_fallback_endpoints`` disabled, other self-hosted
            providers are reported unavailable without a network probe.
        """
        if use_cache and provider_id in self._states:
            return self._states[provider_id].model_copy()

        info = self.registry.get(provider_id)
        if info.kind == ProviderKind.LOCAL:
            state = self._check_local(info)
        elif info.kind == ProviderKind.SELF_HOSTED:
            state = await self._check_self_hosted(info, preferred_id)
        else:
            state = self._check_api_key(info)

        self._states[provider_id] = state
        logger.debug(
            "provider_checked",
            provider=provider_id,
            available=state.is_available,
            reason=state.reason,
        )
        return state.model_copy()

    async def check_all(self, *, use_cache: bool = False) -> list[ProviderState]:
        return [
            await self.check(info.id, use_cache=use_cache)
            for info in self.registry.list_all()
        ]

    def cached(self, provider_id: str) -> ProviderState | None:
        state = self._states.get(provider_id)
        return state.model_copy() if state is not None else None

    def invalidate(self, provider_id: str | None = None) -> None:
        """Forget cached results for one provider, or for all of them."""
        if provider_id is None:
            self._states.clear()
        else:
            self._states.pop(provider_id, None)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Per-kind rules
    # ------------------------------------------------------------------

    def _check_local(self, info: ProviderInfo) -> ProviderState:
        supported = self.model_loader.is_supported()
        load_state = self.model_loader.state
        return ProviderState(
            provider_id=info.id,
            is_available=supported,
            reason="" if supported else NO_LOCAL_RUNTIME,
            loaded_model_id=self.model_loader.loaded_model_id,
            load_progress=load_state.progress,
        )

    def _check_api_key(self, info: ProviderInfo) -> ProviderState:
        has_key = bool(self.registry.api_key_for(info.id))
        return ProviderState(
            provider_id=info.id,
            is_available=has_key,
            requires_api_key=info.requires_api_key,
            reason="" if has_key else MISSING_API_KEY,
        )

    async def _check_self_hosted(self, info: ProviderInfo, preferred_id: str | None) -> ProviderState:
        if (
            not self.settings.probe_fallback_endpoints
            and preferred_id is not None
            and preferred_id != info.id
        ):
            return ProviderState(
                provider_id=info.id,
                is_available=False,
                reason="fallback endpoint probing disabled",
            )

        if not info.base_url:
            return ProviderState(provider_id=info.id, is_available=False, reason="no endpoint configured")

        url = f"{info.base_url}/api/tags"
        try:
            response = await self._http().get(
                url,
                timeout=self.settings.availability_probe_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            logger.info("provider_probe_failed", provider=info.id, url=url, error=str(exc))
            return ProviderState(
                provider_id=info.id,
                is_available=False,
                reason=f"endpoint unreachable at {info.base_url}",
            )

        if response.is_success:
            return ProviderState(provider_id=info.id, is_available=True)
        return ProviderState(
            provider_id=info.id,
            is_available=False,
            reason=f"endpoint {url} answered HTTP {response.status_code}",
        )

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client
