"""Provider selection with automatic fallback.

Resolution order for a requested provider:

1. The local provider: reuse the loaded model, or load the configured /
   top-ranked model when the runtime is supported.
2. Any other provider: use it when the availability check passes.
3. Otherwise walk the fallback order (local only when a model is already
   loaded, then self-hosted, then API-key cloud providers).
4. Nothing available: :class:`NoProviderAvailableError`.

Every substitution is logged as ``fallback`` and reported to listeners.
"""

from __future__ import annotations

from collections.abc import Callable

from pydantic import BaseModel

from vibe_engine.config import Settings
from vibe_engine.core.llm.availability import NO_LOCAL_RUNTIME, AvailabilityChecker
from vibe_engine.core.llm.local_models import select_default_model
from vibe_engine.core.llm.model_loader import ModelLoadController
from vibe_engine.core.llm.registry import ProviderRegistry
from vibe_engine.utils.exceptions import ModelLoadError, NoProviderAvailableError
from vibe_engine.utils.logging import get_logger

logger = get_logger("llm.selector")


class ProviderResolution(BaseModel):
    """Outcome of :meth:`ProviderSelector.resolve`.

    Attributes:
        requested: The provider the caller asked for.
        provider_id: The provider that will serve the request.
        substituted: ``True`` when *provider_id* differs from *requested*.
        reason: Why the requested provider was passed over.
        model_id: Model the chosen provider will use, when known.
    """

    requested: str
    provider_id: str
    substituted: bool = False
    reason: str = ""
    model_id: str | None = None


FallbackListener = Callable[[ProviderResolution], None]


class ProviderSelector:
    def __init__(
        self,
        registry: ProviderRegistry,
        availability: AvailabilityChecker,
        model_loader: ModelLoadController,
        settings: Settings,
    ):
        self.registry = registry
        self.availability = availability
        self.model_loader = model_loader
        self.settings = settings
        self._listeners: list[FallbackListener] = []

    def on_fallback(self, listener: FallbackListener) -> Callable[[], None]:
        """Register *listener* for substitutions.  Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(self, preferred_id: str | None = None) -> ProviderResolution:
        """Pick the provider that should serve the next request.

        Availability is always re-probed, so repeated calls with the same
        probe answers return the same resolution.

        Raises :class:`NoProviderAvailableError` when every provider fails
        its check.
        """
        requested = preferred_id or self.settings.preferred_provider
        reasons: dict[str, str] = {}

        if not self.registry.has(requested):
            reasons[requested] = "unknown provider"
        elif self.registry.is_local(requested):
            resolution = await self._resolve_local(requested, reasons)
            if resolution is not None:
                return resolution
        else:
            state = await self.availability.check(requested, preferred_id=requested)
            if state.is_available:
                return ProviderResolution(
                    requested=requested,
                    provider_id=requested,
                    model_id=self.registry.get(requested).default_model or None,
                )
            reasons[requested] = state.reason

        for candidate in self.registry.fallback_order:
            if candidate == requested:
                continue
            if self.registry.is_local(candidate):
                loaded = self.model_loader.loaded_model_id
                if loaded is not None:
                    return self._substitute(requested, candidate, reasons, model_id=loaded)
                reasons[candidate] = "no local model loaded"
                continue

            state = await self.availability.check(candidate, preferred_id=requested)
            if state.is_available:
                return self._substitute(
                    requested,
                    candidate,
                    reasons,
                    model_id=self.registry.get(candidate).default_model or None,
                )
            reasons[candidate] = state.reason

        logger.error("no_provider_available", requested=requested, reasons=reasons)
        raise NoProviderAvailableError(requested, reasons)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _resolve_local(self, requested: str, reasons: dict[str, str]) -> ProviderResolution | None:
        loaded = self.model_loader.loaded_model_id
        if loaded is not None:
            return ProviderResolution(requested=requested, provider_id=requested, model_id=loaded)

        if not self.model_loader.is_supported():
            reasons[requested] = NO_LOCAL_RUNTIME
            return None

        model = select_default_model(
            self.model_loader.catalog,
            configured_id=self.settings.local_model_id,
            policy=self.settings.local_model_policy,
        )
        if model is None:
            reasons[requested] = "no local model in catalog"
            return None

        try:
            await self.model_loader.load(model.id)
        except ModelLoadError as exc:
            reasons[requested] = exc.detail
            return None
        self.availability.invalidate(requested)
        return ProviderResolution(requested=requested, provider_id=requested, model_id=model.id)

    def _substitute(
        self,
        requested: str,
        provider_id: str,
        reasons: dict[str, str],
        *,
        model_id: str | None,
    ) -> ProviderResolution:
        cause = reasons.get(requested, "unavailable")
        resolution = ProviderResolution(
            requested=requested,
            provider_id=provider_id,
            substituted=True,
            reason=f"{requested} unavailable ({cause}); using {provider_id}",
            model_id=model_id,
        )
        logger.warning(
            "fallback",
            requested=requested,
            provider=provider_id,
            reason=cause,
        )
        for listener in list(self._listeners):
            try:
                listener(resolution)
            except Exception:
                logger.warning("fallback_listener_error", provider=provider_id, exc_info=True)
        return resolution
