"""Provider inspection and resolution endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from vibe_engine.api.v1.schemas.common import ErrorResponse
from vibe_engine.api.v1.schemas.provider import ProviderEntry, ProvidersResponse, ResolveRequest
from vibe_engine.core.llm.selector import ProviderResolution
from vibe_engine.core.llm.service import ProviderService
from vibe_engine.dependencies import get_provider_service

router = APIRouter()


@router.get(
    "/providers",
    response_model=ProvidersResponse,
    summary="List providers",
    description="Registered providers with their last known availability.  Pass ``refresh=true`` to re-probe.",
)
async def list_providers(
    refresh: bool = False,
    service: ProviderService = Depends(get_provider_service),
) -> ProvidersResponse:
    if refresh:
        await service.provider_states(use_cache=False)
    return ProvidersResponse(
        preferred=service.settings.preferred_provider,
        fallback_order=service.registry.fallback_order,
        providers=[
            ProviderEntry(info=info, state=service.availability.cached(info.id))
            for info in service.registry.list_all()
        ],
    )


@router.post(
    "/providers/resolve",
    response_model=ProviderResolution,
    responses={503: {"model": ErrorResponse}},
    summary="Resolve a provider",
    description="Run provider selection (with fallback) without generating anything.",
)
async def resolve_provider(
    body: ResolveRequest,
    service: ProviderService = Depends(get_provider_service),
) -> ProviderResolution:
    return await service.selector.resolve(body.preferred_provider)
