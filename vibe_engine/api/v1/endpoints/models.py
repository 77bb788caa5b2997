"""Local model catalog and loading endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from vibe_engine.api.v1.schemas.common import ErrorResponse
from vibe_engine.api.v1.schemas.provider import (
    LoadModelRequest,
    LocalModelEntry,
    LocalModelsResponse,
)
from vibe_engine.core.llm.local_models import rank_local_models, select_default_model
from vibe_engine.core.llm.model_loader import ModelLoadState
from vibe_engine.core.llm.service import ProviderService
from vibe_engine.dependencies import get_provider_service

router = APIRouter()


@router.get(
    "/models/local",
    response_model=LocalModelsResponse,
    responses={400: {"model": ErrorResponse}},
    summary="List local models",
    description="The local catalog ranked under a policy, plus the current load state.",
)
async def list_local_models(
    policy: str | None = None,
    service: ProviderService = Depends(get_provider_service),
) -> LocalModelsResponse:
    policy = policy or service.settings.local_model_policy
    loader = service.model_loader
    try:
        ranked = rank_local_models(loader.catalog, policy)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return LocalModelsResponse(
        policy=policy,
        supported=loader.is_supported(),
        state=loader.state,
        models=[
            LocalModelEntry(rank=index + 1, size_class=model.size_class, model=model)
            for index, model in enumerate(ranked)
        ],
    )


@router.post(
    "/models/local/load",
    response_model=ModelLoadState,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    summary="Load a local model",
    description="Load the given model, or the configured / top-ranked one, and wait for it.",
)
async def load_local_model(
    body: LoadModelRequest,
    service: ProviderService = Depends(get_provider_service),
) -> ModelLoadState:
    loader = service.model_loader
    model_id = body.model_id
    if not model_id:
        try:
            model = select_default_model(
                loader.catalog,
                configured_id=service.settings.local_model_id,
                policy=body.policy or service.settings.local_model_policy,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if model is None:
            raise HTTPException(status_code=400, detail="The local model catalog is empty")
        model_id = model.id
    state = await loader.load(model_id)
    service.availability.invalidate("local")
    return state
