"""Request/response schemas for providers and local models."""

from __future__ import annotations

from pydantic import BaseModel

from vibe_engine.core.llm.local_models import LocalModelInfo, SizeClass
from vibe_engine.core.llm.model_loader import ModelLoadState
from vibe_engine.core.llm.models import ProviderInfo, ProviderState


class ProviderEntry(BaseModel):
    info: ProviderInfo
    state: ProviderState | None = None


class ProvidersResponse(BaseModel):
    preferred: str
    fallback_order: list[str]
    providers: list[ProviderEntry]


class ResolveRequest(BaseModel):
    preferred_provider: str | None = None


class LocalModelEntry(BaseModel):
    rank: int
    size_class: SizeClass
    model: LocalModelInfo


class LocalModelsResponse(BaseModel):
    policy: str
    supported: bool
    state: ModelLoadState
    models: list[LocalModelEntry]


class LoadModelRequest(BaseModel):
    """Model to load; without ``model_id`` the default model is chosen."""

    model_id: str | None = None
    policy: str | None = None
