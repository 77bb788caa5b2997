"""Value objects passed through the provider layer."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ProviderKind(str, Enum):
    """How a provider is hosted; drives availability probing and fallback order."""

    LOCAL = "local"
    SELF_HOSTED = "self_hosted"
    CLOUD = "cloud"


class ProviderInfo(BaseModel):
    """Static metadata about a provider.

    Attributes:
        id: Provider identifier used in settings and requests.
        name: Display name.
        kind: Hosting kind.
        requires_api_key: Whether a key must be configured before use.
        default_model: Model used when a request does not name one.
        base_url: Endpoint for HTTP providers.
        max_tokens: Upper bound on ``max_tokens`` accepted by the provider.
    """

    id: str
    name: str
    kind: ProviderKind
    requires_api_key: bool = False
    default_model: str = ""
    base_url: str = ""
    max_tokens: int = 4096


class ProviderState(BaseModel):
    """Last known runtime state of a provider."""

    provider_id: str
    is_available: bool | None = None
    requires_api_key: bool = False
    reason: str = ""
    loaded_model_id: str | None = None
    load_progress: float = 0.0


class GenerationRequest(BaseModel):
    """One generation call.

    ``model_id`` and ``safety_threshold`` are provider-specific; adapters
    that do not understand a field ignore it.
    """

    prompt: str
    system: str = ""
    max_tokens: int = Field(default=2000, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    model_id: str | None = None
    safety_threshold: str | None = None


class GenerationResult(BaseModel):
    """Generated text plus provider/timing metadata."""

    text: str
    provider: str
    model: str = ""
    duration_ms: float = 0.0
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    metadata: dict[str, Any] = {}
