"""Per-actor configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field

from vibe_engine.core.task.models import ActorType


class ActorConfig(BaseModel):
    """User-adjustable settings for one actor role.

    Attributes:
        enabled: Disabled actors fail their tasks instead of running them.
        model_id: Model override passed to the provider.
        temperature: Sampling temperature.
        max_tokens: Completion length limit.
        custom_instructions: Appended to the role's system prompt.
    """

    enabled: bool = True
    model_id: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, gt=0)
    custom_instructions: str = ""


def default_actor_configs() -> dict[ActorType, ActorConfig]:
    configs = {actor: ActorConfig() for actor in ActorType}
    configs[ActorType.CODER] = ActorConfig(temperature=0.2, max_tokens=3000)
    configs[ActorType.WRITER] = ActorConfig(max_tokens=4000)
    configs[ActorType.COMPOSER] = ActorConfig(max_tokens=4000)
    return configs
