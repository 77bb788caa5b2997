"""Turns a task into a :class:`GenerationRequest`."""

from __future__ import annotations

from typing import Any

from vibe_engine.core.actors.config import ActorConfig
from vibe_engine.core.actors.prompts import (
    ACTOR_PROMPTS,
    DEPENDENCY_RESULT_TEMPLATE,
    DEPENDENCY_SECTION_TEMPLATE,
    TASK_USER_TEMPLATE,
)
from vibe_engine.core.llm.models import GenerationRequest
from vibe_engine.core.task.models import ActorType, Task
from vibe_engine.utils.exceptions import ActorDisabledError


def build_request(
    task: Task,
    config: ActorConfig,
    dependency_results: dict[str, dict[str, Any]] | None = None,
) -> GenerationRequest:
    """Build the request for *task* under its actor's *config*.

    Results of completed prerequisite tasks (as returned by
    :meth:`TaskGraph.dependency_results`) are appended to the prompt.

    Raises :class:`ActorDisabledError` when the actor is disabled.
    """
    if not config.enabled:
        raise ActorDisabledError(task.actor_type.value)

    system = ACTOR_PROMPTS.get(task.actor_type, ACTOR_PROMPTS[ActorType.CUSTOM])
    if config.custom_instructions.strip():
        system = f"{system}\nAdditional instructions:\n{config.custom_instructions.strip()}"

    prompt = TASK_USER_TEMPLATE.format(title=task.title, description=task.description or task.title)
    if dependency_results:
        rendered = "\n\n".join(
            DEPENDENCY_RESULT_TEMPLATE.format(
                title=dep["title"],
                actor_type=dep["actor_type"],
                content=_result_text(dep.get("result") or {}),
            )
            for dep in dependency_results.values()
        )
        prompt += DEPENDENCY_SECTION_TEMPLATE.format(results=rendered)

    return GenerationRequest(
        prompt=prompt,
        system=system,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        model_id=config.model_id,
    )


def _result_text(result: dict[str, Any]) -> str:
    for key in ("content", "summary", "code"):
        value = result.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return "(no output)"
