"""Catalog of locally executable models and the default-model ranking policy.

Model choice works on structured size metadata rather than name matching.
:func:`rank_local_models` orders a catalog under one of the policies in
:data:`RANKING_POLICIES`; :func:`select_default_model` applies the user's
configured model first and falls back to the top-ranked entry.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from vibe_engine.utils.logging import get_logger

logger = get_logger("llm.local_models")


class SizeClass(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


_SIZE_ORDER: dict[SizeClass, int] = {
    SizeClass.SMALL: 0,
    SizeClass.MEDIUM: 1,
    SizeClass.LARGE: 2,
}

# Download size thresholds (MB) for each class.
SMALL_MAX_MB = 4096
MEDIUM_MAX_MB = 8192


class LocalModelInfo(BaseModel):
    """One downloadable GGUF model.

    Attributes:
        id: Identifier used in settings (``local_model_id``).
        repo_id: Hugging Face repository holding the weights.
        filename: GGUF file inside the repository.
        size_mb: Download size in megabytes.
        parameters_b: Parameter count in billions.
        instruct: Instruction/chat tuned.
        experimental: Preview or otherwise unstable release.
        context_length: Context window used when loading.
    """

    id: str
    repo_id: str
    filename: str
    size_mb: int
    parameters_b: float
    instruct: bool = True
    experimental: bool = False
    context_length: int = 4096

    @property
    def size_class(self) -> SizeClass:
        if self.size_mb <= SMALL_MAX_MB:
            return SizeClass.SMALL
        if self.size_mb <= MEDIUM_MAX_MB:
            return SizeClass.MEDIUM
        return SizeClass.LARGE


class RankingPolicy(BaseModel):
    """Selection criteria for one named policy."""

    preferred_size: SizeClass
    max_download_mb: int
    prefer_instruct: bool = True
    exclude_experimental: bool = True
    largest_first: bool = False


RANKING_POLICIES: dict[str, RankingPolicy] = {
    "smallest": RankingPolicy(preferred_size=SizeClass.SMALL, max_download_mb=1024),
    "fastest": RankingPolicy(preferred_size=SizeClass.SMALL, max_download_mb=2048),
    "balanced": RankingPolicy(preferred_size=SizeClass.MEDIUM, max_download_mb=4096),
    "quality": RankingPolicy(
        preferred_size=SizeClass.LARGE,
        max_download_mb=8192,
        largest_first=True,
    ),
}

DEFAULT_CATALOG: tuple[LocalModelInfo, ...] = (
    LocalModelInfo(
        id="qwen2.5-0.5b-instruct-q4",
        repo_id="Qwen/Qwen2.5-0.5B-Instruct-GGUF",
        filename="qwen2.5-0.5b-instruct-q4_k_m.gguf",
        size_mb=398,
        parameters_b=0.5,
    ),
    LocalModelInfo(
        id="llama-3.2-1b-instruct-q4",
        repo_id="bartowski/Llama-3.2-1B-Instruct-GGUF",
        filename="Llama-3.2-1B-Instruct-Q4_K_M.gguf",
        size_mb=808,
        parameters_b=1.2,
    ),
    LocalModelInfo(
        id="qwen2.5-1.5b-instruct-q4",
        repo_id="Qwen/Qwen2.5-1.5B-Instruct-GGUF",
        filename="qwen2.5-1.5b-instruct-q4_k_m.gguf",
        size_mb=1117,
        parameters_b=1.5,
    ),
    LocalModelInfo(
        id="phi-3.5-mini-instruct-q4",
        repo_id="bartowski/Phi-3.5-mini-instruct-GGUF",
        filename="Phi-3.5-mini-instruct-Q4_K_M.gguf",
        size_mb=2393,
        parameters_b=3.8,
    ),
    LocalModelInfo(
        id="llama-3.1-8b-instruct-q4",
        repo_id="bartowski/Meta-Llama-3.1-8B-Instruct-GGUF",
        filename="Meta-Llama-3.1-8B-Instruct-Q4_K_M.gguf",
        size_mb=4920,
        parameters_b=8.0,
        context_length=8192,
    ),
)


def rank_local_models(
    models: list[LocalModelInfo] | tuple[LocalModelInfo, ...],
    policy: str | RankingPolicy = "smallest",
) -> list[LocalModelInfo]:
    """Return *models* ordered best-first under *policy*.

    Models above the policy's download cap (and experimental ones, when
    excluded) are filtered out; if that leaves nothing, the whole catalog is
    ranked instead.  Ordering keys, in priority:

    1. instruction-tuned first (when preferred)
    2. distance of the size class from the preferred class
    3. download size (ascending, or descending for ``largest_first``)
    4. model ID, so equal entries always rank the same way
    """
    if isinstance(policy, str):
        try:
            criteria = RANKING_POLICIES[policy]
        except KeyError:
            raise ValueError(
                f"Unknown ranking policy: {policy!r}. Use one of {sorted(RANKING_POLICIES)}."
            ) from None
    else:
        criteria = policy

    candidates = [
        m
        for m in models
        if m.size_mb <= criteria.max_download_mb
        and not (criteria.exclude_experimental and m.experimental)
    ]
    if not candidates:
        logger.warning("no_models_match_policy", policy=str(policy), catalog_size=len(models))
        candidates = list(models)

    preferred = _SIZE_ORDER[criteria.preferred_size]

    def sort_key(model: LocalModelInfo) -> tuple[int, int, int, str]:
        instruct_rank = 0 if (model.instruct or not criteria.prefer_instruct) else 1
        size_distance = abs(_SIZE_ORDER[model.size_class] - preferred)
        size_rank = -model.size_mb if criteria.largest_first else model.size_mb
        return (instruct_rank, size_distance, size_rank, model.id)

    return sorted(candidates, key=sort_key)


def select_default_model(
    catalog: list[LocalModelInfo] | tuple[LocalModelInfo, ...],
    *,
    configured_id: str = "",
    policy: str = "smallest",
) -> LocalModelInfo | None:
    """Pick the model to auto-load.

    The user's configured model wins when it exists in the catalog;
    otherwise the top entry of :func:`rank_local_models` is returned.
    """
    if configured_id:
        for model in catalog:
            if model.id == configured_id:
                return model
        logger.warning("configured_model_not_in_catalog", model_id=configured_id)

    ranked = rank_local_models(catalog, policy)
    return ranked[0] if ranked else None
