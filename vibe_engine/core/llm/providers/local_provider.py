"""In-process provider backed by the resident local model."""

from __future__ import annotations

from vibe_engine.core.llm.model_loader import ModelLoadController
from vibe_engine.core.llm.models import GenerationRequest, GenerationResult, ProviderInfo
from vibe_engine.core.llm.providers.base import BaseProvider
from vibe_engine.core.llm.request_manager import CancellationToken
from vibe_engine.utils.exceptions import ErrorKind
from vibe_engine.utils.logging import get_logger

logger = get_logger("llm.local")


class LocalProvider(BaseProvider):
    def __init__(self, info: ProviderInfo, model_loader: ModelLoadController):
        super().__init__(info)
        self.model_loader = model_loader

    async def generate(self, request: GenerationRequest, token: CancellationToken) -> GenerationResult:
        token.raise_if_cancelled()
        try:
            result = await self.model_loader.generate(request)
        except Exception as exc:
            logger.error("local_generate_error", model=self.model_loader.loaded_model_id, error=str(exc))
            raise self.translate_error(exc, ((MemoryError, ErrorKind.MODEL_UNAVAILABLE),)) from exc
        return result.model_copy(update={"provider": self.provider_id})
