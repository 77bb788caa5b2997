"""Common interface for generation adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod

from vibe_engine.core.llm.failure_classifier import classify_error
from vibe_engine.core.llm.models import GenerationRequest, GenerationResult, ProviderInfo
from vibe_engine.core.llm.request_manager import CancellationToken
from vibe_engine.utils.exceptions import ErrorKind, LLMError


class BaseProvider(ABC):
    """One generation backend.

    Parameters
    ----------
    info:
        Registry metadata for the provider (ID, default model, limits).
    """

    def __init__(self, info: ProviderInfo):
        self.info = info
        self.provider_id = info.id

    @abstractmethod
    async def generate(self, request: GenerationRequest, token: CancellationToken) -> GenerationResult:
        """Generate text for *request*.

        Raises :class:`LLMError` with the failure's :class:`ErrorKind`.
        """

    async def aclose(self) -> None:
        """Release network clients or other resources."""

    def model_for(self, request: GenerationRequest) -> str:
        return request.model_id or self.info.default_model

    def max_tokens_for(self, request: GenerationRequest) -> int:
        return min(request.max_tokens, self.info.max_tokens)

    def translate_error(
        self,
        exc: Exception,
        known: tuple[tuple[type[BaseException], ErrorKind], ...] = (),
    ) -> LLMError:
        """Wrap an SDK exception in :class:`LLMError` with its error kind.

        *known* maps SDK exception types to kinds and is checked in order
        before falling back to message classification.
        """
        if isinstance(exc, LLMError):
            return exc
        for exc_type, kind in known:
            if isinstance(exc, exc_type):
                return LLMError(self.provider_id, str(exc), kind)
        return LLMError(self.provider_id, str(exc), classify_error(exc).kind)
