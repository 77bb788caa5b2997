"""OpenAI provider.

Wraps the async ``openai`` SDK client.  The same chat-completions call
serves every OpenAI-compatible endpoint; see
:mod:`~vibe_engine.core.llm.providers.openai_compatible_provider`.
"""

from __future__ import annotations

import time

from vibe_engine.core.llm.models import GenerationRequest, GenerationResult, ProviderInfo
from vibe_engine.core.llm.providers.base import BaseProvider
from vibe_engine.core.llm.request_manager import CancellationToken
from vibe_engine.utils.exceptions import ApiKeyMissingError, ErrorKind, LLMError
from vibe_engine.utils.logging import get_logger

logger = get_logger("llm.openai")


class OpenAIProvider(BaseProvider):
    """Provider implementation for OpenAI chat models.

    Parameters
    ----------
    info:
        Registry metadata; ``default_model`` is e.g. ``"gpt-4o-mini"``.
    api_key:
        OpenAI API key.
    timeout:
        SDK-level request timeout in seconds.
    """

    requires_api_key = True

    def __init__(self, info: ProviderInfo, api_key: str, timeout: float = 60.0):
        super().__init__(info)
        try:
            import openai
        except ImportError as exc:
            raise LLMError(
                self.provider_id,
                "The 'openai' package is not installed. "
                "Install it with: pip install openai",
            ) from exc

        if self.requires_api_key and not api_key:
            raise ApiKeyMissingError(self.provider_id)

        self._sdk = openai
        self.client = openai.AsyncOpenAI(
            api_key=api_key or "none",
            base_url=self.base_url(),
            timeout=timeout,
            max_retries=0,
        )

    def base_url(self) -> str | None:
        """Endpoint passed to the SDK; ``None`` keeps the SDK default."""
        return self.info.base_url or None

    async def generate(self, request: GenerationRequest, token: CancellationToken) -> GenerationResult:
        """Call the chat completions API and return the assistant's text."""
        token.raise_if_cancelled()
        model = self.model_for(request)
        messages = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.append({"role": "user", "content": request.prompt})

        started = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=model,
                max_tokens=self.max_tokens_for(request),
                temperature=request.temperature,
                messages=messages,
            )
        except Exception as exc:
            logger.error(
                "openai_generate_error",
                provider=self.provider_id,
                model=model,
                error=str(exc),
            )
            raise self.translate_error(exc, self._known_errors()) from exc

        choice = response.choices[0] if response.choices else None
        text = choice.message.content if choice and choice.message and choice.message.content else ""
        usage = getattr(response, "usage", None)
        return GenerationResult(
            text=text,
            provider=self.provider_id,
            model=getattr(response, "model", model) or model,
            duration_ms=(time.perf_counter() - started) * 1000,
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
            metadata={"finish_reason": getattr(choice, "finish_reason", None)},
        )

    async def aclose(self) -> None:
        await self.client.close()

    def _known_errors(self) -> tuple[tuple[type[BaseException], ErrorKind], ...]:
        sdk = self._sdk
        return (
            (sdk.AuthenticationError, ErrorKind.API_KEY_MISSING),
            (sdk.PermissionDeniedError, ErrorKind.API_KEY_MISSING),
            (sdk.RateLimitError, ErrorKind.RATE_LIMIT),
            (sdk.NotFoundError, ErrorKind.MODEL_UNAVAILABLE),
            (sdk.APITimeoutError, ErrorKind.TIMEOUT),
            (sdk.APIConnectionError, ErrorKind.NETWORK),
        )
