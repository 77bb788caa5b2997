"""Anthropic Claude provider.

Wraps the async ``anthropic`` SDK client behind
:class:`~vibe_engine.core.llm.providers.base.BaseProvider`.
"""

from __future__ import annotations

import time

from vibe_engine.core.llm.models import GenerationRequest, GenerationResult, ProviderInfo
from vibe_engine.core.llm.providers.base import BaseProvider
from vibe_engine.core.llm.request_manager import CancellationToken
from vibe_engine.utils.exceptions import ApiKeyMissingError, ErrorKind, LLMError
from vibe_engine.utils.logging import get_logger

logger = get_logger("llm.anthropic")


class AnthropicProvider(BaseProvider):
    """Provider implementation for Anthropic Claude models.

    Parameters
    ----------
    info:
        Registry metadata; ``default_model`` is e.g. ``"claude-sonnet-4-20250514"``.
    api_key:
        Anthropic API key.
    timeout:
        SDK-level request timeout in seconds.
    """

    def __init__(self, info: ProviderInfo, api_key: str, timeout: float = 60.0):
        super().__init__(info)
        try:
            import anthropic
        except ImportError as exc:
            raise LLMError(
                self.provider_id,
                "The 'anthropic' package is not installed. "
                "Install it with: pip install anthropic",
            ) from exc

        if not api_key:
            raise ApiKeyMissingError(self.provider_id)

        self._sdk = anthropic
        self.client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

    async def generate(self, request: GenerationRequest, token: CancellationToken) -> GenerationResult:
        """Call Claude and return the text of the response."""
        token.raise_if_cancelled()
        model = self.model_for(request)
        kwargs = {
            "model": model,
            "max_tokens": self.max_tokens_for(request),
            "temperature": min(request.temperature, 1.0),
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system:
            kwargs["system"] = request.system

        started = time.perf_counter()
        try:
            message = await self.client.messages.create(**kwargs)
        except Exception as exc:
            logger.error("anthropic_generate_error", model=model, error=str(exc))
            raise self.translate_error(exc, self._known_errors()) from exc

        text = "".join(
            block.text for block in (message.content or []) if getattr(block, "type", "") == "text"
        )
        usage = getattr(message, "usage", None)
        return GenerationResult(
            text=text,
            provider=self.provider_id,
            model=getattr(message, "model", model) or model,
            duration_ms=(time.perf_counter() - started) * 1000,
            prompt_tokens=getattr(usage, "input_tokens", None),
            completion_tokens=getattr(usage, "output_tokens", None),
            metadata={"stop_reason": getattr(message, "stop_reason", None)},
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
