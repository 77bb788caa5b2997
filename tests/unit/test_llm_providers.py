"""Tests for adapter construction and error translation."""
import pytest

from vibe_engine.core.llm.models import GenerationRequest
from vibe_engine.core.llm.request_manager import CancellationToken
from vibe_engine.utils.exceptions import ApiKeyMissingError, ErrorKind, LLMError


class TestAdapterCreation:
    """Verify that ProviderService builds the right adapter per provider."""

    @pytest.mark.parametrize("provider_id", ["anthropic", "openai", "deepseek"])
    def test_cloud_provider_without_key(self, make_service, provider_id):
        service = make_service()
        with pytest.raises(ApiKeyMissingError, match="API key is not configured") as excinfo:
            service.adapter(provider_id)
        assert excinfo.value.kind == ErrorKind.API_KEY_MISSING
        assert excinfo.value.provider == provider_id

    def test_ollama_needs_no_key(self, make_service):
        from vibe_engine.core.llm.providers.openai_compatible_provider import OllamaProvider

        adapter = make_service().adapter("ollama")
        assert isinstance(adapter, OllamaProvider)
        assert adapter.base_url() == "http://ollama.test:11434/v1"

    def test_openai_with_key(self, make_service, make_settings):
        from vibe_engine.core.llm.providers.openai_provider import OpenAIProvider

        service = make_service(make_settings(openai_api_key="sk-test"))
        adapter = service.adapter("openai")
        assert isinstance(adapter, OpenAIProvider)
        assert adapter.base_url() is None

    def test_deepseek_is_openai_compatible(self, make_service, make_settings):
        from vibe_engine.core.llm.providers.openai_compatible_provider import OpenAICompatibleProvider

        service = make_service(make_settings(deepseek_api_key="ds-test"))
        adapter = service.adapter("deepseek")
        assert isinstance(adapter, OpenAICompatibleProvider)
        assert adapter.base_url() == "https://api.deepseek.com"

    def test_anthropic_with_key(self, make_service, make_settings):
        from vibe_engine.core.llm.providers.anthropic_provider import AnthropicProvider

        service = make_service(make_settings(anthropic_api_key="sk-ant-test"))
        assert isinstance(service.adapter("anthropic"), AnthropicProvider)

    def test_local_adapter(self, make_service):
        from vibe_engine.core.llm.providers.local_provider import LocalProvider

        assert isinstance(make_service().adapter("local"), LocalProvider)

    def test_adapters_are_cached(self, make_service):
        service = make_service()
        assert service.adapter("ollama") is service.adapter("ollama")

    def test_set_api_key_rebuilds_adapter(self, make_service):
        service = make_service()
        with pytest.raises(ApiKeyMissingError):
            service.adapter("openai")
        service.set_api_key("openai", "sk-new")
        assert service.adapter("openai").provider_id == "openai"

    def test_compatible_provider_requires_base_url(self, provider_info):
        from vibe_engine.core.llm.providers.openai_compatible_provider import OpenAICompatibleProvider

        with pytest.raises(LLMError, match="base_url is required"):
            OpenAICompatibleProvider(provider_info, "key")

    def test_unknown_provider(self, make_service):
        with pytest.raises(LLMError, match="Unknown provider: mystery"):
            make_service().adapter("mystery")


class TestServiceRouting:
    def test_local_provider_gets_longer_deadline(self, make_service):
        service = make_service()
        assert service.timeout_for("local") == 10.0
        assert service.timeout_for("ollama") == 5.0

    @pytest.mark.asyncio
    async def test_generate_routes_to_adapter(self, make_service, fake_adapter):
        service = make_service()
        adapter = fake_adapter(service, "ollama", script=["hello"])
        result = await service.generate("ollama", GenerationRequest(prompt="hi"), CancellationToken())
        assert result.text == "hello"
        assert result.provider == "ollama"
        assert adapter.requests[0].prompt == "hi"

    @pytest.mark.asyncio
    async def test_untyped_errors_are_classified(self, make_service, fake_adapter):
        service = make_service()
        fake_adapter(service, "ollama", script=[RuntimeError("429 Too Many Requests")])
        with pytest.raises(LLMError) as excinfo:
            await service.generate("ollama", GenerationRequest(prompt="hi"), CancellationToken())
        assert excinfo.value.kind == ErrorKind.RATE_LIMIT
        assert excinfo.value.provider == "ollama"

    @pytest.mark.asyncio
    async def test_local_generate_without_model(self, make_service):
        service = make_service()
        with pytest.raises(LLMError) as excinfo:
            await service.generate("local", GenerationRequest(prompt="hi"), CancellationToken())
        assert excinfo.value.kind == ErrorKind.MODEL_UNAVAILABLE


class TestErrorTranslation:
    def test_known_types_checked_first(self, provider_info):
        from tests.fakes import FakeProvider

        adapter = FakeProvider(provider_info)
        error = adapter.translate_error(KeyError("boom"), ((KeyError, ErrorKind.CONTENT_POLICY),))
        assert error.kind == ErrorKind.CONTENT_POLICY
        assert error.provider == "fake"

    def test_llm_errors_pass_through(self, provider_info):
        from tests.fakes import FakeProvider

        original = LLMError("fake", "x", ErrorKind.NETWORK)
        assert FakeProvider(provider_info).translate_error(original) is original

    def test_max_tokens_capped(self, provider_info):
        from tests.fakes import FakeProvider

        adapter = FakeProvider(provider_info.model_copy(update={"max_tokens": 100}))
        assert adapter.max_tokens_for(GenerationRequest(prompt="p", max_tokens=5000)) == 100
        assert adapter.model_for(GenerationRequest(prompt="p")) == "fake-model"
