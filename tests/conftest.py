import threading

import httpx
import pytest

from tests.fakes import TINY_CATALOG, FakeProvider, FakeRuntime, ollama_transport
from vibe_engine.config import Settings
from vibe_engine.core.llm.models import ProviderInfo
from vibe_engine.core.llm.service import ProviderService
from vibe_engine.storage.task_store import InMemoryTaskStore


@pytest.fixture
def make_settings():
    def factory(**overrides):
        values = {
            "preferred_provider": "ollama",
            "fallback_order": ["local", "ollama", "anthropic", "openai", "deepseek"],
            "anthropic_api_key": "",
            "openai_api_key": "",
            "deepseek_api_key": "",
            "ollama_base_url": "http://ollama.test:11434",
            "local_model_id": "",
            "refresh_interval_seconds": 60.0,
            "request_timeout_seconds": 5.0,
            "local_request_timeout_seconds": 10.0,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def make_service(make_settings):
    created = []

    def factory(settings=None, *, ollama_up=True, runtime=None, catalog=TINY_CATALOG):
        service = ProviderService(
            settings or make_settings(),
            runtime=runtime or FakeRuntime(supported=False),
            catalog=catalog,
            http_client=httpx.AsyncClient(transport=ollama_transport(ollama_up)),
        )
        created.append(service)
        return service

    return factory


@pytest.fixture
def fake_adapter():
    """Install a :class:`FakeProvider` for *provider_id* on *service*."""

    def install(service, provider_id, script=("ok",), delay=0.0):
        adapter = FakeProvider(service.registry.get(provider_id), script=script, delay=delay)
        service.register_adapter(provider_id, adapter)
        return adapter

    return install


@pytest.fixture
def store():
    return InMemoryTaskStore()


@pytest.fixture
def load_gate():
    return threading.Event()


@pytest.fixture
def provider_info():
    return ProviderInfo(id="fake", name="Fake", kind="cloud", default_model="fake-model")
