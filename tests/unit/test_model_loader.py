"""Tests for the local model load controller."""
import asyncio

import httpx
import pytest

from tests.fakes import TINY_CATALOG, FakeRuntime
from vibe_engine.core.llm.model_loader import LlamaCppRuntime, ModelLoadController, ModelLoadStatus
from vibe_engine.core.llm.models import GenerationRequest
from vibe_engine.utils.exceptions import ErrorKind, LLMError, ModelLoadError


async def wait_for_status(controller, status, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while controller.state.status != status:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"controller never reached {status}")
        await asyncio.sleep(0.005)


class TestLoad:
    @pytest.mark.asyncio
    async def test_load_reaches_loaded(self):
        runtime = FakeRuntime()
        controller = ModelLoadController(runtime, TINY_CATALOG)
        state = await controller.load("tiny-instruct")
        assert state.status == ModelLoadStatus.LOADED
        assert state.progress == 1.0
        assert controller.loaded_model_id == "tiny-instruct"

    @pytest.mark.asyncio
    async def test_loading_loaded_model_is_noop(self):
        runtime = FakeRuntime()
        controller = ModelLoadController(runtime, TINY_CATALOG)
        await controller.load("tiny-instruct")
        await controller.load("tiny-instruct")
        assert runtime.load_calls == ["tiny-instruct"]

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_attempt(self, load_gate):
        runtime = FakeRuntime(gate=load_gate)
        controller = ModelLoadController(runtime, TINY_CATALOG)
        first = asyncio.create_task(controller.load("tiny-instruct"))
        second = asyncio.create_task(controller.load("tiny-instruct"))
        await wait_for_status(controller, ModelLoadStatus.LOADING)
        load_gate.set()
        states = await asyncio.gather(first, second)
        assert runtime.load_calls == ["tiny-instruct"]
        assert {s.status for s in states} == {ModelLoadStatus.LOADED}

    @pytest.mark.asyncio
    async def test_progress_is_reported_while_loading(self, load_gate):
        controller = ModelLoadController(FakeRuntime(gate=load_gate), TINY_CATALOG)
        pending = asyncio.create_task(controller.load("tiny-instruct"))
        await wait_for_status(controller, ModelLoadStatus.LOADING)
        for _ in range(200):
            if controller.state.progress > 0:
                break
            await asyncio.sleep(0.005)
        assert controller.state.progress == 0.25
        load_gate.set()
        await pending

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, load_gate):
        controller = ModelLoadController(FakeRuntime(gate=load_gate), TINY_CATALOG)
        pending = asyncio.create_task(controller.load("tiny-instruct"))
        await wait_for_status(controller, ModelLoadStatus.LOADING)
        controller._set_progress("tiny-instruct", 0.6)
        controller._set_progress("tiny-instruct", 0.3)
        assert controller.state.progress >= 0.6
        load_gate.set()
        await pending

    @pytest.mark.asyncio
    async def test_failure_sets_error_state_and_allows_retry(self):
        runtime = FakeRuntime(fail_with=RuntimeError("disk full"))
        controller = ModelLoadController(runtime, TINY_CATALOG)
        with pytest.raises(ModelLoadError, match="disk full") as excinfo:
            await controller.load("tiny-instruct")
        assert excinfo.value.kind == ErrorKind.MODEL_UNAVAILABLE
        assert controller.state.status == ModelLoadStatus.ERROR
        assert controller.state.error == "disk full"

        runtime.fail_with = None
        state = await controller.load("tiny-instruct")
        assert state.status == ModelLoadStatus.LOADED
        assert runtime.load_calls == ["tiny-instruct", "tiny-instruct"]

    @pytest.mark.asyncio
    async def test_unknown_model(self):
        controller = ModelLoadController(FakeRuntime(), TINY_CATALOG)
        with pytest.raises(ModelLoadError, match="not in the local catalog"):
            await controller.load("giant")
        assert controller.state.status == ModelLoadStatus.ERROR

    @pytest.mark.asyncio
    async def test_unsupported_runtime(self):
        controller = ModelLoadController(FakeRuntime(supported=False), TINY_CATALOG)
        with pytest.raises(ModelLoadError, match="runtime is not installed"):
            await controller.load("tiny-instruct")

    @pytest.mark.asyncio
    async def test_switching_models_releases_previous(self):
        runtime = FakeRuntime()
        controller = ModelLoadController(runtime, TINY_CATALOG)
        await controller.load("tiny-instruct")
        await controller.load("small-instruct")
        assert runtime.released == ["tiny-instruct"]
        assert controller.loaded_model_id == "small-instruct"

    @pytest.mark.asyncio
    async def test_different_model_waits_for_current_load(self, load_gate):
        runtime = FakeRuntime(gate=load_gate)
        controller = ModelLoadController(runtime, TINY_CATALOG)
        first = asyncio.create_task(controller.load("tiny-instruct"))
        await wait_for_status(controller, ModelLoadStatus.LOADING)
        second = asyncio.create_task(controller.load("small-instruct"))
        await asyncio.sleep(0.02)
        assert runtime.load_calls == ["tiny-instruct"]
        load_gate.set()
        await asyncio.gather(first, second)
        assert runtime.load_calls == ["tiny-instruct", "small-instruct"]
        assert controller.loaded_model_id == "small-instruct"

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_abort_shared_load(self, load_gate):
        runtime = FakeRuntime(gate=load_gate)
        controller = ModelLoadController(runtime, TINY_CATALOG)
        impatient = asyncio.create_task(controller.load("tiny-instruct"))
        patient = asyncio.create_task(controller.load("tiny-instruct"))
        await wait_for_status(controller, ModelLoadStatus.LOADING)
        impatient.cancel()
        load_gate.set()
        state = await patient
        assert state.status == ModelLoadStatus.LOADED


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_generate_without_model(self):
        controller = ModelLoadController(FakeRuntime(), TINY_CATALOG)
        with pytest.raises(LLMError) as excinfo:
            await controller.generate(GenerationRequest(prompt="hi"))
        assert excinfo.value.kind == ErrorKind.MODEL_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_generate_on_loaded_model(self):
        runtime = FakeRuntime()
        controller = ModelLoadController(runtime, TINY_CATALOG)
        await controller.load("tiny-instruct")
        result = await controller.generate(GenerationRequest(prompt="hi"))
        assert result.text == "local answer from tiny-instruct"
        assert result.model == "tiny-instruct"

    @pytest.mark.asyncio
    async def test_unload_and_shutdown(self):
        runtime = FakeRuntime()
        controller = ModelLoadController(runtime, TINY_CATALOG)
        await controller.load("tiny-instruct")
        await controller.shutdown()
        assert runtime.released == ["tiny-instruct"]
        assert controller.state.status == ModelLoadStatus.UNLOADED
        assert controller.loaded_model_id is None


async def wait_for_active(runtime, count, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while runtime.active != count:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"runtime never had {count} active generate calls")
        await asyncio.sleep(0.005)


class TestInferenceSerialization:
    @pytest.mark.asyncio
    async def test_concurrent_requests_run_one_at_a_time(self):
        runtime = FakeRuntime()
        controller = ModelLoadController(runtime, TINY_CATALOG)
        await controller.load("tiny-instruct")

        results = await asyncio.gather(
            *(controller.generate(GenerationRequest(prompt=f"q{i}")) for i in range(4))
        )

        assert len(results) == 4
        assert runtime.max_active == 1

    @pytest.mark.asyncio
    async def test_abandoned_request_blocks_the_next_one(self, load_gate):
        runtime = FakeRuntime(generate_gate=load_gate)
        controller = ModelLoadController(runtime, TINY_CATALOG)
        await controller.load("tiny-instruct")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(controller.generate(GenerationRequest(prompt="slow")), timeout=0.05)
        await wait_for_active(runtime, 1)

        follow_up = asyncio.create_task(controller.generate(GenerationRequest(prompt="next")))
        await asyncio.sleep(0.05)
        assert len(runtime.generate_calls) == 1

        load_gate.set()
        result = await follow_up
        assert result.text == "local answer from tiny-instruct"
        assert len(runtime.generate_calls) == 2
        assert runtime.max_active == 1

    @pytest.mark.asyncio
    async def test_switching_models_waits_for_running_request(self, load_gate):
        runtime = FakeRuntime(generate_gate=load_gate)
        controller = ModelLoadController(runtime, TINY_CATALOG)
        await controller.load("tiny-instruct")

        running = asyncio.create_task(controller.generate(GenerationRequest(prompt="hi")))
        await wait_for_active(runtime, 1)
        switching = asyncio.create_task(controller.load("small-instruct"))
        await asyncio.sleep(0.05)
        assert runtime.released == []

        load_gate.set()
        result = await running
        await switching

        assert result.text == "local answer from tiny-instruct"
        assert runtime.released == ["tiny-instruct"]
        assert runtime.released_while_active == []
        assert controller.loaded_model_id == "small-instruct"

    @pytest.mark.asyncio
    async def test_request_queued_behind_unload_fails(self, load_gate):
        runtime = FakeRuntime(generate_gate=load_gate)
        controller = ModelLoadController(runtime, TINY_CATALOG)
        await controller.load("tiny-instruct")

        running = asyncio.create_task(controller.generate(GenerationRequest(prompt="first")))
        await wait_for_active(runtime, 1)
        queued = asyncio.create_task(controller.generate(GenerationRequest(prompt="second")))
        unloading = asyncio.create_task(controller.unload())
        await asyncio.sleep(0.05)

        load_gate.set()
        await running
        await unloading
        with pytest.raises(LLMError) as excinfo:
            await queued

        assert excinfo.value.kind == ErrorKind.MODEL_UNAVAILABLE
        assert len(runtime.generate_calls) == 1
        assert runtime.released_while_active == []


class TestLlamaCppRuntime:
    @pytest.fixture
    def weights(self):
        return b"w" * 4096

    @pytest.fixture
    def hub(self, weights):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path.endswith("/missing.gguf"):
                return httpx.Response(404)
            return httpx.Response(200, content=weights)

        return requests, httpx.Client(transport=httpx.MockTransport(handler))

    def test_download_reports_progress_per_chunk(self, tmp_path, hub, weights):
        requests, client = hub
        runtime = LlamaCppRuntime(str(tmp_path), http_client=client, chunk_bytes=1024)
        progress = []

        path = runtime.fetch(TINY_CATALOG[0], progress.append)

        assert path.read_bytes() == weights
        assert progress == pytest.approx([0.2, 0.4, 0.6, 0.8, 0.8])
        assert requests[0].url.path == "/test/tiny/resolve/main/tiny.gguf"

    def test_existing_weights_are_reused(self, tmp_path, hub):
        requests, client = hub
        runtime = LlamaCppRuntime(str(tmp_path), http_client=client)
        (tmp_path / "tiny.gguf").write_bytes(b"cached")
        progress = []

        runtime.fetch(TINY_CATALOG[0], progress.append)

        assert requests == []
        assert progress == [0.8]

    def test_failed_download_leaves_no_partial_file(self, tmp_path, hub):
        _, client = hub
        runtime = LlamaCppRuntime(str(tmp_path), http_client=client)
        missing = TINY_CATALOG[0].model_copy(update={"filename": "missing.gguf"})

        with pytest.raises(httpx.HTTPStatusError):
            runtime.fetch(missing, lambda value: None)

        assert list(tmp_path.iterdir()) == []
