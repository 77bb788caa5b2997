"""Lifecycle of the single resident local model.

:class:`ModelLoadController` moves through ``unloaded -> loading -> loaded``
(or ``loading -> error``; a retry re-enters ``loading``).  Concurrent loads
of the same model share one in-flight attempt; a load of a different model
waits for the current one to finish because only one model is resident at a
time.

The blocking work (download, weight loading, inference) is delegated to a
:class:`LocalModelRuntime` and run in a worker thread.  The default runtime,
:class:`LlamaCppRuntime`, needs the optional ``local`` extra
(``llama-cpp-python`` and ``huggingface-hub``).
"""

from __future__ import annotations

import asyncio
import importlib.util
import os
import threading
import time
from collections.abc import Callable, Iterable
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import httpx
from pydantic import BaseModel

from vibe_engine.core.llm.local_models import DEFAULT_CATALOG, LocalModelInfo
from vibe_engine.core.llm.models import GenerationRequest, GenerationResult
from vibe_engine.utils.exceptions import ErrorKind, LLMError, ModelLoadError
from vibe_engine.utils.logging import get_logger

logger = get_logger("llm.model_loader")

ProgressCallback = Callable[[float], None]


class ModelLoadStatus(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class ModelLoadState(BaseModel):
    """Observable snapshot of the controller."""

    status: ModelLoadStatus = ModelLoadStatus.UNLOADED
    model_id: str | None = None
    progress: float = 0.0
    error: str | None = None


class LocalModelRuntime(Protocol):
    """Blocking backend that executes models in-process.

    ``load`` and ``generate`` are called from a worker thread; ``load``
    reports progress in [0, 1] through *on_progress*.
    """

    def is_supported(self) -> bool: ...

    def load(self, model: LocalModelInfo, on_progress: ProgressCallback) -> Any: ...

    def generate(self, handle: Any, request: GenerationRequest) -> GenerationResult: ...

    def release(self, handle: Any) -> None: ...


def _missing_extra() -> LLMError:
    return LLMError(
        "local",
        "Local model support is not installed. "
        "Install it with: pip install 'vibe-engine[local]'",
        ErrorKind.MODEL_UNAVAILABLE,
    )


class LlamaCppRuntime:
    """Runs GGUF models with ``llama-cpp-python``.

    Weights are fetched from the Hugging Face Hub into *models_dir* on the
    first load and reused afterwards.  The download is streamed so progress
    moves with the bytes received: it covers [0, 0.8] of the reported range
    and weight loading the rest.
    """

    download_share = 0.8

    def __init__(
        self,
        models_dir: str = "./models",
        http_client: httpx.Client | None = None,
        chunk_bytes: int = 1 << 20,
    ):
        self.models_dir = Path(models_dir)
        self.http_client = http_client
        self.chunk_bytes = chunk_bytes

    def is_supported(self) -> bool:
        return importlib.util.find_spec("llama_cpp") is not None

    def load(self, model: LocalModelInfo, on_progress: ProgressCallback) -> Any:
        try:
            import llama_cpp
        except ImportError as exc:
            raise _missing_extra() from exc

        path = self.fetch(model, on_progress)
        llm = llama_cpp.Llama(model_path=str(path), n_ctx=model.context_length, verbose=False)
        on_progress(1.0)
        return llm

    def fetch(self, model: LocalModelInfo, on_progress: ProgressCallback) -> Path:
        """Return the local weights file, downloading it when absent."""
        target = self.models_dir / model.filename
        if not target.exists():
            self._download(model, target, on_progress)
        on_progress(self.download_share)
        return target

    def _download(self, model: LocalModelInfo, target: Path, on_progress: ProgressCallback) -> None:
        try:
            from huggingface_hub import hf_hub_url
            from huggingface_hub.utils import build_hf_headers
        except ImportError as exc:
            raise _missing_extra() from exc

        url = hf_hub_url(repo_id=model.repo_id, filename=model.filename)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".part")
        logger.info("model_download_started", model_id=model.id, url=url)

        client = self.http_client or httpx.Client(timeout=httpx.Timeout(30.0, read=300.0))
        try:
            with client.stream("GET", url, headers=build_hf_headers(), follow_redirects=True) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length") or 0) or model.size_mb * 1024 * 1024
                received = 0
                with open(partial, "wb") as fh:
                    for chunk in response.iter_bytes(chunk_size=self.chunk_bytes):
                        fh.write(chunk)
                        received += len(chunk)
                        on_progress(self.download_share * min(received / total, 1.0))
            os.replace(partial, target)
        finally:
            if self.http_client is None:
                client.close()
            if partial.exists():
                partial.unlink()
        logger.info("model_download_completed", model_id=model.id, bytes=received)

    def generate(self, handle: Any, request: GenerationRequest) -> GenerationResult:
        messages = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.append({"role": "user", "content": request.prompt})

        started = time.perf_counter()
        response = handle.create_chat_completion(
            messages=messages,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
        )
        choices = response.get("choices") or []
        text = (choices[0].get("message") or {}).get("content") or "" if choices else ""
        usage = response.get("usage") or {}
        return GenerationResult(
            text=text,
            provider="local",
            model=response.get("model", ""),
            duration_ms=(time.perf_counter() - started) * 1000,
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
        )

    def release(self, handle: Any) -> None:
        close = getattr(handle, "close", None)
        if callable(close):
            close()


class ModelLoadController:
    """Owns the resident local model and its load state.

    Parameters
    ----------
    runtime:
        Backend performing the blocking work.
    catalog:
        Models that may be loaded, keyed by :attr:`LocalModelInfo.id`.
    """

    def __init__(
        self,
        runtime: LocalModelRuntime,
        catalog: Iterable[LocalModelInfo] = DEFAULT_CATALOG,
    ):
        self.runtime = runtime
        self._catalog: dict[str, LocalModelInfo] = {m.id: m for m in catalog}
        self._state = ModelLoadState()
        self._handle: Any = None
        self._inflight: dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()
        # Held by the worker thread for the whole of a generate or release call.
        self._inference_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> ModelLoadState:
        return self._state.model_copy()

    @property
    def loaded_model_id(self) -> str | None:
        if self._state.status == ModelLoadStatus.LOADED:
            return self._state.model_id
        return None

    @property
    def catalog(self) -> list[LocalModelInfo]:
        return list(self._catalog.values())

    def is_supported(self) -> bool:
        return self.runtime.is_supported()

    # ------------------------------------------------------------------
    # Load / unload
    # ------------------------------------------------------------------

    async def load(self, model_id: str) -> ModelLoadState:
        """Make *model_id* the resident model.

        Returns immediately when it is already loaded.  Concurrent callers
        for the same ID await the same attempt and see the same outcome;
        cancelling one caller does not abort the shared attempt.

        Raises :class:`ModelLoadError` when the load fails.
        """
        if self.loaded_model_id == model_id:
            return self.state

        task = self._inflight.get(model_id)
        if task is None:
            task = asyncio.create_task(self._load(model_id))
            self._inflight[model_id] = task
            task.add_done_callback(lambda t, mid=model_id: self._load_finished(mid, t))
        await asyncio.shield(task)
        return self.state

    def _load_finished(self, model_id: str, task: asyncio.Task[None]) -> None:
        if self._inflight.get(model_id) is task:
            del self._inflight[model_id]
        if not task.cancelled():
            # Mark the exception retrieved when every waiter was cancelled.
            task.exception()

    async def _load(self, model_id: str) -> None:
        async with self._lock:
            if self.loaded_model_id == model_id:
                return

            info = self._catalog.get(model_id)
            if info is None:
                self._fail(model_id, "model is not in the local catalog")
            if not self.runtime.is_supported():
                self._fail(model_id, "local runtime is not installed")

            if self._handle is not None:
                await self._release()

            self._state = ModelLoadState(status=ModelLoadStatus.LOADING, model_id=model_id)
            logger.info("model_load_started", model_id=model_id, size_mb=info.size_mb)

            loop = asyncio.get_running_loop()

            def on_progress(value: float) -> None:
                loop.call_soon_threadsafe(self._set_progress, model_id, value)

            started = time.perf_counter()
            try:
                handle = await asyncio.to_thread(self.runtime.load, info, on_progress)
            except asyncio.CancelledError:
                self._state = ModelLoadState()
                logger.info("model_load_cancelled", model_id=model_id)
                raise
            except Exception as exc:
                detail = exc.detail if isinstance(exc, LLMError) else str(exc)
                self._fail(model_id, detail, cause=exc)

            self._handle = handle
            self._state = ModelLoadState(
                status=ModelLoadStatus.LOADED,
                model_id=model_id,
                progress=1.0,
            )
            logger.info(
                "model_load_completed",
                model_id=model_id,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )

    def _set_progress(self, model_id: str, value: float) -> None:
        state = self._state
        if state.status != ModelLoadStatus.LOADING or state.model_id != model_id:
            return
        clamped = min(max(value, 0.0), 1.0)
        if clamped > state.progress:
            self._state = state.model_copy(update={"progress": clamped})

    def _fail(self, model_id: str, detail: str, cause: BaseException | None = None) -> None:
        self._state = ModelLoadState(
            status=ModelLoadStatus.ERROR,
            model_id=model_id,
            progress=self._state.progress if self._state.model_id == model_id else 0.0,
            error=detail,
        )
        logger.error("model_load_failed", model_id=model_id, error=detail)
        raise ModelLoadError(model_id, detail) from cause

    async def unload(self) -> None:
        """Release the resident model, waiting for any load in progress."""
        async with self._lock:
            await self._release()
            self._state = ModelLoadState()

    async def _release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            await asyncio.to_thread(self._release_blocking, handle)
            logger.info("model_unloaded", model_id=self._state.model_id)

    def _release_blocking(self, handle: Any) -> None:
        with self._inference_lock:
            self.runtime.release(handle)

    async def shutdown(self) -> None:
        """Cancel in-flight loads and release the resident model."""
        for task in list(self._inflight.values()):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)
        await self.unload()

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Run *request* on the resident model in a worker thread.

        Calls are serialized: the resident model runs one inference at a
        time.  The worker thread keeps the lock until the runtime returns,
        even when the awaiting caller has timed out or been cancelled, so a
        later request or a release never overlaps an abandoned one.
        """
        handle = self._handle
        model_id = self.loaded_model_id
        if handle is None or model_id is None:
            raise LLMError("local", "No local model loaded", ErrorKind.MODEL_UNAVAILABLE)
        result = await asyncio.to_thread(self._generate_blocking, handle, request)
        if not result.model:
            result = result.model_copy(update={"model": model_id})
        return result

    def _generate_blocking(self, handle: Any, request: GenerationRequest) -> GenerationResult:
        with self._inference_lock:
            if self._handle is not handle:
                raise LLMError("local", "Local model was unloaded", ErrorKind.MODEL_UNAVAILABLE)
            return self.runtime.generate(handle, request)
