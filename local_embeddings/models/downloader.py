"""
Model Downloader
=================
Resolves a HuggingFace model id to a local directory holding an ONNX
graph plus tokenizer files, downloading whatever is missing.

This module is idempotent -- once a usable graph file is on disk the model
directory is returned straight away without touching the network.  There
is no checksum verification of cached files: anything present and
non-empty is trusted.

Remote layout (HuggingFace Hub):
    {base}/{model}/resolve/main/onnx/model.onnx        (graph files)
    {base}/{model}/resolve/main/vocab.txt              (tokenizer files)

Download guarantees:
    - Each file streams into a temporary sibling and is moved into place
      with ``os.replace`` only after the last byte arrived, so a partially
      written file is never visible under its final name.
    - A failed required file (the ONNX graph) raises ``DownloadError``.
      Tokenizer files are optional: some models do not ship all of them.
    - Cancellation removes the temporary file and raises
      ``OperationCancelled`` (sync) or lets ``asyncio.CancelledError``
      propagate (async).

HTTP clients:
    Blocking downloads share one process-wide ``httpx.Client`` returned by
    ``shared_http_client()``.  It is created on first use and lives until
    the process exits.  Pass ``client=`` to use your own instead.

    Async downloads are different: an ``httpx.AsyncClient`` keeps its pooled
    connections bound to the event loop that opened them, so one process-wide
    instance cannot be reused safely across loops (e.g. successive
    ``asyncio.run`` calls).  Without ``async_client=`` each
    ``ensure_model_async`` call opens one client, reuses it for every file of
    that model and closes it afterwards.  Applications running a long-lived
    loop should pass their own ``async_client=`` to pool connections across
    calls; it is never closed by the downloader.

    In the async path every disk write, the fsync and the final rename run in
    a worker thread (``asyncio.to_thread``), so the event loop only waits on
    the network.
"""

import asyncio
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

import httpx

from local_embeddings.errors import (
    ConfigurationError,
    DownloadError,
    ResourceNotFoundError,
    raise_if_cancelled,
)
from local_embeddings.models.cache import (
    CANONICAL_MODEL_FILE,
    QUANTIZED_MODEL_FILES,
    TOKENIZER_FILES,
    default_cache_directory,
    find_model_file,
    is_usable_file,
    sanitize_model_name,
)

logger = logging.getLogger(__name__)

HF_BASE_URL = "https://huggingface.co"
DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
DOWNLOAD_CHUNK_SIZE = 81920
DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)

ProgressCallback = Callable[[float], None]

# ---------------------------------------------------------------------------
# Shared HTTP client
# ---------------------------------------------------------------------------
_shared_client: Optional[httpx.Client] = None
_shared_client_lock = threading.Lock()


def shared_http_client() -> httpx.Client:
    """
    Return the process-scoped HTTP client used for model downloads.

    Created once (thread-safe) and never closed; connection pooling across
    downloads is the whole point of sharing it.
    """
    global _shared_client
    if _shared_client is None:
        with _shared_client_lock:
            if _shared_client is None:
                _shared_client = httpx.Client(
                    follow_redirects=True, timeout=DEFAULT_TIMEOUT
                )
    return _shared_client


@dataclass(frozen=True)
class RemoteFile:
    """One file to fetch for a model."""
    name: str
    url: str
    local_path: Path
    is_graph: bool



class _ProgressTracker:
    """Maps per-file byte progress onto overall progress across all files."""

    def __init__(self, callback: Optional[ProgressCallback], total_files: int):
        self._callback = callback
        self._total = max(total_files, 1)
        self._completed = 0

    def file_progress(self, fraction: float) -> None:
        if self._callback is not None:
            self._callback(min(1.0, (self._completed + fraction) / self._total))

    def file_done(self) -> None:
        self._completed += 1
        if self._callback is not None:
            self._callback(min(1.0, self._completed / self._total))


class _DownloadRun:
    """
    Per-call state of one ``ensure_model`` pass, shared by the blocking and
    async paths so both make the same per-file decisions.

    For each planned file, in order::

        if run.needs_download(entry):
            try:
                <fetch entry.url into entry.local_path>
            except httpx.HTTPError as exc:
                run.download_failed(entry, exc)   # raises for required files
        run.entry_done(entry)
    """

    def __init__(self, plan: List[RemoteFile], progress: Optional[ProgressCallback]):
        self.plan = plan
        self.tracker = _ProgressTracker(progress, len(plan))
        self.graph_ready = False

    def is_required(self, entry: RemoteFile) -> bool:
        # The canonical graph is only required when no quantized variant was obtained.
        return entry.is_graph and entry.name == CANONICAL_MODEL_FILE and not self.graph_ready

    def needs_download(self, entry: RemoteFile) -> bool:
        if entry.is_graph and self.graph_ready:
            return False
        return not is_usable_file(entry.local_path)

    def download_failed(self, entry: RemoteFile, exc: httpx.HTTPError) -> None:
        if self.is_required(entry):
            raise DownloadError(
                f"Failed to download required model file from '{entry.url}': {exc}",
                entry.url,
            ) from exc
        logger.debug("Optional file not available: %s (%s)", entry.url, exc)

    def entry_done(self, entry: RemoteFile) -> None:
        if entry.is_graph and is_usable_file(entry.local_path):
            self.graph_ready = True
        self.tracker.file_done()


def _content_length(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("content-length", -1))
    except ValueError:
        return -1


def _new_temp_file(destination: Path):
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=destination.name + ".", suffix=".tmp", dir=str(destination.parent)
    )
    return os.fdopen(fd, "wb"), Path(tmp_name)


def _commit_file(out, tmp_path: Path, destination: Path) -> None:
    """Flush + fsync the temp file, then move it into place."""
    out.flush()
    os.fsync(out.fileno())
    out.close()
    os.replace(tmp_path, destination)


class ModelDownloader:
    """
    Downloads and caches ONNX embedding models from HuggingFace Hub.

    Usage::

        downloader = ModelDownloader()
        model_dir = downloader.ensure_model("sentence-transformers/all-MiniLM-L6-v2")

        # async, with progress
        model_dir = await downloader.ensure_model_async(
            "sentence-transformers/all-MiniLM-L6-v2",
            progress=lambda p: print(f"{p:.0%}"),
        )
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        cache_directory: Optional[Union[str, Path]] = None,
        async_client: Optional[httpx.AsyncClient] = None,
        base_url: str = HF_BASE_URL,
    ):
        """
        Args:
            client          : HTTP client for blocking downloads
                              (defaults to ``shared_http_client()``)
            cache_directory : cache root; platform default when None
            async_client    : HTTP client for ``ensure_model_async``; when
                              None one client is opened per call
            base_url        : model hosting root
        """
        self._client = client
        self._async_client = async_client
        self._cache_directory = (
            Path(cache_directory) if cache_directory else default_cache_directory()
        )
        self._base_url = base_url.rstrip("/")

    def get_cache_directory(self) -> Path:
        return self._cache_directory

    def get_model_directory(self, model_name: str) -> Path:
        self._check_model_name(model_name)
        return self._cache_directory / sanitize_model_name(model_name)

    # ------------------------------------------------------------------
    #  URLs and download plan
    # ------------------------------------------------------------------

    def graph_file_url(self, model_name: str, file_name: str = CANONICAL_MODEL_FILE) -> str:
        return f"{self._base_url}/{model_name}/resolve/main/onnx/{file_name}"

    def tokenizer_file_url(self, model_name: str, file_name: str) -> str:
        return f"{self._base_url}/{model_name}/resolve/main/{file_name}"

    def _plan(self, model_name: str, model_dir: Path, prefer_quantized: bool) -> List[RemoteFile]:
        graph_names = list(QUANTIZED_MODEL_FILES) if prefer_quantized else []
        graph_names.append(CANONICAL_MODEL_FILE)

        plan = [
            RemoteFile(name, self.graph_file_url(model_name, name), model_dir / name, True)
            for name in graph_names
        ]
        plan.extend(
            RemoteFile(name, self.tokenizer_file_url(model_name, name), model_dir / name, False)
            for name in TOKENIZER_FILES
        )
        return plan

    @staticmethod
    def _check_model_name(model_name: str) -> None:
        if model_name is None or not str(model_name).strip():
            raise ConfigurationError("Model name cannot be None or empty")

    def _cached_model_directory(self, model_name: str, prefer_quantized: bool) -> Optional[Path]:
        model_dir = self.get_model_directory(model_name)
        if find_model_file(model_dir, prefer_quantized) is not None:
            logger.debug("Model '%s' already cached at %s", model_name, model_dir)
            return model_dir
        return None

    def _start_run(
        self, model_name: str, prefer_quantized: bool, progress: Optional[ProgressCallback]
    ) -> _DownloadRun:
        model_dir = self.get_model_directory(model_name)
        model_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading model '%s' to %s", model_name, model_dir)
        return _DownloadRun(self._plan(model_name, model_dir, prefer_quantized), progress)

    def _finish_run(self, model_name: str, prefer_quantized: bool) -> Path:
        model_dir = self.get_model_directory(model_name)
        if find_model_file(model_dir, prefer_quantized) is None:
            raise ResourceNotFoundError(
                "Model file was not downloaded successfully",
                str(model_dir / CANONICAL_MODEL_FILE),
            )
        logger.info("Model '%s' ready", model_name)
        return model_dir

    # ------------------------------------------------------------------
    #  Blocking download
    # ------------------------------------------------------------------

    def ensure_model(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        prefer_quantized: bool = False,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Path:
        """
        Make sure *model_name* is in the cache, downloading it if needed.

        Args:
            model_name       : HuggingFace model id, e.g. "org/model-name"
            prefer_quantized : try quantized graph variants first
            progress         : called with overall completion in [0.0, 1.0]
            cancel_event     : set it from another thread to abort

        Returns:
            Path to the model directory.

        Raises:
            ConfigurationError    : blank model name
            DownloadError         : the graph file could not be fetched
            OperationCancelled    : cancel_event was set
        """
        cached = self._cached_model_directory(model_name, prefer_quantized)
        if cached is not None:
            return cached

        run = self._start_run(model_name, prefer_quantized, progress)
        client = self._client or shared_http_client()
        for entry in run.plan:
            raise_if_cancelled(cancel_event)
            if run.needs_download(entry):
                try:
                    self._download_file(client, entry, run.tracker.file_progress, cancel_event)
                except httpx.HTTPError as exc:
                    run.download_failed(entry, exc)
            run.entry_done(entry)

        return self._finish_run(model_name, prefer_quantized)

    def _download_file(
        self,
        client: httpx.Client,
        entry: RemoteFile,
        on_progress: ProgressCallback,
        cancel_event: Optional[threading.Event],
    ) -> None:
        out, tmp_path = _new_temp_file(entry.local_path)
        try:
            with client.stream("GET", entry.url, follow_redirects=True) as response:
                response.raise_for_status()
                total = _content_length(response)
                received = 0
                for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                    raise_if_cancelled(cancel_event)
                    out.write(chunk)
                    received += len(chunk)
                    if total > 0:
                        on_progress(received / total)
            _commit_file(out, tmp_path, entry.local_path)
        except BaseException:
            out.close()
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Downloaded %s", entry.url)

    # ------------------------------------------------------------------
    #  Async download
    # ------------------------------------------------------------------

    async def ensure_model_async(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        prefer_quantized: bool = False,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Path:
        """Async counterpart of ``ensure_model`` with identical semantics."""
        cached = self._cached_model_directory(model_name, prefer_quantized)
        if cached is not None:
            return cached

        if self._async_client is not None:
            return await self._ensure_model_async(
                self._async_client, model_name, prefer_quantized, progress, cancel_event
            )
        async with httpx.AsyncClient(follow_redirects=True, timeout=DEFAULT_TIMEOUT) as client:
            return await self._ensure_model_async(
                client, model_name, prefer_quantized, progress, cancel_event
            )

    async def _ensure_model_async(
        self,
        client: httpx.AsyncClient,
        model_name: str,
        prefer_quantized: bool,
        progress: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> Path:
        run = self._start_run(model_name, prefer_quantized, progress)
        for entry in run.plan:
            raise_if_cancelled(cancel_event)
            if run.needs_download(entry):
                try:
                    await self._download_file_async(
                        client, entry, run.tracker.file_progress, cancel_event
                    )
                except httpx.HTTPError as exc:
                    run.download_failed(entry, exc)
            run.entry_done(entry)

        return self._finish_run(model_name, prefer_quantized)

    async def _download_file_async(
        self,
        client: httpx.AsyncClient,
        entry: RemoteFile,
        on_progress: ProgressCallback,
        cancel_event: Optional[threading.Event],
    ) -> None:
        out, tmp_path = await asyncio.to_thread(_new_temp_file, entry.local_path)
        try:
            async with client.stream("GET", entry.url, follow_redirects=True) as response:
                response.raise_for_status()
                total = _content_length(response)
                received = 0
                async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                    raise_if_cancelled(cancel_event)
                    await asyncio.to_thread(out.write, chunk)
                    received += len(chunk)
                    if total > 0:
                        on_progress(received / total)
            await asyncio.to_thread(_commit_file, out, tmp_path, entry.local_path)
        except BaseException:
            # Runs on CancelledError too; must not await.
            out.close()
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Downloaded %s", entry.url)
