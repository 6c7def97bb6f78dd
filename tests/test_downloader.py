"""Unit tests for the model cache and downloader, using httpx.MockTransport."""

import asyncio
import os
import sys
import threading
import time

import httpx
import pytest

from local_embeddings.errors import (
    ConfigurationError,
    DownloadError,
    OperationCancelled,
)
from local_embeddings.models import (
    ModelDownloader,
    default_cache_directory,
    find_model_file,
    resolve_model_path,
    sanitize_model_name,
)
from local_embeddings.models.downloader import RemoteFile, _DownloadRun

MODEL = "sentence-transformers/all-MiniLM-L6-v2"
GRAPH_BYTES = b"\x08\x07onnx-graph" * 20000


class FakeHub:
    """Serves a fixed set of repository files; everything else is 404."""

    def __init__(self, files):
        self.files = files
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request.url.path)
        for suffix, body in self.files.items():
            if request.url.path.endswith(suffix):
                return httpx.Response(200, content=body)
        return httpx.Response(404)

    def requested(self, suffix):
        return [p for p in self.requests if p.endswith(suffix)]


def full_hub(**extra):
    files = {
        "/onnx/model.onnx": GRAPH_BYTES,
        "/vocab.txt": b"[PAD]\n[UNK]\n[CLS]\n[SEP]\nhello\n",
        "/tokenizer.json": b"{}",
        "/tokenizer_config.json": b'{"do_lower_case": true}',
    }
    files.update(extra)
    return FakeHub(files)


def make_downloader(hub, cache_dir):
    return ModelDownloader(
        client=httpx.Client(transport=httpx.MockTransport(hub)),
        cache_directory=cache_dir,
    )


def leftover_temp_files(directory):
    return list(directory.rglob("*.tmp"))


def async_downloader(handler, cache_dir):
    return ModelDownloader(
        cache_directory=cache_dir,
        async_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class StalledStream(httpx.AsyncByteStream):
    """Sends one chunk, signals, then hangs until cancelled."""

    def __init__(self, started: asyncio.Event):
        self.started = started

    async def __aiter__(self):
        yield b"x" * 1000
        self.started.set()
        await asyncio.sleep(30)
        yield b"y"

    async def aclose(self):
        pass


# ── cache helpers ─────────────────────────────────────────────────────────────

class TestCacheHelpers:
    def test_sanitize(self):
        assert sanitize_model_name("org/model") == "org_model"
        assert sanitize_model_name('a\\b:c*d?e"f<g>h|i') == "a_b_c_d_e_f_g_h_i"
        assert sanitize_model_name("plain-name.v2") == "plain-name.v2"

    def test_default_cache_directory_xdg(self, monkeypatch, tmp_path):
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        assert default_cache_directory() == tmp_path / "LocalEmbeddings" / "models"

    def test_default_cache_directory_home(self, monkeypatch, tmp_path):
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        expected = tmp_path / ".local" / "share" / "LocalEmbeddings" / "models"
        assert default_cache_directory() == expected

    def test_default_cache_directory_windows(self, monkeypatch, tmp_path):
        monkeypatch.setattr(sys, "platform", "win32")
        monkeypatch.setenv("LOCALAPPDATA", str(tmp_path))
        assert default_cache_directory() == tmp_path / "LocalEmbeddings" / "models"

    def test_find_model_file_prefers_quantized(self, tmp_path):
        (tmp_path / "model.onnx").write_bytes(b"x")
        (tmp_path / "model_int8.onnx").write_bytes(b"x")
        assert find_model_file(tmp_path) == tmp_path / "model.onnx"
        assert find_model_file(tmp_path, prefer_quantized=True) == tmp_path / "model_int8.onnx"

    def test_empty_file_is_not_usable(self, tmp_path):
        (tmp_path / "model.onnx").write_bytes(b"")
        assert find_model_file(tmp_path) is None
        assert resolve_model_path(tmp_path) == tmp_path / "model.onnx"


# ── ensure_model ──────────────────────────────────────────────────────────────

class TestEnsureModel:
    def test_downloads_all_files(self, tmp_path):
        hub = full_hub()
        model_dir = make_downloader(hub, tmp_path).ensure_model(MODEL)
        assert model_dir == tmp_path / "sentence-transformers_all-MiniLM-L6-v2"
        assert (model_dir / "model.onnx").read_bytes() == GRAPH_BYTES
        assert (model_dir / "vocab.txt").is_file()
        assert hub.requested("/resolve/main/onnx/model.onnx")
        assert hub.requested("/resolve/main/vocab.txt")
        assert leftover_temp_files(tmp_path) == []

    def test_second_call_is_offline(self, tmp_path):
        hub = full_hub()
        downloader = make_downloader(hub, tmp_path)
        first = downloader.ensure_model(MODEL)
        count = len(hub.requests)
        second = downloader.ensure_model(MODEL)
        assert first == second
        assert len(hub.requests) == count

    def test_missing_optional_files_are_skipped(self, tmp_path):
        hub = FakeHub({"/onnx/model.onnx": GRAPH_BYTES, "/vocab.txt": b"[PAD]\n"})
        model_dir = make_downloader(hub, tmp_path).ensure_model(MODEL)
        assert (model_dir / "model.onnx").is_file()
        assert not (model_dir / "tokenizer.json").exists()

    def test_missing_graph_raises(self, tmp_path):
        hub = FakeHub({"/vocab.txt": b"[PAD]\n"})
        with pytest.raises(DownloadError) as info:
            make_downloader(hub, tmp_path).ensure_model(MODEL)
        assert info.value.url.endswith("/onnx/model.onnx")
        assert not (tmp_path / "sentence-transformers_all-MiniLM-L6-v2" / "model.onnx").exists()
        assert leftover_temp_files(tmp_path) == []

    def test_blank_model_name(self, tmp_path):
        with pytest.raises(ConfigurationError):
            make_downloader(full_hub(), tmp_path).ensure_model("  ")

    def test_progress_reaches_one(self, tmp_path):
        seen = []
        make_downloader(full_hub(), tmp_path).ensure_model(MODEL, progress=seen.append)
        assert seen
        assert seen[-1] == 1.0
        assert all(0.0 <= p <= 1.0 for p in seen)
        assert seen == sorted(seen)

    def test_cancel_removes_partial_file(self, tmp_path):
        event = threading.Event()
        hub = full_hub()

        def cancel_on_first_progress(_fraction):
            event.set()

        with pytest.raises(OperationCancelled):
            make_downloader(hub, tmp_path).ensure_model(
                MODEL, progress=cancel_on_first_progress, cancel_event=event
            )
        model_dir = tmp_path / "sentence-transformers_all-MiniLM-L6-v2"
        assert not (model_dir / "model.onnx").exists()
        assert leftover_temp_files(tmp_path) == []

    def test_cancel_before_start(self, tmp_path):
        event = threading.Event()
        event.set()
        hub = full_hub()
        with pytest.raises(OperationCancelled):
            make_downloader(hub, tmp_path).ensure_model(MODEL, cancel_event=event)
        assert hub.requests == []


class TestQuantizedPreference:
    def test_quantized_variant_used(self, tmp_path):
        hub = full_hub(**{"/onnx/model_quantized.onnx": b"quantized-graph"})
        model_dir = make_downloader(hub, tmp_path).ensure_model(MODEL, prefer_quantized=True)
        assert (model_dir / "model_quantized.onnx").read_bytes() == b"quantized-graph"
        assert hub.requested("/onnx/model.onnx") == []
        assert hub.requested("/onnx/model_int8.onnx") == []
        assert resolve_model_path(model_dir, prefer_quantized=True).name == "model_quantized.onnx"

    def test_falls_back_to_canonical(self, tmp_path):
        hub = full_hub()
        model_dir = make_downloader(hub, tmp_path).ensure_model(MODEL, prefer_quantized=True)
        assert hub.requested("/onnx/model_quantized.onnx")
        assert hub.requested("/onnx/model_int8.onnx")
        assert resolve_model_path(model_dir, prefer_quantized=True).name == "model.onnx"

    def test_nothing_available(self, tmp_path):
        hub = FakeHub({})
        with pytest.raises(DownloadError):
            make_downloader(hub, tmp_path).ensure_model(MODEL, prefer_quantized=True)


# ── ensure_model_async ────────────────────────────────────────────────────────

class TestEnsureModelAsync:
    def test_downloads(self, tmp_path):
        hub = full_hub()
        downloader = ModelDownloader(
            cache_directory=tmp_path,
            async_client=httpx.AsyncClient(transport=httpx.MockTransport(hub)),
        )
        model_dir = asyncio.run(downloader.ensure_model_async(MODEL))
        assert (model_dir / "model.onnx").read_bytes() == GRAPH_BYTES
        assert leftover_temp_files(tmp_path) == []

    def test_cached_model_needs_no_client(self, tmp_path):
        model_dir = tmp_path / "sentence-transformers_all-MiniLM-L6-v2"
        model_dir.mkdir()
        (model_dir / "model.onnx").write_bytes(b"graph")
        downloader = ModelDownloader(cache_directory=tmp_path)
        assert asyncio.run(downloader.ensure_model_async(MODEL)) == model_dir

    def test_missing_graph_raises(self, tmp_path):
        hub = FakeHub({})
        downloader = ModelDownloader(
            cache_directory=tmp_path,
            async_client=httpx.AsyncClient(transport=httpx.MockTransport(hub)),
        )
        with pytest.raises(DownloadError):
            asyncio.run(downloader.ensure_model_async(MODEL))

    def test_cancel_event_removes_partial_file(self, tmp_path):
        event = threading.Event()
        downloader = async_downloader(full_hub(), tmp_path)

        with pytest.raises(OperationCancelled):
            asyncio.run(
                downloader.ensure_model_async(
                    MODEL, progress=lambda _fraction: event.set(), cancel_event=event
                )
            )
        model_dir = tmp_path / "sentence-transformers_all-MiniLM-L6-v2"
        assert not (model_dir / "model.onnx").exists()
        assert leftover_temp_files(tmp_path) == []

    def test_task_cancel_removes_partial_file(self, tmp_path):
        async def run():
            started = asyncio.Event()

            def handler(request):
                if request.url.path.endswith("/onnx/model.onnx"):
                    return httpx.Response(
                        200,
                        headers={"content-length": "1001"},
                        stream=StalledStream(started),
                    )
                return httpx.Response(404)

            task = asyncio.create_task(
                async_downloader(handler, tmp_path).ensure_model_async(MODEL)
            )
            await asyncio.wait_for(started.wait(), timeout=5)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        model_dir = tmp_path / "sentence-transformers_all-MiniLM-L6-v2"
        assert not (model_dir / "model.onnx").exists()
        assert leftover_temp_files(tmp_path) == []

    def test_quantized_variant_used(self, tmp_path):
        hub = full_hub(**{"/onnx/model_int8.onnx": b"int8-graph"})
        model_dir = asyncio.run(
            async_downloader(hub, tmp_path).ensure_model_async(MODEL, prefer_quantized=True)
        )
        assert (model_dir / "model_int8.onnx").read_bytes() == b"int8-graph"
        assert hub.requested("/onnx/model_quantized.onnx")
        assert hub.requested("/onnx/model.onnx") == []
        assert resolve_model_path(model_dir, prefer_quantized=True).name == "model_int8.onnx"

    def test_progress_reaches_one(self, tmp_path):
        seen = []
        asyncio.run(
            async_downloader(full_hub(), tmp_path).ensure_model_async(MODEL, progress=seen.append)
        )
        assert seen[-1] == 1.0
        assert seen == sorted(seen)

    def test_injected_client_is_reused_and_left_open(self, tmp_path):
        hub = full_hub()
        client = httpx.AsyncClient(transport=httpx.MockTransport(hub))
        downloader = ModelDownloader(cache_directory=tmp_path, async_client=client)

        async def run():
            await downloader.ensure_model_async(MODEL)
            await downloader.ensure_model_async("BAAI/bge-small-en-v1.5")
            closed = client.is_closed
            await client.aclose()
            return closed

        assert asyncio.run(run()) is False
        assert any("bge-small-en-v1.5" in path for path in hub.requests)
        assert (tmp_path / "BAAI_bge-small-en-v1.5" / "model.onnx").is_file()

    def test_disk_writes_do_not_block_event_loop(self, tmp_path, monkeypatch):
        real_fsync = os.fsync

        def slow_fsync(fd):
            time.sleep(0.5)
            real_fsync(fd)

        monkeypatch.setattr(os, "fsync", slow_fsync)
        downloader = async_downloader(FakeHub({"/onnx/model.onnx": GRAPH_BYTES}), tmp_path)

        async def run():
            gaps = []
            done = asyncio.Event()

            async def heartbeat():
                last = time.perf_counter()
                while not done.is_set():
                    await asyncio.sleep(0.01)
                    now = time.perf_counter()
                    gaps.append(now - last)
                    last = now

            beat = asyncio.create_task(heartbeat())
            try:
                await downloader.ensure_model_async(MODEL)
            finally:
                done.set()
                await beat
            return max(gaps)

        assert asyncio.run(run()) < 0.25


# ── per-file decisions shared by both paths ───────────────────────────────────

class TestDownloadRun:
    def _entries(self, tmp_path):
        return [
            RemoteFile("model_quantized.onnx", "u/q", tmp_path / "model_quantized.onnx", True),
            RemoteFile("model.onnx", "u/m", tmp_path / "model.onnx", True),
            RemoteFile("vocab.txt", "u/v", tmp_path / "vocab.txt", False),
        ]

    def test_canonical_required_until_graph_obtained(self, tmp_path):
        quantized, canonical, vocab = self._entries(tmp_path)
        run = _DownloadRun([quantized, canonical, vocab], None)
        assert not run.is_required(quantized)
        assert run.is_required(canonical)
        assert not run.is_required(vocab)

        quantized.local_path.write_bytes(b"q")
        run.entry_done(quantized)
        assert run.graph_ready
        assert not run.is_required(canonical)
        assert not run.needs_download(canonical)
        assert run.needs_download(vocab)

    def test_failure_raises_only_for_required(self, tmp_path):
        quantized, canonical, vocab = self._entries(tmp_path)
        run = _DownloadRun([quantized, canonical, vocab], None)
        error = httpx.ConnectError("unreachable")
        run.download_failed(quantized, error)
        run.download_failed(vocab, error)
        with pytest.raises(DownloadError) as info:
            run.download_failed(canonical, error)
        assert info.value.url == "u/m"

    def test_existing_file_not_downloaded(self, tmp_path):
        _, canonical, vocab = self._entries(tmp_path)
        vocab.local_path.write_bytes(b"[PAD]\n")
        run = _DownloadRun([canonical, vocab], None)
        assert run.needs_download(canonical)
        assert not run.needs_download(vocab)
