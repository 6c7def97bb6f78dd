"""
Local Embedding Generator
==========================
The entry point: turns strings into embedding vectors with a local ONNX
model, downloading and caching the model on first use.

Usage::

    from local_embeddings import LocalEmbeddingGenerator, LocalEmbeddingsOptions

    with LocalEmbeddingGenerator() as generator:       # blocks while downloading
        vectors = generator.generate(["Hello world", "Another sentence"])
        vectors[0].dimension                            # 384

    # In async code, avoid blocking the event loop during download / load:
    generator = await LocalEmbeddingGenerator.create_async(
        LocalEmbeddingsOptions(normalize_embeddings=True)
    )

Design notes:
  - One generator owns one tokenizer and one inference engine, loaded once
    at construction.  Loading a different model means a new generator.
  - The constructor blocks (download + session compile).  ``create_async``
    gives the same fully loaded instance without blocking the event loop.
  - A generation call tokenizes the whole batch at once and runs a single
    inference call; vector i always belongs to text i.  The call either
    returns every vector or raises.
  - ``close()`` releases the native session exactly once; anything used
    after that raises ``ObjectDisposedError``.
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional

from local_embeddings.embeddings.types import Embedding, EmbeddingGeneratorMetadata
from local_embeddings.errors import (
    ConfigurationError,
    LocalEmbeddingsError,
    ModelLoadError,
    ObjectDisposedError,
    raise_if_cancelled,
)
from local_embeddings.inference.backends import InferenceBackend, get_backend
from local_embeddings.inference.engine import InferenceEngine
from local_embeddings.models.cache import resolve_model_path
from local_embeddings.models.downloader import (
    HF_BASE_URL,
    ModelDownloader,
    ProgressCallback,
    shared_http_client,
)
from local_embeddings.settings import LocalEmbeddingsOptions
from local_embeddings.tokenization.tokenizer import Tokenizer

logger = logging.getLogger(__name__)

PROVIDER_NAME = "LocalEmbeddings"


def _check_options(options: Optional[LocalEmbeddingsOptions]) -> LocalEmbeddingsOptions:
    if options is None:
        options = LocalEmbeddingsOptions()
    if not isinstance(options, LocalEmbeddingsOptions):
        raise ConfigurationError(
            f"options must be LocalEmbeddingsOptions, got {type(options).__name__}"
        )
    return options.validate()


def _default_downloader(options: LocalEmbeddingsOptions) -> ModelDownloader:
    return ModelDownloader(
        client=shared_http_client(), cache_directory=options.cache_directory
    )


class LocalEmbeddingGenerator:
    """
    Generates embeddings locally from a HuggingFace ONNX model.

    Thread safety: after construction ``generate`` may be called from any
    number of threads concurrently.  ``close`` must only be called once no
    other thread is still using the instance.
    """

    def __init__(
        self,
        options: Optional[LocalEmbeddingsOptions] = None,
        *,
        backend: Optional[InferenceBackend] = None,
        downloader: Optional[ModelDownloader] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Resolve, download (blocking) and load the model.

        Args:
            options      : configuration; defaults to LocalEmbeddingsOptions()
            backend      : inference backend; defaults to ``options.backend``
            downloader   : model downloader; defaults to one using the shared
                           HTTP client and ``options.cache_directory``
            progress     : download progress callback, 0.0 - 1.0
            cancel_event : aborts an in-flight download

        Raises:
            ConfigurationError    : invalid options
            DownloadError         : the model could not be downloaded
            ResourceNotFoundError : model or vocab file missing
            ModelLoadError        : the runtime or tokenizer failed to load
        """
        options = _check_options(options)
        if options.has_model_path:
            model_dir = Path(options.model_path)
        else:
            model_dir = (downloader or _default_downloader(options)).ensure_model(
                options.model_name,
                prefer_quantized=options.prefer_quantized,
                progress=progress,
                cancel_event=cancel_event,
            )
        self._initialize(model_dir, options, backend)

    @classmethod
    async def create_async(
        cls,
        options: Optional[LocalEmbeddingsOptions] = None,
        *,
        backend: Optional[InferenceBackend] = None,
        downloader: Optional[ModelDownloader] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> "LocalEmbeddingGenerator":
        """
        Async factory with the same result as the constructor.

        The download runs on the event loop with an async HTTP client;
        session compile and tokenizer loading run in a worker thread.
        """
        options = _check_options(options)
        if options.has_model_path:
            model_dir = Path(options.model_path)
        else:
            model_dir = await (downloader or _default_downloader(options)).ensure_model_async(
                options.model_name,
                prefer_quantized=options.prefer_quantized,
                progress=progress,
                cancel_event=cancel_event,
            )
        return await asyncio.to_thread(cls._from_directory, model_dir, options, backend)

    @classmethod
    def _from_directory(
        cls,
        model_dir: Path,
        options: LocalEmbeddingsOptions,
        backend: Optional[InferenceBackend],
    ) -> "LocalEmbeddingGenerator":
        self = cls.__new__(cls)
        self._initialize(model_dir, options, backend)
        return self

    def _initialize(
        self,
        model_dir: Path,
        options: LocalEmbeddingsOptions,
        backend: Optional[InferenceBackend],
    ) -> None:
        self._closed = False
        self._lock = threading.Lock()
        self._model_directory = Path(model_dir)
        self._model_path = resolve_model_path(model_dir, options.prefer_quantized)

        engine = InferenceEngine(backend or get_backend(options.backend))
        engine.load(
            self._model_path,
            normalize_embeddings=options.normalize_embeddings,
            use_parallel_execution=options.use_parallel_execution,
            inter_op_num_threads=options.inter_op_num_threads,
            intra_op_num_threads=options.intra_op_num_threads,
            device=options.device,
        )

        # The engine holds a native session from here on; release it on any failure.
        try:
            tokenizer = Tokenizer(model_dir, options.max_sequence_length)
        except LocalEmbeddingsError:
            engine.close()
            raise
        except Exception as exc:
            engine.close()
            raise ModelLoadError(
                f"Failed to build tokenizer for model '{options.model_name}' "
                f"from {model_dir}: {exc}",
                str(self._model_path),
            ) from exc

        self._engine = engine
        self._tokenizer = tokenizer
        self._metadata = EmbeddingGeneratorMetadata(
            provider_name=PROVIDER_NAME,
            provider_uri=f"{HF_BASE_URL}/{options.model_name}",
            model_id=options.model_name,
            dimension=engine.dimension,
        )
        logger.info(
            "LocalEmbeddingGenerator ready: model=%s dim=%d path=%s",
            options.model_name, engine.dimension, self._model_path,
        )

    # ------------------------------------------------------------------
    #  Metadata
    # ------------------------------------------------------------------

    @property
    def metadata(self) -> EmbeddingGeneratorMetadata:
        return self._metadata

    @property
    def model_directory(self) -> Path:
        return self._model_directory

    @property
    def model_path(self) -> Path:
        """The ONNX graph file actually loaded."""
        return self._model_path

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise ObjectDisposedError(type(self).__name__)

    # ------------------------------------------------------------------
    #  Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        texts: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Embedding]:
        """
        Embed a batch of strings.

        Args:
            texts        : strings to embed (a list, tuple, generator...)
            cancel_event : checked before tokenizing and around inference

        Returns:
            One Embedding per input, in input order.  Empty input returns
            an empty list.
        """
        self._ensure_open()
        if texts is None:
            raise ConfigurationError("texts cannot be None")
        if isinstance(texts, str):
            raise ConfigurationError("generate() expects a collection of strings; use generate_one()")

        text_list = list(texts)
        if not text_list:
            return []

        raise_if_cancelled(cancel_event)
        input_ids, attention_mask = self._tokenizer.tokenize_batch(
            text_list, cancel_event=cancel_event
        )
        vectors = self._engine.generate_embeddings(
            input_ids, attention_mask, cancel_event=cancel_event
        )
        return [Embedding(vector) for vector in vectors]

    def generate_one(self, text: str) -> Embedding:
        """Embed a single string."""
        if text is None:
            self._ensure_open()
            raise ConfigurationError("text cannot be None")
        return self.generate([text])[0]

    async def agenerate(
        self,
        texts: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Embedding]:
        """``generate`` in a worker thread, for use from async code."""
        return await asyncio.to_thread(self.generate, texts, cancel_event)

    async def agenerate_one(self, text: str) -> Embedding:
        return await asyncio.to_thread(self.generate_one, text)

    def count_tokens(self, text: str) -> int:
        """Token count for *text* (special tokens included, untruncated)."""
        self._ensure_open()
        return self._tokenizer.count_tokens(text)

    # ------------------------------------------------------------------
    #  Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Release the inference session. Further calls are no-ops."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._engine.close()
        logger.debug("LocalEmbeddingGenerator closed (%s)", self._metadata.model_id)

    def __enter__(self) -> "LocalEmbeddingGenerator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    async def __aenter__(self) -> "LocalEmbeddingGenerator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()
