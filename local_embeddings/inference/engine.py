"""
Inference Engine
=================
Runs a loaded embedding model over tokenized batches and returns pooled,
optionally L2-normalised sentence embeddings.

Pipeline (per call):
    1. Validate   -- row counts and row lengths line up, before any native call
    2. Infer      -- one runtime call for the whole batch; returns
                     (batch, seq_len, hidden) token embeddings
    3. Mean pool  -- mask-weighted average over real tokens only
    4. Normalise  -- optional, fixed at load time

Lifecycle:
    engine = InferenceEngine()
    engine.load("model.onnx", normalize_embeddings=True)
    vectors = engine.generate_embeddings(ids, masks)
    engine.close()

Once loaded, ``generate_embeddings`` may be called from many threads at
once; only ``load`` and ``close`` take the lifecycle lock.  The native call
cannot be interrupted: a cancel event is checked just before and just
after it.
"""

import logging
import threading
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from local_embeddings.errors import (
    BatchValidationError,
    ConfigurationError,
    ModelAlreadyLoadedError,
    ModelNotLoadedError,
    ObjectDisposedError,
    ResourceNotFoundError,
    raise_if_cancelled,
)
from local_embeddings.inference.backends import (
    InferenceBackend,
    InferenceSession,
    OpenVINOBackend,
    SessionOptions,
)
from local_embeddings.inference.pooling import l2_normalize, mean_pool
from local_embeddings.models.cache import is_usable_file

logger = logging.getLogger(__name__)

TOKEN_TYPE_IDS_INPUT = "token_type_ids"

TokenRows = Union[np.ndarray, Sequence[Sequence[int]]]


def _validate_thread_count(value: Optional[int], name: str) -> None:
    if value is not None and value <= 0:
        raise ConfigurationError(
            f"{name} must be greater than zero when specified, got {value}"
        )


def _as_batch(input_ids: TokenRows, attention_masks: TokenRows) -> Tuple[np.ndarray, np.ndarray]:
    """Check batch shape and convert both sides to (batch, seq_len) int64."""
    if len(input_ids) != len(attention_masks):
        raise BatchValidationError(
            "input_ids and attention_masks must have the same number of sequences "
            f"(got {len(input_ids)} and {len(attention_masks)})"
        )

    sequence_length = len(input_ids[0])
    for i, (ids_row, mask_row) in enumerate(zip(input_ids, attention_masks)):
        if len(ids_row) != sequence_length:
            raise BatchValidationError(
                "All input sequences must have the same length. "
                f"Expected {sequence_length}, got {len(ids_row)} at index {i}."
            )
        if len(mask_row) != sequence_length:
            raise BatchValidationError(
                "All attention masks must have the same length as input sequences. "
                f"Expected {sequence_length}, got {len(mask_row)} at index {i}."
            )

    return (
        np.asarray(input_ids, dtype=np.int64).reshape(len(input_ids), sequence_length),
        np.asarray(attention_masks, dtype=np.int64).reshape(len(input_ids), sequence_length),
    )


class InferenceEngine:
    """
    Owns one native inference session.

    Usage::

        engine = InferenceEngine()                    # OpenVINO backend
        engine.load("models/all-MiniLM-L6-v2/model.onnx")
        engine.dimension                               # 384
        vectors = engine.generate_embeddings(ids, masks)  # (batch, 384)
    """

    def __init__(self, backend: Optional[InferenceBackend] = None):
        self._backend = backend or OpenVINOBackend()
        self._session: Optional[InferenceSession] = None
        self._normalize = False
        self._dimension = 0
        self._closed = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    #  Properties
    # ------------------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        return self._session is not None

    @property
    def dimension(self) -> int:
        """Embedding size, read from the model's declared output shape."""
        return self._dimension

    @property
    def normalize_embeddings(self) -> bool:
        return self._normalize

    @property
    def input_names(self) -> List[str]:
        return self._require_session().input_names

    # ------------------------------------------------------------------
    #  Lifecycle
    # ------------------------------------------------------------------

    def load(
        self,
        model_path: Union[str, Path],
        normalize_embeddings: bool = False,
        use_parallel_execution: bool = True,
        inter_op_num_threads: Optional[int] = None,
        intra_op_num_threads: Optional[int] = None,
        device: str = "CPU",
    ) -> None:
        """
        Load the ONNX graph at *model_path*.

        Args:
            model_path             : path to the .onnx file
            normalize_embeddings   : L2-normalise every output vector
            use_parallel_execution : throughput-oriented runtime scheduling
            inter_op_num_threads   : optional, must be > 0
            intra_op_num_threads   : optional, must be > 0
            device                 : OpenVINO device string

        Raises:
            ObjectDisposedError     : the engine was closed
            ConfigurationError      : blank path or non-positive thread count
            ResourceNotFoundError   : graph file missing or empty
            ModelAlreadyLoadedError : a model is already loaded
            ModelLoadError          : the runtime failed to load the graph
        """
        if self._closed:
            raise ObjectDisposedError(type(self).__name__)
        if model_path is None or not str(model_path).strip():
            raise ConfigurationError("Model path cannot be None or empty")

        path = Path(model_path)
        if not is_usable_file(path):
            raise ResourceNotFoundError("ONNX model file not found or empty", str(path))

        with self._lock:
            if self._closed:
                raise ObjectDisposedError(type(self).__name__)
            if self._session is not None:
                raise ModelAlreadyLoadedError(
                    "A model is already loaded. Close this engine and create a new one "
                    "to load a different model."
                )

            _validate_thread_count(inter_op_num_threads, "inter_op_num_threads")
            _validate_thread_count(intra_op_num_threads, "intra_op_num_threads")

            options = SessionOptions(
                use_parallel_execution=use_parallel_execution,
                inter_op_num_threads=inter_op_num_threads,
                intra_op_num_threads=intra_op_num_threads,
                device=device,
            )
            session = self._backend.load(path, options)
            self._dimension = session.output_dimension
            self._normalize = normalize_embeddings
            self._session = session

        logger.info(
            "Embedding model loaded: %s (backend=%s, dim=%d, normalize=%s)",
            path, self._backend.name, self._dimension, normalize_embeddings,
        )

    def close(self) -> None:
        """Release the native session. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            session, self._session = self._session, None
            self._closed = True
        if session is not None:
            session.close()
            logger.debug("Inference session released")

    def __enter__(self) -> "InferenceEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _require_session(self) -> InferenceSession:
        session = self._session
        if self._closed:
            raise ObjectDisposedError(type(self).__name__)
        if session is None:
            raise ModelNotLoadedError("No model is loaded. Call load() first.")
        return session

    # ------------------------------------------------------------------
    #  Inference
    # ------------------------------------------------------------------

    def forward(self, input_ids: TokenRows, attention_masks: TokenRows) -> np.ndarray:
        """
        Run the raw model: returns token-level hidden states of shape
        (batch, seq_len, hidden) -- or (batch, hidden) for graphs that
        already pool internally.
        """
        if self._closed:
            raise ObjectDisposedError(type(self).__name__)
        if input_ids is None or attention_masks is None:
            raise ConfigurationError("input_ids and attention_masks cannot be None")
        ids, mask = _as_batch(input_ids, attention_masks)
        session = self._require_session()
        return self._run(session, ids, mask)

    @staticmethod
    def _run(session: InferenceSession, ids: np.ndarray, mask: np.ndarray) -> np.ndarray:
        feeds = {"input_ids": ids, "attention_mask": mask}
        # BERT-style graphs also take segment ids; all zeros for single sentences.
        if TOKEN_TYPE_IDS_INPUT in session.input_names:
            feeds[TOKEN_TYPE_IDS_INPUT] = np.zeros_like(ids)
        return session.run(feeds)

    def generate_embeddings(
        self,
        input_ids: TokenRows,
        attention_masks: TokenRows,
        cancel_event: Optional[threading.Event] = None,
    ) -> np.ndarray:
        """
        Embed a tokenized batch in one inference call.

        Args:
            input_ids       : (batch, seq_len) token ids, all rows equal length
            attention_masks : (batch, seq_len) 0/1 mask, same shape
            cancel_event    : checked before and after the native call

        Returns:
            (batch, dimension) float32 array, row i for input row i.
        """
        if self._closed:
            raise ObjectDisposedError(type(self).__name__)
        if input_ids is None or attention_masks is None:
            raise ConfigurationError("input_ids and attention_masks cannot be None")
        if len(input_ids) == 0 and len(attention_masks) == 0:
            return np.zeros((0, self._dimension), dtype=np.float32)

        ids, mask = _as_batch(input_ids, attention_masks)
        session = self._require_session()

        raise_if_cancelled(cancel_event)
        hidden = self._run(session, ids, mask)
        raise_if_cancelled(cancel_event)

        if hidden.ndim == 3:
            embeddings = mean_pool(hidden, mask)
        else:
            embeddings = np.asarray(hidden, dtype=np.float32)

        if self._normalize:
            embeddings = l2_normalize(embeddings)

        logger.debug("Embedded batch of %d (seq_len=%d)", ids.shape[0], ids.shape[1])
        return embeddings

    def generate_embedding(
        self, input_ids: Sequence[int], attention_mask: Sequence[int]
    ) -> np.ndarray:
        """Single-sequence form of ``generate_embeddings``; returns (dimension,)."""
        if input_ids is None or attention_mask is None:
            raise ConfigurationError("input_ids and attention_mask cannot be None")
        if len(input_ids) != len(attention_mask):
            raise BatchValidationError("input_ids and attention_mask must have the same length")
        return self.generate_embeddings([input_ids], [attention_mask])[0]
