"""
WordPiece Tokenizer
====================
Converts text into fixed-length ``input_ids`` / ``attention_mask`` rows
for BERT-family embedding models (all-MiniLM, bge, e5, ...).

Why build from vocab.txt?
  The exported ONNX graph expects the exact WordPiece vocabulary the model
  was trained with, plus the [CLS] / [SEP] / [PAD] conventions.  vocab.txt
  is the one tokenizer file every sentence-transformers model ships, so it
  is the required input here; ``tokenizer_config.json`` is read only for
  the ``do_lower_case`` flag.

Encoding layout (max_length = 8, three real word pieces):

    input_ids      : [CLS] w1 w2 w3 [SEP] [PAD] [PAD] [PAD]
    attention_mask :   1   1  1  1    1     0     0     0

Texts longer than the limit keep [CLS], the first ``max_length - 2``
word pieces and [SEP]; every position then carries mask 1.

Thread safety:
  The underlying ``tokenizers`` backend is configured once (no truncation,
  no padding) and never mutated afterwards; padding and truncation are
  done here in numpy.  A single instance can be shared across threads.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from transformers import BertTokenizerFast

from local_embeddings.errors import (
    ConfigurationError,
    ResourceNotFoundError,
    raise_if_cancelled,
)

logger = logging.getLogger(__name__)

VOCAB_FILE = "vocab.txt"
TOKENIZER_CONFIG_FILE = "tokenizer_config.json"
DEFAULT_MAX_LENGTH = 512


def _read_do_lower_case(config_path: Path) -> bool:
    """Return ``do_lower_case`` from tokenizer_config.json (default True)."""
    if not config_path.is_file():
        return True
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read %s, assuming lower-casing: %s", config_path, exc)
        return True
    return bool(config.get("do_lower_case", True))


class Tokenizer:
    """
    Immutable, thread-safe BERT WordPiece tokenizer.

    Usage::

        tok = Tokenizer("models/all-MiniLM-L6-v2", max_length=256)
        ids, mask = tok.tokenize("Hello world")
        batch_ids, batch_mask = tok.tokenize_batch(["a", "b c"])
        # batch_ids.shape == (2, 256)
    """

    def __init__(self, tokenizer_path: Union[str, Path], max_length: int = DEFAULT_MAX_LENGTH):
        """
        Args:
            tokenizer_path : model directory containing vocab.txt, or the
                             vocab file itself
            max_length     : padding / truncation length for every row

        Raises:
            ConfigurationError    : blank path or non-positive max_length
            ResourceNotFoundError : vocab.txt cannot be found
        """
        if tokenizer_path is None or not str(tokenizer_path).strip():
            raise ConfigurationError("Tokenizer path cannot be None or empty")

        path = Path(tokenizer_path)
        vocab_path = path / VOCAB_FILE if path.is_dir() else path
        if not vocab_path.is_file():
            raise ResourceNotFoundError("Vocab file not found", str(vocab_path))

        if max_length <= 0:
            raise ConfigurationError(f"max_length must be positive, got {max_length}")

        self._max_length = max_length
        self._vocab_path = vocab_path
        do_lower_case = _read_do_lower_case(vocab_path.parent / TOKENIZER_CONFIG_FILE)

        hf_tokenizer = BertTokenizerFast(
            vocab_file=str(vocab_path),
            do_lower_case=do_lower_case,
            model_max_length=max_length,
        )
        self._pad_token_id = hf_tokenizer.pad_token_id if hf_tokenizer.pad_token_id is not None else 0
        self._cls_token_id = hf_tokenizer.cls_token_id
        self._sep_token_id = hf_tokenizer.sep_token_id
        self._vocab_size = hf_tokenizer.vocab_size

        self._backend = hf_tokenizer.backend_tokenizer
        self._backend.no_truncation()
        self._backend.no_padding()

        logger.debug(
            "Loaded tokenizer from %s (vocab=%d, max_length=%d, lower=%s)",
            vocab_path, self._vocab_size, max_length, do_lower_case,
        )

    # ------------------------------------------------------------------
    #  Properties
    # ------------------------------------------------------------------

    @property
    def max_length(self) -> int:
        return self._max_length

    @property
    def pad_token_id(self) -> int:
        return self._pad_token_id

    @property
    def cls_token_id(self) -> int:
        return self._cls_token_id

    @property
    def sep_token_id(self) -> int:
        return self._sep_token_id

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    # ------------------------------------------------------------------
    #  Encoding
    # ------------------------------------------------------------------

    def _effective_length(self, max_length: Optional[int]) -> int:
        if max_length is None:
            return self._max_length
        if max_length <= 0:
            raise ConfigurationError(f"max_length must be positive, got {max_length}")
        if max_length > self._max_length:
            raise ConfigurationError(
                f"max_length override ({max_length}) cannot exceed the configured "
                f"maximum ({self._max_length})"
            )
        return max_length

    def _word_pieces(self, texts: List[str]) -> List[List[int]]:
        encodings = self._backend.encode_batch(texts, add_special_tokens=False)
        return [enc.ids for enc in encodings]

    def _fill_row(self, pieces: Sequence[int], ids_row: np.ndarray, mask_row: np.ndarray) -> None:
        length = len(ids_row)
        row = [self._cls_token_id] + list(pieces[: max(length - 2, 0)]) + [self._sep_token_id]
        row = row[:length]
        ids_row[: len(row)] = row
        mask_row[: len(row)] = 1

    def tokenize(self, text: str, max_length: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        Encode one string.

        Returns:
            (input_ids, attention_mask), each an int64 array of exactly the
            effective max length.
        """
        if text is None:
            raise ConfigurationError("text cannot be None")
        ids, mask = self.tokenize_batch([text], max_length=max_length)
        return ids[0], mask[0]

    def tokenize_batch(
        self,
        texts: Iterable[str],
        max_length: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Encode many strings, all padded / truncated to the same length.

        Returns:
            (input_ids, attention_mask), two int64 arrays of shape
            (len(texts), effective_max_length).  An empty input gives two
            arrays with zero rows.
        """
        if texts is None:
            raise ConfigurationError("texts cannot be None")
        if isinstance(texts, str):
            raise ConfigurationError("texts must be a collection of strings, not a single str")

        length = self._effective_length(max_length)
        text_list = list(texts)
        if any(t is None for t in text_list):
            raise ConfigurationError("texts cannot contain None")

        input_ids = np.full((len(text_list), length), self._pad_token_id, dtype=np.int64)
        attention_mask = np.zeros((len(text_list), length), dtype=np.int64)
        if not text_list:
            return input_ids, attention_mask

        raise_if_cancelled(cancel_event)
        pieces = self._word_pieces(text_list)
        raise_if_cancelled(cancel_event)

        for i, row_pieces in enumerate(pieces):
            self._fill_row(row_pieces, input_ids[i], attention_mask[i])
        return input_ids, attention_mask

    def count_tokens(self, text: str) -> int:
        """
        Number of tokens *text* encodes to, including [CLS] and [SEP],
        before any truncation or padding.
        """
        if text is None:
            raise ConfigurationError("text cannot be None")
        return len(self._backend.encode(text, add_special_tokens=False).ids) + 2
