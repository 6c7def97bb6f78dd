"""Shared fixtures: a tiny WordPiece vocab and a deterministic fake backend."""

from pathlib import Path
from typing import Dict, List

import numpy as np
import pytest

from local_embeddings.inference.backends import (
    InferenceBackend,
    InferenceSession,
    SessionOptions,
)

DIMENSION = 384

SPECIAL_TOKENS = ["[PAD]", "[UNK]", "[CLS]", "[SEP]", "[MASK]"]
WORDS = [
    "the", "a", "quick", "fast", "brown", "fox", "jumps", "leaps", "over",
    "lazy", "sleepy", "dog", "hello", "world", "another", "sentence",
    "quantum", "physics", "explains", "particle", "behavior", "weather",
    "is", "sunny", "today", "embedding", "test", "local", ".", ",", "!",
    "##s", "##ing",
]

# Words mapped onto the same embedding row, so paraphrases embed identically.
SYNONYMS = {"a": "the", "fast": "quick", "leaps": "jumps", "sleepy": "lazy"}


def write_vocab(directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    vocab = directory / "vocab.txt"
    vocab.write_text("\n".join(SPECIAL_TOKENS + WORDS) + "\n", encoding="utf-8")
    return vocab


def token_id(word: str) -> int:
    return (SPECIAL_TOKENS + WORDS).index(word)


def embedding_table(dimension: int = DIMENSION, seed: int = 1234) -> np.ndarray:
    vocab = SPECIAL_TOKENS + WORDS
    rng = np.random.default_rng(seed)
    table = rng.standard_normal((len(vocab), dimension)).astype(np.float32)
    for word, canonical in SYNONYMS.items():
        table[token_id(word)] = table[token_id(canonical)]
    return table


class FakeSession(InferenceSession):
    """Looks up one table row per token id: (batch, seq_len, dimension)."""

    def __init__(self, table: np.ndarray, input_names: List[str]):
        self.table = table
        self._input_names = input_names
        self.calls: List[Dict[str, np.ndarray]] = []
        self.closed = False

    @property
    def input_names(self) -> List[str]:
        return list(self._input_names)

    @property
    def output_dimension(self) -> int:
        return int(self.table.shape[1])

    def run(self, feeds: Dict[str, np.ndarray]) -> np.ndarray:
        self.calls.append(feeds)
        return self.table[feeds["input_ids"]]

    def close(self) -> None:
        self.closed = True


class FakeBackend(InferenceBackend):
    name = "fake"

    def __init__(self, table=None, input_names=None):
        self.table = embedding_table() if table is None else table
        self.input_names = input_names or ["input_ids", "attention_mask", "token_type_ids"]
        self.sessions: List[FakeSession] = []
        self.options: List[SessionOptions] = []

    def load(self, model_path: Path, options: SessionOptions) -> InferenceSession:
        self.options.append(options)
        session = FakeSession(self.table, self.input_names)
        self.sessions.append(session)
        return session


@pytest.fixture
def model_dir(tmp_path) -> Path:
    """A model directory with vocab.txt and a (dummy) non-empty model.onnx."""
    directory = tmp_path / "all-MiniLM-L6-v2"
    write_vocab(directory)
    (directory / "model.onnx").write_bytes(b"onnx-graph")
    return directory


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()
