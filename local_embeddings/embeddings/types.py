"""Result types returned by the embedding generator."""

from dataclasses import dataclass
from typing import List

import numpy as np


@dataclass(frozen=True, eq=False)
class Embedding:
    """
    One embedding vector.

    The vector is a private float32 copy marked read-only, so an
    ``Embedding`` cannot change after it is handed to the caller.
    """
    vector: np.ndarray

    def __post_init__(self) -> None:
        vec = np.array(self.vector, dtype=np.float32).reshape(-1)
        vec.setflags(write=False)
        object.__setattr__(self, "vector", vec)

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    def __len__(self) -> int:
        return self.dimension

    def tolist(self) -> List[float]:
        return self.vector.tolist()


@dataclass(frozen=True)
class EmbeddingGeneratorMetadata:
    """Provider identity and model facts, fixed at load time."""
    provider_name: str
    provider_uri: str
    model_id: str
    dimension: int
