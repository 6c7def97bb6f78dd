"""
Embeddings subpackage -- the public text-to-vector API.

    LocalEmbeddingGenerator     -- download, load and run a local ONNX model
    Embedding                   -- one immutable float32 vector
    EmbeddingGeneratorMetadata  -- provider / model identity and dimension
    similarity helpers          -- cosine similarity, matrices, top-k search
"""

from local_embeddings.embeddings.generator import LocalEmbeddingGenerator
from local_embeddings.embeddings.similarity import (
    cosine_similarity,
    find_closest,
    similarity_matrix,
)
from local_embeddings.embeddings.types import Embedding, EmbeddingGeneratorMetadata
