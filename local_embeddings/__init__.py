"""
Local Embeddings -- root package.

Sentence embeddings computed entirely on local hardware from a pretrained
transformer exported to ONNX:
    models        -> download and cache model artifacts from HuggingFace Hub
    tokenization  -> WordPiece text to fixed-length token id / mask rows
    inference     -> run the ONNX graph (OpenVINO or ONNX Runtime), mean pool,
                     L2 normalise
    embeddings    -> LocalEmbeddingGenerator facade and similarity helpers
    settings      -> options and configs/settings.yaml loading
    errors        -> exception hierarchy
"""

__version__ = "0.1.0"

from local_embeddings.embeddings import (
    Embedding,
    EmbeddingGeneratorMetadata,
    LocalEmbeddingGenerator,
    cosine_similarity,
    find_closest,
    similarity_matrix,
)
from local_embeddings.errors import (
    BatchValidationError,
    ConfigurationError,
    DownloadError,
    LifecycleError,
    LocalEmbeddingsError,
    ModelAlreadyLoadedError,
    ModelLoadError,
    ModelNotLoadedError,
    ObjectDisposedError,
    OperationCancelled,
    ResourceNotFoundError,
)
from local_embeddings.settings import LocalEmbeddingsOptions, load_settings
