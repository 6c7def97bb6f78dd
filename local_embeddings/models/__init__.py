"""
Models subpackage -- model artifact acquisition and caching.

    ModelDownloader   -- fetch ONNX graph + tokenizer files from HuggingFace Hub
    cache helpers     -- cache root, directory naming, graph file selection
"""

from local_embeddings.models.cache import (
    default_cache_directory,
    find_model_file,
    resolve_model_path,
    sanitize_model_name,
)
from local_embeddings.models.downloader import ModelDownloader, shared_http_client
