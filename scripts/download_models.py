"""
Download Models Script
=======================
One-time setup: download and cache an ONNX embedding model so that
``LocalEmbeddingGenerator`` can start without network access later.

This script is idempotent -- running it again skips already-downloaded
models.

Files fetched (into <cache-root>/<sanitized-model-id>/):
    1. onnx/model.onnx  (or a quantized variant with --quantized)
    2. tokenizer.json, tokenizer_config.json, vocab.txt

Usage:
    python scripts/download_models.py
    python scripts/download_models.py --model BAAI/bge-small-en-v1.5 --quantized
    python scripts/download_models.py --cache-dir ./models
"""

import argparse
import logging
import sys

from tqdm import tqdm

from local_embeddings.errors import DownloadError, LocalEmbeddingsError
from local_embeddings.models.downloader import DEFAULT_MODEL_NAME, ModelDownloader
from local_embeddings.settings import LocalEmbeddingsOptions, load_settings

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def download_embedding_model(
    model_name: str = DEFAULT_MODEL_NAME,
    cache_dir: str = None,
    prefer_quantized: bool = False,
) -> None:
    """Download *model_name* into the cache, showing a progress bar."""
    downloader = ModelDownloader(cache_directory=cache_dir)
    logger.info(
        "Downloading embedding model: %s -> %s",
        model_name, downloader.get_model_directory(model_name),
    )

    with tqdm(total=100, desc="Downloading", unit="%") as bar:
        def on_progress(fraction: float) -> None:
            bar.update(round(fraction * 100) - bar.n)

        try:
            model_dir = downloader.ensure_model(
                model_name, prefer_quantized=prefer_quantized, progress=on_progress
            )
        except DownloadError as exc:
            logger.error("Download failed (%s): %s", exc.url, exc)
            sys.exit(1)
        except LocalEmbeddingsError as exc:
            logger.error("Failed to download embedding model: %s", exc)
            sys.exit(1)

    logger.info("Embedding model ready: %s", model_dir)
    for path in sorted(model_dir.iterdir()):
        if path.is_file():
            logger.info("  %-28s %10d bytes", path.name, path.stat().st_size)


def main() -> None:
    defaults = LocalEmbeddingsOptions.from_settings(load_settings())

    parser = argparse.ArgumentParser(
        description="Download an ONNX embedding model into the local cache"
    )
    parser.add_argument(
        "--model",
        default=defaults.model_name,
        help="HuggingFace model id (default from configs/settings.yaml)",
    )
    parser.add_argument(
        "--cache-dir",
        default=defaults.cache_directory,
        help="Cache root directory (platform default when omitted)",
    )
    parser.add_argument(
        "--quantized",
        action="store_true",
        default=defaults.prefer_quantized,
        help="Prefer model_quantized.onnx / model_int8.onnx",
    )
    args = parser.parse_args()

    download_embedding_model(args.model, args.cache_dir, args.quantized)
    logger.info("Model download complete.")


if __name__ == "__main__":
    main()
