"""
Model Cache Layout
===================
Where downloaded models live on disk and how a model directory is turned
into the ONNX graph file the inference engine loads.

Directory layout per model::

    <cache-root>/<sanitized-model-id>/
        model.onnx              (canonical full-precision graph)
        model_quantized.onnx    (optional, preferred when quantization requested)
        model_int8.onnx         (optional, secondary quantized fallback)
        tokenizer.json          (optional)
        tokenizer_config.json   (optional)
        vocab.txt               (needed by the tokenizer)

Cache root:
    Windows : %LOCALAPPDATA%\\LocalEmbeddings\\models
    others  : $XDG_DATA_HOME/LocalEmbeddings/models, falling back to
              ~/.local/share/LocalEmbeddings/models
"""

import os
import sys
from pathlib import Path
from typing import Optional, Tuple, Union

CANONICAL_MODEL_FILE = "model.onnx"
QUANTIZED_MODEL_FILES: Tuple[str, ...] = ("model_quantized.onnx", "model_int8.onnx")
TOKENIZER_FILES: Tuple[str, ...] = ("tokenizer.json", "tokenizer_config.json", "vocab.txt")

CACHE_PRODUCT_DIR = "LocalEmbeddings"
CACHE_MODELS_DIR = "models"

# Characters that are not allowed in a directory name on some platform.
_UNSAFE_PATH_CHARS = '/\\:*?"<>|'


def default_cache_directory() -> Path:
    """Return the platform default cache root for downloaded models."""
    if sys.platform.startswith("win"):
        local_app_data = os.environ.get("LOCALAPPDATA")
        if not local_app_data:
            local_app_data = str(Path.home() / "AppData" / "Local")
        return Path(local_app_data) / CACHE_PRODUCT_DIR / CACHE_MODELS_DIR

    data_home = os.environ.get("XDG_DATA_HOME")
    if not data_home:
        data_home = str(Path.home() / ".local" / "share")
    return Path(data_home) / CACHE_PRODUCT_DIR / CACHE_MODELS_DIR


def sanitize_model_name(model_name: str) -> str:
    """Turn a model id such as ``org/name`` into a safe directory name."""
    return "".join("_" if ch in _UNSAFE_PATH_CHARS else ch for ch in model_name)


def is_usable_file(path: Path) -> bool:
    """A model file counts as present only if it exists and is non-empty."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def find_model_file(
    model_dir: Union[str, Path], prefer_quantized: bool = False
) -> Optional[Path]:
    """
    Return the graph file to load from *model_dir*, or None if there is none.

    With ``prefer_quantized`` the quantized variants are probed in order
    before the canonical ``model.onnx``.
    """
    model_dir = Path(model_dir)
    candidates = list(QUANTIZED_MODEL_FILES) if prefer_quantized else []
    candidates.append(CANONICAL_MODEL_FILE)
    for name in candidates:
        path = model_dir / name
        if is_usable_file(path):
            return path
    return None


def resolve_model_path(model_dir: Union[str, Path], prefer_quantized: bool = False) -> Path:
    """
    Like ``find_model_file`` but always returns a path: the canonical
    ``model.onnx`` when nothing better exists, so the loader can report
    exactly which file is missing.
    """
    found = find_model_file(model_dir, prefer_quantized)
    return found if found is not None else Path(model_dir) / CANONICAL_MODEL_FILE
