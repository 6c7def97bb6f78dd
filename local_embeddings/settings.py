"""
Settings
=========
Options controlling model resolution, tokenization and inference.

Options can be built directly in code::

    opts = LocalEmbeddingsOptions(model_path="models/all-MiniLM-L6-v2")

or read from ``configs/settings.yaml``::

    embeddings:
      model_name: "sentence-transformers/all-MiniLM-L6-v2"
      normalize_embeddings: true
      backend: "openvino"
      device: "CPU"

    opts = LocalEmbeddingsOptions.from_settings(load_settings())

Unknown keys in the ``embeddings`` section are ignored with a warning so
that one settings file can be shared with other tools.
"""

import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from local_embeddings.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Path to the project settings file
SETTINGS_PATH = Path(__file__).resolve().parent.parent / "configs" / "settings.yaml"

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_MAX_SEQUENCE_LENGTH = 512
SUPPORTED_BACKENDS = ("openvino", "onnxruntime")


def load_settings(path: Optional[Union[str, Path]] = None) -> dict:
    """
    Load settings from a YAML file (``configs/settings.yaml`` by default).

    Returns:
        The parsed YAML as a dict, or empty dict if the file is not found.

    Raises:
        ConfigurationError : if the file exists but is not valid YAML
    """
    settings_path = Path(path) if path is not None else SETTINGS_PATH
    if not settings_path.exists():
        logger.warning("Settings file not found: %s", settings_path)
        return {}
    try:
        with open(settings_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Invalid settings file {settings_path}: {exc}"
        ) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Settings file {settings_path} must contain a mapping at top level"
        )
    return data


@dataclass(frozen=True)
class LocalEmbeddingsOptions:
    """
    Configuration for ``LocalEmbeddingGenerator``.

    Attributes:
        model_name              : HuggingFace model id, also reported in metadata
        model_path              : local model directory; skips downloading when set
        cache_directory         : cache root for downloads (platform default if None)
        max_sequence_length     : tokenizer padding / truncation length
        ensure_model_downloaded : download the model when no model_path is given
        normalize_embeddings    : L2-normalise output vectors
        prefer_quantized        : prefer model_quantized.onnx / model_int8.onnx
        use_parallel_execution  : throughput-oriented runtime scheduling
        inter_op_num_threads    : runtime inter-op parallelism (streams)
        intra_op_num_threads    : runtime intra-op thread count
        backend                 : "openvino" or "onnxruntime"
        device                  : OpenVINO device string ("CPU", "GPU", "AUTO")
    """

    model_name: str = DEFAULT_MODEL_NAME
    model_path: Optional[str] = None
    cache_directory: Optional[str] = None
    max_sequence_length: int = DEFAULT_MAX_SEQUENCE_LENGTH
    ensure_model_downloaded: bool = True
    normalize_embeddings: bool = False
    prefer_quantized: bool = False
    use_parallel_execution: bool = True
    inter_op_num_threads: Optional[int] = None
    intra_op_num_threads: Optional[int] = None
    backend: str = "openvino"
    device: str = "CPU"

    def validate(self) -> "LocalEmbeddingsOptions":
        """Check option values; returns self so calls can be chained."""
        if not self.model_name or not self.model_name.strip():
            raise ConfigurationError("model_name cannot be empty")
        if self.max_sequence_length <= 0:
            raise ConfigurationError(
                f"max_sequence_length must be positive, got {self.max_sequence_length}"
            )
        for name in ("inter_op_num_threads", "intra_op_num_threads"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigurationError(
                    f"{name} must be greater than zero when specified, got {value}"
                )
        if self.backend not in SUPPORTED_BACKENDS:
            raise ConfigurationError(
                f"Unknown backend '{self.backend}' (expected one of {SUPPORTED_BACKENDS})"
            )
        if not self.has_model_path and not self.ensure_model_downloaded:
            raise ConfigurationError(
                "Either model_path must be specified or ensure_model_downloaded must be true"
            )
        return self

    @property
    def has_model_path(self) -> bool:
        return bool(self.model_path and self.model_path.strip())

    def with_overrides(self, **changes: Any) -> "LocalEmbeddingsOptions":
        return replace(self, **changes)

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "LocalEmbeddingsOptions":
        """
        Build options from the ``embeddings`` section of a settings dict.

        Args:
            settings : the full parsed settings (as returned by load_settings)
        """
        section = (settings or {}).get("embeddings", {}) or {}
        if not isinstance(section, dict):
            raise ConfigurationError("'embeddings' settings section must be a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(section) - known)
        if unknown:
            logger.warning("Ignoring unknown embeddings settings: %s", unknown)

        values = {k: v for k, v in section.items() if k in known}
        return cls(**values)
