"""
Error Types
============
Exception hierarchy shared by every component of the pipeline.

Each component fails fast with one of these types and the generator
facade translates lower-level failures (I/O, native runtime errors) into
the matching kind, so callers can tell apart:

    ConfigurationError     -- bad arguments / options, detected before any I/O
    ResourceNotFoundError  -- vocabulary or ONNX graph file missing
    DownloadError          -- a required model file could not be fetched
    BatchValidationError   -- malformed token batches handed to the engine
    ModelLoadError         -- the inference runtime refused the model
    LifecycleError         -- used before load / loaded twice / used after close

Cancellation is *not* an error kind: ``OperationCancelled`` deliberately
sits outside the ``LocalEmbeddingsError`` tree.
"""

from typing import Optional


class LocalEmbeddingsError(Exception):
    """Base class for all local_embeddings failures."""


class ConfigurationError(LocalEmbeddingsError, ValueError):
    """Invalid option or argument (non-positive thread count, None input...)."""


class ResourceNotFoundError(LocalEmbeddingsError, FileNotFoundError):
    """A file the operation needs does not exist (or is empty)."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base} ({self.path})" if self.path else base


class DownloadError(LocalEmbeddingsError):
    """A required model file could not be downloaded."""

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url


class BatchValidationError(LocalEmbeddingsError, ValueError):
    """Token id / attention mask batches do not line up."""


class ModelLoadError(LocalEmbeddingsError, RuntimeError):
    """The inference runtime could not load or compile the model."""

    def __init__(self, message: str, model_path: Optional[str] = None):
        super().__init__(message)
        self.model_path = model_path


class LifecycleError(LocalEmbeddingsError, RuntimeError):
    """Operation not allowed in the object's current lifecycle state."""


class ModelNotLoadedError(LifecycleError):
    pass


class ModelAlreadyLoadedError(LifecycleError):
    pass


class ObjectDisposedError(LifecycleError):
    """The object was closed and its native resources released."""

    def __init__(self, object_name: str):
        super().__init__(f"{object_name} has already been closed")
        self.object_name = object_name


class OperationCancelled(Exception):
    """Raised when a cancellation signal fires at a suspension point."""


def raise_if_cancelled(cancel_event) -> None:
    """Raise ``OperationCancelled`` if *cancel_event* is set."""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled("Operation was cancelled")
