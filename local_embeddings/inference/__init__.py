"""
Inference subpackage -- ONNX graph execution, pooling, normalisation.

Modules:
    engine          -- InferenceEngine: validate, run, pool, normalise
    backends        -- OpenVINO (default) and ONNX Runtime session adapters
    pooling         -- mask-weighted mean pooling and L2 normalisation
    device_manager  -- OpenVINO device detection with CPU fallback
"""

from local_embeddings.inference.backends import (
    InferenceBackend,
    InferenceSession,
    OnnxRuntimeBackend,
    OpenVINOBackend,
    SessionOptions,
    get_backend,
)
from local_embeddings.inference.engine import InferenceEngine
from local_embeddings.inference.pooling import l2_normalize, mean_pool
