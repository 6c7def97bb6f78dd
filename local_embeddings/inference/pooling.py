"""
Pooling and Normalisation
==========================
Collapse per-token hidden states into one vector per text.

Mean pooling:
    The model returns one hidden vector per token: (batch, seq_len, hidden).
    Averaging all positions would let padding dilute the result, so each
    position is weighted by its attention-mask value and the sum is divided
    by the number of real tokens -- not by seq_len.  A row with no real
    tokens pools to all zeros.

L2 normalisation:
    Scales each vector to unit length so dot product == cosine similarity.
    Zero vectors are left unchanged.
"""

import numpy as np

# Norms at or below this are treated as zero.
NORM_EPSILON = 1e-12


def mean_pool(hidden_states: np.ndarray, attention_mask: np.ndarray) -> np.ndarray:
    """
    Attention-mask weighted mean over the sequence axis.

    Args:
        hidden_states  : (batch, seq_len, hidden) token embeddings
        attention_mask : (batch, seq_len) 0/1 mask

    Returns:
        (batch, hidden) float32 array.
    """
    hidden = np.asarray(hidden_states, dtype=np.float32)
    mask = np.asarray(attention_mask, dtype=np.float32)

    # (batch, seq_len) -> (batch, seq_len, 1) for broadcasting
    summed = np.sum(hidden * mask[:, :, np.newaxis], axis=1)
    counts = np.sum(mask, axis=1, keepdims=True)

    pooled = np.zeros_like(summed)
    np.divide(summed, counts, out=pooled, where=counts > 0)
    return pooled


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """Row-wise L2 normalisation; rows with ~zero norm are returned as-is."""
    vectors = np.asarray(vectors, dtype=np.float32)
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    safe = np.where(norms > NORM_EPSILON, norms, 1.0).astype(np.float32)
    return vectors / safe
