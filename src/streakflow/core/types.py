"""Type definitions shared across the pipeline.

Buffers crossing the renderer boundary are always NumPy arrays; JAX arrays
only appear inside vectorised kernels.
"""

import math
from typing import TypeAlias

import jax.numpy as jnp
import numpy as np
from jax import Array

# Arrays accepted by field kernels
FloatArray: TypeAlias = Array | np.ndarray

# Points and velocities
Vector2D: TypeAlias = tuple[float, float]


def ensure_float32(arr) -> np.ndarray:
    """Return a contiguous float32 NumPy copy-or-view of ``arr``."""
    return np.ascontiguousarray(np.asarray(arr), dtype=np.float32)


def to_jax_array(arr) -> Array:
    """Convert any array-like to a float32 JAX array on the default device."""
    return jnp.asarray(arr, dtype=jnp.float32)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards +inf.

    Python's ``round`` uses banker's rounding, which would send a particle
    at x = 0.5 to cell 0 and one at x = 1.5 to cell 2.
    """
    return math.floor(value + 0.5)
