"""Discretized velocity grids and Gaussian smoothing.

A grid stores two interleaved channels (u, v) per cell in row-major order:
``data[2 * (y * columns + x) + 0]`` is u at cell (x, y).
"""

from dataclasses import dataclass
from functools import partial
from typing import Self

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array

from streakflow.core.config import TraceSettings
from streakflow.core.errors import GridShapeError
from streakflow.core.types import ensure_float32, round_half_up, to_jax_array

# Use 32-bit precision; the renderer consumes float32 buffers
jax.config.update("jax_enable_x64", False)

# Default kernel support cutoff, shared with the pipeline settings
MIN_WEIGHT_THRESHOLD = TraceSettings.model_fields["min_weight_threshold"].default


@dataclass(frozen=True)
class VelocityGrid:
    """Immutable 2-channel velocity table.

    A contiguous float32 buffer is adopted as is, so the caller hands it
    over and must not write to it afterwards.

    Attributes:
        data: Flat float32 buffer of length ``2 * columns * rows``.
        columns: Number of cells along x.
        rows: Number of cells along y.
        cell_size: Output units (e.g. pixels) per cell.
    """

    data: np.ndarray
    columns: int
    rows: int
    cell_size: float = 1.0

    def __post_init__(self):
        if self.columns < 1 or self.rows < 1:
            raise GridShapeError(
                f"grid must have at least one cell, got {self.columns}x{self.rows}"
            )
        if not self.cell_size > 0:
            raise GridShapeError(f"cell_size must be positive, got {self.cell_size}")

        # Contiguous float32 input is taken over without a copy; the
        # read-only flag is set on a fresh view, not on the caller's array
        data = ensure_float32(self.data).reshape(-1).view()
        expected = 2 * self.columns * self.rows
        if data.size != expected:
            raise GridShapeError(
                f"buffer holds {data.size} floats, expected {expected} "
                f"for a {self.columns}x{self.rows} grid"
            )
        data.flags.writeable = False
        object.__setattr__(self, "data", data)

    @classmethod
    def from_components(cls, u, v, cell_size: float = 1.0) -> Self:
        """Build a grid from separate (rows, columns) u and v tables."""
        u = np.asarray(u, dtype=np.float32)
        v = np.asarray(v, dtype=np.float32)
        if u.ndim != 2 or u.shape != v.shape:
            raise GridShapeError(
                f"u and v must be matching 2D tables, got {u.shape} and {v.shape}"
            )
        rows, columns = u.shape
        return cls(np.stack([u, v], axis=-1).reshape(-1), columns, rows, cell_size)

    @classmethod
    def uniform(cls, columns: int, rows: int, u: float, v: float, cell_size: float = 1.0) -> Self:
        """Build a grid where every cell holds the same velocity."""
        data = np.empty((rows, columns, 2), dtype=np.float32)
        data[..., 0] = u
        data[..., 1] = v
        return cls(data.reshape(-1), columns, rows, cell_size)

    @property
    def uv(self) -> np.ndarray:
        """Read-only (rows, columns, 2) view of the buffer."""
        return self.data.reshape(self.rows, self.columns, 2)

    @property
    def nbytes(self) -> int:
        return self.data.nbytes

    def with_data(self, data: np.ndarray) -> Self:
        """Return a grid of the same shape backed by ``data``."""
        return type(self)(data, self.columns, self.rows, self.cell_size)


@partial(jax.jit, static_argnames=("axis", "half_width"))
def _smooth_axis(
    table: Array,
    sigma: float,
    min_weight: float,
    axis: int,
    half_width: int,
) -> Array:
    """One separable Gaussian pass along ``axis`` of a (rows, columns, 2) table.

    Neighbours outside the grid are omitted rather than reflected, so edge
    cells are normalised by a smaller total weight.
    """
    n = table.shape[axis]
    pad = [(0, 0)] * table.ndim
    pad[axis] = (half_width, half_width)
    padded = jnp.pad(table, pad)
    support = jnp.pad(jnp.ones((n,), dtype=table.dtype), (half_width, half_width))

    total = jnp.zeros_like(table)
    weights = jnp.zeros((n,), dtype=table.dtype)

    for d in range(-half_width, half_width + 1):
        w = jnp.exp(-(d * d) / (sigma * sigma))
        start = half_width + d
        total = total + w * jax.lax.slice_in_dim(padded, start, start + n, axis=axis)
        weights = weights + w * support[start : start + n]

    shape = [1] * table.ndim
    shape[axis] = n
    weights = weights.reshape(shape)
    safe = jnp.where(weights < min_weight, 1.0, weights)
    return jnp.where(weights < min_weight, 0.0, total / safe)


def smooth(
    grid: VelocityGrid,
    sigma: float,
    min_weight: float = MIN_WEIGHT_THRESHOLD,
) -> VelocityGrid:
    """Smooth a velocity grid with a separable Gaussian kernel.

    The kernel half-width is ``round(3 * sigma)`` cells and each tap is
    weighted by ``exp(-d**2 / sigma**2)``. The horizontal pass runs first
    and the vertical pass reads its output.

    Args:
        grid: Grid to smooth; left untouched.
        sigma: Kernel standard deviation in cells.
        min_weight: Cells whose accumulated weight falls below this are zeroed.

    Returns:
        A new grid with the same shape and cell size.
    """
    if not sigma > 0:
        raise GridShapeError(f"smoothing sigma must be positive, got {sigma}")

    half_width = round_half_up(3 * sigma)
    table = to_jax_array(grid.uv)

    horizontal = _smooth_axis(table, sigma, min_weight, axis=1, half_width=half_width)
    final = _smooth_axis(horizontal, sigma, min_weight, axis=0, half_width=half_width)

    return grid.with_data(np.asarray(final, dtype=np.float32).reshape(-1))
