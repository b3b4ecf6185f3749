"""Data classes exchanged with the renderer."""

from dataclasses import dataclass
from pathlib import Path
from typing import Self

import numpy as np

from streakflow.core.errors import FlowError

# Per-vertex attribute layout; renderers depend on this order
VERTEX_ATTRIBUTES = (
    "x",
    "y",
    "edge_normal_x",
    "edge_normal_y",
    "side",
    "time",
    "total_time",
    "speed",
    "random",
)
FLOATS_PER_VERTEX = len(VERTEX_ATTRIBUTES)

# Each segment becomes one quad
VERTICES_PER_SEGMENT = 4
INDICES_PER_SEGMENT = 6


@dataclass(frozen=True)
class Mesh:
    """Ribbon triangle mesh encoding animated streamlines.

    ``vertex_data`` holds ``FLOATS_PER_VERTEX`` float32 values per vertex
    (see ``VERTEX_ATTRIBUTES``); ``index_data`` holds uint32 triangle
    indices, six per segment.
    """

    vertex_data: np.ndarray
    index_data: np.ndarray

    @property
    def vertex_count(self) -> int:
        return self.vertex_data.size // FLOATS_PER_VERTEX

    @property
    def triangle_count(self) -> int:
        return self.index_data.size // 3

    @property
    def segment_count(self) -> int:
        return self.vertex_count // VERTICES_PER_SEGMENT

    @property
    def vertices(self) -> np.ndarray:
        """(vertex_count, FLOATS_PER_VERTEX) view of the vertex buffer."""
        return self.vertex_data.reshape(-1, FLOATS_PER_VERTEX)

    def attribute(self, name: str) -> np.ndarray:
        """Column view of a single vertex attribute."""
        return self.vertices[:, VERTEX_ATTRIBUTES.index(name)]

    def validate(self) -> None:
        """Check buffer types and index bounds.

        Raises:
            FlowError: If the buffers are inconsistent.
        """
        if self.vertex_data.dtype != np.float32 or self.index_data.dtype != np.uint32:
            raise FlowError(
                f"mesh buffers must be float32/uint32, got "
                f"{self.vertex_data.dtype}/{self.index_data.dtype}"
            )
        if self.vertex_data.size % FLOATS_PER_VERTEX:
            raise FlowError(f"vertex buffer length {self.vertex_data.size} is not a multiple of {FLOATS_PER_VERTEX}")
        if self.index_data.size % INDICES_PER_SEGMENT:
            raise FlowError(f"index buffer length {self.index_data.size} is not a multiple of {INDICES_PER_SEGMENT}")
        if self.index_data.size and int(self.index_data.max()) >= self.vertex_count:
            raise FlowError("index buffer references vertices past the end of the vertex buffer")
        if not np.all(np.isfinite(self.vertex_data)):
            raise FlowError("vertex buffer contains non-finite values")

    def save(self, path: Path) -> None:
        """Save both buffers to a ``.npz`` archive."""
        np.savez(path, vertex_data=self.vertex_data, index_data=self.index_data)

    @classmethod
    def load(cls, path: Path) -> Self:
        with np.load(path) as archive:
            return cls(
                vertex_data=archive["vertex_data"].astype(np.float32, copy=False),
                index_data=archive["index_data"].astype(np.uint32, copy=False),
            )

    def tobytes(self) -> bytes:
        """Concatenated raw buffers, for byte-level comparisons."""
        return self.vertex_data.tobytes() + self.index_data.tobytes()
