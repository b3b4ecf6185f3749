"""Ribbon mesh construction.

Every streamline segment ``(p0, t0) -> (p1, t1)`` becomes a quad of four
vertices. The two vertices at each end share a position and are pushed
apart in the shader along the edge normal, ``side`` telling which way:

    2 ----- 3        side -1: p + e * width / 2
    |  \\    |        side +1: p - e * width / 2
    |    \\  |
    0 ----- 1        triangles (0, 1, 2) and (1, 3, 2)

``time`` lets the shader draw the moving streak head, ``total_time`` the
loop period of the line, and ``random`` a per-line phase offset.
"""

import logging
import math

import numpy as np

from streakflow.pipeline.data import FLOATS_PER_VERTEX, VERTICES_PER_SEGMENT, Mesh
from streakflow.simulation.tracer import Streamline

logger = logging.getLogger(__name__)


class MeshBuilder:
    """Accumulates streamlines into a ribbon mesh, one line at a time.

    Zero-length segments and segments whose end times do not increase are
    skipped: they would need a division by zero for the edge normal or the
    speed. ``skipped_segments`` counts them.
    """

    def __init__(self, rng: np.random.Generator, distance_unit: float = 1.0):
        self.rng = rng
        self.distance_unit = distance_unit
        self.vertex_count = 0
        self.line_count = 0
        self.skipped_segments = 0
        self._vertex_data: list[float] = []
        self._index_data: list[int] = []

    def add_line(self, line: Streamline) -> None:
        """Append the segments of one streamline.

        Draws exactly one value from the random source, even for lines with
        a single vertex, so draw order does not depend on line lengths.
        """
        random = self.rng.random()
        total_time = line[-1].time
        self.line_count += 1

        for v0, v1 in zip(line, line[1:]):
            x0, y0, t0 = v0.x, v0.y, v0.time
            x1, y1, t1 = v1.x, v1.y, v1.time

            dt = t1 - t0
            length = math.hypot(x1 - x0, y1 - y0)
            if not (dt > 0 and length > 0):
                self.skipped_segments += 1
                continue

            speed = self.distance_unit / dt
            if not math.isfinite(speed):
                self.skipped_segments += 1
                continue

            ex = -(y1 - y0) / length
            ey = (x1 - x0) / length

            self._vertex_data.extend((
                x0, y0, ex, ey, -1.0, t0, total_time, speed, random,
                x0, y0, -ex, -ey, 1.0, t0, total_time, speed, random,
                x1, y1, ex, ey, -1.0, t1, total_time, speed, random,
                x1, y1, -ex, -ey, 1.0, t1, total_time, speed, random,
            ))

            n = self.vertex_count
            self._index_data.extend((n, n + 1, n + 2, n + 1, n + 3, n + 2))

            self.vertex_count += VERTICES_PER_SEGMENT

    def build(self) -> Mesh:
        """Pack the accumulated segments into float32/uint32 buffers."""
        if self.skipped_segments:
            logger.debug("Skipped %d degenerate segments", self.skipped_segments)

        vertex_data = np.asarray(self._vertex_data, dtype=np.float32)
        index_data = np.asarray(self._index_data, dtype=np.uint32)
        assert vertex_data.size == self.vertex_count * FLOATS_PER_VERTEX
        return Mesh(vertex_data=vertex_data, index_data=index_data)


def build_mesh(
    lines: list[Streamline],
    rng: np.random.Generator,
    distance_unit: float = 1.0,
) -> Mesh:
    """Convert streamlines into a ribbon mesh.

    Args:
        lines: Streamlines in the order they were traced.
        rng: Random source, continued from the one that seeded the lines.
        distance_unit: Numerator of the per-segment display speed.

    Returns:
        A Mesh with four vertices and six indices per non-degenerate segment.
    """
    builder = MeshBuilder(rng, distance_unit)
    for line in lines:
        builder.add_line(line)
    return builder.build()
