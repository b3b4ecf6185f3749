"""Streamline tracing through a velocity field.

Particles are advanced with explicit Euler steps of fixed length: at every
step the direction comes from the sampled velocity and the elapsed time
from ``step_length / speed``. Vertices therefore sit a constant distance
apart and carry the time the flow needs to reach them.
"""

import math
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Self

import numpy as np

from streakflow.core.config import TraceSettings
from streakflow.core.types import Vector2D, round_half_up
from streakflow.models.field import Field


@dataclass(frozen=True, slots=True)
class TraceVertex:
    """A timestamped streamline vertex.

    Position is in output units (grid coordinates times cell size), time in
    seconds since the start of the trace.
    """

    x: float
    y: float
    time: float

    @property
    def position(self) -> Vector2D:
        return self.x, self.y


Streamline = list[TraceVertex]


@dataclass(frozen=True)
class TraceParams:
    """Integration parameters for a single streamline."""

    step_length: float = 10.0  # cells
    max_steps: int = 100
    min_speed: float = 0.001  # cells/s, after scaling
    speed_scale: float = 0.1
    cell_size: float = 1.0  # output units per cell

    @classmethod
    def from_settings(cls, settings: TraceSettings, cell_size: float = 1.0) -> Self:
        return cls(
            step_length=settings.segment_length,
            max_steps=settings.vertices_per_line,
            min_speed=settings.min_speed_threshold,
            speed_scale=settings.speed_scale,
            cell_size=cell_size,
        )


def trace(
    field: Field,
    x0: float,
    y0: float,
    step_length: float,
    max_steps: int,
    min_speed: float,
    speed_scale: float,
    cell_size: float = 1.0,
) -> Streamline:
    """Trace a particle from ``(x0, y0)`` until it stalls or hits the step cap.

    Args:
        field: Velocity field in grid coordinates.
        x0: Seed x in grid coordinates.
        y0: Seed y in grid coordinates.
        step_length: Distance advanced per step (cells).
        max_steps: Maximum number of steps.
        min_speed: The trace stops once the scaled speed drops below this.
        speed_scale: Multiplier applied to sampled velocities.
        cell_size: Output units per cell.

    Returns:
        Between 1 and ``max_steps + 1`` vertices with increasing times.
        The seed vertex is always present.
    """
    x = x0
    y = y0
    t = 0.0

    line: Streamline = [TraceVertex(x * cell_size, y * cell_size, t)]

    for _ in range(max_steps):
        vx, vy = field.evaluate(x, y)
        vx *= speed_scale
        vy *= speed_scale

        v = math.sqrt(vx * vx + vy * vy)
        # Also catches v == 0, NaN and inf before the divisions below
        if not (math.isfinite(v) and v >= min_speed):
            break

        x += vx / v * step_length
        y += vy / v * step_length
        t += step_length / v

        line.append(TraceVertex(x * cell_size, y * cell_size, t))

    return line


def trace_with(field: Field, x0: float, y0: float, params: TraceParams) -> Streamline:
    """Trace using a bundled parameter set."""
    return trace(
        field,
        x0,
        y0,
        step_length=params.step_length,
        max_steps=params.max_steps,
        min_speed=params.min_speed,
        speed_scale=params.speed_scale,
        cell_size=params.cell_size,
    )


def draw_seed(rng: np.random.Generator, columns: int, rows: int) -> tuple[int, int]:
    """Draw a seed cell uniformly over ``[0, columns] x [0, rows]``.

    Consumes exactly two values from ``rng``: x first, then y.
    """
    x = round_half_up(rng.random() * columns)
    y = round_half_up(rng.random() * rows)
    return x, y


def iter_streamlines(
    field: Field,
    columns: int,
    rows: int,
    count: int,
    rng: np.random.Generator,
    params: TraceParams,
) -> Iterator[Streamline]:
    """Lazily seed and trace ``count`` streamlines in draw order.

    Each seed is drawn just before its line is traced, so stopping the
    iteration early leaves ``rng`` positioned after the last drawn seed.
    """
    for _ in range(count):
        x0, y0 = draw_seed(rng, columns, rows)
        yield trace_with(field, x0, y0, params)


def generate_batch(
    field: Field,
    columns: int,
    rows: int,
    count: int,
    rng: np.random.Generator,
    params: TraceParams,
) -> list[Streamline]:
    """Seed and trace ``count`` streamlines covering the grid's domain.

    Output order matches seed draw order. Pass the same ``rng`` on to the
    mesh builder to keep a run reproducible.
    """
    return list(iter_streamlines(field, columns, rows, count, rng, params))
