"""Continuous velocity fields.

A field maps a point ``(x, y)`` in grid coordinates to a velocity
``(vx, vy)``. Fields never mutate shared data, so one field can be
evaluated by any number of traces at once.

Variants:
- GridField: nearest-cell lookup into a (smoothed) VelocityGrid
- UniformField: constant flow everywhere
- VortexField: analytic point vortex
- SumField: component-wise sum of other fields
"""

import math
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import jax.numpy as jnp
import numpy as np
from jax import Array, jit

from streakflow.core.types import FloatArray, Vector2D
from streakflow.models.grid import VelocityGrid


@runtime_checkable
class Field(Protocol):
    """Anything that can be evaluated at a point."""

    def evaluate(self, x: float, y: float) -> Vector2D: ...


@runtime_checkable
class BatchField(Field, Protocol):
    """A field that can also be evaluated over arrays of points."""

    def evaluate_batch(self, x: FloatArray, y: FloatArray) -> tuple[Array, Array]: ...


class _Composable:
    """Adds ``field_a + field_b`` composition."""

    __slots__ = ()

    def __add__(self, other: Field) -> "SumField":
        return compose(self, other)


class GridField(_Composable):
    """Grid-backed field using nearest-cell lookup.

    No interpolation is performed: ``(x, y)`` is rounded to the nearest
    cell and that cell's velocity is returned. Points outside
    ``[0, columns) x [0, rows)`` have zero velocity.
    """

    __slots__ = ("grid", "_uv", "_columns", "_rows")

    def __init__(self, grid: VelocityGrid):
        self.grid = grid
        self._uv = grid.uv
        self._columns = grid.columns
        self._rows = grid.rows

    def evaluate(self, x: float, y: float) -> Vector2D:
        col = math.floor(x + 0.5)
        row = math.floor(y + 0.5)

        if col < 0 or col >= self._columns or row < 0 or row >= self._rows:
            return 0.0, 0.0

        cell = self._uv[row, col]
        return float(cell[0]), float(cell[1])

    __call__ = evaluate

    def evaluate_batch(self, x: FloatArray, y: FloatArray) -> tuple[Array, Array]:
        x = np.asarray(x)
        y = np.asarray(y)
        col = np.floor(x + 0.5).astype(np.int64)
        row = np.floor(y + 0.5).astype(np.int64)
        inside = (col >= 0) & (col < self._columns) & (row >= 0) & (row < self._rows)

        col = np.where(inside, col, 0)
        row = np.where(inside, row, 0)
        u = np.where(inside, self._uv[row, col, 0], 0.0).astype(np.float32)
        v = np.where(inside, self._uv[row, col, 1], 0.0).astype(np.float32)
        return jnp.asarray(u), jnp.asarray(v)


def sample(grid: VelocityGrid) -> GridField:
    """Wrap an (already smoothed) grid as a continuous field."""
    return GridField(grid)


@dataclass(frozen=True)
class UniformField(_Composable):
    """Constant velocity everywhere."""

    u: float
    v: float

    def evaluate(self, x: float, y: float) -> Vector2D:
        return self.u, self.v

    __call__ = evaluate

    def evaluate_batch(self, x: FloatArray, y: FloatArray) -> tuple[Array, Array]:
        return jnp.full_like(x, self.u), jnp.full_like(y, self.v)


@jit
def _vortex_velocity(x: Array, y: Array, cx: float, cy: float, strength: float) -> tuple[Array, Array]:
    """Point vortex velocity, zero at the singular centre."""
    dx = x - cx
    dy = y - cy
    d2 = dx**2 + dy**2
    safe = jnp.where(d2 > 0, d2, 1.0)
    u = jnp.where(d2 > 0, -strength * dy / safe, 0.0)
    v = jnp.where(d2 > 0, strength * dx / safe, 0.0)
    return u, v


@dataclass(frozen=True)
class VortexField(_Composable):
    """Analytic point vortex.

    Velocity at offset (dx, dy) from the centre is
    ``(-strength * dy / d2, strength * dx / d2)`` with ``d2 = dx**2 + dy**2``,
    i.e. counter-clockwise circulation decaying as 1/r.
    """

    center: Vector2D
    strength: float = 10.0

    def evaluate(self, x: float, y: float) -> Vector2D:
        dx = x - self.center[0]
        dy = y - self.center[1]
        d2 = dx * dx + dy * dy
        if d2 == 0:
            return 0.0, 0.0
        return -self.strength * dy / d2, self.strength * dx / d2

    __call__ = evaluate

    def evaluate_batch(self, x: FloatArray, y: FloatArray) -> tuple[Array, Array]:
        return _vortex_velocity(
            jnp.asarray(x), jnp.asarray(y), self.center[0], self.center[1], self.strength
        )


@dataclass(frozen=True)
class SumField(_Composable):
    """Sum of several fields, e.g. a set of vortices."""

    fields: tuple[Field, ...]

    def evaluate(self, x: float, y: float) -> Vector2D:
        u_total = 0.0
        v_total = 0.0
        for f in self.fields:
            u, v = f.evaluate(x, y)
            u_total += u
            v_total += v
        return u_total, v_total

    __call__ = evaluate

    def evaluate_batch(self, x: FloatArray, y: FloatArray) -> tuple[Array, Array]:
        u_total = jnp.zeros_like(x)
        v_total = jnp.zeros_like(y)
        for f in self.fields:
            if isinstance(f, BatchField):
                u, v = f.evaluate_batch(x, y)
            else:
                u, v = evaluate_pointwise(f, x, y)
            u_total = u_total + u
            v_total = v_total + v
        return u_total, v_total


def compose(*fields: Field) -> SumField:
    """Combine fields by summing their velocities."""
    flat: list[Field] = []
    for f in fields:
        if isinstance(f, SumField):
            flat.extend(f.fields)
        else:
            flat.append(f)
    return SumField(tuple(flat))


def create_vortex_field(
    centers: list[Vector2D],
    strength: float = 10.0,
) -> SumField:
    """Create a field made of equal-strength point vortices."""
    return compose(*(VortexField(center=c, strength=strength) for c in centers))


def evaluate_pointwise(f: Field, x: FloatArray, y: FloatArray) -> tuple[Array, Array]:
    xs = np.asarray(x).ravel()
    ys = np.asarray(y).ravel()
    pairs = [f.evaluate(float(px), float(py)) for px, py in zip(xs, ys)]
    uv = np.asarray(pairs, dtype=np.float32).reshape(-1, 2)
    shape = np.shape(x)
    return jnp.asarray(uv[:, 0].reshape(shape)), jnp.asarray(uv[:, 1].reshape(shape))
