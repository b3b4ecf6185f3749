"""Velocity grids and continuous fields."""

from streakflow.models.field import (
    BatchField,
    Field,
    GridField,
    SumField,
    UniformField,
    VortexField,
    compose,
    create_vortex_field,
    sample,
)
from streakflow.models.grid import VelocityGrid, smooth
from streakflow.models.sources import sample_field

__all__ = [
    "BatchField",
    "Field",
    "GridField",
    "SumField",
    "UniformField",
    "VelocityGrid",
    "VortexField",
    "compose",
    "create_vortex_field",
    "sample",
    "sample_field",
    "smooth",
]
