"""Core configuration, types and errors."""

from streakflow.core.config import Settings, get_settings
from streakflow.core.errors import (
    DelegationError,
    FlowError,
    GridShapeError,
    MeshCancelled,
)
from streakflow.core.types import FloatArray, Vector2D

__all__ = [
    "DelegationError",
    "FloatArray",
    "FlowError",
    "GridShapeError",
    "MeshCancelled",
    "Settings",
    "Vector2D",
    "get_settings",
]
