"""Shared fixtures for streakflow tests."""

import numpy as np
import pytest

from streakflow.core.config import MeshSettings, Settings, TraceSettings
from streakflow.models.grid import VelocityGrid


@pytest.fixture
def small_settings() -> Settings:
    """Settings small enough for fast end-to-end runs."""
    return Settings(
        trace=TraceSettings(
            smoothing=1.5,
            segment_length=1.0,
            vertices_per_line=20,
            speed_scale=1.0,
            lines_per_visualization=40,
        ),
        mesh=MeshSettings(distance_unit=1.0, processing_quantum_ms=100.0),
        seed=1234,
    )


@pytest.fixture
def uniform_grid() -> VelocityGrid:
    """4x4 grid flowing right everywhere."""
    return VelocityGrid.uniform(columns=4, rows=4, u=1.0, v=0.0)


@pytest.fixture
def swirl_grid() -> VelocityGrid:
    """24x16 grid circulating around its centre."""
    rows, columns = 16, 24
    y, x = np.mgrid[0:rows, 0:columns].astype(np.float32)
    u = -(y - rows / 2)
    v = x - columns / 2
    return VelocityGrid.from_components(u, v, cell_size=2.0)


@pytest.fixture
def random_grid() -> VelocityGrid:
    """Small grid of reproducible noise."""
    rng = np.random.default_rng(0)
    data = rng.normal(size=2 * 7 * 5).astype(np.float32)
    return VelocityGrid(data, columns=7, rows=5)
