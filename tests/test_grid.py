"""Tests for velocity grids and Gaussian smoothing."""

import inspect
import math

import numpy as np
import pytest

from streakflow.core.config import TraceSettings
from streakflow.core.errors import GridShapeError
from streakflow.models.grid import VelocityGrid, smooth


def reference_smooth(data, columns, rows, sigma, min_weight=0.001):
    """Straightforward two-pass loop used as ground truth."""
    half = math.floor(3 * sigma + 0.5)
    src = np.asarray(data, dtype=np.float64).reshape(rows, columns, 2)

    horizontal = np.zeros_like(src)
    for y in range(rows):
        for x in range(columns):
            total = 0.0
            acc = np.zeros(2)
            for d in range(-half, half + 1):
                if 0 <= x + d < columns:
                    w = math.exp(-d * d / (sigma * sigma))
                    total += w
                    acc += w * src[y, x + d]
            horizontal[y, x] = 0 if total < min_weight else acc / total

    final = np.zeros_like(src)
    for x in range(columns):
        for y in range(rows):
            total = 0.0
            acc = np.zeros(2)
            for d in range(-half, half + 1):
                if 0 <= y + d < rows:
                    w = math.exp(-d * d / (sigma * sigma))
                    total += w
                    acc += w * horizontal[y + d, x]
            final[y, x] = 0 if total < min_weight else acc / total

    return final.reshape(-1)


class TestVelocityGrid:
    """Tests for grid construction and validation."""

    def test_valid_grid(self):
        """Should accept a buffer matching the declared shape."""
        grid = VelocityGrid(np.zeros(2 * 3 * 2, dtype=np.float32), columns=3, rows=2, cell_size=5.0)

        assert grid.uv.shape == (2, 3, 2)
        assert grid.data.dtype == np.float32
        assert grid.nbytes == 48

    def test_wrong_length_rejected(self):
        """A buffer inconsistent with columns*rows should fail fast."""
        with pytest.raises(GridShapeError):
            VelocityGrid(np.zeros(11, dtype=np.float32), columns=3, rows=2)

    @pytest.mark.parametrize("columns,rows", [(0, 4), (4, 0), (-1, 2)])
    def test_empty_dimensions_rejected(self, columns, rows):
        """Grids need at least one cell."""
        with pytest.raises(GridShapeError):
            VelocityGrid(np.zeros(0, dtype=np.float32), columns=columns, rows=rows)

    def test_non_positive_cell_size_rejected(self):
        """Cell size must be positive."""
        with pytest.raises(GridShapeError):
            VelocityGrid(np.zeros(8, dtype=np.float32), columns=2, rows=2, cell_size=0.0)

    def test_data_is_read_only(self):
        """Grid buffers are immutable once constructed."""
        grid = VelocityGrid.uniform(2, 2, 1.0, 0.0)

        with pytest.raises(ValueError):
            grid.data[0] = 5.0

    def test_float32_buffer_adopted_without_copy(self):
        """A contiguous float32 buffer is shared; the caller's array stays writable."""
        buffer = np.zeros(8, dtype=np.float32)

        grid = VelocityGrid(buffer, columns=2, rows=2)

        assert np.shares_memory(grid.data, buffer)
        assert buffer.flags.writeable
        assert not grid.data.flags.writeable

    def test_other_dtypes_converted(self):
        """Non-float32 input is converted into a new float32 buffer."""
        buffer = np.arange(8, dtype=np.float64)

        grid = VelocityGrid(buffer, columns=2, rows=2)

        assert grid.data.dtype == np.float32
        assert not np.shares_memory(grid.data, buffer)
        np.testing.assert_array_equal(grid.data, buffer)

    def test_from_components_interleaves(self):
        """u and v tables should be interleaved row-major."""
        u = np.array([[1, 2, 3], [4, 5, 6]], dtype=np.float32)
        v = -u
        grid = VelocityGrid.from_components(u, v)

        assert grid.columns == 3
        assert grid.rows == 2
        # Cell (x=2, y=1)
        assert grid.data[2 * (1 * 3 + 2)] == 6.0
        assert grid.data[2 * (1 * 3 + 2) + 1] == -6.0

    def test_from_components_mismatch(self):
        """u and v must share a 2D shape."""
        with pytest.raises(GridShapeError):
            VelocityGrid.from_components(np.zeros((2, 3)), np.zeros((3, 2)))


class TestSmooth:
    """Tests for separable Gaussian smoothing."""

    def test_preserves_shape(self, random_grid):
        """Output should have the same shape and cell size."""
        result = smooth(random_grid, 1.0)

        assert result.data.shape == random_grid.data.shape
        assert result.columns == random_grid.columns
        assert result.rows == random_grid.rows
        assert result.cell_size == random_grid.cell_size

    def test_uniform_grid_unchanged(self):
        """Smoothing a uniform field should be a no-op."""
        grid = VelocityGrid.uniform(9, 6, 0.7, -1.3)
        result = smooth(grid, 2.0)

        np.testing.assert_allclose(result.data, grid.data, rtol=1e-5)

    def test_input_not_modified(self, random_grid):
        """The input grid's buffer should be left untouched."""
        before = random_grid.data.copy()
        smooth(random_grid, 1.5)

        np.testing.assert_array_equal(random_grid.data, before)

    @pytest.mark.parametrize("sigma", [0.5, 1.0, 2.5])
    def test_matches_reference(self, random_grid, sigma):
        """Edge cells should be normalised over the taps inside the grid."""
        expected = reference_smooth(random_grid.data, random_grid.columns, random_grid.rows, sigma)
        result = smooth(random_grid, sigma)

        np.testing.assert_allclose(result.data, expected, rtol=1e-4, atol=1e-5)

    def test_tiny_sigma_is_identity(self, random_grid):
        """A half-width of zero keeps only the centre tap."""
        result = smooth(random_grid, 0.1)

        np.testing.assert_allclose(result.data, random_grid.data, rtol=1e-6)

    def test_spreads_impulse(self):
        """A single non-zero cell should bleed into its neighbours."""
        u = np.zeros((5, 5), dtype=np.float32)
        u[2, 2] = 1.0
        grid = VelocityGrid.from_components(u, np.zeros_like(u))
        result = smooth(grid, 1.0).uv

        assert result[2, 2, 0] < 1.0
        assert result[2, 1, 0] > 0.0
        assert result[1, 2, 0] > 0.0
        assert result[2, 2, 0] > result[2, 1, 0]
        np.testing.assert_allclose(result[..., 1], 0.0)

    @pytest.mark.parametrize("sigma", [0.0, -1.0])
    def test_non_positive_sigma_rejected(self, random_grid, sigma):
        """Sigma must be positive."""
        with pytest.raises(GridShapeError):
            smooth(random_grid, sigma)

    def test_default_cutoff_matches_settings(self):
        """The smoother's default cutoff is the configured pipeline default."""
        default = inspect.signature(smooth).parameters["min_weight"].default

        assert default == TraceSettings().min_weight_threshold

    def test_cutoff_zeroes_weak_support(self, random_grid):
        """Cells whose kernel weight is below the cutoff become zero."""
        result = smooth(random_grid, 1.0, min_weight=100.0)

        np.testing.assert_array_equal(result.data, 0.0)

    def test_single_cell_grid(self):
        """A 1x1 grid should come back unchanged."""
        grid = VelocityGrid(np.array([2.0, -3.0], dtype=np.float32), columns=1, rows=1)
        result = smooth(grid, 10.0)

        np.testing.assert_allclose(result.data, [2.0, -3.0], rtol=1e-6)
