"""Tests for continuous fields and field sampling."""

import jax.numpy as jnp
import numpy as np
import pytest

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
from streakflow.models.grid import VelocityGrid
from streakflow.models.sources import sample_field


@pytest.fixture
def ramp_grid():
    """3x2 grid where u = x and v = 10 * y."""
    y, x = np.mgrid[0:2, 0:3].astype(np.float32)
    return VelocityGrid.from_components(x, 10 * y)


class TestGridField:
    """Tests for nearest-cell lookup."""

    def test_exact_cells(self, ramp_grid):
        """Integer coordinates should return the stored cell."""
        field = sample(ramp_grid)

        assert field.evaluate(2.0, 1.0) == (2.0, 10.0)
        assert field.evaluate(0.0, 0.0) == (0.0, 0.0)

    def test_rounds_to_nearest(self, ramp_grid):
        """Fractional coordinates should snap to the nearest cell."""
        field = sample(ramp_grid)

        assert field.evaluate(1.4, 0.6) == (1.0, 10.0)
        assert field.evaluate(1.6, 0.4) == (2.0, 0.0)

    def test_halves_round_up(self, ramp_grid):
        """x = 0.5 and x = 1.5 should land in cells 1 and 2."""
        field = sample(ramp_grid)

        assert field.evaluate(0.5, 0.0)[0] == 1.0
        assert field.evaluate(1.5, 0.0)[0] == 2.0

    @pytest.mark.parametrize("x,y", [(-0.6, 0.0), (2.5, 0.0), (0.0, 1.5), (0.0, -1.0), (100.0, 100.0)])
    def test_outside_is_zero(self, ramp_grid, x, y):
        """Points outside the grid should have zero velocity."""
        assert sample(ramp_grid).evaluate(x, y) == (0.0, 0.0)

    def test_callable(self, ramp_grid):
        """Fields can be called directly."""
        field = sample(ramp_grid)

        assert field(2.0, 1.0) == field.evaluate(2.0, 1.0)

    def test_batch_matches_pointwise(self, ramp_grid):
        """Batch lookup should agree with single-point lookup."""
        field = sample(ramp_grid)
        xs = np.array([0.0, 1.4, 2.6, -1.0, 1.5])
        ys = np.array([0.0, 0.6, 1.0, 0.0, 0.4])

        u, v = field.evaluate_batch(xs, ys)

        for i in range(len(xs)):
            assert (float(u[i]), float(v[i])) == field.evaluate(xs[i], ys[i])

    def test_protocols(self, ramp_grid):
        """GridField should satisfy both field protocols."""
        field = sample(ramp_grid)

        assert isinstance(field, Field)
        assert isinstance(field, BatchField)
        assert isinstance(field, GridField)


class TestAnalyticFields:
    """Tests for analytic and composed fields."""

    def test_uniform(self):
        """Uniform field is constant."""
        field = UniformField(2.0, -1.0)

        assert field.evaluate(5.0, 7.0) == (2.0, -1.0)
        u, v = field.evaluate_batch(jnp.zeros(3), jnp.zeros(3))
        assert np.allclose(np.asarray(u), 2.0)
        assert np.allclose(np.asarray(v), -1.0)

    def test_vortex_circulates(self):
        """Vortex velocity should be perpendicular to the radius."""
        field = VortexField(center=(0.0, 0.0), strength=10.0)

        u, v = field.evaluate(1.0, 0.0)
        assert u == pytest.approx(0.0)
        assert v == pytest.approx(10.0)

        u, v = field.evaluate(0.0, 2.0)
        assert u == pytest.approx(-5.0)
        assert v == pytest.approx(0.0)

    def test_vortex_center_is_zero(self):
        """The singular centre should not produce infinities."""
        field = VortexField(center=(3.0, 4.0))

        assert field.evaluate(3.0, 4.0) == (0.0, 0.0)
        u, v = field.evaluate_batch(jnp.array([3.0]), jnp.array([4.0]))
        assert float(u[0]) == 0.0
        assert float(v[0]) == 0.0

    def test_vortex_batch_matches_pointwise(self):
        """Batched vortex evaluation should match the scalar path."""
        field = VortexField(center=(1.0, -2.0), strength=3.0)
        xs = jnp.array([0.0, 4.0, -3.0])
        ys = jnp.array([1.0, 0.5, -2.0])

        u, v = field.evaluate_batch(xs, ys)

        for i in range(3):
            eu, ev = field.evaluate(float(xs[i]), float(ys[i]))
            assert float(u[i]) == pytest.approx(eu, rel=1e-5)
            assert float(v[i]) == pytest.approx(ev, rel=1e-5)

    def test_sum_field(self):
        """Composed fields should add their velocities."""
        field = compose(UniformField(1.0, 0.0), UniformField(0.5, 2.0))

        assert field.evaluate(0.0, 0.0) == (1.5, 2.0)

    def test_add_operator(self):
        """Adding fields builds a flat SumField."""
        field = UniformField(1.0, 0.0) + VortexField(center=(0.0, 0.0), strength=1.0) + UniformField(0.0, 1.0)

        assert isinstance(field, SumField)
        assert len(field.fields) == 3
        assert field.evaluate(1.0, 0.0) == pytest.approx((1.0, 2.0))

    def test_compose_flattens(self):
        """Composing a SumField should not nest it."""
        inner = compose(UniformField(1.0, 0.0), UniformField(0.0, 1.0))
        outer = compose(inner, UniformField(1.0, 1.0))

        assert isinstance(outer, SumField)
        assert len(outer.fields) == 3

    def test_counter_rotating_vortices_reinforce_between(self):
        """Between two counter-rotating vortices their flows add up."""
        field = compose(
            VortexField(center=(-1.0, 0.0), strength=1.0),
            VortexField(center=(1.0, 0.0), strength=-1.0),
        )

        u, v = field.evaluate(0.0, 0.0)
        assert u == pytest.approx(0.0)
        assert v == pytest.approx(2.0)

    def test_create_vortex_field(self):
        """Helper should build one vortex per centre."""
        field = create_vortex_field([(0.0, 0.0), (5.0, 5.0), (-5.0, 2.0)])

        assert len(field.fields) == 3
        assert all(isinstance(f, VortexField) for f in field.fields)


class _PointOnly:
    """A field without batch evaluation."""

    def evaluate(self, x, y):
        return x, -y


class TestSampleField:
    """Tests for tabulating fields onto grids."""

    def test_samples_at_cells(self):
        """Cell (i, j) should hold the field at origin + (i, j) * spacing."""
        grid = sample_field(
            compose(UniformField(1.0, 0.0), UniformField(0.0, 2.0)),
            columns=4,
            rows=3,
            cell_size=8.0,
        )

        assert grid.columns == 4
        assert grid.rows == 3
        assert grid.cell_size == 8.0
        np.testing.assert_allclose(grid.uv[..., 0], 1.0)
        np.testing.assert_allclose(grid.uv[..., 1], 2.0)

    def test_origin_and_spacing(self):
        """Pointwise fields should see the mapped coordinates."""
        grid = sample_field(_PointOnly(), columns=3, rows=2, origin=(10.0, 20.0), spacing=(2.0, 0.5))

        assert grid.uv[1, 2, 0] == pytest.approx(14.0)
        assert grid.uv[1, 2, 1] == pytest.approx(-20.5)

    def test_singularity_stored_as_zero(self):
        """A vortex centred on a cell should leave that cell at zero."""
        grid = sample_field(VortexField(center=(2.0, 1.0)), columns=5, rows=3)

        assert np.all(np.isfinite(grid.data))
        assert tuple(grid.uv[1, 2]) == (0.0, 0.0)
