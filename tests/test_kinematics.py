"""Tests for the kinematics step shared by both engines."""

import math

import numpy as np
import pytest

from particlebench.engine.kinematics import (
    GRAVITY,
    GRAVITY_SCALE,
    RESTITUTION,
    advance,
    storable_bound,
    turbulence_magnitude,
)
from particlebench.model.config import ChunkConfig, SimulationConfig
from particlebench.model.particles import TYPE, VX, VY, X, Y, as_records, initialize

NO_FORCES = SimulationConfig(gravity_on=False, collisions_on=False, wind_on=False)


def make_particle(x=50.0, y=50.0, vx=0.0, vy=0.0, particle_type=0) -> np.ndarray:
    """Create a one-particle buffer."""
    return np.array([x, y, vx, vy, particle_type], dtype=np.float32)


class TestForces:
    """Tests for gravity and wind."""

    def test_gravity_increments_vy(self):
        """Gravity adds G * dt * SCALE to vy."""
        state = make_particle(vy=0.0)
        advance(state, 0.016, 100, 100, SimulationConfig(collisions_on=False, wind_on=False))
        assert state[VY] == pytest.approx(GRAVITY * 0.016 * GRAVITY_SCALE, rel=1e-6)
        assert state[VY] == pytest.approx(2.3544, abs=1e-4)

    def test_gravity_off_leaves_velocity(self):
        """Without forces velocity is unchanged away from walls."""
        state = make_particle(vx=3.0, vy=-2.0)
        advance(state, 0.016, 100, 100, NO_FORCES)
        assert state[VX] == pytest.approx(3.0)
        assert state[VY] == pytest.approx(-2.0)

    def test_wind_depends_on_height(self):
        """Wind adds sin(y * 0.01) * dt * 50 to vx."""
        state = make_particle(y=157.0)
        config = SimulationConfig(gravity_on=False, collisions_on=False, wind_on=True)
        advance(state, 0.02, 1000, 1000, config)
        assert state[VX] == pytest.approx(math.sin(1.57) * 0.02 * 50, rel=1e-5)

    def test_wind_vanishes_at_zero_height(self):
        """sin(0) = 0, so a particle at y=0 feels no wind."""
        state = make_particle(y=0.0)
        config = SimulationConfig(gravity_on=False, collisions_on=False, wind_on=True)
        advance(state, 0.02, 100, 100, config)
        assert state[VX] == 0.0


class TestIntegration:
    """Tests for explicit Euler integration."""

    def test_position_follows_velocity(self):
        """x += vx * dt, y += vy * dt."""
        state = make_particle(x=10.0, y=20.0, vx=100.0, vy=-50.0)
        advance(state, 0.05, 100, 100, NO_FORCES)
        assert state[X] == pytest.approx(15.0)
        assert state[Y] == pytest.approx(17.5)

    def test_gravity_applied_before_integration(self):
        """Position integrates the already-updated velocity."""
        state = make_particle(y=10.0, vy=1.0)
        advance(state, 0.016, 100, 100, SimulationConfig(collisions_on=False, wind_on=False))
        expected_vy = 1.0 + GRAVITY * 0.016 * GRAVITY_SCALE
        assert state[Y] == pytest.approx(10.0 + expected_vy * 0.016, rel=1e-6)

    def test_zero_dt_keeps_position(self):
        """With dt = 0 position is unchanged, whatever the forces."""
        buffer = initialize(500, 300, 200, seed=11)
        before = as_records(buffer)[:, [X, Y]].copy()
        advance(buffer, 0.0, 300, 200, SimulationConfig())
        np.testing.assert_array_equal(as_records(buffer)[:, [X, Y]], before)

    def test_type_is_never_modified(self):
        """The type field passes through every step."""
        buffer = initialize(500, 100, 100, seed=4)
        types = as_records(buffer)[:, TYPE].copy()
        for _ in range(10):
            advance(buffer, 0.05, 100, 100, SimulationConfig())
        np.testing.assert_array_equal(as_records(buffer)[:, TYPE], types)


class TestBoundaries:
    """Tests for inelastic boundary collision."""

    def test_left_wall(self):
        """x < 0 clamps to 0 and reflects vx with restitution."""
        state = make_particle(x=1.0, vx=-100.0)
        advance(state, 0.05, 100, 100, NO_FORCES)
        assert state[X] == 0.0
        assert state[VX] == pytest.approx(100.0 * RESTITUTION)

    def test_right_wall(self):
        """x > width clamps to width and reflects vx."""
        state = make_particle(x=99.0, vx=100.0)
        advance(state, 0.05, 100, 100, NO_FORCES)
        assert state[X] == 100.0
        assert state[VX] == pytest.approx(-100.0 * RESTITUTION)

    def test_ceiling(self):
        """y < 0 clamps to 0 and reflects vy."""
        state = make_particle(y=1.0, vy=-100.0)
        advance(state, 0.05, 100, 100, NO_FORCES)
        assert state[Y] == 0.0
        assert state[VY] == pytest.approx(100.0 * RESTITUTION)

    def test_floor_always_reflects_upward(self):
        """Below the floor vy becomes -|vy| * 0.8, even if it was already negative."""
        state = make_particle(y=150.0, vy=-10.0)
        advance(state, 0.01, 100, 100, NO_FORCES)
        assert state[Y] == 100.0
        assert state[VY] == pytest.approx(-10.0 * RESTITUTION)

    def test_positions_stay_in_bounds(self):
        """After any step every particle lies within [0, width] x [0, height]."""
        buffer = initialize(2000, 100, 80, seed=9)
        as_records(buffer)[:, VX] *= 1000
        as_records(buffer)[:, VY] *= 1000
        for _ in range(5):
            advance(buffer, 0.05, 100, 80, SimulationConfig())
            records = as_records(buffer)
            assert np.all((records[:, X] >= 0) & (records[:, X] <= 100))
            assert np.all((records[:, Y] >= 0) & (records[:, Y] <= 80))

    def test_inexact_bound_never_exceeded(self):
        """A bound with no exact float32 form is never exceeded once stored."""
        state = make_particle(x=0.05, y=0.05, vx=100.0, vy=100.0)
        advance(state, 0.05, 0.1, 0.3, NO_FORCES)
        assert float(state[X]) <= 0.1
        assert float(state[Y]) <= 0.3
        assert state[VX] == pytest.approx(-100.0 * RESTITUTION)

    @pytest.mark.parametrize("bound", [0.1, 0.3, 123.456, 800.0, 1e-7])
    def test_storable_bound(self, bound):
        """The wall is the largest float32 value not above the bound."""
        wall = storable_bound(bound)
        assert wall <= bound
        assert float(np.float32(wall)) == wall
        assert float(np.nextafter(np.float32(wall), np.float32(np.inf))) > bound

    def test_storable_bound_negative(self):
        """Negative bounds give a wall at 0."""
        assert storable_bound(-5.0) == 0.0

    def test_negative_bounds_clamp_to_zero(self):
        """Negative bounds are degenerate but defined: particles end up at 0."""
        state = make_particle(x=5.0, y=5.0, vx=1.0, vy=1.0)
        advance(state, 0.05, -10, -10, NO_FORCES)
        assert state[X] == 0.0
        assert state[Y] == 0.0


class TestTypeFilter:
    """Tests for the active_type filter."""

    def test_other_types_untouched(self):
        """Particles of another type keep (x, y, vx, vy) bit for bit."""
        buffer = initialize(1000, 100, 100, seed=21)
        records = as_records(buffer)
        others = records[:, TYPE] != 1
        before = records[others].copy()

        advance(buffer, 0.05, 100, 100, SimulationConfig(active_type=1))

        np.testing.assert_array_equal(as_records(buffer)[others], before)

    def test_active_type_updated(self):
        """Particles of the active type are stepped."""
        buffer = np.concatenate([make_particle(vy=0.0, particle_type=2)] * 2)
        config = ChunkConfig(collisions_on=False, wind_on=False, active_type=2)
        advance(buffer, 0.016, 100, 100, config)
        assert np.all(as_records(buffer)[:, VY] > 0)

    def test_no_matching_particles(self):
        """A filter matching nothing leaves the buffer unchanged."""
        buffer = make_particle(particle_type=0)
        before = buffer.copy()
        advance(buffer, 0.05, 100, 100, SimulationConfig(active_type=3))
        np.testing.assert_array_equal(buffer, before)


class TestTurbulence:
    """Tests for the position-seeded turbulence jitter."""

    def test_magnitude_formula(self):
        """Magnitude is the truncated remainder of sin(10x + 6y) * 99 by 0.1."""
        x = np.array([1.3, 42.0, 0.0])
        y = np.array([2.7, 7.5, 0.0])
        expected = [math.fmod(math.sin(a * 10 + b * 6) * 99, 0.1) for a, b in zip(x, y)]
        np.testing.assert_allclose(turbulence_magnitude(x, y), expected, atol=1e-12)

    def test_magnitude_bounded(self):
        """The magnitude stays strictly inside (-0.1, 0.1) and keeps the dividend's sign."""
        rng = np.random.default_rng(0)
        x = rng.random(10000) * 1000
        y = rng.random(10000) * 1000
        t = turbulence_magnitude(x, y)
        assert np.all(np.abs(t) < 0.1)
        assert np.any(t < 0)

    def test_jitter_is_bounded(self):
        """Velocity changes by at most 0.05 per axis from turbulence alone."""
        buffer = initialize(1000, 100, 100, seed=5)
        as_records(buffer)[:, [VX, VY]] = 0.0
        config = SimulationConfig(gravity_on=False, wind_on=False, collisions_on=True)
        advance(buffer, 0.0, 100, 100, config, rng=np.random.default_rng(1))
        assert np.all(np.abs(as_records(buffer)[:, [VX, VY]]) <= 0.05 + 1e-7)

    def test_seeded_generator_is_reproducible(self):
        """The same generator seed gives the same jitter."""
        config = SimulationConfig()
        a = initialize(100, 100, 100, seed=8)
        b = a.copy()
        advance(a, 0.016, 100, 100, config, rng=np.random.default_rng(42))
        advance(b, 0.016, 100, 100, config, rng=np.random.default_rng(42))
        np.testing.assert_array_equal(a, b)


class TestEmptyInput:
    """Tests for degenerate inputs."""

    def test_empty_buffer(self):
        """An empty slice is returned unchanged."""
        state = np.zeros(0, dtype=np.float32)
        assert advance(state, 0.05, 100, 100, SimulationConfig()) is state
