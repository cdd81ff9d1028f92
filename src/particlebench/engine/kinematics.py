"""Kinematics step: the per-particle physics law shared by every engine.

Each step applies, per particle:
1. Type filter - particles of another type than ``active_type`` are skipped
2. Gravity - ``vy += G * dt * SCALE``
3. Wind - ``vx += sin(y * 0.01) * dt * 50``
4. Explicit Euler integration of position
5. Inelastic boundary collision with restitution 0.8 (floor always reflects upward)
6. Turbulence - a position-seeded random jitter on velocity

The update is vectorised over a slice of records, but every particle's result
depends only on its own record. Applying ``advance`` to a buffer therefore
gives the same result as applying it to each piece of any partition of it.
Arithmetic runs in float64 and is stored back as float32. Walls sit at the
largest float32 value not above each bound, so stored positions never exceed
the bounds even when a bound has no exact float32 form.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from particlebench.model.particles import TYPE, VX, VY, X, Y, as_records

if TYPE_CHECKING:
    from particlebench.model.config import ChunkConfig, SimulationConfig

GRAVITY = 9.81
GRAVITY_SCALE = 15.0  # amplification for visible motion at interactive scale

WIND_FREQUENCY = 0.01  # period of about 628 world units in y
WIND_STRENGTH = 50.0

RESTITUTION = 0.8

TURBULENCE_X_FREQUENCY = 10.0
TURBULENCE_Y_FREQUENCY = 6.0
TURBULENCE_GAIN = 99.0
TURBULENCE_MODULUS = 0.1


def turbulence_magnitude(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Bounded pseudo-chaotic scalar ``(sin(10x + 6y) * 99) mod 0.1``.

    The remainder is truncated (sign of the dividend), so the result lies in
    ``(-0.1, 0.1)``.
    """
    phase = x * TURBULENCE_X_FREQUENCY + y * TURBULENCE_Y_FREQUENCY
    return np.fmod(np.sin(phase) * TURBULENCE_GAIN, TURBULENCE_MODULUS)


def storable_bound(bound: float) -> float:
    """Largest float32 value in ``[0, bound]``; negative bounds give 0."""
    bound = max(float(bound), 0.0)
    stored = np.float32(bound)
    if float(stored) > bound:
        stored = np.nextafter(stored, np.float32(0))
    return float(stored)


def advance(
    state: np.ndarray,
    dt: float,
    width: float,
    height: float,
    config: SimulationConfig | ChunkConfig,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Advance every particle of ``state`` by one time step, in place.

    Args:
        state: Flat float32 slice holding a whole number of stride-5 records.
        dt: Time step in seconds. Clamping it is the caller's job.
        width: Horizontal bound. Negative bounds behave as 0.
        height: Vertical bound. Negative bounds behave as 0.
        config: Force toggles and type filter.
        rng: Generator for turbulence draws. A fresh unseeded one is used if None.

    Returns:
        The same ``state`` array, mutated.
    """
    records = as_records(state)
    if records.shape[0] == 0:
        return state

    if config.active_type is None:
        selected: slice | np.ndarray = slice(None)
    else:
        selected = records[:, TYPE] == config.active_type
        if not selected.any():
            return state

    width = storable_bound(width)
    height = storable_bound(height)

    x = records[selected, X].astype(np.float64)
    y = records[selected, Y].astype(np.float64)
    vx = records[selected, VX].astype(np.float64)
    vy = records[selected, VY].astype(np.float64)

    if config.gravity_on:
        vy += GRAVITY * dt * GRAVITY_SCALE

    if config.wind_on:
        vx += np.sin(y * WIND_FREQUENCY) * dt * WIND_STRENGTH

    x += vx * dt
    y += vy * dt

    # Each wall is checked in turn, as a sequence of independent ifs
    hit = x < 0
    x[hit] = 0.0
    vx[hit] = -vx[hit] * RESTITUTION
    hit = x > width
    x[hit] = width
    vx[hit] = -vx[hit] * RESTITUTION
    hit = y < 0
    y[hit] = 0.0
    vy[hit] = -vy[hit] * RESTITUTION
    hit = y > height
    y[hit] = height
    vy[hit] = -np.abs(vy[hit]) * RESTITUTION

    if config.collisions_on:
        if rng is None:
            rng = np.random.default_rng()
        magnitude = turbulence_magnitude(x, y)
        jitter = rng.random((2, x.shape[0]))
        vx += (jitter[0] - 0.5) * magnitude
        vy += (jitter[1] - 0.5) * magnitude

    records[selected, X] = x
    records[selected, Y] = y
    records[selected, VX] = vx
    records[selected, VY] = vy
    return state
