"""Particle store: all particle state packed into one flat float32 buffer.

Particle ``i`` occupies slots ``[5*i, 5*i + 5)`` laid out as
``x, y, vx, vy, type``. No per-particle objects are allocated.
"""

from __future__ import annotations

from enum import IntEnum

import numpy as np

STRIDE = 5

# Field offsets within one record
X = 0
Y = 1
VX = 2
VY = 3
TYPE = 4

DTYPE = np.float32

INITIAL_SPEED = 40.0  # velocity drawn from [-INITIAL_SPEED, INITIAL_SPEED) per axis

PARTICLE_TYPES: tuple[str, ...] = ("Sand", "Smoke", "Fire", "Water")
PARTICLE_COLORS: tuple[str, ...] = ("#C2B280", "#888888", "yellow", "white")
NUM_PARTICLE_TYPES = len(PARTICLE_TYPES)


class ParticleType(IntEnum):
    """Declared particle categories, used for filtering and labeling only."""

    SAND = 0
    SMOKE = 1
    FIRE = 2
    WATER = 3


class BufferLayoutError(ValueError):
    """Raised when a buffer does not hold a whole number of stride-5 records."""


def initialize(
    count: int,
    width: float,
    height: float,
    rng: np.random.Generator | None = None,
    seed: int | None = None,
) -> np.ndarray:
    """Allocate and fill a buffer of ``count`` random particles.

    Positions are uniform inside ``[0, width) x [0, height)``, velocities uniform
    in ``[-40, 40)`` on each axis and types uniform over the declared categories.

    Args:
        count: Number of particles. Must be non-negative.
        width: Horizontal world bound.
        height: Vertical world bound.
        rng: Random generator to draw from. Takes precedence over ``seed``.
        seed: Seed for a fresh generator, for reproducible populations.

    Returns:
        Float32 buffer of length ``count * 5``.

    Raises:
        ValueError: If count is negative.
    """
    if count < 0:
        raise ValueError(f"Particle count must be non-negative, got {count}")
    if rng is None:
        rng = np.random.default_rng(seed)

    records = np.empty((count, STRIDE), dtype=DTYPE)
    records[:, X] = rng.random(count) * width
    records[:, Y] = rng.random(count) * height
    records[:, VX] = (rng.random(count) - 0.5) * (2 * INITIAL_SPEED)
    records[:, VY] = (rng.random(count) - 0.5) * (2 * INITIAL_SPEED)
    records[:, TYPE] = rng.integers(0, NUM_PARTICLE_TYPES, size=count)
    return records.reshape(-1)


def validate_buffer(buffer: np.ndarray) -> None:
    """Fail fast on a buffer that breaks the stride-5 layout.

    Raises:
        BufferLayoutError: If the buffer is not one-dimensional or its length
            is not a multiple of 5.
    """
    if buffer.ndim != 1:
        raise BufferLayoutError(
            f"Particle buffer must be one-dimensional, got shape {buffer.shape}"
        )
    if buffer.shape[0] % STRIDE != 0:
        raise BufferLayoutError(
            f"Particle buffer length {buffer.shape[0]} is not a multiple of {STRIDE}"
        )


def particle_count(buffer: np.ndarray) -> int:
    """Number of particles held in a validated buffer."""
    validate_buffer(buffer)
    return buffer.shape[0] // STRIDE


def as_records(buffer: np.ndarray) -> np.ndarray:
    """Return an ``(n, 5)`` view of the buffer. Writes go through to the buffer."""
    validate_buffer(buffer)
    return buffer.reshape(-1, STRIDE)


def clone(buffer: np.ndarray) -> np.ndarray:
    """Independent copy of a buffer, so two engines never share state."""
    validate_buffer(buffer)
    return buffer.copy()


def type_mask(records: np.ndarray, active_type: int | None) -> np.ndarray:
    """Boolean mask of the records that pass the type filter.

    Args:
        records: ``(n, 5)`` record view.
        active_type: Category to keep, or None for every particle.
    """
    if active_type is None:
        return np.ones(records.shape[0], dtype=bool)
    return records[:, TYPE] == active_type


def visible_positions(buffer: np.ndarray, active_type: int | None = None) -> np.ndarray:
    """``(k, 2)`` copy of the positions of particles passing the type filter.

    Consumers that draw the population use this instead of reading the buffer
    layout directly.
    """
    records = as_records(buffer)
    return records[type_mask(records, active_type), X : Y + 1].copy()
