"""Sequential engine: one pass over the whole buffer on the calling thread."""

from __future__ import annotations

from typing import TYPE_CHECKING

from particlebench.engine.kinematics import advance
from particlebench.engine.partition import partition
from particlebench.model.particles import STRIDE, particle_count

if TYPE_CHECKING:
    import numpy as np

    from particlebench.model.config import SimulationConfig


def step_sequential(
    buffer: np.ndarray,
    dt: float,
    width: float,
    height: float,
    config: SimulationConfig,
    rng: np.random.Generator | None = None,
) -> None:
    """Apply the kinematics step to particles ``0..n-1`` in place.

    Raises:
        BufferLayoutError: If the buffer length is not a multiple of 5.
    """
    particle_count(buffer)
    advance(buffer, dt, width, height, config, rng)


def step_chunked(
    buffer: np.ndarray,
    dt: float,
    width: float,
    height: float,
    config: SimulationConfig,
    num_chunks: int,
    rng: np.random.Generator | None = None,
) -> None:
    """Process the buffer chunk by chunk on the calling thread.

    Uses the same partition as the parallel engine without any concurrency,
    which isolates the cost of chunking from the cost of dispatch.
    """
    n = particle_count(buffer)
    for start, end in partition(n, num_chunks):
        advance(buffer[start * STRIDE : end * STRIDE], dt, width, height, config, rng)
