"""Side-by-side comparison of the sequential and parallel engines.

The runner owns one master population and two independent copies of it, one
per engine, so neither pass ever reads the other's buffer. Each frame clamps
the time step, runs the sequential pass and then the parallel pass, and
records how long each took.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from particlebench.config import EngineSettings, get_engine_settings
from particlebench.engine.parallel import ParallelPhysicsEngine
from particlebench.engine.sequential import step_sequential
from particlebench.metrics.frame_timer import FrameTimer, PerformanceMetrics, speedup
from particlebench.model.particles import clone, initialize

if TYPE_CHECKING:
    import numpy as np

    from particlebench.model.config import SimulationConfig

logger = logging.getLogger(__name__)


def default_worker_count() -> int:
    """Twice the CPU count, kept within [4, 16]."""
    cores = os.cpu_count() or 4
    return max(4, min(16, cores * 2))


def clamp_dt(dt: float, max_dt: float) -> float:
    """Clamp a frame time step into ``[0, max_dt]``."""
    return max(0.0, min(max_dt, dt))


@dataclass(frozen=True)
class FrameReport:
    """Timing of one comparison frame."""

    dt: float
    sequential_ms: float
    parallel_ms: float
    generation: int


@dataclass(frozen=True)
class ComparisonMetrics:
    """Both engines' timing snapshots and the resulting speedup."""

    sequential: PerformanceMetrics
    parallel: PerformanceMetrics
    speedup: float | None


class ComparisonRunner:
    """Drives both engines over independent copies of one population.

    Thread-safe: frames, resizes and reconfiguration are serialised by a lock.
    """

    def __init__(
        self,
        num_particles: int | None = None,
        num_workers: int | None = None,
        width: float | None = None,
        height: float | None = None,
        settings: EngineSettings | None = None,
        seed: int | None = None,
    ) -> None:
        """Create the population and the worker pool.

        Args:
            num_particles: Population size. Defaults to settings.default_particles.
            num_workers: Pool size in [1, 32]. Defaults to default_worker_count().
            width: Horizontal bound. Defaults to settings.default_width.
            height: Vertical bound. Defaults to settings.default_height.
            settings: Engine settings. Uses the cached environment settings if None.
            seed: Seed for reproducible populations.
        """
        self._settings = settings or get_engine_settings()
        self._num_particles = (
            self._settings.default_particles if num_particles is None else num_particles
        )
        self._width = self._settings.default_width if width is None else width
        self._height = self._settings.default_height if height is None else height
        self._seed = seed
        self._paused = False
        self._lock = threading.Lock()

        self._engine = ParallelPhysicsEngine(
            num_workers=default_worker_count() if num_workers is None else num_workers,
            settings=self._settings,
        )
        self.sequential_timer = FrameTimer(
            label="sequential",
            max_history=self._settings.history_size,
            slow_frame_ms=self._settings.slow_frame_ms,
        )
        self.parallel_timer = FrameTimer(
            label="parallel",
            max_history=self._settings.history_size,
            slow_frame_ms=self._settings.slow_frame_ms,
        )
        self._sequential_buffer: np.ndarray
        self._parallel_buffer: np.ndarray
        self._reset_population()

    @property
    def engine(self) -> ParallelPhysicsEngine:
        """The parallel engine."""
        return self._engine

    @property
    def sequential_buffer(self) -> np.ndarray:
        """Buffer stepped by the sequential engine. Read-only for consumers."""
        return self._sequential_buffer

    @property
    def parallel_buffer(self) -> np.ndarray:
        """Buffer stepped by the parallel engine. Read-only for consumers."""
        return self._parallel_buffer

    @property
    def num_particles(self) -> int:
        """Current population size."""
        return self._num_particles

    @property
    def bounds(self) -> tuple[float, float]:
        """Current (width, height)."""
        return self._width, self._height

    @property
    def paused(self) -> bool:
        """Whether frames are currently skipped."""
        with self._lock:
            return self._paused

    def pause(self) -> None:
        """Skip physics on subsequent frames."""
        with self._lock:
            self._paused = True

    def resume(self) -> None:
        """Run physics again on subsequent frames."""
        with self._lock:
            self._paused = False

    def _reset_population(self) -> None:
        """Rebuild both buffers from one new master population and clear timings."""
        master = initialize(self._num_particles, self._width, self._height, seed=self._seed)
        self._sequential_buffer = clone(master)
        self._parallel_buffer = clone(master)
        self.sequential_timer.reset()
        self.parallel_timer.reset()
        logger.info(
            "Initialized %d particles in %.0fx%.0f for %d workers",
            self._num_particles,
            self._width,
            self._height,
            self._engine.num_workers,
        )

    def reset(self) -> None:
        """Reinitialize the population and clear both timing histories."""
        with self._lock:
            self._reset_population()

    def set_particle_count(self, count: int) -> None:
        """Change the population size and reinitialize both buffers.

        Raises:
            ValueError: If count is negative.
        """
        if count < 0:
            raise ValueError(f"Particle count must be non-negative, got {count}")
        with self._lock:
            if count == self._num_particles:
                return
            self._num_particles = count
            self._reset_population()

    def set_worker_count(self, count: int) -> None:
        """Resize the pool and reinitialize both buffers.

        Counts outside [1, 32] or equal to the current size are ignored.
        """
        with self._lock:
            generation = self._engine.generation
            self._engine.set_worker_count(count)
            if self._engine.generation != generation:
                self._reset_population()

    def resize(self, width: float, height: float) -> None:
        """Update the world bounds used by subsequent frames."""
        with self._lock:
            self._width = width
            self._height = height
        logger.debug("Bounds resized to %.0fx%.0f", width, height)

    def frame(self, dt: float, config: SimulationConfig) -> FrameReport | None:
        """Run one sequential pass and one parallel pass.

        Args:
            dt: Elapsed seconds since the previous frame, clamped to max_dt.
            config: Force toggles and type filter for this frame.

        Returns:
            FrameReport with both durations, or None while paused.
        """
        with self._lock:
            if self._paused:
                return None
            dt = clamp_dt(dt, self._settings.max_dt)

            with self.sequential_timer.measure():
                step_sequential(self._sequential_buffer, dt, self._width, self._height, config)

            with self.parallel_timer.measure():
                result = self._engine.step_parallel(
                    self._parallel_buffer, dt, self._width, self._height, config
                )

            return FrameReport(
                dt=dt,
                sequential_ms=self.sequential_timer.last_ms,
                parallel_ms=self.parallel_timer.last_ms,
                generation=result.generation,
            )

    def metrics(self) -> ComparisonMetrics:
        """Timing snapshots of both engines and the speedup of parallel over sequential."""
        sequential = self.sequential_timer.snapshot()
        parallel = self.parallel_timer.snapshot()
        return ComparisonMetrics(
            sequential=sequential,
            parallel=parallel,
            speedup=speedup(sequential, parallel),
        )

    def close(self) -> None:
        """Destroy the worker pool."""
        self._engine.destroy()

    def __enter__(self) -> ComparisonRunner:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit - destroys the worker pool."""
        self.close()
