"""Compare sequential and parallel frame times and profile the kinematics pass."""

import cProfile
import pstats
import sys
import time
from io import StringIO

from particlebench import configure_logging
from particlebench.config import EngineSettings
from particlebench.engine.comparison import ComparisonRunner
from particlebench.engine.kinematics import advance
from particlebench.model.config import SimulationConfig
from particlebench.model.particles import initialize

FRAME_DT = 1 / 60
ALL_FORCES = SimulationConfig()
GRAVITY_ONLY = SimulationConfig(gravity_on=True, collisions_on=False, wind_on=False)


def measure_frames(runner: ComparisonRunner, config: SimulationConfig, num_frames: int) -> float:
    """Run frames and return wall-clock frames per second."""
    start_time = time.perf_counter()
    for _ in range(num_frames):
        runner.frame(FRAME_DT, config)
    elapsed = time.perf_counter() - start_time
    return num_frames / elapsed if elapsed > 0 else 0


def sweep_workers(
    settings: EngineSettings, num_particles: int, worker_counts: list[int], num_frames: int
) -> list[tuple[int, float, float, float | None]]:
    """Average sequential and parallel frame times for each pool size."""
    rows = []
    with ComparisonRunner(num_particles=num_particles, settings=settings, seed=0) as runner:
        for workers in worker_counts:
            runner.set_worker_count(workers)
            runner.reset()
            measure_frames(runner, ALL_FORCES, num_frames)
            metrics = runner.metrics()
            rows.append((workers, metrics.sequential.avg, metrics.parallel.avg, metrics.speedup))
    return rows


def check_agreement(settings: EngineSettings, num_particles: int, num_frames: int) -> bool:
    """Whether both engines produce identical buffers without turbulence."""
    with ComparisonRunner(num_particles=num_particles, settings=settings, seed=1) as runner:
        for _ in range(num_frames):
            runner.frame(FRAME_DT, GRAVITY_ONLY)
        return bool((runner.sequential_buffer == runner.parallel_buffer).all())


def profile_advance(num_particles: int, num_steps: int) -> str:
    """Profile advance() on one population and return profiling results."""
    buffer = initialize(num_particles, 800, 600, seed=2)
    profiler = cProfile.Profile()

    profiler.enable()
    for _ in range(num_steps):
        advance(buffer, FRAME_DT, 800, 600, ALL_FORCES)
    profiler.disable()

    stats_stream = StringIO()
    stats = pstats.Stats(profiler, stream=stats_stream)
    stats.sort_stats("cumulative")
    stats.print_stats(15)

    return stats_stream.getvalue()


def main():
    configure_logging()
    settings = EngineSettings()
    num_particles = int(sys.argv[1]) if len(sys.argv) > 1 else settings.default_particles

    print("=" * 60)
    print(f"Engine comparison: {num_particles} particles ({settings.worker_backend} workers)")
    print("=" * 60)

    print("\n--- Worker Sweep (200 frames each) ---")
    print(f"{'workers':>8} {'seq ms':>10} {'par ms':>10} {'speedup':>8}")
    for workers, seq_ms, par_ms, ratio in sweep_workers(
        settings, num_particles, [1, 2, 4, 8, 16], 200
    ):
        ratio_text = f"{ratio:.2f}x" if ratio is not None else "n/a"
        print(f"{workers:>8} {seq_ms:>10.3f} {par_ms:>10.3f} {ratio_text:>8}")

    print("\n--- Agreement Check (gravity only, 100 frames) ---")
    agreed = check_agreement(settings, num_particles, 100)
    print("Buffers identical" if agreed else "Buffers DIFFER")

    print("\n--- Profiling Breakdown: advance() (500 steps) ---")
    print(profile_advance(num_particles, 500))

    if not agreed:
        sys.exit(1)


if __name__ == "__main__":
    main()
