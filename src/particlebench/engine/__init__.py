"""Simulation engines: kinematics step, sequential pass, parallel worker pool, comparison runner."""

from particlebench.engine.comparison import (
    ComparisonMetrics,
    ComparisonRunner,
    FrameReport,
    clamp_dt,
    default_worker_count,
)
from particlebench.engine.kinematics import advance, storable_bound, turbulence_magnitude
from particlebench.engine.parallel import (
    EngineDestroyedError,
    ParallelEngineError,
    ParallelPhysicsEngine,
    StaleGenerationError,
    StepResult,
    WorkerFailedError,
    WorkerTimeoutError,
)
from particlebench.engine.partition import chunk_size, partition
from particlebench.engine.sequential import step_chunked, step_sequential
from particlebench.engine.worker import ChunkRequest, ChunkResult, PhysicsWorker, process_chunk

__all__ = [
    "ChunkRequest",
    "ChunkResult",
    "ComparisonMetrics",
    "ComparisonRunner",
    "EngineDestroyedError",
    "FrameReport",
    "ParallelEngineError",
    "ParallelPhysicsEngine",
    "PhysicsWorker",
    "StaleGenerationError",
    "StepResult",
    "WorkerFailedError",
    "WorkerTimeoutError",
    "advance",
    "chunk_size",
    "clamp_dt",
    "default_worker_count",
    "partition",
    "process_chunk",
    "step_chunked",
    "step_sequential",
    "turbulence_magnitude",
]
