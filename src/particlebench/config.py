"""Engine settings loaded from the environment.

Pydantic-based settings with ``.env`` support. Every variable carries the
``PARTICLEBENCH_`` prefix, e.g. ``PARTICLEBENCH_NUM_WORKERS=8``.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

MIN_WORKERS = 1
MAX_WORKERS = 32


class WorkerBackend(StrEnum):
    """Execution context used for each worker in the parallel pool."""

    THREAD = "thread"
    PROCESS = "process"


class EngineSettings(BaseSettings):
    """Defaults for the simulation engines and the comparison runner.

    Environment Variables:
        PARTICLEBENCH_NUM_WORKERS: Worker pool size, 1-32 (default: 4)
        PARTICLEBENCH_WORKER_BACKEND: thread or process (default: thread)
        PARTICLEBENCH_CHUNK_TIMEOUT: Seconds to wait for all chunks of a step (default: 5.0)
        PARTICLEBENCH_MAX_STEP_ATTEMPTS: Attempts per parallel step before failing (default: 2)
        PARTICLEBENCH_MAX_DT: Upper clamp for the frame time step in seconds (default: 0.05)
        PARTICLEBENCH_HISTORY_SIZE: Frames kept in each timing history (default: 200)
        PARTICLEBENCH_SLOW_FRAME_MS: Frames slower than this are logged (default: 50.0)
        PARTICLEBENCH_DEFAULT_PARTICLES: Initial population size (default: 8000)
        PARTICLEBENCH_DEFAULT_WIDTH / PARTICLEBENCH_DEFAULT_HEIGHT: World bounds

    Example:
        >>> settings = EngineSettings()  # Loads from environment
        >>> settings = EngineSettings(num_workers=8)
    """

    model_config = SettingsConfigDict(
        env_prefix="PARTICLEBENCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    num_workers: int = Field(
        default=4,
        ge=MIN_WORKERS,
        le=MAX_WORKERS,
        description="Number of persistent workers in the parallel pool",
    )
    worker_backend: WorkerBackend = Field(
        default=WorkerBackend.THREAD,
        description="Execution context for each worker",
    )
    chunk_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for every chunk of one parallel step",
    )
    max_step_attempts: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Total attempts for a parallel step that times out",
    )
    max_dt: float = Field(
        default=0.05,
        gt=0,
        description="Upper clamp applied to the frame time step (seconds)",
    )
    history_size: int = Field(
        default=200,
        ge=1,
        description="Number of frames kept in each rolling timing history",
    )
    slow_frame_ms: float = Field(
        default=50.0,
        gt=0,
        description="Frame duration above which a warning is logged",
    )
    default_particles: int = Field(default=8000, ge=0)
    default_width: float = Field(default=800.0, gt=0)
    default_height: float = Field(default=600.0, gt=0)

    @field_validator("worker_backend", mode="before")
    @classmethod
    def normalize_backend(cls, v: Any) -> WorkerBackend:
        """Normalize backend string to enum."""
        if isinstance(v, str):
            return WorkerBackend(v.lower())
        return v


@lru_cache
def get_engine_settings() -> EngineSettings:
    """Get cached engine settings.

    To reload settings, call get_engine_settings.cache_clear() first.
    """
    settings = EngineSettings()
    logger.info(
        "Loaded engine settings: workers=%d backend=%s timeout=%.1fs",
        settings.num_workers,
        settings.worker_backend.value,
        settings.chunk_timeout,
    )
    return settings
