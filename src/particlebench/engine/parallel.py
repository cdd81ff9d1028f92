"""Parallel engine: chunk-partitioned stepping across a fixed worker pool.

Each step splits the particle range into one contiguous chunk per worker,
sends every worker a private copy of its chunk, waits for all of them (join)
and only then writes every result back at its chunk's fixed offset. Merge order
is chunk order, whatever order the workers finish in.

The pool carries a generation counter that increments on every respawn
(resize, timeout recycle, destroy). Results issued under an older generation
are never merged.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import CancelledError, wait
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_none,
)

from particlebench.config import (
    MAX_WORKERS,
    MIN_WORKERS,
    EngineSettings,
    WorkerBackend,
    get_engine_settings,
)
from particlebench.engine.partition import partition
from particlebench.engine.worker import ChunkRequest, ChunkResult, PhysicsWorker
from particlebench.logging_config import engine_context
from particlebench.model.particles import STRIDE, particle_count

if TYPE_CHECKING:
    from concurrent.futures import Future

    import numpy as np

    from particlebench.model.config import ChunkConfig, SimulationConfig

logger = logging.getLogger(__name__)

# Log dispatch detail every N steps to avoid log spam
DEBUG_LOG_INTERVAL = 100


class ParallelEngineError(Exception):
    """Base class for parallel engine failures."""


class EngineDestroyedError(ParallelEngineError):
    """Raised when stepping an engine whose pool has been destroyed."""


class StaleGenerationError(ParallelEngineError):
    """Raised when the pool was respawned while a step was waiting on it.

    Attributes:
        generation: Generation the step was dispatched under.
        current_generation: Generation of the pool at merge time.
    """

    def __init__(self, generation: int, current_generation: int) -> None:
        super().__init__(
            f"Pool generation changed from {generation} to {current_generation} "
            "during step; results discarded"
        )
        self.generation = generation
        self.current_generation = current_generation


class WorkerTimeoutError(ParallelEngineError):
    """Raised when chunks are still unresolved after the chunk timeout.

    Attributes:
        pending: (start, end) particle ranges that never returned.
        generation: Generation the chunks were dispatched under.
        timeout: Seconds waited.
    """

    def __init__(self, pending: list[tuple[int, int]], generation: int, timeout: float) -> None:
        super().__init__(
            f"{len(pending)} chunk(s) unresolved after {timeout:.2f}s "
            f"in generation {generation}: {pending}"
        )
        self.pending = pending
        self.generation = generation
        self.timeout = timeout


class WorkerFailedError(ParallelEngineError):
    """Raised when a worker raised while processing its chunk.

    Attributes:
        worker_id: Worker that failed.
        chunk_range: (start, end) particle range of the failed chunk.
    """

    def __init__(self, message: str, worker_id: int, chunk_range: tuple[int, int]) -> None:
        super().__init__(message)
        self.worker_id = worker_id
        self.chunk_range = chunk_range


@dataclass
class InFlightRequest:
    """The one outstanding request a worker slot owns."""

    worker_id: int
    start: int
    end: int
    generation: int
    future: Future[ChunkResult]


@dataclass
class StepResult:
    """Outcome of one ``step_parallel`` call."""

    generation: int
    ranges: list[tuple[int, int]] = field(default_factory=list)
    elapsed_ms: float = 0.0
    attempts: int = 1


class ParallelPhysicsEngine:
    """Steps a particle buffer across a pool of persistent workers.

    Thread-safe: pool state (workers, in-flight slots, generation) is guarded by
    a lock, and steps are serialised so a new step never starts while another
    still has requests outstanding.

    Example:
        >>> with ParallelPhysicsEngine(num_workers=4) as engine:
        ...     engine.step_parallel(buffer, 0.016, 800, 600, config)
    """

    def __init__(
        self,
        num_workers: int | None = None,
        backend: WorkerBackend | str | None = None,
        chunk_timeout: float | None = None,
        max_step_attempts: int | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        """Spawn the worker pool.

        Args:
            num_workers: Pool size in [1, 32]. Defaults to settings.num_workers.
            backend: Worker execution context. Defaults to settings.worker_backend.
            chunk_timeout: Seconds to wait for all chunks of one step.
            max_step_attempts: Total attempts for a step that times out.
            settings: Engine settings. Uses the cached environment settings if None.

        Raises:
            ValueError: If num_workers is outside [1, 32].
        """
        settings = settings or get_engine_settings()
        num_workers = settings.num_workers if num_workers is None else num_workers
        if not MIN_WORKERS <= num_workers <= MAX_WORKERS:
            raise ValueError(
                f"num_workers must be in [{MIN_WORKERS}, {MAX_WORKERS}], got {num_workers}"
            )

        self._num_workers = num_workers
        self._backend = WorkerBackend(backend or settings.worker_backend)
        self._chunk_timeout = chunk_timeout if chunk_timeout is not None else settings.chunk_timeout
        self._max_step_attempts = (
            max_step_attempts if max_step_attempts is not None else settings.max_step_attempts
        )

        self._lock = threading.Lock()
        self._step_lock = threading.Lock()
        self._workers: list[PhysicsWorker] = []
        self._in_flight: dict[int, InFlightRequest] = {}
        self._generation = 0
        self._destroyed = False
        self._steps = 0

        with self._lock:
            self._spawn_workers()

    @property
    def num_workers(self) -> int:
        """Current pool size."""
        with self._lock:
            return self._num_workers

    @property
    def backend(self) -> WorkerBackend:
        """Execution context used by the workers."""
        return self._backend

    @property
    def generation(self) -> int:
        """Current pool generation."""
        with self._lock:
            return self._generation

    @property
    def in_flight(self) -> int:
        """Number of requests currently outstanding."""
        with self._lock:
            return len(self._in_flight)

    @property
    def destroyed(self) -> bool:
        """Whether destroy() has been called."""
        with self._lock:
            return self._destroyed

    def _spawn_workers(self) -> None:
        """Replace the pool with fresh workers. Must be called with lock held."""
        self._terminate_workers()
        self._generation += 1
        self._workers = [PhysicsWorker(i, self._backend) for i in range(self._num_workers)]
        logger.info(
            "Initialized %d physics workers (backend=%s, generation=%d)",
            self._num_workers,
            self._backend.value,
            self._generation,
            extra=engine_context(generation=self._generation),
        )

    def _terminate_workers(self) -> None:
        """Terminate every worker and forget their requests. Must be called with lock held."""
        for worker in self._workers:
            worker.terminate()
        self._workers = []
        if self._in_flight:
            logger.debug("Discarding %d in-flight request(s)", len(self._in_flight))
        self._in_flight.clear()

    def set_worker_count(self, new_count: int) -> None:
        """Resize the pool.

        Counts equal to the current size or outside [1, 32] are ignored. Any
        other count terminates every worker, discards in-flight requests and
        spawns ``new_count`` fresh workers before returning.

        Raises:
            EngineDestroyedError: If the engine has been destroyed.
        """
        with self._lock:
            if self._destroyed:
                raise EngineDestroyedError("Cannot resize a destroyed engine")
            if new_count == self._num_workers:
                return
            if not MIN_WORKERS <= new_count <= MAX_WORKERS:
                logger.warning(
                    "Ignoring worker count %d outside [%d, %d]; keeping %d",
                    new_count,
                    MIN_WORKERS,
                    MAX_WORKERS,
                    self._num_workers,
                )
                return
            logger.info("Changing workers: %d -> %d", self._num_workers, new_count)
            self._num_workers = new_count
            self._spawn_workers()

    def destroy(self) -> None:
        """Terminate every worker and release the pool. Idempotent."""
        with self._lock:
            if self._destroyed:
                return
            self._terminate_workers()
            self._destroyed = True
            # Anything still running belongs to a dead generation now
            self._generation += 1
            logger.info("Destroyed physics worker pool")

    def __enter__(self) -> ParallelPhysicsEngine:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit - destroys the pool."""
        self.destroy()

    def step_parallel(
        self,
        buffer: np.ndarray,
        dt: float,
        width: float,
        height: float,
        config: SimulationConfig,
    ) -> StepResult:
        """Advance the buffer by one step across the pool, in place.

        Blocks until every chunk has been merged. A step that times out or
        that races a pool respawn is retried on the fresh pool, up to
        ``max_step_attempts`` attempts in total. The buffer is only written
        after all chunks of an attempt have returned, so a failed attempt
        leaves it untouched.

        Args:
            buffer: Flat float32 particle buffer.
            dt: Time step in seconds.
            width: Horizontal world bound.
            height: Vertical world bound.
            config: Simulation configuration for this frame.

        Returns:
            StepResult with the generation, dispatched ranges and timing.

        Raises:
            BufferLayoutError: If the buffer length is not a multiple of 5.
            EngineDestroyedError: If the engine has been destroyed.
            WorkerTimeoutError: If every attempt timed out.
            WorkerFailedError: If a worker raised while processing a chunk.
        """
        n = particle_count(buffer)
        chunk_config = config.for_chunk()
        attempts = 1

        def before_sleep(retry_state: RetryCallState) -> None:
            """Log the failed attempt before retrying on the fresh pool."""
            nonlocal attempts
            attempts = retry_state.attempt_number + 1
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Parallel step attempt %d/%d failed: %s",
                retry_state.attempt_number,
                self._max_step_attempts,
                exc,
            )

        retryer = Retrying(
            stop=stop_after_attempt(self._max_step_attempts),
            wait=wait_none(),
            retry=retry_if_exception_type((WorkerTimeoutError, StaleGenerationError)),
            before_sleep=before_sleep,
            reraise=True,
        )

        start_time = time.perf_counter()
        with self._step_lock:
            generation, ranges = retryer(
                self._step_once, buffer, dt, width, height, chunk_config, n
            )
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        self._steps += 1
        if self._steps % DEBUG_LOG_INTERVAL == 0:
            logger.debug(
                "Parallel step %d: particles=%d, chunks=%d, generation=%d, %.2fms",
                self._steps,
                n,
                len(ranges),
                generation,
                elapsed_ms,
                extra=engine_context(generation=generation),
            )

        return StepResult(
            generation=generation,
            ranges=ranges,
            elapsed_ms=elapsed_ms,
            attempts=attempts,
        )

    def _step_once(
        self,
        buffer: np.ndarray,
        dt: float,
        width: float,
        height: float,
        config: ChunkConfig,
        n: int,
    ) -> tuple[int, list[tuple[int, int]]]:
        """Dispatch, join and merge one attempt of a step."""
        pending = self._dispatch(buffer, dt, width, height, config, n)
        generation = pending[0].generation if pending else self.generation
        try:
            futures = [request.future for request in pending]
            _done, not_done = wait(futures, timeout=self._chunk_timeout)
            if not_done:
                self._handle_timeout(pending, not_done, generation)

            results = [self._collect(request) for request in pending]

            with self._lock:
                if self._generation != generation:
                    raise StaleGenerationError(generation, self._generation)
                for request, result in zip(pending, results, strict=True):
                    buffer[request.start * STRIDE : request.end * STRIDE] = result.chunk_data
        finally:
            self._release(pending, generation)

        return generation, [(request.start, request.end) for request in pending]

    def _dispatch(
        self,
        buffer: np.ndarray,
        dt: float,
        width: float,
        height: float,
        config: ChunkConfig,
        n: int,
    ) -> list[InFlightRequest]:
        """Send one chunk copy to each worker and record the outstanding requests."""
        with self._lock:
            if self._destroyed:
                raise EngineDestroyedError("Cannot step a destroyed engine")

            pending: list[InFlightRequest] = []
            for worker, (start, end) in zip(self._workers, partition(n, len(self._workers))):
                if worker.worker_id in self._in_flight:
                    raise ParallelEngineError(
                        f"Worker {worker.worker_id} already has an outstanding request"
                    )
                request = ChunkRequest(
                    chunk_data=buffer[start * STRIDE : end * STRIDE].copy(),
                    dt=dt,
                    width=width,
                    height=height,
                    config=config,
                    start_index=0,
                    end_index=end - start,
                    generation=self._generation,
                    chunk_index=worker.worker_id,
                )
                in_flight = InFlightRequest(
                    worker_id=worker.worker_id,
                    start=start,
                    end=end,
                    generation=self._generation,
                    future=worker.submit(request),
                )
                self._in_flight[worker.worker_id] = in_flight
                pending.append(in_flight)
            return pending

    def _handle_timeout(
        self,
        pending: list[InFlightRequest],
        not_done: set[Future[ChunkResult]],
        generation: int,
    ) -> None:
        """Recycle the pool after a timeout and report the unresolved chunks."""
        unresolved = [(r.start, r.end) for r in pending if r.future in not_done]
        with self._lock:
            if self._generation != generation:
                raise StaleGenerationError(generation, self._generation)
            logger.warning(
                "Chunks %s unresolved after %.2fs; recycling %d workers",
                unresolved,
                self._chunk_timeout,
                self._num_workers,
                extra=engine_context(generation=generation),
            )
            self._spawn_workers()
        raise WorkerTimeoutError(unresolved, generation, self._chunk_timeout)

    def _collect(self, request: InFlightRequest) -> ChunkResult:
        """Take a finished request's result, checking it belongs to its chunk."""
        try:
            result = request.future.result()
        except CancelledError as e:
            current = self.generation
            if current != request.generation:
                raise StaleGenerationError(request.generation, current) from e
            raise WorkerFailedError(
                f"Chunk {(request.start, request.end)} was cancelled",
                request.worker_id,
                (request.start, request.end),
            ) from e
        except Exception as e:
            logger.error(
                "Worker %d failed on chunk %s: %s",
                request.worker_id,
                (request.start, request.end),
                e,
                extra=engine_context(
                    request.worker_id, request.generation, (request.start, request.end)
                ),
            )
            raise WorkerFailedError(
                f"Worker {request.worker_id} failed on chunk {(request.start, request.end)}: {e}",
                request.worker_id,
                (request.start, request.end),
            ) from e

        if result.generation != request.generation:
            raise StaleGenerationError(result.generation, request.generation)
        expected = (request.end - request.start) * STRIDE
        if result.chunk_data.shape != (expected,):
            raise WorkerFailedError(
                f"Worker {request.worker_id} returned {result.chunk_data.shape[0]} values, "
                f"expected {expected}",
                request.worker_id,
                (request.start, request.end),
            )
        return result

    def _release(self, pending: list[InFlightRequest], generation: int) -> None:
        """Free the in-flight slots of this attempt if its pool is still live."""
        with self._lock:
            if self._generation != generation:
                return
            for request in pending:
                self._in_flight.pop(request.worker_id, None)
