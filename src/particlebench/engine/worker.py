"""Worker unit: an isolated execution context that steps one chunk at a time.

A chunk travels to its worker as a private copy inside a ``ChunkRequest`` and
comes back inside a ``ChunkResult``. The worker never sees the engine's
buffer, so ownership of a chunk is handed over by value and returned the same
way.
"""

from __future__ import annotations

import logging
import multiprocessing.process
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np

from particlebench.config import WorkerBackend
from particlebench.engine.kinematics import advance
from particlebench.logging_config import engine_context
from particlebench.model.config import ChunkConfig
from particlebench.model.particles import STRIDE

logger = logging.getLogger(__name__)

# Seconds to wait for a terminated child before killing it
PROCESS_JOIN_TIMEOUT = 2.0


@dataclass(frozen=True)
class ChunkRequest:
    """The single message a worker receives for one chunk.

    Attributes:
        chunk_data: Private float32 copy of the chunk's records.
        dt: Time step in seconds.
        width: Horizontal world bound.
        height: Vertical world bound.
        config: Force toggles and type filter, without the particle count.
        start_index: First local particle index to process (0).
        end_index: One past the last local particle index. None means the
            whole chunk.
        generation: Pool generation the request was issued under.
        chunk_index: Position of the chunk in the partition.
    """

    chunk_data: np.ndarray
    dt: float
    width: float
    height: float
    config: ChunkConfig
    start_index: int = 0
    end_index: int | None = None
    generation: int = 0
    chunk_index: int = 0


@dataclass(frozen=True)
class ChunkResult:
    """The mutated chunk sent back to the engine, tagged like its request."""

    chunk_data: np.ndarray
    generation: int
    chunk_index: int


def process_chunk(request: ChunkRequest) -> ChunkResult:
    """Apply the kinematics step to local indices ``[start_index, end_index)``.

    Stateless: nothing survives between calls. Module level so it can be
    pickled for the process backend.
    """
    data = request.chunk_data
    end_index = len(data) // STRIDE if request.end_index is None else request.end_index
    advance(
        data[request.start_index * STRIDE : end_index * STRIDE],
        request.dt,
        request.width,
        request.height,
        request.config,
    )
    return ChunkResult(
        chunk_data=data,
        generation=request.generation,
        chunk_index=request.chunk_index,
    )


class PhysicsWorker:
    """One persistent worker backed by a single-slot executor.

    The thread backend runs chunks on a dedicated thread; numpy releases the
    GIL inside its kernels, so workers overlap on large chunks. The process
    backend ships every chunk to a dedicated child process.
    """

    def __init__(self, worker_id: int, backend: WorkerBackend = WorkerBackend.THREAD) -> None:
        """Start the worker's execution context.

        Args:
            worker_id: Index of the worker in its pool.
            backend: Execution context type.
        """
        self.worker_id = worker_id
        self.backend = backend
        self._terminated = False
        self._executor: Executor
        if backend == WorkerBackend.PROCESS:
            self._executor = ProcessPoolExecutor(max_workers=1)
        else:
            self._executor = ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix=f"physics_worker_{worker_id}",
            )

    @property
    def alive(self) -> bool:
        """Whether the worker still accepts chunks."""
        return not self._terminated

    def submit(self, request: ChunkRequest) -> Future[ChunkResult]:
        """Hand one chunk to the worker.

        Raises:
            RuntimeError: If the worker has been terminated.
        """
        if self._terminated:
            raise RuntimeError(f"Worker {self.worker_id} has been terminated")
        return self._executor.submit(process_chunk, request)

    @property
    def processes(self) -> list[multiprocessing.process.BaseProcess]:
        """Child processes backing this worker; empty for the thread backend."""
        if not isinstance(self._executor, ProcessPoolExecutor):
            return []
        # ProcessPoolExecutor only exposes its children through this attribute
        return list((self._executor._processes or {}).values())

    def terminate(self) -> None:
        """Cancel queued work and release the execution context. Idempotent.

        A chunk already running on a worker thread is not interrupted; its
        result arrives on a future nobody merges. A process worker's child is
        killed outright, so a chunk stuck in it cannot outlive the worker.
        """
        if self._terminated:
            return
        self._terminated = True
        children = self.processes
        self._executor.shutdown(wait=False, cancel_futures=True)
        for child in children:
            if child.is_alive():
                child.terminate()
        for child in children:
            child.join(timeout=PROCESS_JOIN_TIMEOUT)
            if child.is_alive():
                logger.warning(
                    "Physics worker %d child %s survived terminate; killing",
                    self.worker_id,
                    child.pid,
                    extra=engine_context(worker_id=self.worker_id),
                )
                child.kill()
        logger.debug(
            "Terminated physics worker %d",
            self.worker_id,
            extra=engine_context(worker_id=self.worker_id),
        )
