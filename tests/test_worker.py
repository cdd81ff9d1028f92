"""Tests for the worker unit."""

import time

import numpy as np
import pytest

from particlebench.config import WorkerBackend
from particlebench.engine.kinematics import advance
from particlebench.engine.worker import ChunkRequest, ChunkResult, PhysicsWorker, process_chunk
from particlebench.model.config import SimulationConfig
from particlebench.model.particles import STRIDE, initialize

CHUNK_CONFIG = SimulationConfig(gravity_on=True, collisions_on=False, wind_on=True).for_chunk()


def make_request(count: int = 10, generation: int = 1, chunk_index: int = 0) -> ChunkRequest:
    """Create a request over a seeded chunk."""
    return ChunkRequest(
        chunk_data=initialize(count, 200, 200, seed=count),
        dt=0.016,
        width=200,
        height=200,
        config=CHUNK_CONFIG,
        start_index=0,
        end_index=count,
        generation=generation,
        chunk_index=chunk_index,
    )


class TestProcessChunk:
    """Tests for process_chunk()."""

    def test_applies_kinematics(self):
        """The result equals advancing the same chunk directly."""
        request = make_request()
        expected = advance(request.chunk_data.copy(), 0.016, 200, 200, CHUNK_CONFIG)

        result = process_chunk(request)

        np.testing.assert_array_equal(result.chunk_data, expected)

    def test_result_carries_tags(self):
        """The result is tagged with its request's generation and chunk index."""
        result = process_chunk(make_request(generation=7, chunk_index=3))
        assert result.generation == 7
        assert result.chunk_index == 3

    def test_respects_index_window(self):
        """Only local indices [start_index, end_index) are processed."""
        request = make_request(count=6)
        windowed = ChunkRequest(
            chunk_data=request.chunk_data.copy(),
            dt=request.dt,
            width=request.width,
            height=request.height,
            config=request.config,
            start_index=2,
            end_index=4,
        )
        original = request.chunk_data.copy()

        data = process_chunk(windowed).chunk_data

        np.testing.assert_array_equal(data[: 2 * STRIDE], original[: 2 * STRIDE])
        np.testing.assert_array_equal(data[4 * STRIDE :], original[4 * STRIDE :])
        assert not np.array_equal(data[2 * STRIDE : 4 * STRIDE], original[2 * STRIDE : 4 * STRIDE])

    def test_default_end_index_covers_whole_chunk(self):
        """A request built without end_index steps every particle in the chunk."""
        chunk = initialize(4, 100, 100, seed=1)
        expected = advance(chunk.copy(), 0.05, 100, 100, CHUNK_CONFIG)
        request = ChunkRequest(
            chunk_data=chunk, dt=0.05, width=100, height=100, config=CHUNK_CONFIG
        )

        result = process_chunk(request)

        np.testing.assert_array_equal(result.chunk_data, expected)

    def test_stateless(self):
        """The same request contents give the same result twice."""
        first = process_chunk(make_request()).chunk_data
        second = process_chunk(make_request()).chunk_data
        np.testing.assert_array_equal(first, second)


class TestPhysicsWorker:
    """Tests for PhysicsWorker."""

    def test_thread_worker_returns_result(self):
        """A thread worker resolves a submitted chunk."""
        worker = PhysicsWorker(0)
        try:
            result = worker.submit(make_request()).result(timeout=5)
            assert isinstance(result, ChunkResult)
            assert result.chunk_data.shape == (10 * STRIDE,)
        finally:
            worker.terminate()

    def test_process_worker_returns_result(self):
        """A process worker steps the chunk across the process boundary."""
        request = make_request()
        expected = process_chunk(make_request()).chunk_data
        worker = PhysicsWorker(0, WorkerBackend.PROCESS)
        try:
            result = worker.submit(request).result(timeout=30)
            np.testing.assert_array_equal(result.chunk_data, expected)
        finally:
            worker.terminate()

    def test_terminate_kills_busy_process(self):
        """A process worker stuck in a call has no live child after terminate()."""
        worker = PhysicsWorker(3, WorkerBackend.PROCESS)
        future = worker._executor.submit(time.sleep, 60)
        deadline = time.monotonic() + 30
        while not (future.running() and worker.processes) and time.monotonic() < deadline:
            time.sleep(0.01)
        children = worker.processes
        assert children

        worker.terminate()

        for child in children:
            child.join(timeout=5)
            assert not child.is_alive()

    def test_thread_worker_has_no_processes(self):
        """The thread backend owns no child processes."""
        worker = PhysicsWorker(4)
        try:
            assert worker.processes == []
        finally:
            worker.terminate()

    def test_terminate_is_idempotent(self):
        """Terminating twice is harmless."""
        worker = PhysicsWorker(1)
        worker.terminate()
        worker.terminate()
        assert not worker.alive

    def test_submit_after_terminate(self):
        """A terminated worker refuses new chunks."""
        worker = PhysicsWorker(2)
        worker.terminate()
        with pytest.raises(RuntimeError):
            worker.submit(make_request())
