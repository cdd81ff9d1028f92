"""Per-frame timing for each engine.

Keeps a bounded rolling history of frame durations (the last 200 frames by
default) for trend display, the last frame's duration, the history average,
and a frames-per-second counter refreshed over windows of at least 500 ms.
"""

from __future__ import annotations

import collections
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 200
DEFAULT_SLOW_FRAME_MS = 50.0
FPS_WINDOW_SECONDS = 0.5


@dataclass(frozen=True)
class PerformanceMetrics:
    """Snapshot of one engine's timing.

    Attributes:
        ms: Duration of the most recent frame in milliseconds.
        fps: Frames per second over the last completed window.
        avg: Average frame duration over the rolling history.
    """

    ms: float
    fps: float
    avg: float


class FrameTimer:
    """Thread-safe rolling frame timer.

    Example:
        >>> timer = FrameTimer(label="sequential")
        >>> with timer.measure():
        ...     step_sequential(buffer, dt, width, height, config)
        >>> timer.snapshot().ms
    """

    def __init__(
        self,
        label: str = "",
        max_history: int = DEFAULT_HISTORY_SIZE,
        slow_frame_ms: float = DEFAULT_SLOW_FRAME_MS,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        """Initialize the timer.

        Args:
            label: Engine name used in log messages.
            max_history: Number of frame durations to retain.
            slow_frame_ms: Frames slower than this are logged at WARNING.
            clock: Monotonic clock in seconds.
        """
        self.label = label
        self._slow_frame_ms = slow_frame_ms
        self._clock = clock

        self._lock = threading.Lock()
        self._history: collections.deque[float] = collections.deque(maxlen=max_history)
        self._last_ms = 0.0
        self._fps = 0.0
        self._window_frames = 0
        self._window_start = clock()

    @property
    def max_history(self) -> int:
        """Capacity of the rolling history."""
        return self._history.maxlen or 0

    def record(self, elapsed_ms: float) -> None:
        """Record one frame's duration in milliseconds."""
        now = self._clock()
        with self._lock:
            self._last_ms = elapsed_ms
            self._history.append(elapsed_ms)
            self._window_frames += 1

            window = now - self._window_start
            if window > FPS_WINDOW_SECONDS:
                self._fps = float(round(self._window_frames / window))
                self._window_frames = 0
                self._window_start = now

        if elapsed_ms > self._slow_frame_ms:
            logger.warning(
                "Slow %s frame: %.2fms (threshold: %.0fms)",
                self.label or "engine",
                elapsed_ms,
                self._slow_frame_ms,
            )

    @contextmanager
    def measure(self) -> Iterator[None]:
        """Time the enclosed block and record it as one frame."""
        start = self._clock()
        try:
            yield
        finally:
            self.record((self._clock() - start) * 1000)

    @property
    def history(self) -> list[float]:
        """Frame durations, oldest first."""
        with self._lock:
            return list(self._history)

    @property
    def last_ms(self) -> float:
        """Duration of the most recent frame."""
        with self._lock:
            return self._last_ms

    @property
    def average_ms(self) -> float:
        """Mean over the history, or the last frame's duration if empty."""
        with self._lock:
            if not self._history:
                return self._last_ms
            return sum(self._history) / len(self._history)

    @property
    def fps(self) -> float:
        """Frames per second over the last completed window."""
        with self._lock:
            return self._fps

    def snapshot(self) -> PerformanceMetrics:
        """Current ms, fps and average as one value."""
        return PerformanceMetrics(ms=self.last_ms, fps=self.fps, avg=self.average_ms)

    def reset(self) -> None:
        """Clear the history and counters."""
        with self._lock:
            self._history.clear()
            self._last_ms = 0.0
            self._fps = 0.0
            self._window_frames = 0
            self._window_start = self._clock()


def speedup(sequential: PerformanceMetrics, parallel: PerformanceMetrics) -> float | None:
    """Ratio of sequential to parallel average frame time, None when undefined."""
    if parallel.avg <= 0:
        return None
    return sequential.avg / parallel.avg
