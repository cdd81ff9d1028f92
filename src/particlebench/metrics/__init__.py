"""Frame timing and engine comparison metrics."""

from particlebench.metrics.frame_timer import FrameTimer, PerformanceMetrics, speedup

__all__ = ["FrameTimer", "PerformanceMetrics", "speedup"]
