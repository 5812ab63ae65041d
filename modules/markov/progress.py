import time
from typing import Any, Callable, Dict, Optional

# Progress event names as they travel over the bridge
COLLECT_PROGRESS = "collectProgress"
COLLECT_COMPLETE = "collectComplete"
GENERATE_PROGRESS = "generateProgress"
STATS_PROGRESS = "statsProgress"

STEP_QUERYING = "querying"
STEP_TRAINING = "training"
STEP_PROCESSING = "processing"
STEP_GENERATING = "generating"

ProgressCallback = Callable[[str, Dict[str, Any]], None]


def emit(progress: Optional[ProgressCallback], event: str, data: Dict[str, Any]) -> None:
    if progress is not None:
        progress(event, data)


def format_time_remaining(seconds: float) -> str:
    """Render a duration as ``42s``, ``3m 5s`` or ``1h 2m 3s``."""
    seconds = max(0.0, float(seconds))
    if seconds < 60:
        return f"{round(seconds)}s"
    if seconds < 3600:
        minutes = int(seconds // 60)
        return f"{minutes}m {round(seconds % 60)}s"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    return f"{hours}h {minutes}m {round(seconds % 60)}s"


class StepTimer:
    """Tracks elapsed time and ETA for the chunked querying/training/processing steps."""

    def __init__(self, event: str, progress: Optional[ProgressCallback], clock=time.monotonic):
        self.event = event
        self.progress = progress
        self._clock = clock
        self.start_time = clock()
        self._step_start = self.start_time

    def elapsed_millis(self) -> int:
        return int((self._clock() - self.start_time) * 1000)

    def begin(self, step: str, total: int = 1) -> None:
        self._step_start = self._clock()
        self.report(step, 0, total)

    def report(self, step: str, done: int, total: int) -> None:
        eta = None
        step_elapsed = self._clock() - self._step_start
        if 0 < done < total and step_elapsed > 0:
            rate = done / step_elapsed
            eta = (total - done) / rate
        emit(self.progress, self.event, {
            "step": step,
            "progress": done,
            "total": total,
            "elapsed_millis": self.elapsed_millis(),
            "estimated_time_remaining": eta,
        })
