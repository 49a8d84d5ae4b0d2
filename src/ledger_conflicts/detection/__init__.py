"""Chunked, debounced detection of manual/bank duplicate candidates."""

from ledger_conflicts.detection.detector import (
    ConflictDetector,
    DetectionResult,
    DetectionState,
    mark_conflicts,
)
from ledger_conflicts.detection.scheduler import EventLoopScheduler, FrameScheduler, Scheduler

__all__ = [
    "ConflictDetector",
    "DetectionResult",
    "DetectionState",
    "EventLoopScheduler",
    "FrameScheduler",
    "Scheduler",
    "mark_conflicts",
]
