"""
Progress Tracker for Reconstruction Runs

Maps the per-stage fractions reported by discovery and resolution onto one
0-100% progress value per run and forwards every change to a callback.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from .errors import ReconstructionTimeout

logger = logging.getLogger(__name__)


class OperationStatus(Enum):
    """Status of a reconstruction run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


# Share of the overall bar each stage occupies
STAGE_BANDS: Dict[str, Tuple[float, float]] = {
    "discovery": (0.0, 60.0),
    "resolution": (60.0, 95.0),
    "reporting": (95.0, 100.0),
}


@dataclass
class ProgressUpdate:
    """Snapshot of a run's progress."""
    operation_id: str
    operation_type: str
    status: OperationStatus
    progress_percent: float  # 0.0 to 100.0, never decreases
    current_step: str
    stage: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ProgressTracker:
    """
    Thread-safe progress tracker.

    Resolution workers report from pool threads, so every mutation happens
    under the lock and callbacks run outside it.
    """

    def __init__(self):
        self.operations: Dict[str, ProgressUpdate] = {}
        self.callbacks: Dict[str, Callable[[ProgressUpdate], None]] = {}
        self._lock = threading.Lock()

    def start_operation(
        self,
        operation_type: str,
        callback: Optional[Callable[[ProgressUpdate], None]] = None,
    ) -> str:
        operation_id = str(uuid.uuid4())
        progress = ProgressUpdate(
            operation_id=operation_id,
            operation_type=operation_type,
            status=OperationStatus.PENDING,
            progress_percent=0.0,
            current_step="Initializing...",
        )
        with self._lock:
            self.operations[operation_id] = progress
            if callback:
                self.callbacks[operation_id] = callback

        logger.debug(f"Started tracking operation {operation_id} ({operation_type})")
        self._notify(operation_id, progress)
        return operation_id

    def update_stage(self, operation_id: str, stage: str, fraction: float, message: str = "") -> bool:
        """Report `fraction` (0..1) of `stage`, scaled into that stage's band."""
        low, high = STAGE_BANDS.get(stage, (0.0, 100.0))
        fraction = max(0.0, min(1.0, fraction))
        return self.update_progress(
            operation_id,
            progress_percent=low + (high - low) * fraction,
            current_step=message or stage,
            stage=stage,
        )

    def update_progress(
        self,
        operation_id: str,
        progress_percent: Optional[float] = None,
        current_step: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> bool:
        with self._lock:
            progress = self.operations.get(operation_id)
            if progress is None:
                logger.warning(f"Operation {operation_id} not found for progress update")
                return False

            if progress_percent is not None:
                clamped = max(0.0, min(100.0, progress_percent))
                progress.progress_percent = max(progress.progress_percent, clamped)
            if current_step is not None:
                progress.current_step = current_step
            if stage is not None:
                progress.stage = stage
            if progress.status == OperationStatus.PENDING:
                progress.status = OperationStatus.RUNNING
            progress.timestamp = datetime.now(timezone.utc)

        self._notify(operation_id, progress)
        return True

    def complete_operation(self, operation_id: str, final_message: str = "Reconstruction complete") -> bool:
        return self._finish(operation_id, OperationStatus.COMPLETED, final_message)

    def fail_operation(self, operation_id: str, error_message: str, timed_out: bool = False) -> bool:
        status = OperationStatus.TIMED_OUT if timed_out else OperationStatus.FAILED
        return self._finish(operation_id, status, f"Failed: {error_message}", error_message)

    def get_operation_status(self, operation_id: str) -> Optional[ProgressUpdate]:
        with self._lock:
            return self.operations.get(operation_id)

    def _finish(
        self, operation_id: str, status: OperationStatus, message: str, error_message: Optional[str] = None,
    ) -> bool:
        with self._lock:
            progress = self.operations.get(operation_id)
            if progress is None:
                logger.warning(f"Operation {operation_id} not found")
                return False
            progress.status = status
            progress.current_step = message
            progress.error_message = error_message
            if status == OperationStatus.COMPLETED:
                progress.progress_percent = 100.0
            progress.timestamp = datetime.now(timezone.utc)

        self._notify(operation_id, progress)
        return True

    def _notify(self, operation_id: str, progress: ProgressUpdate):
        callback = self.callbacks.get(operation_id)
        if callback:
            try:
                callback(progress)
            except Exception as e:
                logger.error(f"Error in progress callback: {e}")


class ProgressContext:
    """Context manager tracking one run; completes, fails or times out on exit."""

    def __init__(
        self,
        operation_type: str,
        callback: Optional[Callable[[ProgressUpdate], None]] = None,
        tracker: Optional[ProgressTracker] = None,
    ):
        self.operation_type = operation_type
        self.callback = callback
        self.tracker = tracker or ProgressTracker()
        self.operation_id: Optional[str] = None

    def __enter__(self) -> "ProgressContext":
        self.operation_id = self.tracker.start_operation(self.operation_type, self.callback)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.operation_id is None:
            return
        if exc_type is None:
            self.tracker.complete_operation(self.operation_id)
        else:
            error_message = str(exc_val) if exc_val else "Unknown error occurred"
            timed_out = isinstance(exc_val, ReconstructionTimeout)
            self.tracker.fail_operation(self.operation_id, error_message, timed_out=timed_out)

    def stage_reporter(self, stage: str) -> Callable[[float, str], None]:
        """Callback in the (fraction, message) shape the engine stages use."""
        def report(fraction: float, message: str = ""):
            self.tracker.update_stage(self.operation_id, stage, fraction, message)
        return report

    @property
    def status(self) -> Optional[ProgressUpdate]:
        if self.operation_id is None:
            return None
        return self.tracker.get_operation_status(self.operation_id)
