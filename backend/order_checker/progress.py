"""
Scan Progress and Stall Watchdog

ScanProgress is the state of the one active scan, shared by the pipeline
(which reports counts), the watchdog (which may time the scan out) and the
status endpoint (which reads it).

State machine: idle -> running -> completed | failed | timed_out
"""

import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from order_checker.error_tracking import ErrorStage, ScanErrorRecord, ScanTimeoutError
from order_checker.logging_config import get_logger
from order_checker.models import Order, ShippedOrder

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_STALL_THRESHOLD_SECONDS = 30.0


class ScanState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


def stall_message(threshold_seconds: float) -> str:
    return f"Scan timed out - no progress for {threshold_seconds:g} seconds. Please try again."


class ScanProgress:
    """Lock-guarded progress record for one scan."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self.scan_id: Optional[str] = None
        self.state = ScanState.IDLE
        self.total_messages = 0
        self.processed = 0
        self.failed = 0
        self.current_user: Optional[str] = None
        self.days_scanned = 0
        self.start_time: Optional[datetime] = None
        self.finish_time: Optional[datetime] = None
        self.last_progress_update: Optional[float] = None
        self.orders: Optional[dict[str, Order]] = None
        self.shipped: Optional[list[ShippedOrder]] = None
        self.error: Optional[str] = None

    @property
    def in_progress(self) -> bool:
        with self._lock:
            return self.state == ScanState.RUNNING

    def begin(self, scan_id: str, user: str, days: int) -> None:
        with self._lock:
            if self.state == ScanState.RUNNING:
                raise RuntimeError("Scan progress is already running")
            self.scan_id = scan_id
            self.state = ScanState.RUNNING
            self.total_messages = 0
            self.processed = 0
            self.failed = 0
            self.current_user = user
            self.days_scanned = days
            self.start_time = datetime.now(timezone.utc)
            self.finish_time = None
            self.last_progress_update = self._clock()
            self.orders = None
            self.shipped = None
            self.error = None

    def set_total(self, total: int) -> None:
        with self._lock:
            self.total_messages = total
            self.last_progress_update = self._clock()

    def update(self, processed: int, failed: int = None) -> None:
        """Record the processed count; the stall clock only resets when it changes."""
        with self._lock:
            if self.state != ScanState.RUNNING:
                return
            if failed is not None:
                self.failed = failed
            if processed != self.processed:
                self.processed = processed
                self.last_progress_update = self._clock()

    def idle_seconds(self) -> float:
        with self._lock:
            if self.last_progress_update is None:
                return 0.0
            return self._clock() - self.last_progress_update

    def complete(self, orders: dict[str, Order], shipped: list[ShippedOrder]) -> bool:
        """Mark the scan completed. Returns False if it had already stopped."""
        with self._lock:
            if self.state != ScanState.RUNNING:
                return False
            self.state = ScanState.COMPLETED
            self.orders = orders
            self.shipped = shipped
            self.processed = self.total_messages
            self.finish_time = datetime.now(timezone.utc)
            return True

    def fail(self, error: str, orders: dict[str, Order] = None, shipped: list[ShippedOrder] = None) -> bool:
        """Mark the scan failed, keeping any partial results."""
        with self._lock:
            if self.state != ScanState.RUNNING:
                return False
            self.state = ScanState.FAILED
            self.error = error
            self.orders = orders
            self.shipped = shipped
            self.finish_time = datetime.now(timezone.utc)
            return True

    def time_out(self, error: str) -> bool:
        with self._lock:
            if self.state != ScanState.RUNNING:
                return False
            self.state = ScanState.TIMED_OUT
            self.error = error
            self.finish_time = datetime.now(timezone.utc)
            return True

    def attach_results(self, orders: dict[str, Order], shipped: list[ShippedOrder]) -> None:
        """Store partial results after the scan has already stopped (e.g. timed out)."""
        with self._lock:
            if self.orders is None:
                self.orders = orders
            if self.shipped is None:
                self.shipped = shipped

    def results(self) -> tuple[Optional[dict[str, Order]], Optional[list[ShippedOrder]], int]:
        with self._lock:
            return self.orders, self.shipped, self.days_scanned

    def to_dict(self, include_results: bool = False) -> dict[str, Any]:
        with self._lock:
            data = {
                "scan_id": self.scan_id,
                "state": self.state.value,
                "in_progress": self.state == ScanState.RUNNING,
                "total_messages": self.total_messages,
                "processed": self.processed,
                "failed": self.failed,
                "current_email": self.current_user,
                "days_scanned": self.days_scanned,
                "start_time": self.start_time.isoformat() if self.start_time else None,
                "finish_time": self.finish_time.isoformat() if self.finish_time else None,
            }
            if self.error:
                data["error"] = self.error
            if include_results and self.orders is not None:
                data["orders"] = {oid: o.to_dict() for oid, o in self.orders.items()}
                data["shipped"] = [s.to_dict() for s in self.shipped or []]
            return data


class StallWatchdog:
    """
    Polls a running scan and cancels it if the processed count stops moving.

    The watchdog only intervenes on a stall; otherwise it exits as soon as it
    sees the scan is no longer running.
    """

    def __init__(
        self,
        progress: ScanProgress,
        cancel_event: threading.Event,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        stall_threshold: float = DEFAULT_STALL_THRESHOLD_SECONDS,
    ):
        self.progress = progress
        self.cancel_event = cancel_event
        self.poll_interval = poll_interval
        self.stall_threshold = stall_threshold
        self.fired = False
        self.error_record: Optional[ScanErrorRecord] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="scan-watchdog", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def check(self) -> bool:
        """
        One poll. Returns True while the watchdog should keep polling.
        """
        if not self.progress.in_progress:
            return False

        idle = self.progress.idle_seconds()
        if idle <= self.stall_threshold:
            return True

        message = stall_message(self.stall_threshold)
        if self.progress.time_out(message):
            self.fired = True
            self.error_record = ScanErrorRecord.from_exception(
                ScanTimeoutError(message),
                ErrorStage.WATCHDOG,
                context={
                    "idle_seconds": round(idle, 1),
                    "processed": self.progress.processed,
                    "total": self.progress.total_messages,
                },
            )
            self.error_record.log(scan_id=self.progress.scan_id, user=self.progress.current_user)
            self.cancel_event.set()
        return False

    def run(self) -> None:
        while not self._stop.wait(self.poll_interval):
            if not self.check():
                return
