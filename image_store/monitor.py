from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Optional

from image_store.logger_config import setup_logger

logger = setup_logger()


class Monitor:
    def __init__(self, failure_threshold: int, window_seconds: int = 60, alert_handler: Optional[Callable[[str], None]] = None):
        """
        Track storage request outcomes and alert when failures pile up.

        Args:
            failure_threshold: Number of failures within the window that triggers an alert
            window_seconds: Length of the sliding window in seconds
            alert_handler: Optional callback receiving the alert message. Defaults to logging it
        """
        if failure_threshold <= 0:
            raise ValueError("Failure threshold must be positive")
        if window_seconds <= 0:
            raise ValueError("Window seconds must be positive")

        self._failure_threshold = failure_threshold
        self._window_seconds = window_seconds
        self._alert_handler = alert_handler or self._default_alert_handler
        self._total_passes = 0
        self._total_failures = 0
        self._failure_timestamps = deque()
        self._last_status_time = datetime.now()

    def _clean_old_failures(self) -> None:
        """Drop failures that fell out of the window."""
        window_start = datetime.now() - timedelta(seconds=self._window_seconds)
        while self._failure_timestamps and self._failure_timestamps[0] < window_start:
            self._failure_timestamps.popleft()

    def _default_alert_handler(self, message: str) -> None:
        logger.error(f"[ALERT] {message}")

    def pass_(self) -> None:
        """Record a request the storage served."""
        self._total_passes += 1
        self._last_status_time = datetime.now()
        self._clean_old_failures()

    def fail(self) -> None:
        """
        Record a storage failure.
        Alerts once when the failures inside the window reach the threshold.
        """
        now = datetime.now()
        self._failure_timestamps.append(now)
        self._total_failures += 1
        self._last_status_time = now

        self._clean_old_failures()

        if len(self._failure_timestamps) == self._failure_threshold:
            self._alert_handler(
                f"{self._failure_threshold} storage failures within {self._window_seconds}s "
                f"(total passes: {self._total_passes}, total failures: {self._total_failures})"
            )

    @property
    def consecutive_failures(self) -> int:
        """Failures currently inside the window."""
        self._clean_old_failures()
        return len(self._failure_timestamps)

    @property
    def degraded(self) -> bool:
        """True while the failures inside the window are at or above the threshold."""
        return self.consecutive_failures >= self._failure_threshold

    @property
    def stats(self) -> dict:
        self._clean_old_failures()
        return {
            'total_passes': self._total_passes,
            'total_failures': self._total_failures,
            'consecutive_failures': len(self._failure_timestamps),
            'last_status_time': int(self._last_status_time.timestamp()),
            'window_seconds': self._window_seconds
        }
