"""Process-local delivery counters exposed on the metrics endpoint."""
import time
from typing import Any, Callable


class NotificationMetrics:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        self.total_sent = 0
        self.total_failed = 0
        self.tokens_registered = 0
        self.tokens_deactivated = 0
        self.average_response_time_ms = 0.0
        self._samples = 0
        self.last_reset = self._clock()

    def record_sent(self, count: int, response_time_ms: float) -> None:
        self.total_sent += count
        self._samples += 1
        self.average_response_time_ms += (response_time_ms - self.average_response_time_ms) / self._samples

    def record_failed(self, count: int) -> None:
        self.total_failed += count

    def record_token_registered(self) -> None:
        self.tokens_registered += 1

    def record_tokens_deactivated(self, count: int) -> None:
        self.tokens_deactivated += count

    def success_rate(self) -> float:
        total = self.total_sent + self.total_failed
        return round(self.total_sent / total * 100, 2) if total else 100.0

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_notifications_sent": self.total_sent,
            "total_notifications_failed": self.total_failed,
            "total_tokens_registered": self.tokens_registered,
            "total_tokens_deactivated": self.tokens_deactivated,
            "average_response_time_ms": round(self.average_response_time_ms, 2),
            "success_rate": self.success_rate(),
            "uptime_seconds": round(self._clock() - self.last_reset, 1),
        }
