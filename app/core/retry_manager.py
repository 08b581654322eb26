"""
Retry queue for failed push deliveries: exponential backoff with jitter, bounded attempts,
and a circuit breaker per destination so a degraded provider is not hammered with retries.
The queue is in-process; each server process has its own.
"""
import asyncio
import logging
import random
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Protocol

from app.core.utils import utc_now
from app.models.enums import CircuitState, JitterType

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 16000
    backoff_factor: float = 2.0
    jitter: JitterType = JitterType.full
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_timeout_ms: int = 30000

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["jitter"] = self.jitter.value
        return data


@dataclass
class FailedNotification:
    id: str
    notification_id: str
    user_ids: list[str]
    title: str
    body: str
    data: dict[str, Any] | None
    options: dict[str, Any] | None
    last_error: str
    destination: str
    created_at: datetime
    last_attempt_at: datetime
    attempt: int = 0
    next_retry_at: datetime | None = None
    last_delay_ms: float | None = None
    circuit_state: CircuitState = CircuitState.closed


@dataclass
class RetryStatus:
    notification_id: str
    current_attempt: int
    max_attempts: int
    next_retry_at: datetime | None
    last_error: str
    circuit_state: CircuitState
    total_delay_ms: float
    pending: int


@dataclass
class ProcessingResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    processing_time_ms: float = 0.0


class RetrySender(Protocol):
    async def send_to_users(self, user_ids, title, body, data=None, options=None) -> Any: ...


def create_failed_notification(
    notification_id: str,
    user_ids: list[str],
    title: str,
    body: str,
    error: str,
    data: dict[str, Any] | None = None,
    options: dict[str, Any] | None = None,
    destination: str = "push",
) -> FailedNotification:
    now = utc_now()
    return FailedNotification(
        id=uuid.uuid4().hex,
        notification_id=notification_id,
        user_ids=list(user_ids),
        title=title,
        body=body,
        data=data,
        options=options,
        last_error=error,
        destination=destination,
        created_at=now,
        last_attempt_at=now,
    )


class CircuitBreaker:
    """closed -> open after `threshold` consecutive failures -> half_open once reset_timeout elapses."""

    def __init__(self, threshold: int, reset_timeout_ms: int, clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.reset_timeout_ms = reset_timeout_ms
        self._clock = clock
        self.state = CircuitState.closed
        self.failure_count = 0
        self.last_failure_at: float | None = None

    def can_execute(self) -> bool:
        if self.state == CircuitState.open:
            elapsed_ms = (self._clock() - (self.last_failure_at or 0)) * 1000
            if elapsed_ms >= self.reset_timeout_ms:
                self.state = CircuitState.half_open
                logger.info("Circuit breaker transitioning to half_open")
                return True
            return False
        return True

    def record_success(self) -> None:
        self.failure_count = 0
        if self.state != CircuitState.closed:
            logger.info("Circuit breaker reset to closed")
        self.state = CircuitState.closed

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_at = self._clock()
        if self.state == CircuitState.half_open or self.failure_count >= self.threshold:
            if self.state != CircuitState.open:
                logger.warning("Circuit breaker opened after %d failures", self.failure_count)
            self.state = CircuitState.open


class RetryManager:
    def __init__(
        self,
        sender: RetrySender,
        config: RetryConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
        retry_spacing: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.sender = sender
        self.config = config or RetryConfig()
        self._clock = clock
        self._monotonic = monotonic
        self._rng = rng or random.Random()
        self._retry_spacing = retry_spacing
        self._sleep = sleep
        self._queue: dict[str, FailedNotification] = {}
        self._breakers: dict[str, CircuitBreaker] = {}
        self._processing = False

    # ------------------------------------------------------------------
    # Backoff
    # ------------------------------------------------------------------

    def base_delay_ms(self, attempt: int) -> float:
        cfg = self.config
        return min(cfg.initial_delay_ms * (cfg.backoff_factor ** attempt), cfg.max_delay_ms)

    def compute_delay_ms(self, attempt: int, previous_delay_ms: float | None = None) -> float:
        cfg = self.config
        base = self.base_delay_ms(attempt)
        if cfg.jitter == JitterType.none:
            return base
        if cfg.jitter == JitterType.equal:
            return base / 2 + self._rng.uniform(0, base / 2)
        if cfg.jitter == JitterType.decorrelated:
            previous = previous_delay_ms if previous_delay_ms is not None else base
            upper = max(cfg.initial_delay_ms, min(cfg.max_delay_ms, previous * 3))
            return self._rng.uniform(cfg.initial_delay_ms, upper)
        return self._rng.uniform(0, base)

    def breaker(self, destination: str) -> CircuitBreaker:
        breaker = self._breakers.get(destination)
        if breaker is None:
            breaker = CircuitBreaker(
                self.config.circuit_breaker_threshold,
                self.config.circuit_breaker_reset_timeout_ms,
                clock=self._monotonic,
            )
            self._breakers[destination] = breaker
        return breaker

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def schedule_retry(self, notification: FailedNotification) -> FailedNotification:
        delay_ms = self.compute_delay_ms(notification.attempt, notification.last_delay_ms)
        notification.next_retry_at = self._clock() + timedelta(milliseconds=delay_ms)
        notification.last_delay_ms = delay_ms
        notification.circuit_state = self.breaker(notification.destination).state
        self._queue[notification.id] = notification
        logger.info(
            "Scheduled retry %d/%d for notification %s in %.0fms (%d users)",
            notification.attempt + 1, self.config.max_attempts, notification.notification_id,
            delay_ms, len(notification.user_ids),
        )
        return notification

    def _still_queued(self, notification: FailedNotification) -> bool:
        """False once an operator cleared the entry while its attempt was in flight."""
        if notification.id in self._queue:
            return True
        logger.info("Retry entry for notification %s was cleared during processing; dropping", notification.notification_id)
        return False

    def _after_failure(self, notification: FailedNotification, error: str, result: ProcessingResult) -> None:
        notification.attempt += 1
        notification.last_error = error
        notification.last_attempt_at = self._clock()
        if self._queue.pop(notification.id, None) is None:
            logger.info("Not rescheduling notification %s: cleared from the queue", notification.notification_id)
            return
        if notification.attempt < self.config.max_attempts:
            self.schedule_retry(notification)
        else:
            result.failed += 1
            result.errors.append(
                f"Failed after {self.config.max_attempts} attempts for {notification.notification_id}: {error}"
            )
            logger.warning("Dropping notification %s after %d attempts", notification.notification_id, notification.attempt)

    async def process_queue(self) -> ProcessingResult:
        if self._processing:
            return ProcessingResult(errors=["Processing already in progress"])

        started = time.perf_counter()
        self._processing = True
        result = ProcessingResult()
        try:
            now = self._clock()
            ready = sorted(
                (n for n in self._queue.values() if n.next_retry_at is None or n.next_retry_at <= now),
                key=lambda n: n.next_retry_at or now,
            )
            for index, notification in enumerate(ready):
                result.processed += 1
                if notification.attempt >= self.config.max_attempts:
                    self._queue.pop(notification.id, None)
                    result.failed += 1
                    result.errors.append(f"Max attempts exceeded for {notification.notification_id}")
                    continue

                breaker = self.breaker(notification.destination)
                if not breaker.can_execute():
                    result.skipped += 1
                    self._after_failure(notification, f"Circuit open for {notification.destination}", result)
                    continue

                try:
                    outcome = await self.sender.send_to_users(
                        notification.user_ids,
                        notification.title,
                        notification.body,
                        notification.data,
                        notification.options,
                    )
                except Exception as e:
                    logger.exception("Error processing retry for %s: %s", notification.notification_id, e)
                    breaker.record_failure()
                    if not self._still_queued(notification):
                        continue
                    result.errors.append(f"Retry error for {notification.notification_id}: {e}")
                    self._after_failure(notification, str(e), result)
                else:
                    if outcome.success and outcome.messages_sent > 0:
                        breaker.record_success()
                        if self._still_queued(notification):
                            self._queue.pop(notification.id, None)
                            result.successful += 1
                    else:
                        breaker.record_failure()
                        if not self._still_queued(notification):
                            continue
                        self._after_failure(notification, "; ".join(outcome.errors) or "No messages delivered", result)

                if self._retry_spacing and index < len(ready) - 1:
                    await self._sleep(self._retry_spacing)
        except Exception as e:
            logger.exception("Error processing retry queue: %s", e)
            result.errors.append(f"Processing error: {e}")
        finally:
            self._processing = False
            result.processing_time_ms = round((time.perf_counter() - started) * 1000, 2)

        if result.processed:
            logger.info(
                "Retry queue processed=%d successful=%d failed=%d skipped=%d remaining=%d",
                result.processed, result.successful, result.failed, result.skipped, len(self._queue),
            )
        return result

    async def force_retry(self, notification_id: str) -> ProcessingResult | None:
        """Make every queued entry of a notification due now and process the queue."""
        entries = [n for n in self._queue.values() if n.notification_id == notification_id]
        if not entries:
            return None
        now = self._clock()
        for entry in entries:
            entry.next_retry_at = now
        return await self.process_queue()

    def get_retry_status(self, notification_id: str) -> RetryStatus | None:
        entries = [n for n in self._queue.values() if n.notification_id == notification_id]
        if not entries:
            return None
        entry = max(entries, key=lambda n: n.attempt)
        total_delay = (entry.next_retry_at - entry.created_at).total_seconds() * 1000 if entry.next_retry_at else 0.0
        return RetryStatus(
            notification_id=notification_id,
            current_attempt=entry.attempt,
            max_attempts=self.config.max_attempts,
            next_retry_at=entry.next_retry_at,
            last_error=entry.last_error,
            circuit_state=self.breaker(entry.destination).state,
            total_delay_ms=round(total_delay, 2),
            pending=len(entries),
        )

    def get_queue_statistics(self) -> dict[str, Any]:
        now = self._clock()
        entries = list(self._queue.values())
        by_attempt: dict[int, int] = {}
        for entry in entries:
            by_attempt[entry.attempt] = by_attempt.get(entry.attempt, 0) + 1
        retry_times = sorted(e.next_retry_at for e in entries if e.next_retry_at is not None)
        return {
            "total_in_queue": len(entries),
            "ready_for_retry": sum(1 for e in entries if e.next_retry_at is None or e.next_retry_at <= now),
            "by_attempt_count": by_attempt,
            "oldest_retry": retry_times[0] if retry_times else None,
            "newest_retry": retry_times[-1] if retry_times else None,
            "circuit_breakers": {
                name: {"state": b.state.value, "failures": b.failure_count}
                for name, b in self._breakers.items()
            },
            "is_processing": self._processing,
            "config": self.config.to_dict(),
        }

    def update_config(self, **changes: Any) -> RetryConfig:
        unknown = set(changes) - set(RetryConfig.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown retry config fields: {', '.join(sorted(unknown))}")
        if "jitter" in changes:
            changes["jitter"] = JitterType(changes["jitter"])
        old = self.config
        self.config = replace(self.config, **changes)
        if "circuit_breaker_threshold" in changes or "circuit_breaker_reset_timeout_ms" in changes:
            self._breakers.clear()
        logger.info("Retry configuration updated: %s -> %s", old.to_dict(), self.config.to_dict())
        return self.config

    def clear_retries(self, notification_id: str) -> int:
        ids = [key for key, n in self._queue.items() if n.notification_id == notification_id]
        for key in ids:
            del self._queue[key]
        return len(ids)

    def clear_all(self) -> int:
        count = len(self._queue)
        self._queue.clear()
        return count

    def queue_size(self) -> int:
        return len(self._queue)
