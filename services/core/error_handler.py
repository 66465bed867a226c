"""
Centralized Error Handler for the Decision Engine

Log-and-default wrappers for background concerns (conflict detection,
event fan-out) and a circuit breaker for the detection oracle.
"""

import inspect
import time
from typing import Any, Callable, TypeVar
from typing import Coroutine

from logging_config import get_logger, log_error

logger = get_logger(__name__)
T = TypeVar('T')


class ErrorHandler:
    """Centralized error handling with proper logging"""

    @staticmethod
    async def safe_execute_async(
        coro: Coroutine[Any, Any, T],
        default: T = None,
        context: dict | None = None,
        log_level: str = "ERROR"
    ) -> T:
        """
        Safely execute an async function with error handling.

        Usage:
            findings = await ErrorHandler.safe_execute_async(
                oracle.detect_assumption_conflicts(assumptions),
                default=[],
                context={"operation": "assumption_conflict_detection"}
            )
        """
        try:
            return await coro
        except Exception as e:
            log_error(e, context, log_level)
            return default


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open"""
    pass


class CircuitBreaker:
    """
    Circuit breaker pattern for preventing cascade failures.

    Usage:
        breaker = CircuitBreaker(name="conflict_oracle", failure_threshold=3, timeout=60)

        try:
            result = await breaker.call(oracle.detect_decision_conflicts, decisions)
        except CircuitBreakerOpen:
            result = []
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        timeout: float = 60,
        half_open_attempts: int = 1,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.half_open_attempts = half_open_attempts
        self._clock = clock

        self.failure_count = 0
        self.last_failure_time = None
        self.state = "closed"  # closed, open, half_open
        self.half_open_success_count = 0

    async def call(self, func: Callable, *args, **kwargs):
        """Execute function with circuit breaker protection"""
        if self.state == "open":
            if self._should_attempt_reset():
                self.state = "half_open"
                self.half_open_success_count = 0
            else:
                raise CircuitBreakerOpen(f"Circuit breaker is open for {self.name}")

        try:
            if inspect.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        """Check if timeout has passed"""
        if self.last_failure_time is None:
            return True
        return self._clock() - self.last_failure_time >= self.timeout

    def _on_success(self):
        if self.state == "half_open":
            self.half_open_success_count += 1
            if self.half_open_success_count >= self.half_open_attempts:
                self.state = "closed"
                self.failure_count = 0
                logger.info("circuit_breaker_closed", breaker=self.name)
        else:
            self.failure_count = 0

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self.state = "open"
            logger.warning(
                "circuit_breaker_opened",
                breaker=self.name,
                failure_count=self.failure_count
            )
