"""
Reliability Utilities.

Includes the Circuit Breaker pattern used around notification delivery and
the storage deadline wrapper applied to every storage-bound engine call.
"""

import time
import asyncio
from functools import wraps
from typing import Callable, Any, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from backend.app.core.config import settings
from backend.app.core.exceptions import TransientTrackingError


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' failures occur within 'reset_timeout',
    the circuit opens and rejects calls for 'reset_timeout' seconds.
    """
    def __init__(self, failure_threshold: int = 5, reset_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED" # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError("Circuit is OPEN")

        try:
            result = await func(*args, **kwargs)
            if self.state == "HALF_OPEN":
                self.reset_state()
            return result
        except Exception:
            self.record_failure()
            raise

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.failures >= self.failure_threshold:
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


# Global instance for notification delivery
notification_circuit_breaker = CircuitBreaker(failure_threshold=5, reset_timeout=30)


def storage_bound(func: Callable) -> Callable:
    """
    Run an engine operation under a storage deadline.

    The wrapped coroutine takes the session as its first argument and
    accepts an optional ``timeout`` keyword (seconds). Timeouts and
    connection-level database errors roll the session back and surface as
    TransientTrackingError so the retry wrapper can pick them up.
    """
    @wraps(func)
    async def wrapper(db, *args, timeout: Optional[float] = None, **kwargs):
        deadline = timeout if timeout is not None else settings.storage_timeout_seconds
        try:
            return await asyncio.wait_for(func(db, *args, **kwargs), timeout=deadline)
        except asyncio.TimeoutError as exc:
            await db.rollback()
            raise TransientTrackingError(
                f"{func.__name__} exceeded {deadline}s storage deadline",
                error_code="TIMEOUT"
            ) from exc
        except IntegrityError:
            await db.rollback()
            raise
        except (OperationalError, DBAPIError) as exc:
            await db.rollback()
            raise TransientTrackingError(f"{func.__name__} failed: {exc.orig or exc}") from exc
    return wrapper
