"""
Circuit Breaker

Guards calls to the notification gateway so a dead gateway does not turn every
outbox batch into a wall of timeouts.
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, ParamSpec, TypeVar

from app.core.exceptions import CircuitBreakerOpenError
from app.core.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

NOTIFICATION_GATEWAY = "notification_gateway"


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Thresholds for one breaker"""
    failure_threshold: int = 5          # consecutive failures before opening
    success_threshold: int = 2          # half-open successes before closing
    timeout_seconds: float = 30.0       # open duration before a trial call
    half_open_max_calls: int = 3


class CircuitBreaker:
    """
    Per-service breaker.

    Instances live in a class-level registry; Celery tasks run each batch in a
    fresh event loop, so state is guarded by a threading lock rather than an
    asyncio one.
    """

    _instances: dict[str, "CircuitBreaker"] = {}
    _instances_lock = threading.Lock()

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._opened_at = 0.0
        self._lock = threading.Lock()

    @classmethod
    def get_instance(
        cls,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ) -> "CircuitBreaker":
        with cls._instances_lock:
            if service_name not in cls._instances:
                cls._instances[service_name] = cls(service_name, config)
            return cls._instances[service_name]

    @classmethod
    def reset_all(cls) -> None:
        """Forget every breaker (tests)"""
        with cls._instances_lock:
            cls._instances.clear()

    @classmethod
    def snapshot(cls) -> dict[str, str]:
        """Current state per service, for readiness output"""
        with cls._instances_lock:
            return {name: cb.state.value for name, cb in cls._instances.items()}

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _set_state(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            self._success_count = 0
        else:
            self._failure_count = 0
            self._success_count = 0

        logger.info(
            f"Circuit breaker '{self.service_name}' transitioned",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value,
            }
        )

    def retry_after(self) -> float:
        """Seconds until the next trial call is allowed"""
        if self._state != CircuitState.OPEN:
            return 0.0
        elapsed = time.monotonic() - self._opened_at
        return max(0.0, self.config.timeout_seconds - elapsed)

    def allow_request(self) -> bool:
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                if self.retry_after() > 0:
                    return False
                self._set_state(CircuitState.HALF_OPEN)
            if self._half_open_calls < self.config.half_open_max_calls:
                self._half_open_calls += 1
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._set_state(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._failure_count += 1
            logger.warning(
                f"Circuit breaker '{self.service_name}' recorded failure",
                extra_data={
                    "service": self.service_name,
                    "failure_count": self._failure_count,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None,
                }
            )
            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._set_state(CircuitState.OPEN)

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs
    ) -> T:
        """Run ``func`` under the breaker.

        Raises:
            CircuitBreakerOpenError: the breaker is open or the half-open quota is used up
        """
        if not self.allow_request():
            raise CircuitBreakerOpenError(self.service_name, self.retry_after())

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result


def get_notification_gateway_breaker() -> CircuitBreaker:
    """Breaker shared by every gateway call in the process"""
    return CircuitBreaker.get_instance(
        NOTIFICATION_GATEWAY,
        CircuitBreakerConfig(
            failure_threshold=5,
            success_threshold=2,
            timeout_seconds=30.0,
        )
    )
