"""Circuit breaker guarding calls to the model provider."""

from enum import Enum
from typing import Callable, Any, Optional
from datetime import datetime, timezone
import logging

from crm_assistant.infra.error_handler import AssistantError, ErrorCategory
from crm_assistant.infra.metrics import circuit_breaker_state

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitOpenError(AssistantError):
    """Raised instead of calling the service while the circuit is open."""
    def __init__(self, service: str, retry_in: Optional[int] = None):
        message = f"Circuit breaker for {service} is OPEN. Service unavailable."
        if retry_in is not None:
            message += f" Retry after {retry_in} seconds."
        super().__init__(message, ErrorCategory.NETWORK, retryable=False)


class CircuitBreaker:
    """
    Circuit breaker implementation for external service calls.

    Opens after `failure_threshold` consecutive failures, rejects calls for
    `recovery_timeout` seconds, then lets calls through half-open and closes
    again after two successes.
    """

    def __init__(
        self,
        service: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type = Exception,
    ):
        self.service = service
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = CircuitState.CLOSED
        self.success_count = 0  # For half-open state

    def _set_state(self, state: CircuitState) -> None:
        if state != self.state:
            logger.warning(
                "Circuit breaker state change",
                extra={"service": self.service, "from_state": self.state.value, "to_state": state.value},
            )
        self.state = state
        circuit_breaker_state.labels(service=self.service).set(_STATE_GAUGE_VALUES[state])

    def _before_call(self) -> None:
        if self.state != CircuitState.OPEN:
            return
        if self.last_failure_time is None:
            raise CircuitOpenError(self.service)
        elapsed = (datetime.now(timezone.utc) - self.last_failure_time).total_seconds()
        if elapsed >= self.recovery_timeout:
            self._set_state(CircuitState.HALF_OPEN)
            self.success_count = 0
        else:
            raise CircuitOpenError(self.service, int(self.recovery_timeout - elapsed))

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= 2:  # Need 2 successes to close
                self._set_state(CircuitState.CLOSED)
                self.failure_count = 0
                self.success_count = 0
        else:
            self.failure_count = 0

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = datetime.now(timezone.utc)
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._set_state(CircuitState.OPEN)

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute async function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Original exception from function
        """
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        """Force the breaker closed."""
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None
        self._set_state(CircuitState.CLOSED)


# Shared by every OpenAI call (triage and dispatch)
openai_circuit_breaker = CircuitBreaker(
    service="openai",
    failure_threshold=5,
    recovery_timeout=60,
    expected_exception=Exception,
)
