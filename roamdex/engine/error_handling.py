"""Failure tracking for the optional remote enrichment service.

The engine itself never depends on the network; this module keeps a
misbehaving enrichment endpoint from being hammered and records why it
was skipped.
"""

import asyncio
import traceback
from typing import Optional, Callable, Any, Dict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from loguru import logger


class ServiceState(Enum):
    """Service health states."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    CIRCUIT_OPEN = "circuit_open"


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class CircuitOpenError(RuntimeError):
    """Raised instead of calling a service whose circuit is open."""


@dataclass
class ErrorEvent:
    """Represents an error event."""
    timestamp: datetime
    service: str
    error_type: str
    message: str
    severity: ErrorSeverity
    traceback: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'service': self.service,
            'error_type': self.error_type,
            'message': self.message,
            'severity': self.severity.value,
            'context': self.context
        }


@dataclass
class ServiceHealth:
    """Tracks health of a service."""
    name: str
    state: ServiceState = ServiceState.HEALTHY
    error_count: int = 0
    success_count: int = 0
    last_error: Optional[ErrorEvent] = None
    last_success: Optional[datetime] = None
    consecutive_failures: int = 0
    circuit_opened_at: Optional[datetime] = None

    @property
    def error_rate(self) -> float:
        total = self.error_count + self.success_count
        if total == 0:
            return 0.0
        return self.error_count / total

    @property
    def is_available(self) -> bool:
        return self.state not in [ServiceState.CIRCUIT_OPEN, ServiceState.UNHEALTHY]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'state': self.state.value,
            'error_count': self.error_count,
            'success_count': self.success_count,
            'error_rate': self.error_rate,
            'last_error': self.last_error.to_dict() if self.last_error else None,
        }


class CircuitBreaker:
    """Circuit breaker for service protection."""

    def __init__(self,
                 name: str,
                 failure_threshold: int = 5,
                 recovery_timeout: int = 60,
                 expected_exception: type = Exception):
        """
        Initialize circuit breaker.

        Args:
            name: Service name
            failure_threshold: Consecutive failures before opening circuit
            recovery_timeout: Seconds before attempting recovery
            expected_exception: Exception type counted as a failure
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.health = ServiceHealth(name=name)
        self.recovery_attempts = 0

    @property
    def is_open(self) -> bool:
        return self.health.state == ServiceState.CIRCUIT_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Call function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is open and not due for recovery
            Exception: Whatever the wrapped function raises
        """
        if self.is_open:
            if self._should_attempt_recovery():
                logger.info(f"Circuit breaker {self.name}: Attempting recovery")
                self.recovery_attempts += 1
            else:
                raise CircuitOpenError(f"Circuit breaker {self.name} is open")

        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)
        except self.expected_exception as e:
            self._record_failure(e)
            if self.health.consecutive_failures >= self.failure_threshold:
                self._open_circuit()
            raise

        self._record_success()
        return result

    def _record_success(self):
        self.health.success_count += 1
        self.health.consecutive_failures = 0
        self.health.last_success = datetime.now()

        if self.health.state == ServiceState.CIRCUIT_OPEN:
            logger.info(f"Circuit breaker {self.name}: Circuit closed after recovery")
            self.health.state = ServiceState.HEALTHY
            self.recovery_attempts = 0
        elif self.health.state in (ServiceState.DEGRADED, ServiceState.UNHEALTHY):
            if self.health.error_rate < 0.1:
                self.health.state = ServiceState.HEALTHY

    def _record_failure(self, error: Exception):
        self.health.error_count += 1
        self.health.consecutive_failures += 1

        self.health.last_error = ErrorEvent(
            timestamp=datetime.now(),
            service=self.name,
            error_type=type(error).__name__,
            message=str(error),
            severity=ErrorSeverity.HIGH if self.health.consecutive_failures > 3 else ErrorSeverity.MEDIUM,
            traceback=traceback.format_exc()
        )

        if self.health.state == ServiceState.CIRCUIT_OPEN:
            return
        if self.health.error_rate > 0.5:
            self.health.state = ServiceState.UNHEALTHY
        elif self.health.error_rate > 0.2:
            self.health.state = ServiceState.DEGRADED

    def _open_circuit(self):
        logger.warning(
            f"Circuit breaker {self.name}: Opening circuit after "
            f"{self.health.consecutive_failures} failures"
        )
        self.health.state = ServiceState.CIRCUIT_OPEN
        self.health.circuit_opened_at = datetime.now()

    def _should_attempt_recovery(self) -> bool:
        if not self.health.circuit_opened_at:
            return True

        elapsed = (datetime.now() - self.health.circuit_opened_at).total_seconds()

        # Exponential backoff between recovery attempts
        backoff = self.recovery_timeout * (2 ** min(self.recovery_attempts, 5))

        return elapsed >= backoff

    def reset(self):
        """Reset circuit breaker."""
        self.health = ServiceHealth(name=self.name)
        self.recovery_attempts = 0
