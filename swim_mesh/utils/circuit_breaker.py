"""
Circuit breaker for agent invocations.

One breaker per agent stops the mesh from hammering an agent that keeps
failing; the invoker maps an open breaker onto a degraded registry status.
"""

import asyncio
import time
from typing import Dict, Any, Optional, Callable
from enum import Enum
from dataclasses import dataclass

from .config.constants import (
    CIRCUIT_BREAKER_FAILURE_THRESHOLD,
    CIRCUIT_BREAKER_TIMEOUT,
    CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS,
)
from .logging import get_logger

logger = get_logger("a2a")


class CircuitBreakerState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing fast
    HALF_OPEN = "half_open"  # Probing whether the agent is back


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = CIRCUIT_BREAKER_FAILURE_THRESHOLD
    timeout: float = CIRCUIT_BREAKER_TIMEOUT  # seconds spent OPEN before probing
    half_open_max_calls: int = CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS


class CircuitBreakerException(Exception):
    """Raised instead of calling through when the breaker is open."""

    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name


class CircuitBreaker:
    """Counts consecutive failures and fails fast once the threshold is hit."""

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = 0.0
        self.half_open_calls = 0
        self._lock = asyncio.Lock()

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitBreakerState.CLOSED

    async def _before_call(self):
        async with self._lock:
            now = time.monotonic()

            if (self.state == CircuitBreakerState.OPEN and
                    now - self.last_failure_time >= self.config.timeout):
                self.state = CircuitBreakerState.HALF_OPEN
                self.half_open_calls = 0
                self.success_count = 0
                logger.info("circuit_breaker_half_open",
                    breaker=self.name,
                    seconds_open=round(now - self.last_failure_time, 1)
                )

            if self.state == CircuitBreakerState.OPEN:
                logger.warning("circuit_breaker_fail_fast",
                    breaker=self.name,
                    failure_count=self.failure_count
                )
                raise CircuitBreakerException(self.name, f"Circuit breaker {self.name} is open")

            if self.state == CircuitBreakerState.HALF_OPEN:
                if self.half_open_calls >= self.config.half_open_max_calls:
                    raise CircuitBreakerException(
                        self.name, f"Circuit breaker {self.name} half-open limit exceeded"
                    )
                self.half_open_calls += 1

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute a coroutine function through the circuit breaker"""
        await self._before_call()

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            # Cancellation says nothing about the agent's health
            raise
        except Exception:
            async with self._lock:
                self._on_failure()
            raise

        async with self._lock:
            self._on_success()
        return result

    def _on_success(self):
        if self.state == CircuitBreakerState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.half_open_max_calls:
                self.state = CircuitBreakerState.CLOSED
                self.failure_count = 0
                self.success_count = 0
                logger.info("circuit_breaker_closed", breaker=self.name)
        elif self.state == CircuitBreakerState.CLOSED:
            self.failure_count = 0

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == CircuitBreakerState.CLOSED:
            if self.failure_count >= self.config.failure_threshold:
                self.state = CircuitBreakerState.OPEN
                logger.warning("circuit_breaker_opened",
                    breaker=self.name,
                    failure_count=self.failure_count,
                    threshold=self.config.failure_threshold
                )
        elif self.state == CircuitBreakerState.HALF_OPEN:
            self.state = CircuitBreakerState.OPEN
            self.success_count = 0
            logger.warning("circuit_breaker_reopened", breaker=self.name)

    def reset(self):
        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.half_open_calls = 0

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state"""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_time": self.last_failure_time,
            "half_open_calls": self.half_open_calls
        }


class CircuitBreakerRegistry:
    """Registry for managing one circuit breaker per agent"""

    def __init__(self, default_config: Optional[CircuitBreakerConfig] = None):
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()

    def get_breaker(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Get or create a circuit breaker"""
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(name, config or self._default_config)
            logger.debug("circuit_breaker_created", breaker=name)
        return self._breakers[name]

    def remove_breaker(self, name: str):
        self._breakers.pop(name, None)

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_state() for name, breaker in self._breakers.items()}

    def reset_breaker(self, name: str):
        """Reset a circuit breaker to closed state"""
        if name in self._breakers:
            self._breakers[name].reset()
            logger.info("circuit_breaker_reset", breaker=name)
