"""Circuit breakers for calls to the platform's fallible dependencies."""

from .registry import (
    CRITICAL_SERVICES,
    BreakerState,
    CircuitBreaker,
    CircuitBreakerRegistry,
)

__all__ = [
    "CRITICAL_SERVICES",
    "BreakerState",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
]
