"""Fault isolation and retries for partner calls."""

from .circuit_breaker import CircuitBreaker
from .retry import RetryPolicy

__all__ = ["CircuitBreaker", "RetryPolicy"]
