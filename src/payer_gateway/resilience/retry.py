"""
Retry policy for partner calls.

Wraps one adapter call in tenacity's ``AsyncRetrying``. Attempt ``k + 1``
receives options derived ``k`` times through ``RequestOptions.next_retry``,
and the wait before it is ``retry_delay * 2 ** (k - 1)`` milliseconds.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..exceptions import ConnectivityError, is_retryable
from ..logger import get_logger
from ..models import RequestOptions
from .circuit_breaker import CircuitBreaker

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Exponential backoff retries gated on error retryability and breaker state."""

    def __init__(
        self,
        name: str = "retry_policy",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.sleep = sleep

    def _create_retrying(
        self, options: RequestOptions, breaker: CircuitBreaker | None
    ) -> AsyncRetrying:
        retry = retry_if_exception(is_retryable)
        if breaker is not None:
            retry = retry & retry_if_exception(lambda _: breaker.allow())
        return AsyncRetrying(
            stop=stop_after_attempt(options.retry_count + 1),
            wait=wait_exponential(multiplier=options.retry_delay / 1000, exp_base=2),
            retry=retry,
            before_sleep=self._before_sleep(options),
            sleep=self.sleep,
            reraise=True,
        )

    def _before_sleep(self, options: RequestOptions) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Retrying partner call",
                policy=self.name,
                attempt=retry_state.attempt_number,
                delay_ms=round(retry_state.next_action.sleep * 1000)
                if retry_state.next_action
                else None,
                error=str(exc),
                correlation_id=options.correlation_id,
            )

        return log_retry

    async def execute(
        self,
        func: Callable[[RequestOptions], Awaitable[T]],
        options: RequestOptions,
        breaker: CircuitBreaker | None = None,
    ) -> T:
        """Call ``func`` with per-attempt options until it succeeds or retries run out."""
        current = options
        async for attempt in self._create_retrying(options, breaker):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    current = current.next_retry()
                return await self._with_timeout(func, current)

    async def _with_timeout(
        self, func: Callable[[RequestOptions], Awaitable[T]], options: RequestOptions
    ) -> T:
        try:
            return await asyncio.wait_for(func(options), timeout=options.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ConnectivityError(
                f"Partner call timed out after {options.timeout}ms",
                details={"timeout_ms": options.timeout, "correlation_id": options.correlation_id},
            ) from e
