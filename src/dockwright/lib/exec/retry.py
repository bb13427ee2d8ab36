"""Caller-side retry loop driven by `DockerError.retryable`.

The executor itself never retries; code that wants resilience wraps its call
in `call_with_retry` (or the asyncio twin) with a `RetryPolicy`.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from dockwright.lib.exec.errors import DockerError, InvalidConfiguration

logger = structlog.get_logger(__name__)


class BackoffStrategy(Protocol):
    def delay_for(self, attempt: int) -> float:
        """Seconds to sleep before retry number `attempt` (1-based)."""
        ...


@dataclass(frozen=True, slots=True)
class FixedBackoff:
    delay_seconds: float = 1.0

    def delay_for(self, attempt: int) -> float:
        _ = attempt
        return self.delay_seconds


@dataclass(frozen=True, slots=True)
class LinearBackoff:
    initial_seconds: float = 0.1
    increment_seconds: float = 0.1

    def delay_for(self, attempt: int) -> float:
        return self.initial_seconds + self.increment_seconds * (attempt - 1)


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    initial_seconds: float = 0.1
    max_seconds: float = 10.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        delay = self.initial_seconds * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_seconds)


def _retry_on_retryable(error: DockerError) -> bool:
    return error.retryable


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many attempts to make and how long to wait between them."""

    max_attempts: int = 3
    backoff: BackoffStrategy = field(default_factory=ExponentialBackoff)
    retry_on: Callable[[DockerError], bool] = _retry_on_retryable

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise InvalidConfiguration("max_attempts must be at least 1.")


DEFAULT_RETRY_POLICY = RetryPolicy()
NO_RETRY_POLICY = RetryPolicy(max_attempts=1)


def _should_retry(policy: RetryPolicy, attempt: int, error: DockerError) -> bool:
    if attempt >= policy.max_attempts:
        logger.debug("Retry attempts exhausted.", max_attempts=policy.max_attempts)
        return False
    if not policy.retry_on(error):
        logger.debug("Error is not retryable.", error=error.message)
        return False
    return True


def call_with_retry[T](
    operation: Callable[[], T],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call `operation` until it succeeds or the policy gives up."""

    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except DockerError as error:
            if not _should_retry(policy, attempt, error):
                raise
            delay = policy.backoff.delay_for(attempt)
            logger.debug(
                "Attempt failed, retrying.",
                attempt=attempt,
                delay_seconds=delay,
                error=error.message,
            )
            sleep(delay)


async def call_with_retry_async[T](
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> T:
    """Asyncio twin of `call_with_retry`."""

    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except DockerError as error:
            if not _should_retry(policy, attempt, error):
                raise
            delay = policy.backoff.delay_for(attempt)
            logger.debug(
                "Attempt failed, retrying.",
                attempt=attempt,
                delay_seconds=delay,
                error=error.message,
            )
            await asyncio.sleep(delay)
