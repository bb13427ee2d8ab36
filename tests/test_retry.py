from __future__ import annotations

import asyncio

import pytest

from dockwright.lib.exec.errors import (
    CommandFailed,
    ContainerNotFound,
    DaemonUnavailable,
    DockerError,
    InvalidConfiguration,
)
from dockwright.lib.exec.retry import (
    NO_RETRY_POLICY,
    ExponentialBackoff,
    FixedBackoff,
    LinearBackoff,
    RetryPolicy,
    call_with_retry,
    call_with_retry_async,
)


class _FlakyOperation:
    def __init__(self, failures: list[DockerError], value: str = "ok") -> None:
        self._failures = list(failures)
        self._value = value
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self._failures:
            raise self._failures.pop(0)
        return self._value


def test_retries_transient_failures_until_success() -> None:
    sleeps: list[float] = []
    operation = _FlakyOperation([DaemonUnavailable(), DaemonUnavailable()])

    result = call_with_retry(
        operation,
        RetryPolicy(max_attempts=3, backoff=FixedBackoff(0.25)),
        sleep=sleeps.append,
    )

    assert result == "ok"
    assert operation.calls == 3
    assert sleeps == [0.25, 0.25]


def test_non_retryable_error_propagates_immediately() -> None:
    sleeps: list[float] = []
    operation = _FlakyOperation([ContainerNotFound("abc")])

    with pytest.raises(ContainerNotFound):
        call_with_retry(operation, RetryPolicy(max_attempts=5), sleep=sleeps.append)

    assert operation.calls == 1
    assert sleeps == []


def test_exhausted_attempts_reraise_last_error() -> None:
    transient = CommandFailed("docker pull nginx", 1, "", "connection refused")
    operation = _FlakyOperation([transient, transient, transient])

    with pytest.raises(CommandFailed):
        call_with_retry(operation, RetryPolicy(max_attempts=2), sleep=lambda _: None)

    assert operation.calls == 2


def test_no_retry_policy_makes_a_single_attempt() -> None:
    operation = _FlakyOperation([DaemonUnavailable()])

    with pytest.raises(DaemonUnavailable):
        call_with_retry(operation, NO_RETRY_POLICY, sleep=lambda _: None)

    assert operation.calls == 1


def test_custom_retry_predicate_overrides_retryable() -> None:
    operation = _FlakyOperation([ContainerNotFound("abc")])
    policy = RetryPolicy(
        max_attempts=2,
        backoff=FixedBackoff(0),
        retry_on=lambda error: isinstance(error, ContainerNotFound),
    )

    assert call_with_retry(operation, policy, sleep=lambda _: None) == "ok"
    assert operation.calls == 2


def test_async_retry_uses_same_policy() -> None:
    attempts: list[int] = []

    async def _operation() -> str:
        attempts.append(len(attempts) + 1)
        if len(attempts) < 2:
            raise DaemonUnavailable()
        return "done"

    result = asyncio.run(
        call_with_retry_async(_operation, RetryPolicy(max_attempts=3, backoff=FixedBackoff(0)))
    )

    assert result == "done"
    assert attempts == [1, 2]


@pytest.mark.parametrize(
    "backoff,expected",
    [
        pytest.param(FixedBackoff(0.5), [0.5, 0.5, 0.5], id="fixed"),
        pytest.param(LinearBackoff(0.1, 0.2), [0.1, 0.3, 0.5], id="linear"),
        pytest.param(ExponentialBackoff(0.1, 0.3, 2.0), [0.1, 0.2, 0.3], id="exponential-capped"),
    ],
)
def test_backoff_delays(backoff: FixedBackoff | LinearBackoff | ExponentialBackoff, expected: list[float]) -> None:
    delays = [backoff.delay_for(attempt) for attempt in (1, 2, 3)]

    assert delays == pytest.approx(expected)


def test_policy_requires_at_least_one_attempt() -> None:
    with pytest.raises(InvalidConfiguration):
        RetryPolicy(max_attempts=0)
