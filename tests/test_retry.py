"""Tests for retry policy and backoff."""

from unittest import mock

import pytest

from provision.core.retry import NO_RETRY, RetryPolicy, compute_backoff
from provision.models import CommandResult, ErrorKind


def res(**kwargs) -> CommandResult:
    return CommandResult(command="x", **kwargs)


class TestComputeBackoff:
    """Tests for compute_backoff."""

    def test_exponential_without_jitter(self) -> None:
        delays = [compute_backoff(n, base=1.0, multiplier=2.0, jitter=0) for n in (1, 2, 3, 4)]
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self) -> None:
        assert compute_backoff(10, base=1.0, multiplier=2.0, max_delay=30.0, jitter=0) == 30.0

    def test_jitter_added(self) -> None:
        with mock.patch("provision.core.retry.random.uniform", return_value=0.25) as uniform:
            assert compute_backoff(1, base=2.0, jitter=0.5) == 2.25
        uniform.assert_called_once_with(0, 0.5)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            RetryPolicy(max_attempts=0)

    def test_default_is_single_attempt(self) -> None:
        assert NO_RETRY.max_attempts == 1

    def test_fixed_interval(self) -> None:
        policy = RetryPolicy.fixed(interval=5, timeout=120)
        assert policy.max_attempts == 24
        assert policy.delay(1) == policy.delay(7) == 5

    def test_fixed_rounds_up(self) -> None:
        assert RetryPolicy.fixed(interval=10, timeout=25).max_attempts == 3

    def test_nonzero_exit_is_transient(self) -> None:
        assert NO_RETRY.classify_failure(res(exit_code=1)) == ErrorKind.TRANSIENT

    def test_fatal_exit_codes(self) -> None:
        policy = RetryPolicy(fatal_exit_codes=frozenset({127}))
        assert policy.classify_failure(res(exit_code=127)) == ErrorKind.FATAL

    def test_timeout_and_cancel(self) -> None:
        assert NO_RETRY.classify_failure(res(timed_out=True)) == ErrorKind.TIMEOUT
        assert NO_RETRY.classify_failure(res(cancelled=True)) == ErrorKind.CANCELLED

    def test_custom_classifier(self) -> None:
        policy = RetryPolicy(classify=lambda r: ErrorKind.FATAL)
        assert policy.classify_failure(res(exit_code=1)) == ErrorKind.FATAL
        # Timeouts are classified before the override
        assert policy.classify_failure(res(timed_out=True)) == ErrorKind.TIMEOUT

    def test_success_exit_codes(self) -> None:
        policy = RetryPolicy(success_exit_codes=frozenset({3010}))
        assert policy.is_success(res(exit_code=3010))
        assert policy.is_success(res(exit_code=0))
        assert not policy.is_success(res(exit_code=1))

    def test_retryable_kinds(self) -> None:
        assert NO_RETRY.is_retryable(ErrorKind.TRANSIENT)
        assert NO_RETRY.is_retryable(ErrorKind.TIMEOUT)
        assert not NO_RETRY.is_retryable(ErrorKind.FATAL)
        assert not NO_RETRY.is_retryable(ErrorKind.CANCELLED)
