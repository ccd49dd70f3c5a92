"""
Tests for store call retries.
"""

import pytest

from catalog_import.ingestion.errors import ConstraintViolationError, StoreUnavailableError
from catalog_import.ingestion.retry import RetryPolicy


class Flaky:
    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or StoreUnavailableError("connection refused")
        self.calls = 0

    def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return value * 2


def make_policy(max_retries=3):
    delays = []
    policy = RetryPolicy(
        max_retries=max_retries, base_delay=0.5, max_delay=1.5, sleep=delays.append
    )
    return policy, delays


def test_succeeds_after_transient_failures():
    policy, delays = make_policy()
    operation = Flaky(failures=2)
    assert policy.call(operation, 21) == 42
    assert operation.calls == 3
    assert delays == [0.5, 1.0]


def test_gives_up_after_max_retries():
    policy, delays = make_policy(max_retries=2)
    operation = Flaky(failures=10)
    with pytest.raises(StoreUnavailableError):
        policy.call(operation, 1)
    assert operation.calls == 3
    assert len(delays) == 2


def test_non_transient_errors_are_not_retried():
    policy, delays = make_policy()
    operation = Flaky(failures=1, error=ConstraintViolationError("duplicate sku"))
    with pytest.raises(ConstraintViolationError):
        policy.call(operation, 1)
    assert operation.calls == 1
    assert delays == []


def test_delay_is_capped():
    policy, _ = make_policy()
    assert [policy.delay_for(attempt) for attempt in range(4)] == [0.5, 1.0, 1.5, 1.5]


def test_keyword_arguments_are_passed_through():
    policy, _ = make_policy()
    assert policy.call(lambda a, b=0: a + b, 1, b=2, description="add") == 3
