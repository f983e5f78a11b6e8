from datetime import datetime, timedelta, timezone

import pytest

from dagflow.core.models import TaskState
from dagflow.core.retry import RetryPolicy

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_first_failure_schedules_retry():
    decision = RetryPolicy().on_failure(0, "boom", NOW)
    assert decision.state == TaskState.RETRYING
    assert decision.retry_count == 1
    assert decision.error == "boom"
    assert decision.next_retry_at == NOW + timedelta(seconds=10)
    assert decision.completed_at is None


def test_failure_beyond_max_retries_is_terminal():
    decision = RetryPolicy(max_retries=3).on_failure(3, "boom", NOW)
    assert decision.state == TaskState.FAILED
    assert decision.is_terminal
    assert decision.retry_count == 4
    assert decision.completed_at == NOW
    assert decision.next_retry_at is None


def test_last_allowed_retry_still_retries():
    decision = RetryPolicy(max_retries=3).on_failure(2, "boom", NOW)
    assert decision.state == TaskState.RETRYING
    assert decision.retry_count == 3


def test_per_task_max_retries_override():
    policy = RetryPolicy(max_retries=3)
    assert policy.on_failure(0, "boom", NOW, max_retries=0).state == TaskState.FAILED


def test_backoff_is_non_decreasing_and_capped():
    policy = RetryPolicy(retry_delay=1.0, backoff_multiplier=2.0, max_delay=5.0)
    delays = [policy.base_delay(n) for n in range(1, 6)]
    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_jitter_stays_within_bounds():
    policy = RetryPolicy(retry_delay=10.0, jitter=0.5)
    for _ in range(50):
        assert 10.0 <= policy.delay_for(1) <= 15.0


def test_invalid_policy_rejected():
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)
    with pytest.raises(ValueError):
        RetryPolicy(backoff_multiplier=0.5)


def test_jitter_never_exceeds_max_delay():
    policy = RetryPolicy(retry_delay=10.0, max_delay=10.0, jitter=0.5)
    for _ in range(50):
        assert policy.delay_for(1) <= 10.0
