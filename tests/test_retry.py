import asyncio

import pytest

from utils.retry import HISTORY_LIMIT, RetryPolicy, retry_with_backoff


class Flaky:
    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return self.result


def _policy(**kwargs) -> tuple:
    slept = []

    async def sleep(delay: float) -> None:
        slept.append(delay)

    params = {"max_retries": 3, "initial_delay": 1.0, "max_delay": 16.0, "jitter": 0.0, "sleep": sleep}
    params.update(kwargs)
    return RetryPolicy(**params), slept


def test_succeeds_first_time_without_sleeping():
    policy, slept = _policy()
    op = Flaky(failures=0)
    assert asyncio.run(policy.run(op)) == "ok"
    assert op.calls == 1
    assert slept == []


def test_recovers_after_transient_failures():
    policy, slept = _policy()
    op = Flaky(failures=2)
    assert asyncio.run(policy.run(op)) == "ok"
    assert op.calls == 3
    assert slept == [1.0, 2.0]


def test_always_failing_makes_four_attempts_and_reraises_last_error():
    policy, slept = _policy()
    op = Flaky(failures=10)
    with pytest.raises(ConnectionError, match="attempt 4 failed"):
        asyncio.run(policy.run(op))
    assert op.calls == 4
    assert slept == [1.0, 2.0, 4.0]
    assert list(policy.history) == [1.0, 2.0, 4.0]


def test_delay_is_capped_at_max_delay():
    policy, _ = _policy(max_delay=4.0)
    assert [policy.delay_for(i) for i in range(1, 6)] == [1.0, 2.0, 4.0, 4.0, 4.0]


def test_jitter_stays_within_bounds():
    policy, _ = _policy(jitter=0.2, rand=lambda lo, hi: hi)
    assert policy.delay_for(2) == pytest.approx(2.4)
    policy.rand = lambda lo, hi: lo
    assert policy.delay_for(2) == pytest.approx(1.6)


def test_jittered_delay_never_negative():
    policy, _ = _policy(jitter=1.0, rand=lambda lo, hi: lo - 1.0)
    assert policy.delay_for(1) == 0.0


def test_zero_retries_means_single_attempt():
    policy, slept = _policy(max_retries=0)
    op = Flaky(failures=1)
    with pytest.raises(ConnectionError):
        asyncio.run(policy.run(op))
    assert op.calls == 1
    assert slept == []


def test_retry_with_backoff_uses_given_policy():
    policy, slept = _policy()
    op = Flaky(failures=1, result="done")
    assert asyncio.run(retry_with_backoff(op, policy)) == "done"
    assert slept == [1.0]


def test_from_settings_applies_overrides():
    policy = RetryPolicy.from_settings(label="queue", max_delay=4.0, max_retries=5)
    assert policy.label == "queue"
    assert policy.max_delay == 4.0
    assert policy.max_retries == 5


def test_negative_max_retries_is_rejected():
    with pytest.raises(ValueError, match="max_retries"):
        RetryPolicy(max_retries=-1)


def test_history_keeps_only_recent_delays_across_runs():
    policy, slept = _policy(max_retries=5, max_delay=1.0)

    async def scenario():
        for _ in range(10):
            with pytest.raises(ConnectionError):
                await policy.run(Flaky(failures=10))

    asyncio.run(scenario())
    assert len(slept) == 50
    assert len(policy.history) == HISTORY_LIMIT
    assert policy.history.maxlen == HISTORY_LIMIT
