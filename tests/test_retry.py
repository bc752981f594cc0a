# File: tests/test_retry.py
import pytest

from crawl_service.crawler.retry import RETRY_DELAYS, RetryPolicy
from crawl_service.errors import FetchError


class Flaky:
    """Callable that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int, error: Exception = None):
        self.failures = failures
        self.calls = 0
        self.error = error or FetchError("https://a.test/", "HTTP 500", 500)

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def test_default_schedule():
    policy = RetryPolicy()
    assert policy.max_attempts == 4
    assert RETRY_DELAYS == (10, 20, 60)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [10, 20, 60]


def test_last_delay_is_reused_past_schedule_end():
    policy = RetryPolicy(max_attempts=6)
    assert policy.delay_for(4) == 60
    assert policy.delay_for(5) == 60


@pytest.mark.asyncio()
async def test_succeeds_on_last_attempt(fast_retry, sleep_recorder):
    operation = Flaky(failures=3)

    result = await fast_retry.run(operation)

    assert result == "ok"
    assert operation.calls == 4
    assert sleep_recorder.delays == [10, 20, 60]


@pytest.mark.asyncio()
async def test_raises_last_error_after_budget_spent(fast_retry, sleep_recorder):
    operation = Flaky(failures=10)

    with pytest.raises(FetchError):
        await fast_retry.run(operation)

    assert operation.calls == 4
    assert sleep_recorder.delays == [10, 20, 60]


@pytest.mark.asyncio()
async def test_no_sleep_when_first_attempt_succeeds(fast_retry, sleep_recorder):
    assert await fast_retry.run(Flaky(failures=0)) == "ok"
    assert sleep_recorder.delays == []


@pytest.mark.asyncio()
async def test_unlisted_errors_are_not_retried(fast_retry):
    operation = Flaky(failures=1, error=RuntimeError("boom"))

    with pytest.raises(RuntimeError):
        await fast_retry.run(operation, retry_on=(FetchError,))

    assert operation.calls == 1


@pytest.mark.asyncio()
async def test_on_retry_callback_sees_each_failed_attempt(fast_retry):
    seen = []

    await fast_retry.run(Flaky(failures=2), on_retry=lambda attempt, err: seen.append(attempt))

    assert seen == [1, 2]


def test_rejects_empty_schedule():
    with pytest.raises(ValueError):
        RetryPolicy(delays=())
