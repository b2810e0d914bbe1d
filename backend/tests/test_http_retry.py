from unittest.mock import AsyncMock

import httpx
import pytest

from rainwatch.core.errors import RetriesExhausted
from rainwatch.services.http_retry import PUSH_POLICY, WEATHER_POLICY, RetryingExecutor, RetryPolicy


def _no_jitter(low, high):
    return 0.0


def make_executor():
    sleep = AsyncMock()
    return RetryingExecutor(sleep=sleep, rand=_no_jitter), sleep


@pytest.mark.asyncio
async def test_rate_limited_then_success_uses_max_retries_plus_one_attempts():
    executor, sleep = make_executor()
    send = AsyncMock(side_effect=[httpx.Response(429)] * 3 + [httpx.Response(200)])

    resp = await executor.execute(send, RetryPolicy(max_retries=3))

    assert resp.status_code == 200
    assert send.await_count == 4
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_exhausted_retries_raise():
    executor, sleep = make_executor()
    send = AsyncMock(return_value=httpx.Response(429))

    with pytest.raises(RetriesExhausted) as exc:
        await executor.execute(send, RetryPolicy(max_retries=3))

    assert exc.value.attempts == 4
    assert exc.value.last_status == 429
    assert send.await_count == 4
    assert sleep.await_count == 3


@pytest.mark.asyncio
async def test_final_attempt_returns_whatever_comes_back():
    executor, sleep = make_executor()
    send = AsyncMock(return_value=httpx.Response(429))

    resp = await executor.execute(send, WEATHER_POLICY)

    assert resp.status_code == 429
    assert send.await_count == WEATHER_POLICY.max_retries + 2
    # the final attempt is preceded by one more backoff
    assert sleep.await_count == WEATHER_POLICY.max_retries + 1


@pytest.mark.asyncio
async def test_transport_error_is_retried():
    executor, _ = make_executor()
    send = AsyncMock(side_effect=[httpx.ConnectError("refused"), httpx.Response(200)])

    resp = await executor.execute(send, PUSH_POLICY)

    assert resp.status_code == 200
    assert send.await_count == 2


@pytest.mark.asyncio
async def test_transport_error_on_final_attempt_raises():
    executor, _ = make_executor()
    send = AsyncMock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(RetriesExhausted) as exc:
        await executor.execute(send, WEATHER_POLICY)

    assert isinstance(exc.value.last_error, httpx.ConnectError)


@pytest.mark.asyncio
async def test_other_statuses_are_not_retried():
    executor, sleep = make_executor()
    send = AsyncMock(return_value=httpx.Response(500))

    resp = await executor.execute(send, RetryPolicy(max_retries=3))

    assert resp.status_code == 500
    assert send.await_count == 1
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_after_header_sets_the_wait():
    executor, sleep = make_executor()
    send = AsyncMock(side_effect=[httpx.Response(429, headers={"Retry-After": "3"}), httpx.Response(200)])

    await executor.execute(send, RetryPolicy(max_retries=2))

    sleep.assert_awaited_once_with(3.0)


def test_delay_schedules():
    exponential = RetryPolicy(base_delay=1.0, max_delay=10.0)
    assert [exponential.delay(i, _no_jitter) for i in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    linear = RetryPolicy(base_delay=1.0, backoff="linear")
    assert [linear.delay(i, _no_jitter) for i in range(3)] == [1.0, 2.0, 3.0]

    jittered = RetryPolicy(base_delay=1.0, jitter=0.5)
    assert jittered.delay(0, lambda low, high: high) == 1.5
