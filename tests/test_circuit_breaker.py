import asyncio

import pytest

from circuit_breaker import CircuitBreaker, CircuitState
from errors import CircuitOpenError, GeneratorTimeoutError, TransientServiceError


class CountingCall:
    def __init__(self, fail: bool = True):
        self.fail = fail
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise TransientServiceError('HTTP 503', status_code=503)
        return 'ok'


async def _trip(breaker, call, times=5):
    for _ in range(times):
        with pytest.raises(TransientServiceError):
            await breaker.execute(call)


@pytest.mark.anyio
async def test_opens_after_threshold_and_fails_fast(clock):
    breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=30, clock=clock)
    call = CountingCall()

    await _trip(breaker, call, times=4)
    assert breaker.state == CircuitState.CLOSED

    await _trip(breaker, call, times=1)
    assert breaker.state == CircuitState.OPEN
    assert call.calls == 5

    clock.advance(10)
    with pytest.raises(CircuitOpenError) as excinfo:
        await breaker.execute(call)
    assert call.calls == 5
    assert excinfo.value.retry_after == pytest.approx(20)


@pytest.mark.anyio
async def test_half_open_trial_success_closes(clock):
    breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=30, clock=clock)
    call = CountingCall()
    await _trip(breaker, call)

    clock.advance(30)
    call.fail = False
    assert await breaker.execute(call) == 'ok'
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0
    assert call.calls == 6


@pytest.mark.anyio
async def test_half_open_trial_failure_reopens_for_new_window(clock):
    breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=30, clock=clock)
    call = CountingCall()
    await _trip(breaker, call)

    clock.advance(31)
    with pytest.raises(TransientServiceError):
        await breaker.execute(call)
    assert breaker.state == CircuitState.OPEN

    clock.advance(29)
    with pytest.raises(CircuitOpenError):
        await breaker.execute(call)
    assert call.calls == 6


@pytest.mark.anyio
async def test_success_resets_consecutive_failures(clock):
    breaker = CircuitBreaker(failure_threshold=3, clock=clock)
    failing, passing = CountingCall(), CountingCall(fail=False)

    await _trip(breaker, failing, times=2)
    await breaker.execute(passing)
    await _trip(breaker, failing, times=2)
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 2


@pytest.mark.anyio
async def test_only_one_trial_call_while_half_open(clock):
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock)
    await _trip(breaker, CountingCall(), times=1)
    clock.advance(30)

    release = asyncio.Event()

    async def slow_trial():
        await release.wait()
        return 'ok'

    trial = asyncio.create_task(breaker.execute(slow_trial))
    await asyncio.sleep(0)
    assert breaker.state == CircuitState.HALF_OPEN

    with pytest.raises(CircuitOpenError):
        await breaker.execute(CountingCall(fail=False))

    release.set()
    assert await trial == 'ok'
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.anyio
async def test_timeout_counts_as_failure(clock):
    breaker = CircuitBreaker(failure_threshold=5, expected_response_time=0.01, clock=clock)

    async def hangs():
        await asyncio.sleep(5)

    with pytest.raises(GeneratorTimeoutError):
        await breaker.execute(hangs)
    assert breaker.failure_count == 1


@pytest.mark.anyio
async def test_stats_and_reset(clock):
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=clock)
    await _trip(breaker, CountingCall(), times=2)

    stats = breaker.get_stats()
    assert stats['state'] == 'OPEN'
    assert stats['failure_count'] == 2
    assert stats['total_requests'] == 2
    assert stats['retry_after'] == pytest.approx(30)
    assert stats['last_failure_time'] is not None
    assert not breaker.is_healthy()

    breaker.reset()
    stats = breaker.get_stats()
    assert stats['state'] == 'CLOSED'
    assert stats['failure_count'] == 0
    assert stats['total_requests'] == 2
    assert breaker.is_healthy()
