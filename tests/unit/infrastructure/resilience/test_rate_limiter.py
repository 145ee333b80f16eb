import asyncio

import pytest

from trlo.infrastructure.resilience.rate_limiter import RateLimiter


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_burst_up_to_capacity_does_not_wait(clock):
    limiter = RateLimiter(capacity=3, refill_rate=1.0, clock=clock, sleep=clock.sleep)

    async def _go():
        return [await limiter.wait_for_permission() for _ in range(3)]

    assert asyncio.run(_go()) == [0.0, 0.0, 0.0]
    assert clock.sleeps == []


def test_waits_for_refill_when_empty(clock):
    limiter = RateLimiter(capacity=2, refill_rate=4.0, clock=clock, sleep=clock.sleep)

    async def _go():
        await limiter.wait_for_permission()
        await limiter.wait_for_permission()
        return await limiter.wait_for_permission()

    waited = asyncio.run(_go())

    assert waited == pytest.approx(0.25)
    assert clock.sleeps == [pytest.approx(0.25)]


def test_tokens_refill_over_time_but_not_past_capacity(clock):
    limiter = RateLimiter(capacity=5, refill_rate=10.0, clock=clock, sleep=clock.sleep)

    async def _go():
        for _ in range(5):
            await limiter.wait_for_permission()
        clock.now += 100
        return await limiter.get_wait_time()

    assert asyncio.run(_go()) == 0.0
    assert limiter.available_tokens == pytest.approx(5.0)


def test_get_wait_time_estimates_next_token(clock):
    limiter = RateLimiter(capacity=1, refill_rate=2.0, clock=clock, sleep=clock.sleep)

    async def _go():
        await limiter.wait_for_permission()
        return await limiter.get_wait_time()

    assert asyncio.run(_go()) == pytest.approx(0.5)


@pytest.mark.parametrize("kwargs", [{"capacity": 0}, {"refill_rate": 0}])
def test_invalid_configuration_is_rejected(kwargs):
    with pytest.raises(ValueError):
        RateLimiter(**kwargs)
