import asyncio
import time

import pytest

from core.config import Settings


class FakeClock:
    """Manually advanced wall clock for TTL tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
    """Poll ``predicate`` on the event loop until it is truthy."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        supabase_url="https://project.supabase.co",
        supabase_service_key="service-key",
        cache_clear_token="secret-token",
        queue_drain_delay=0.01,
        queue_job_timeout=1.0,
        cleanup_enabled=False,
    )
