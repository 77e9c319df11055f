import asyncio

import pytest

from tracklinks.errors import parse_retry_after
from tracklinks.utils.retry import backoff_delay_ms
from tracklinks.utils.scheduler import StopSignal


def test_backoff_delay_honours_retry_hint_and_cap() -> None:
    assert backoff_delay_ms(0, base_ms=1_000, max_ms=30_000) == 1_000
    assert backoff_delay_ms(3, base_ms=1_000, max_ms=30_000) == 8_000
    assert backoff_delay_ms(10, base_ms=1_000, max_ms=30_000) == 30_000
    assert backoff_delay_ms(0, base_ms=1_000, max_ms=30_000, retry_after_ms=5_000) == 5_000
    assert backoff_delay_ms(0, base_ms=1_000, max_ms=30_000, retry_after_ms=90_000) == 30_000


def test_parse_retry_after() -> None:
    assert parse_retry_after("2") == 2_000
    assert parse_retry_after("0.5") == 500
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0
    assert parse_retry_after("soon") is None
    assert parse_retry_after(None) is None


@pytest.mark.asyncio
async def test_stop_signal_interrupts_sleep() -> None:
    signal = StopSignal()
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, signal.set)

    started = loop.time()
    interrupted = await signal.sleep(10_000)

    assert interrupted
    assert loop.time() - started < 1


@pytest.mark.asyncio
async def test_stop_signal_sleep_elapses_without_stop() -> None:
    signal = StopSignal()

    assert await signal.sleep(5) is False
    assert await signal.sleep(0) is False
    signal.set()
    assert await signal.sleep(5) is True
