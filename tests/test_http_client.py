from __future__ import annotations

import threading

import pytest
import requests

from kemono_dl.errors import DecodeError, HttpStatusError, RateLimitExhaustedError, TransportError
from kemono_dl.http_client import BackoffPolicy, Fetcher, RateLimiter, call_with_retries
from tests.conftest import FakeClock, FakeResponse

URL = "https://kemono.test/api/v1/patreon/user/1/profile"


def test_rate_limiter_spaces_consecutive_calls():
    clock = FakeClock()
    limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)

    limiter.wait()
    clock.now += 0.25
    limiter.wait()
    limiter.wait()

    assert clock.slept == pytest.approx([0.75, 1.0])


def test_rate_limiter_does_not_sleep_after_idle_period():
    clock = FakeClock()
    limiter = RateLimiter(2.0, clock=clock, sleep=clock.sleep)

    limiter.wait()
    clock.now += 5
    limiter.wait()

    assert clock.slept == []


def test_rate_limiter_zero_rate_never_sleeps():
    clock = FakeClock()
    limiter = RateLimiter(0, clock=clock, sleep=clock.sleep)
    for _ in range(3):
        limiter.wait()
    assert clock.slept == []


def test_rate_limiter_spaces_concurrent_callers():
    clock = FakeClock()
    limiter = RateLimiter(4.0, clock=clock, sleep=clock.sleep)
    times = []
    times_lock = threading.Lock()

    def worker():
        for _ in range(5):
            t = limiter.wait()
            with times_lock:
                times.append(t)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert not any(t.is_alive() for t in threads)
    assert len(times) == 40
    times.sort()
    gaps = [b - a for a, b in zip(times, times[1:])]
    assert all(g >= limiter.min_interval - 1e-9 for g in gaps)
    assert times[-1] - times[0] == pytest.approx(39 * limiter.min_interval)


def test_backoff_policy_delays():
    assert [BackoffPolicy(5, 1.0, 2.0).delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]
    assert [BackoffPolicy(3, 2.0, 1.0).delay(n) for n in (1, 2)] == [2.0, 2.0]


def test_backoff_policy_rejects_bad_values():
    with pytest.raises(ValueError):
        BackoffPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        BackoffPolicy(base_delay=-1)


def test_call_with_retries_stops_on_non_retryable():
    calls = []
    slept = []

    def fn():
        calls.append(1)
        raise KeyError("boom")

    with pytest.raises(KeyError):
        call_with_retries(fn, policy=BackoffPolicy(5, 1.0), is_retryable=lambda e: False, sleep_fn=slept.append)
    assert len(calls) == 1
    assert slept == []


def test_call_with_retries_reraises_last_error_after_budget():
    calls = []
    slept = []

    def fn():
        calls.append(1)
        raise ValueError(f"attempt {len(calls)}")

    with pytest.raises(ValueError, match="attempt 3"):
        call_with_retries(fn, policy=BackoffPolicy(3, 0.5), is_retryable=lambda e: True, sleep_fn=slept.append)
    assert len(calls) == 3
    assert slept == [0.5, 1.0]


def test_fetcher_retries_429_with_exponential_backoff(session, sleeps, fetcher):
    session.add(URL, FakeResponse(429), FakeResponse(429), FakeResponse(200, {"id": "1"}))

    assert fetcher.get_json(URL) == {"id": "1"}
    assert len(session.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_fetcher_429_exhaustion(session, sleeps, fetcher):
    session.add(URL, FakeResponse(429))

    with pytest.raises(RateLimitExhaustedError) as info:
        fetcher.get_json(URL)
    assert info.value.attempts == 5
    assert len(session.calls) == 5
    assert sleeps == [1.0, 2.0, 4.0, 8.0]


def test_fetcher_other_status_fails_without_retry(session, sleeps, fetcher):
    session.add(URL, FakeResponse(503, "maintenance"))

    with pytest.raises(HttpStatusError) as info:
        fetcher.get_json(URL)
    assert info.value.status_code == 503
    assert "maintenance" in info.value.body
    assert len(session.calls) == 1
    assert sleeps == []


def test_fetcher_transport_error_is_not_retried(session, sleeps, fetcher):
    session.add(URL, requests.ConnectTimeout("timed out"))

    with pytest.raises(TransportError):
        fetcher.get_json(URL)
    assert len(session.calls) == 1
    assert sleeps == []


def test_fetcher_malformed_json(session, fetcher):
    session.add(URL, FakeResponse(200, b"<html>not json</html>"))

    with pytest.raises(DecodeError):
        fetcher.get_json(URL)


def test_fetcher_acquires_limiter_for_every_attempt(session):
    waits = []

    class CountingLimiter(RateLimiter):
        def wait(self) -> float:
            waits.append(1)
            return 0.0

    session.add(URL, FakeResponse(429), FakeResponse(200, []))
    fetcher = Fetcher(CountingLimiter(0), session=session, sleep=lambda s: None)

    assert fetcher.get_json(URL) == []
    assert len(waits) == 2
