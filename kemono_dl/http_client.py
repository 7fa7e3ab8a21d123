"""HTTP plumbing for kemono-dl.

- `RateLimiter` spaces out every outgoing request (shared by all call sites)
- `BackoffPolicy` + `call_with_retries` implement the retry loop once
- `Fetcher` wraps a requests.Session and classifies responses
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar, Union

import requests

from kemono_dl.errors import (
    DecodeError,
    HttpStatusError,
    RateLimitedError,
    RateLimitExhaustedError,
    TransportError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_TIMEOUT = 120.0

Timeout = Union[float, Tuple[float, float]]


class RateLimiter:
    """Minimum-interval limiter: at most `requests_per_second` calls to `wait()` per second.

    Callers are serialized through a lock, so concurrent callers queue up
    first-come-first-served. A rate <= 0 disables the spacing entirely.
    """

    def __init__(
        self,
        requests_per_second: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        rate = float(requests_per_second)
        self.min_interval = 1.0 / rate if rate > 0 else 0.0
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """Block until the next request may go out; returns the recorded call time."""
        with self._lock:
            if self._last is not None and self.min_interval > 0:
                elapsed = self._clock() - self._last
                if elapsed < self.min_interval:
                    self._sleep(self.min_interval - elapsed)
            self._last = self._clock()
            return self._last


@dataclass(frozen=True)
class BackoffPolicy:
    """Retry policy.

    - max_attempts counts the initial attempt (max_attempts=5 => 1 try + 4 retries).
    - base_delay is the sleep after the first failure.
    - factor is the growth per failure; 1.0 gives a fixed delay.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")

    def delay(self, failure_attempt: int) -> float:
        # failure_attempt=1 => base delay
        exponent = max(0, int(failure_attempt) - 1)
        return float(self.base_delay) * (float(self.factor) ** exponent)


DATA_POLICY = BackoffPolicy(max_attempts=5, base_delay=1.0, factor=2.0)
DOWNLOAD_POLICY = BackoffPolicy(max_attempts=5, base_delay=1.0, factor=2.0)
PAGE_POLICY = BackoffPolicy(max_attempts=3, base_delay=2.0, factor=1.0)


@dataclass(frozen=True)
class RetryEvent:
    operation: str
    failure_attempt: int
    max_attempts: int
    delay_seconds: float
    error: BaseException


def log_retry(event: RetryEvent) -> None:
    logger.warning(
        "%s failed (attempt %d/%d): %s. Retrying in %.0fs...",
        event.operation,
        event.failure_attempt,
        event.max_attempts,
        event.error,
        event.delay_seconds,
    )


def call_with_retries(
    fn: Callable[[], T],
    *,
    policy: BackoffPolicy,
    is_retryable: Callable[[BaseException], bool],
    operation: str = "operation",
    sleep_fn: Optional[Callable[[float], None]] = None,
    on_retry: Optional[Callable[[RetryEvent], None]] = log_retry,
) -> T:
    """Call fn() until it succeeds, a non-retryable error occurs or attempts run out.

    The last exception is re-raised unchanged so callers can translate it.
    """
    sleeper = sleep_fn or time.sleep
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= policy.max_attempts:
                raise
            delay = policy.delay(attempt)
            if on_retry is not None:
                on_retry(RetryEvent(operation, attempt, policy.max_attempts, delay, exc))
            if delay > 0:
                sleeper(delay)
    # unreachable; the loop either returns or raises
    raise RuntimeError(f"retry loop exited unexpectedly for {operation}")


def is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, RateLimitedError)


def _response_text(resp: requests.Response) -> str:
    try:
        return resp.text
    except Exception:
        return "(unable to read response body)"


class Fetcher:
    """Performs one logical request with rate limiting and 429 backoff.

    Transport errors and non-429 statuses fail on the first attempt; only
    HTTP 429 is retried, following `policy`.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        session: Optional[requests.Session] = None,
        policy: BackoffPolicy = DATA_POLICY,
        timeout: Timeout = (DEFAULT_CONNECT_TIMEOUT, DEFAULT_TIMEOUT),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.limiter = limiter
        self.session = session if session is not None else requests.Session()
        self.policy = policy
        self.timeout = timeout
        self._sleep = sleep

    def _attempt(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        stream: bool,
        timeout: Timeout,
        on_attempt: Optional[Callable[[], None]] = None,
    ) -> requests.Response:
        self.limiter.wait()
        if on_attempt is not None:
            on_attempt()
        try:
            resp = self.session.request(method, url, headers=headers, stream=stream, timeout=timeout)
        except requests.RequestException as exc:
            raise TransportError(f"request to {url} failed: {exc}") from exc

        if resp.status_code == 429:
            resp.close()
            raise RateLimitedError(url=url)
        if not 200 <= resp.status_code < 300:
            body = _response_text(resp)
            resp.close()
            raise HttpStatusError(resp.status_code, body, url=url)
        return resp

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        stream: bool = False,
        timeout: Optional[Timeout] = None,
        policy: Optional[BackoffPolicy] = None,
        operation: Optional[str] = None,
        on_attempt: Optional[Callable[[], None]] = None,
    ) -> requests.Response:
        """Return the 2xx response for `url`. The caller owns (and closes) it.

        `on_attempt` is called once per attempt, right before the request is sent.
        """
        pol = policy or self.policy
        try:
            return call_with_retries(
                lambda: self._attempt(method, url, dict(headers or {}), stream, timeout or self.timeout, on_attempt),
                policy=pol,
                is_retryable=is_rate_limited,
                operation=operation or f"{method} {url}",
                sleep_fn=self._sleep,
            )
        except RateLimitedError as exc:
            raise RateLimitExhaustedError(url, pol.max_attempts) from exc

    def get_json(self, url: str, headers: Optional[Dict[str, str]] = None, operation: Optional[str] = None) -> Any:
        resp = self.request("GET", url, headers=headers, operation=operation)
        try:
            body = resp.content
        except requests.RequestException as exc:
            raise TransportError(f"failed to read response body from {url}: {exc}") from exc
        finally:
            resp.close()
        try:
            return json.loads(body)
        except ValueError as exc:
            raise DecodeError(f"failed to decode JSON from {url}: {exc}") from exc
