from __future__ import annotations

import json
from collections import defaultdict, deque
from pathlib import Path
import sys
from typing import Any, Dict, List, Optional

import pytest
import requests

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from kemono_dl.http_client import Fetcher, RateLimiter


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        body: Any = b"",
        headers: Optional[Dict[str, str]] = None,
        chunk_size: int = 4,
        fail_after_chunks: Optional[int] = None,
    ) -> None:
        if isinstance(body, (dict, list)):
            body = json.dumps(body).encode("utf-8")
        elif isinstance(body, str):
            body = body.encode("utf-8")
        self.status_code = status_code
        self.content = body
        self.headers = dict(headers or {})
        self.chunk_size = chunk_size
        self.fail_after_chunks = fail_after_chunks
        self.closed = False

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def iter_content(self, chunk_size: int = 1):
        for i, start in enumerate(range(0, len(self.content), self.chunk_size)):
            if self.fail_after_chunks is not None and i >= self.fail_after_chunks:
                raise requests.ConnectionError("connection reset mid-stream")
            yield self.content[start : start + self.chunk_size]

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self) -> None:
        self.now = 100.0
        self.slept = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.now += seconds


class FakeSession:
    """Serves queued responses (or raises queued exceptions) per URL, recording calls."""

    def __init__(self) -> None:
        self.routes: Dict[str, deque] = defaultdict(deque)
        self.calls: List[Dict[str, Any]] = []

    def add(self, url: str, *responses: Any) -> "FakeSession":
        self.routes[url].extend(responses)
        return self

    def urls(self) -> List[str]:
        return [c["url"] for c in self.calls]

    def request(self, method, url, headers=None, stream=False, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": dict(headers or {}), "stream": stream, "timeout": timeout})
        queue = self.routes.get(url)
        if not queue:
            return FakeResponse(404, b"not found")
        item = queue[0] if len(queue) == 1 else queue.popleft()
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        pass


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fetcher(session: FakeSession, sleeps: List[float]) -> Fetcher:
    return Fetcher(RateLimiter(0), session=session, sleep=sleeps.append)
