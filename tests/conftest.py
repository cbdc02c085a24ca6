"""Shared fixtures: an in-process HTTP server and a simulated clock."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from restrik.cancel import CancelToken
from restrik.client import Client

BASE_URL = "https://api.test"


class Server:
    """Scripted responses keyed by (method, path); the last reply for a route repeats."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[dict[str, Any]]] = defaultdict(list)
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> Server:
        self.routes[(method, path)].append(
            {"status": status, "json": json, "headers": headers or {}, "content": content}
        )
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self.routes.get((request.method, request.url.path))
        if not replies:
            return httpx.Response(404)
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if reply["content"] is not None:
            return httpx.Response(reply["status"], content=reply["content"], headers=reply["headers"])
        if reply["json"] is None:
            return httpx.Response(reply["status"], headers=reply["headers"])
        return httpx.Response(reply["status"], json=reply["json"], headers=reply["headers"])

    def calls(self, method: str | None = None, path: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if (method is None or r.method == method) and (path is None or r.url.path == path)
        ]


class FakeClock:
    def __init__(self) -> None:
        self.current = datetime(2024, 1, 1, tzinfo=UTC)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class RecordingToken(CancelToken):
    """Cancel token whose sleeps advance a fake clock instead of blocking."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        super().__init__()
        self.clock = clock
        self.sleeps: list[float] = []

    def sleep(self, seconds: float) -> None:
        self.check()
        self.sleeps.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


@pytest.fixture
def server() -> Server:
    return Server()


@pytest.fixture
def client(server: Server) -> Iterator[Client]:
    http = httpx.Client(transport=httpx.MockTransport(server))
    yield Client(BASE_URL, http=http)
    http.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token(clock: FakeClock) -> RecordingToken:
    return RecordingToken(clock)
