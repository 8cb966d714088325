import asyncio
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import pytest

from apiload.errors import TransportError
from apiload.executor import TransportResponse
from apiload.types import ConcurrencyProfile, EndpointSpec, Expectation, RetryPolicy

Scripted = Union[TransportResponse, Exception]


def ok(body: bytes = b'{"title": "foo"}', status: int = 200, elapsed: float = 0.01) -> TransportResponse:
    return TransportResponse(status=status, body=body, elapsed=elapsed)


class FakeTransport:
    """Scripted transport. Responses are used in order; the last one repeats."""

    def __init__(
        self,
        responses: Optional[Sequence[Scripted]] = None,
        *,
        delay: float = 0.0,
        on_send: Optional[Callable[["FakeTransport"], None]] = None,
    ):
        self.responses: List[Scripted] = list(responses or [ok()])
        self.delay = delay
        self.on_send = on_send
        self.calls: List[Tuple[str, str, Tuple[Tuple[str, str], ...], bytes]] = []
        self.completed = 0

    async def send(self, method, url, headers, body, *, timeout) -> TransportResponse:
        self.calls.append((method, url, tuple(headers), body))
        if self.delay:
            await asyncio.sleep(self.delay)
        item: Any = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        self.completed += 1
        if self.on_send is not None:
            self.on_send(self)
        if isinstance(item, Exception):
            raise item
        return item


def make_spec(
    *,
    name: str = "posts",
    status: int = 200,
    max_duration: Optional[float] = None,
    values=(),
    retry: int = 0,
    retry_delay: float = 0.0,
    users: int = 0,
    total: int = 0,
    delay: float = 0.0,
) -> EndpointSpec:
    return EndpointSpec(
        name=name,
        url="http://api.test/posts/1",
        method="GET",
        expect=Expectation(status=status, max_duration=max_duration, values=tuple(values)),
        retry=RetryPolicy(count=retry, delay=retry_delay),
        concurrent=ConcurrencyProfile(users=users, delay=delay, total=total),
    )


class RecordingSink:
    def __init__(self):
        self.events: List[Tuple[Any, ...]] = []

    def test_started(self, endpoint, method, url):
        self.events.append(("test_started", endpoint))

    def request_completed(self, request_id, endpoint, duration, status_code):
        self.events.append(("request_completed", endpoint, status_code))

    def request_failed(self, request_id, endpoint, error):
        self.events.append(("request_failed", endpoint, error))

    def validation_warning(self, endpoint, message):
        self.events.append(("validation_warning", endpoint, message))

    def kinds(self) -> List[str]:
        return [e[0] for e in self.events]


@pytest.fixture
def connection_refused() -> TransportError:
    return TransportError("ClientConnectorError: connection refused")
