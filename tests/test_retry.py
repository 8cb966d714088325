import asyncio

import pytest

from apiload.executor import TransportResponse
from apiload.retry import AttemptState, RetryController, attempt_once
from apiload.types import RetryPolicy, ValueCheck
from apiload.values import CheckValue

from conftest import FakeTransport, make_spec, ok


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_server_error_retried_until_exhausted():
    transport = FakeTransport([ok(status=500)])
    spec = make_spec(retry=2, retry_delay=0.5)
    sleep = SleepRecorder()
    ctl = RetryController(spec.retry, sleep=sleep)

    result = await ctl.run(lambda: attempt_once(transport, spec))

    assert len(transport.calls) == 3
    assert result.state is AttemptState.EXHAUSTED
    assert result.attempts == 3
    assert sleep.delays == [0.5, 0.5]
    assert result.attempt.validation.violations == ("expected status code 200, got 500",)


@pytest.mark.asyncio
async def test_valid_response_stops_retrying():
    transport = FakeTransport([ok(status=500), ok()])
    spec = make_spec(retry=5)
    result = await RetryController(spec.retry, sleep=SleepRecorder()).run(lambda: attempt_once(transport, spec))
    assert result.state is AttemptState.SUCCESS
    assert result.attempts == 2
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_transport_error_is_retried(connection_refused):
    transport = FakeTransport([connection_refused, ok()])
    spec = make_spec(retry=1)
    result = await RetryController(spec.retry, sleep=SleepRecorder()).run(lambda: attempt_once(transport, spec))
    assert result.state is AttemptState.SUCCESS
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_transport_error_exhausted_reports_error(connection_refused):
    transport = FakeTransport([connection_refused])
    spec = make_spec(retry=1)
    result = await RetryController(spec.retry, sleep=SleepRecorder()).run(lambda: attempt_once(transport, spec))
    assert result.state is AttemptState.EXHAUSTED
    record = result.attempt.to_record(1, attempts=result.attempts)
    assert record.status_code == 0
    assert record.error_kind == "transport"
    assert record.response_size is None
    assert "connection refused" in record.error


@pytest.mark.asyncio
async def test_no_retries_means_single_attempt():
    transport = FakeTransport([ok(status=404)])
    spec = make_spec()
    result = await RetryController(spec.retry).run(lambda: attempt_once(transport, spec))
    assert result.state is AttemptState.EXHAUSTED
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_cancelled_before_first_attempt():
    cancel = asyncio.Event()
    cancel.set()
    transport = FakeTransport()
    spec = make_spec(retry=3)
    result = await RetryController(spec.retry, cancel=cancel).run(lambda: attempt_once(transport, spec))
    assert result.state is AttemptState.CANCELLED
    assert result.attempt is None
    assert transport.calls == []


@pytest.mark.asyncio
async def test_cancellation_is_not_retried():
    cancel = asyncio.Event()
    transport = FakeTransport([ok(status=500)], on_send=lambda t: cancel.set())
    spec = make_spec(retry=3, retry_delay=10.0)
    result = await asyncio.wait_for(
        RetryController(spec.retry, cancel=cancel).run(lambda: attempt_once(transport, spec)),
        timeout=2.0,
    )
    assert result.state is AttemptState.CANCELLED
    assert result.attempts == 1
    assert len(transport.calls) == 1


def test_observe_after_terminal_state_raises():
    ctl = RetryController(RetryPolicy(count=0))
    ctl.state = AttemptState.SUCCESS
    with pytest.raises(RuntimeError):
        ctl.observe(object())


@pytest.mark.asyncio
async def test_validation_failure_record_lists_violations():
    transport = FakeTransport([ok(status=404, body=b"[]")])
    spec = make_spec(values=[ValueCheck("id", CheckValue.of(1))])
    attempt = await attempt_once(transport, spec)

    record = attempt.to_record(7, worker_id=2)
    assert not record.success
    assert record.error_kind == "validation"
    assert record.status_code == 404
    assert record.response_size == 2
    assert record.error == (
        "validation failed: expected status code 200, got 404; "
        "failed to parse response body as a JSON object: top-level value is list, not an object"
    )


@pytest.mark.asyncio
async def test_record_keeps_response_headers():
    headers = (("Content-Type", "application/json"), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"))
    transport = FakeTransport([TransportResponse(status=200, body=b"{}", headers=headers, elapsed=0.01)])
    attempt = await attempt_once(transport, make_spec())
    assert attempt.to_record(1).headers == headers


@pytest.mark.asyncio
async def test_transport_failure_record_has_no_headers(connection_refused):
    attempt = await attempt_once(FakeTransport([connection_refused]), make_spec())
    assert attempt.to_record(1).headers == ()
