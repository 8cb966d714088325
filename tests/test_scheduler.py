import asyncio
from collections import Counter

import pytest

from apiload.errors import ConfigurationError
from apiload.scheduler import run_concurrent

from conftest import FakeTransport, make_spec, ok


async def collect(agen, timeout=5.0):
    async def drain():
        return [r async for r in agen]

    return await asyncio.wait_for(drain(), timeout=timeout)


@pytest.mark.asyncio
async def test_requests_split_evenly_across_users():
    transport = FakeTransport(delay=0.001)
    spec = make_spec(users=5, total=50)

    records = await collect(run_concurrent(transport, spec))

    assert len(records) == 50
    assert len(transport.calls) == 50
    assert Counter(r.worker_id for r in records) == {i: 10 for i in range(5)}
    assert all(r.success for r in records)
    assert sorted(r.request_id for r in records) == list(range(1, 51))


@pytest.mark.asyncio
async def test_remainder_is_dropped():
    transport = FakeTransport()
    records = await collect(run_concurrent(transport, make_spec(users=5, total=52)))
    assert len(records) == 50
    assert len(transport.calls) == 50


@pytest.mark.asyncio
async def test_retries_consume_slots():
    transport = FakeTransport([ok(status=500)])
    spec = make_spec(users=1, total=6, retry=2)

    records = await collect(run_concurrent(transport, spec))

    assert len(records) == 6
    assert len(transport.calls) == 6
    # two logical attempts of three tries each
    assert [r.is_retry for r in records] == [False, True, True, False, True, True]
    assert not any(r.success for r in records)


@pytest.mark.asyncio
async def test_successful_slot_starts_a_new_logical_attempt():
    transport = FakeTransport([ok(status=500), ok(), ok()])
    records = await collect(run_concurrent(transport, make_spec(users=1, total=3, retry=2)))
    assert [r.is_retry for r in records] == [False, True, False]
    assert [r.success for r in records] == [False, True, True]


@pytest.mark.asyncio
async def test_cancelled_before_start_records_every_slot():
    cancel = asyncio.Event()
    cancel.set()
    transport = FakeTransport()
    records = await collect(run_concurrent(transport, make_spec(users=3, total=9), cancel=cancel))
    assert transport.calls == []
    assert len(records) == 9
    assert all(r.error_kind == "cancelled" for r in records)


@pytest.mark.asyncio
async def test_cancellation_mid_run_keeps_in_flight_results():
    cancel = asyncio.Event()

    def cancel_after_two(t):
        if t.completed == 2:
            cancel.set()

    # every user's first request is in flight when the signal arrives
    transport = FakeTransport(delay=0.05, on_send=cancel_after_two)
    spec = make_spec(users=5, total=10, delay=1.0)

    records = await collect(run_concurrent(transport, spec, cancel=cancel))

    assert len(records) == 10
    assert len(transport.calls) == 5
    kinds = Counter(r.error_kind for r in records)
    assert kinds == {None: 5, "cancelled": 5}
    assert all(r.worker_id is not None for r in records)


@pytest.mark.asyncio
async def test_closing_the_stream_stops_workers():
    transport = FakeTransport(delay=0.01)
    agen = run_concurrent(transport, make_spec(users=2, total=200))
    first = await agen.__anext__()
    assert first.success
    await agen.aclose()
    calls = len(transport.calls)
    await asyncio.sleep(0.05)
    assert len(transport.calls) == calls
    assert calls < 200


@pytest.mark.asyncio
async def test_requires_users():
    with pytest.raises(ConfigurationError):
        await collect(run_concurrent(FakeTransport(), make_spec(users=0, total=10)))


@pytest.mark.asyncio
async def test_closing_with_a_full_queue_does_not_hang():
    transport = FakeTransport()
    agen = run_concurrent(transport, make_spec(users=2, total=200))
    await agen.__anext__()
    # workers refill the bounded queue while nobody reads it
    await asyncio.sleep(0.05)
    await asyncio.wait_for(agen.aclose(), timeout=2.0)
    assert len(transport.calls) < 200


class ExplodingSink:
    def validation_warning(self, endpoint, message):
        raise RuntimeError("sink exploded")


@pytest.mark.asyncio
async def test_failed_worker_slots_are_still_delivered():
    transport = FakeTransport([ok(status=500)])
    spec = make_spec(users=2, total=6)

    records = await collect(run_concurrent(transport, spec, sink=ExplodingSink()))

    assert len(records) == 6
    assert Counter(r.worker_id for r in records) == {0: 3, 1: 3}
    assert all(r.error_kind == "transport" for r in records)
    assert all(r.error == "worker failed: RuntimeError: sink exploded" for r in records)


@pytest.mark.asyncio
async def test_unexpected_transport_exception_is_a_transport_failure():
    transport = FakeTransport([RuntimeError("unexpected"), ok()])
    records = await collect(run_concurrent(transport, make_spec(users=2, total=4)))

    assert len(records) == 4
    failed = [r for r in records if not r.success]
    assert len(failed) == 1
    assert failed[0].error_kind == "transport"
    assert failed[0].error == "RuntimeError: unexpected"
