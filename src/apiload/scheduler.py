# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import AsyncIterator, Optional

from tqdm import tqdm

from .errors import ConfigurationError
from .events import EventSink
from .executor import CLIENT_TIMEOUT_S, Transport
from .retry import AttemptState, RetryController, attempt_once, cancelled_record, failed_record, pause
from .types import EndpointSpec, RequestRecord

logger = logging.getLogger(__name__)

_END = object()


async def run_concurrent(
    transport: Transport,
    spec: EndpointSpec,
    *,
    cancel: Optional[asyncio.Event] = None,
    sink: Optional[EventSink] = None,
    progress: bool = False,
    timeout: float = CLIENT_TIMEOUT_S,
) -> AsyncIterator[RequestRecord]:
    """Spread ``spec.concurrent.total`` requests over ``users`` workers and yield each outcome.

    Every worker owns ``total // users`` slots and fills them one after another.
    Each slot is a single HTTP request: after a failure the worker's next slot
    retries the same logical attempt until the retry policy is spent, so retries
    eat into the worker's share. Outcomes are yielded in arrival order.

    Setting ``cancel`` stops workers between requests; every slot a worker did
    not start is yielded as a cancelled record. Requests already in flight run
    to completion and are delivered. A worker that dies on an unexpected
    exception has its undelivered slots yielded as failed records.
    """
    profile = spec.concurrent
    if profile.users <= 0:
        raise ConfigurationError(f"endpoint {spec.name}: concurrent run needs users > 0")
    per_user = profile.requests_per_user
    if profile.dropped:
        logger.warning(
            "endpoint %s: %d requests do not divide evenly across %d users; dropping %d",
            spec.name,
            profile.total,
            profile.users,
            profile.dropped,
        )

    cancel = cancel if cancel is not None else asyncio.Event()
    queue: asyncio.Queue = asyncio.Queue(maxsize=2 * profile.users)
    ids = itertools.count(1)
    # slots each worker has delivered to the queue
    delivered = [0] * profile.users

    async def put(worker_id: int, record: RequestRecord) -> None:
        await queue.put(record)
        delivered[worker_id] += 1

    async def worker(worker_id: int) -> None:
        ctl = RetryController(spec.retry, cancel=cancel)
        for slot in range(per_user):
            if cancel.is_set():
                for _ in range(slot, per_user):
                    await put(worker_id, cancelled_record(next(ids), worker_id=worker_id))
                return
            is_retry = ctl.state is AttemptState.RETRYING
            if ctl.state in (AttemptState.SUCCESS, AttemptState.EXHAUSTED):
                ctl.reset()
            request_id = next(ids)
            attempt = await attempt_once(transport, spec, sink=sink, timeout=timeout)
            state = ctl.observe(attempt)
            await put(worker_id, attempt.to_record(request_id, worker_id=worker_id, is_retry=is_retry))

            if slot + 1 < per_user:
                await pause(profile.delay, cancel)
                if state is AttemptState.RETRYING and not cancel.is_set():
                    await ctl.wait_before_retry()

    async def close_when_done() -> None:
        results = await asyncio.gather(*workers, return_exceptions=True)
        for worker_id, result in enumerate(results):
            if not isinstance(result, Exception):
                continue
            logger.error("endpoint %s: user %d failed", spec.name, worker_id, exc_info=result)
            error = f"worker failed: {type(result).__name__}: {result}"
            for _ in range(delivered[worker_id], per_user):
                await queue.put(failed_record(next(ids), error, worker_id=worker_id))
        # only after every worker has stopped
        await queue.put(_END)

    workers = [
        asyncio.create_task(worker(i), name=f"{spec.name}-user-{i}") for i in range(profile.users)
    ]
    closer = asyncio.create_task(close_when_done())
    bar = tqdm(total=per_user * profile.users, desc=spec.name, disable=not progress)
    try:
        while True:
            item = await queue.get()
            if item is _END:
                break
            bar.update(1)
            yield item
        await closer
    finally:
        bar.close()
        pending = [t for t in (*workers, closer) if not t.done()]
        for t in pending:
            t.cancel()
        # nobody reads the queue any more; unblock producers waiting on a full queue
        while not queue.empty():
            queue.get_nowait()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
