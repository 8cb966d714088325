# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .aggregator import ResultAggregator
from .config import validate_endpoints
from .events import EventSink, SafeEventSink
from .executor import CLIENT_TIMEOUT_S, Transport
from .retry import RetryController, attempt_once, cancelled_record
from .scheduler import run_concurrent
from .types import EndpointSpec, EndpointSummary, GlobalStats, RequestRecord, RunSummary

logger = logging.getLogger(__name__)


class Runner:
    """Runs endpoints one after another and collects their summaries.

    Endpoints with ``concurrent.users > 0`` go through the scheduler; all others
    make one logical attempt through the retry controller.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        sink: Optional[EventSink] = None,
        progress: bool = False,
        keep_records: bool = True,
        timeout: float = CLIENT_TIMEOUT_S,
    ):
        self.transport = transport
        self.sink = SafeEventSink(sink)
        self.progress = progress
        self.keep_records = keep_records
        self.timeout = timeout

    async def run(
        self,
        endpoints: Sequence[EndpointSpec],
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> RunSummary:
        """Run every endpoint and return the sealed summary.

        Raises :class:`~apiload.errors.ConfigurationError` before sending anything
        if an endpoint cannot be run. Once ``cancel`` is set the endpoint in
        progress is finished with cancelled slots, later endpoints are skipped
        and the summary is marked ``cancelled``.
        """
        validate_endpoints(endpoints)
        cancel = cancel if cancel is not None else asyncio.Event()

        started_at = datetime.now(timezone.utc)
        t0 = time.perf_counter()
        summaries: List[EndpointSummary] = []
        for i, endpoint in enumerate(endpoints):
            if cancel.is_set():
                logger.warning("Run cancelled; skipping %d remaining endpoint(s)", len(endpoints) - i)
                break
            summaries.append(await self.run_endpoint(endpoint, cancel=cancel))
        wall = time.perf_counter() - t0

        return seal_run(
            summaries,
            started_at=started_at,
            ended_at=datetime.now(timezone.utc),
            wall_time_s=wall,
            cancelled=cancel.is_set(),
        )

    async def run_endpoint(
        self,
        spec: EndpointSpec,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> EndpointSummary:
        self.sink.test_started(spec.name, spec.method, spec.url)
        agg = ResultAggregator(spec, keep_records=self.keep_records)

        started_at = datetime.now(timezone.utc)
        t0 = time.perf_counter()
        if spec.is_concurrent:
            records = run_concurrent(
                self.transport,
                spec,
                cancel=cancel,
                sink=self.sink,
                progress=self.progress,
                timeout=self.timeout,
            )
            async for record in records:
                agg.add(self._emit(spec, record))
        else:
            agg.add(self._emit(spec, await self._run_single(spec, cancel)))
        wall = time.perf_counter() - t0

        summary = agg.finalize(started_at=started_at, ended_at=datetime.now(timezone.utc), wall_time_s=wall)
        logger.info(
            "Test %s completed: total=%d success=%d failure=%d users=%d per_user=%d",
            spec.name,
            summary.total_requests,
            summary.success_count,
            summary.failure_count,
            spec.concurrent.users,
            spec.concurrent.requests_per_user,
        )
        return summary

    async def _run_single(self, spec: EndpointSpec, cancel: Optional[asyncio.Event]) -> RequestRecord:
        ctl = RetryController(spec.retry, cancel=cancel)
        result = await ctl.run(
            lambda: attempt_once(self.transport, spec, sink=self.sink, timeout=self.timeout)
        )
        if result.attempt is None:
            return cancelled_record(1)
        return result.attempt.to_record(1, attempts=result.attempts)

    def _emit(self, spec: EndpointSpec, record: RequestRecord) -> RequestRecord:
        if record.success:
            self.sink.request_completed(record.request_id, spec.name, record.duration, record.status_code)
        else:
            self.sink.request_failed(record.request_id, spec.name, record.error or "request failed")
        return record


def seal_run(
    summaries: Sequence[EndpointSummary],
    *,
    started_at: datetime,
    ended_at: datetime,
    wall_time_s: float,
    cancelled: bool = False,
) -> RunSummary:
    """Compute run-level roll-ups over finished endpoint summaries."""
    total_requests = sum(s.total_requests for s in summaries)
    successes = sum(s.success_count for s in summaries)
    timed = [s for s in summaries if s.success_count > 0]

    # average latency weighted by the number of successful requests behind it
    avg = sum(s.average_latency * s.success_count for s in timed) / successes if successes else 0.0

    stats = GlobalStats(
        average_latency=avg,
        min_latency=min((s.min_latency for s in timed), default=0.0),
        max_latency=max((s.max_latency for s in timed), default=0.0),
        total_errors=sum(s.failure_count for s in summaries),
        total_timeouts=sum(s.timeout_count for s in summaries),
        total_bytes=sum(s.bytes_transferred for s in summaries),
        requests_per_second=total_requests / wall_time_s if total_requests and wall_time_s > 0 else 0.0,
    )
    return RunSummary(
        endpoints=list(summaries),
        started_at=started_at,
        ended_at=ended_at,
        total_endpoints=len(summaries),
        total_requests=total_requests,
        success_rate=successes / total_requests * 100 if total_requests else 0.0,
        global_stats=stats,
        cancelled=cancelled,
    )
