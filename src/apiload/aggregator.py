# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from .types import EndpointSpec, EndpointSummary, LatencyPercentiles, RequestRecord, SizeStats

PERCENTILES = (("p50", 0.50), ("p75", 0.75), ("p90", 0.90), ("p95", 0.95), ("p99", 0.99))


def nearest_rank(sorted_values: np.ndarray, fraction: float) -> float:
    """Zero-indexed nearest rank: ``sorted_values[floor(fraction * n)]``."""
    return float(sorted_values[int(fraction * len(sorted_values))])


def latency_percentiles(latencies: Sequence[float]) -> LatencyPercentiles:
    if len(latencies) == 0:
        return LatencyPercentiles()
    arr = np.sort(np.asarray(latencies, dtype=np.float64))
    return LatencyPercentiles(**{name: nearest_rank(arr, f) for name, f in PERCENTILES})


class ResultAggregator:
    """Folds request records into an :class:`EndpointSummary`.

    Everything except percentiles is updated as records arrive, so arrival
    order does not matter. Percentiles need the full latency set and are
    computed in :meth:`finalize`.
    """

    def __init__(self, spec: EndpointSpec, *, keep_records: bool = True):
        self.spec = spec
        self.keep_records = keep_records

        self.total = 0
        self.successes = 0
        self.failures = 0
        self.timeouts = 0
        self.cancelled = 0
        self.retries = 0

        self.status_codes: Dict[int, int] = {}
        self.validation_failures: Dict[str, int] = {}
        self.errors: List[str] = []

        # latency over successful records only
        self.latencies: List[float] = []
        self.min_latency: Optional[float] = None
        self.max_latency = 0.0
        self.latency_sum = 0.0

        self.sized = 0
        self.bytes = 0
        self.min_size: Optional[int] = None
        self.max_size = 0

        self.records: List[RequestRecord] = []

    def add(self, record: RequestRecord) -> None:
        self.total += 1
        self.status_codes[record.status_code] = self.status_codes.get(record.status_code, 0) + 1
        self.retries += max(0, record.attempts - 1) + (1 if record.is_retry else 0)

        if record.success:
            self.successes += 1
            d = record.duration
            self.latencies.append(d)
            self.latency_sum += d
            if self.min_latency is None or d < self.min_latency:
                self.min_latency = d
            if d > self.max_latency:
                self.max_latency = d
        else:
            self.failures += 1
            for reason in set(record.violations):
                self.validation_failures[reason] = self.validation_failures.get(reason, 0) + 1
            if record.error_kind in ("transport", "cancelled") and record.error:
                if record.error not in self.errors:
                    self.errors.append(record.error)
            if record.timeout:
                self.timeouts += 1
            if record.error_kind == "cancelled":
                self.cancelled += 1

        if record.response_size is not None:
            size = record.response_size
            self.sized += 1
            self.bytes += size
            if self.min_size is None or size < self.min_size:
                self.min_size = size
            if size > self.max_size:
                self.max_size = size

        if self.keep_records:
            self.records.append(record)

    def extend(self, records: Iterable[RequestRecord]) -> None:
        for r in records:
            self.add(r)

    def finalize(self, *, started_at: datetime, ended_at: datetime, wall_time_s: float) -> EndpointSummary:
        total = self.total
        rps = total / wall_time_s if total > 0 and wall_time_s > 0 else 0.0
        error_rate = self.failures / total * 100 if total > 0 else 0.0
        sizes = SizeStats()
        if self.sized:
            sizes = SizeStats(min=self.min_size or 0, max=self.max_size, avg=self.bytes / self.sized)

        return EndpointSummary(
            name=self.spec.name,
            method=self.spec.method,
            url=self.spec.url,
            started_at=started_at,
            ended_at=ended_at,
            wall_time_s=wall_time_s,
            total_requests=total,
            success_count=self.successes,
            failure_count=self.failures,
            min_latency=self.min_latency or 0.0,
            max_latency=self.max_latency,
            average_latency=self.latency_sum / self.successes if self.successes else 0.0,
            percentiles=latency_percentiles(self.latencies),
            status_codes=dict(self.status_codes),
            validation_failures=dict(self.validation_failures),
            errors=list(self.errors),
            bytes_transferred=self.bytes,
            response_sizes=sizes,
            requests_per_second=rps,
            error_rate=error_rate,
            timeout_count=self.timeouts,
            cancelled_count=self.cancelled,
            retries=self.retries,
            is_concurrent=self.spec.is_concurrent,
            concurrent_users=self.spec.concurrent.users,
            records=list(self.records) if self.keep_records else None,
        )
