# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .values import CheckValue


@dataclass(frozen=True)
class ValueCheck:
    """Compare a top-level key of a JSON object body against an expected value."""

    path: str
    expected: CheckValue


@dataclass(frozen=True)
class Expectation:
    status: int = 200
    max_duration: Optional[float] = None  # seconds; None disables the check
    values: Tuple[ValueCheck, ...] = ()


@dataclass(frozen=True)
class RetryPolicy:
    count: int = 0        # extra attempts after the first
    delay: float = 0.0    # seconds slept before each retry


@dataclass(frozen=True)
class ConcurrencyProfile:
    users: int = 0
    delay: float = 0.0    # seconds between one worker's requests
    total: int = 0

    @property
    def requests_per_user(self) -> int:
        return self.total // self.users if self.users > 0 else 0

    @property
    def dropped(self) -> int:
        return self.total % self.users if self.users > 0 else 0


@dataclass(frozen=True)
class EndpointSpec:
    name: str
    url: str
    method: str = "GET"
    # Ordered pairs; duplicate names are sent as-is.
    headers: Tuple[Tuple[str, str], ...] = ()
    body: bytes = b""
    expect: Expectation = field(default_factory=Expectation)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    concurrent: ConcurrencyProfile = field(default_factory=ConcurrencyProfile)

    @property
    def is_concurrent(self) -> bool:
        return self.concurrent.users > 0


@dataclass(frozen=True)
class RawOutcome:
    """What came back from one HTTP attempt. ``error`` excludes status and body."""

    status: Optional[int]
    body: Optional[bytes]
    duration: float
    headers: Tuple[Tuple[str, str], ...] = ()
    error: Optional[str] = None
    timeout: bool = False

    @property
    def transport_failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class ValidationOutcome:
    is_valid: bool
    violations: Tuple[str, ...]
    duration: float
    status_code: int
    response_size: int


@dataclass(frozen=True)
class RequestRecord:
    """One outcome delivered to the aggregator."""

    request_id: int
    worker_id: Optional[int]
    started_at: datetime
    duration: float
    status_code: int            # 0 when no response was received
    success: bool
    response_size: Optional[int] = None
    headers: Tuple[Tuple[str, str], ...] = ()   # response headers, when a response arrived
    violations: Tuple[str, ...] = ()
    error: Optional[str] = None
    error_kind: Optional[str] = None  # "transport" | "validation" | "cancelled"
    timeout: bool = False
    attempts: int = 1           # HTTP requests behind this record
    is_retry: bool = False      # slot spent retrying a failed request


@dataclass(frozen=True)
class LatencyPercentiles:
    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


@dataclass(frozen=True)
class SizeStats:
    min: int = 0
    max: int = 0
    avg: float = 0.0


@dataclass(frozen=True)
class EndpointSummary:
    """Aggregated metrics for one endpoint (latencies in seconds)."""

    name: str
    method: str
    url: str
    started_at: datetime
    ended_at: datetime
    wall_time_s: float

    total_requests: int
    success_count: int
    failure_count: int

    min_latency: float
    max_latency: float
    average_latency: float
    percentiles: LatencyPercentiles

    status_codes: Dict[int, int]
    validation_failures: Dict[str, int]
    errors: List[str]

    bytes_transferred: int
    response_sizes: SizeStats
    requests_per_second: float
    error_rate: float

    timeout_count: int = 0
    cancelled_count: int = 0
    retries: int = 0
    is_concurrent: bool = False
    concurrent_users: int = 0

    records: Optional[List[RequestRecord]] = None

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.success_count / self.total_requests * 100


@dataclass(frozen=True)
class GlobalStats:
    average_latency: float = 0.0
    min_latency: float = 0.0
    max_latency: float = 0.0
    total_errors: int = 0
    total_timeouts: int = 0
    total_bytes: int = 0
    requests_per_second: float = 0.0


@dataclass(frozen=True)
class RunSummary:
    endpoints: List[EndpointSummary]
    started_at: datetime
    ended_at: datetime
    total_endpoints: int
    total_requests: int
    success_rate: float
    global_stats: GlobalStats
    cancelled: bool = False
