# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .errors import CancellationError, ValidationFailure
from .events import EventSink
from .executor import CLIENT_TIMEOUT_S, Transport, execute
from .types import EndpointSpec, RawOutcome, RequestRecord, RetryPolicy, ValidationOutcome
from .validator import validate

logger = logging.getLogger(__name__)


class AttemptState(str, enum.Enum):
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Attempt:
    """One executed and (if a response arrived) validated HTTP request."""

    started_at: datetime
    raw: RawOutcome
    validation: Optional[ValidationOutcome]

    @property
    def ok(self) -> bool:
        return self.validation is not None and self.validation.is_valid

    def to_record(
        self,
        request_id: int,
        *,
        worker_id: Optional[int] = None,
        attempts: int = 1,
        is_retry: bool = False,
    ) -> RequestRecord:
        if self.validation is None:
            return RequestRecord(
                request_id=request_id,
                worker_id=worker_id,
                started_at=self.started_at,
                duration=self.raw.duration,
                status_code=0,
                success=False,
                error=self.raw.error,
                error_kind="transport",
                timeout=self.raw.timeout,
                attempts=attempts,
                is_retry=is_retry,
            )
        v = self.validation
        return RequestRecord(
            request_id=request_id,
            worker_id=worker_id,
            started_at=self.started_at,
            duration=v.duration,
            status_code=v.status_code,
            success=v.is_valid,
            response_size=v.response_size,
            headers=self.raw.headers,
            violations=v.violations,
            error=None if v.is_valid else str(ValidationFailure(v.violations, v.status_code)),
            error_kind=None if v.is_valid else "validation",
            attempts=attempts,
            is_retry=is_retry,
        )


def failed_record(
    request_id: int,
    error: str,
    *,
    worker_id: Optional[int] = None,
    kind: str = "transport",
    attempts: int = 0,
) -> RequestRecord:
    """A record for a slot that never produced a response."""
    return RequestRecord(
        request_id=request_id,
        worker_id=worker_id,
        started_at=datetime.now(timezone.utc),
        duration=0.0,
        status_code=0,
        success=False,
        error=error,
        error_kind=kind,
        attempts=attempts,
    )


def cancelled_record(request_id: int, *, worker_id: Optional[int] = None, attempts: int = 0) -> RequestRecord:
    return failed_record(
        request_id,
        str(CancellationError()),
        worker_id=worker_id,
        kind="cancelled",
        attempts=attempts,
    )


async def attempt_once(
    transport: Transport,
    spec: EndpointSpec,
    *,
    sink: Optional[EventSink] = None,
    timeout: float = CLIENT_TIMEOUT_S,
) -> Attempt:
    started_at = datetime.now(timezone.utc)
    raw = await execute(transport, spec, timeout=timeout)
    if raw.transport_failed:
        return Attempt(started_at=started_at, raw=raw, validation=None)
    return Attempt(
        started_at=started_at,
        raw=raw,
        validation=validate(raw, spec.expect, sink=sink, endpoint=spec.name),
    )


async def pause(delay: float, cancel: Optional[asyncio.Event] = None) -> None:
    """Sleep for ``delay`` seconds, returning early once ``cancel`` is set."""
    if delay <= 0:
        return
    if cancel is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass


@dataclass(frozen=True)
class AttemptResult:
    state: AttemptState
    attempt: Optional[Attempt]  # None if cancelled before the first try
    attempts: int


class RetryController:
    """Retry state machine for one logical attempt.

    ``count + 1`` bounds the number of tries. Transport errors and validation
    failures are retried the same way; a valid response ends the sequence
    immediately.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        cancel: Optional[asyncio.Event] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.policy = policy
        self.cancel = cancel
        self._sleep = sleep
        self.state = AttemptState.ATTEMPTING
        self.attempts = 0

    @property
    def max_attempts(self) -> int:
        return max(0, self.policy.count) + 1

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def reset(self) -> None:
        self.state = AttemptState.ATTEMPTING
        self.attempts = 0

    def observe(self, attempt: Attempt) -> AttemptState:
        """Advance the state machine with the outcome of one try."""
        if self.state not in (AttemptState.ATTEMPTING, AttemptState.RETRYING):
            raise RuntimeError(f"no attempt expected in state {self.state.value}")
        self.attempts += 1
        if attempt.ok:
            self.state = AttemptState.SUCCESS
        elif self.attempts < self.max_attempts:
            self.state = AttemptState.RETRYING
        else:
            self.state = AttemptState.EXHAUSTED
        return self.state

    async def wait_before_retry(self) -> None:
        if self._sleep is not None:
            await self._sleep(self.policy.delay)
        else:
            await pause(self.policy.delay, self.cancel)

    async def run(self, call: Callable[[], Awaitable[Attempt]]) -> AttemptResult:
        self.reset()
        last: Optional[Attempt] = None
        while True:
            if self.cancelled:
                self.state = AttemptState.CANCELLED
                return AttemptResult(self.state, last, self.attempts)
            last = await call()
            state = self.observe(last)
            if state is not AttemptState.RETRYING:
                return AttemptResult(state, last, self.attempts)
            logger.debug("Attempt %d/%d failed; retrying in %.3fs", self.attempts, self.max_attempts, self.policy.delay)
            await self.wait_before_retry()
