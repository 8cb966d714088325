# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

"""Fire-and-forget observability events.

The engine calls an :class:`EventSink` at a few points of a run. Sinks must not
block and their failures never change a run's result.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def test_started(self, endpoint: str, method: str, url: str) -> None: ...

    def request_completed(self, request_id: int, endpoint: str, duration: float, status_code: int) -> None: ...

    def request_failed(self, request_id: int, endpoint: str, error: str) -> None: ...

    def validation_warning(self, endpoint: Optional[str], message: str) -> None: ...


class NullEventSink:
    def test_started(self, endpoint: str, method: str, url: str) -> None:
        pass

    def request_completed(self, request_id: int, endpoint: str, duration: float, status_code: int) -> None:
        pass

    def request_failed(self, request_id: int, endpoint: str, error: str) -> None:
        pass

    def validation_warning(self, endpoint: Optional[str], message: str) -> None:
        pass


class LoggingEventSink:
    """Writes events as structured ``logging`` records on the ``apiload.events`` logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logging.getLogger("apiload.events")

    def test_started(self, endpoint: str, method: str, url: str) -> None:
        self.log.info(
            "Starting test %s %s %s",
            endpoint,
            method,
            url,
            extra={"event": "test_started", "endpoint": endpoint, "method": method, "url": url},
        )

    def request_completed(self, request_id: int, endpoint: str, duration: float, status_code: int) -> None:
        self.log.debug(
            "Request %d to %s completed: status=%d duration=%.3fs",
            request_id,
            endpoint,
            status_code,
            duration,
            extra={
                "event": "request_completed",
                "request_id": request_id,
                "endpoint": endpoint,
                "duration_s": duration,
                "status_code": status_code,
            },
        )

    def request_failed(self, request_id: int, endpoint: str, error: str) -> None:
        self.log.error(
            "Request %d to %s failed: %s",
            request_id,
            endpoint,
            error,
            extra={"event": "request_failed", "request_id": request_id, "endpoint": endpoint, "error": error},
        )

    def validation_warning(self, endpoint: Optional[str], message: str) -> None:
        self.log.warning(
            "%s: %s",
            endpoint or "-",
            message,
            extra={"event": "validation_warning", "endpoint": endpoint},
        )


class SafeEventSink:
    """Wraps another sink so that its exceptions are logged instead of raised."""

    def __init__(self, inner: Optional[EventSink]):
        self.inner = inner or NullEventSink()

    def _emit(self, name: str, *args) -> None:
        try:
            getattr(self.inner, name)(*args)
        except Exception:
            logger.exception("event sink failed while handling %s", name)

    def test_started(self, endpoint: str, method: str, url: str) -> None:
        self._emit("test_started", endpoint, method, url)

    def request_completed(self, request_id: int, endpoint: str, duration: float, status_code: int) -> None:
        self._emit("request_completed", request_id, endpoint, duration, status_code)

    def request_failed(self, request_id: int, endpoint: str, error: str) -> None:
        self._emit("request_failed", request_id, endpoint, error)

    def validation_warning(self, endpoint: Optional[str], message: str) -> None:
        self._emit("validation_warning", endpoint, message)
