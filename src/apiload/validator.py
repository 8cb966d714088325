# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from .events import EventSink
from .types import Expectation, RawOutcome, ValidationOutcome
from .values import CheckValue


def validate(
    raw: RawOutcome,
    expectation: Expectation,
    *,
    sink: Optional[EventSink] = None,
    endpoint: Optional[str] = None,
) -> ValidationOutcome:
    """Check a response against an expectation.

    Every check runs, so one response can report several violations:

    1. the status code must equal ``expectation.status``;
    2. the duration must not exceed ``expectation.max_duration`` (when set);
    3. each value check looks up a top-level key of the body parsed as a JSON
       object and compares canonical string forms.

    Must only be called for outcomes that have a response.
    """
    if raw.transport_failed:
        raise ValueError("cannot validate an outcome without a response")

    status = int(raw.status or 0)
    body = raw.body or b""
    violations: List[str] = []

    if status != expectation.status:
        violations.append(f"expected status code {expectation.status}, got {status}")

    if expectation.max_duration is not None and raw.duration > expectation.max_duration:
        violations.append(
            f"expected response time less than {expectation.max_duration:.3f}s, got {raw.duration:.3f}s"
        )

    if expectation.values:
        data, err = _parse_object(body)
        if data is None:
            violations.append(f"failed to parse response body as a JSON object: {err}")
        else:
            for check in expectation.values:
                if check.path not in data:
                    violations.append(f"path {check.path} not found in response")
                    continue
                actual = data[check.path]
                if not check.expected.matches(actual):
                    violations.append(
                        f"path {check.path} expected {check.expected.canonical()}, "
                        f"got {CheckValue.of(actual).canonical()}"
                    )

    if sink is not None:
        for v in violations:
            sink.validation_warning(endpoint, v)

    return ValidationOutcome(
        is_valid=not violations,
        violations=tuple(violations),
        duration=raw.duration,
        status_code=status,
        response_size=len(body),
    )


def _parse_object(body: bytes) -> tuple[Optional[Dict[str, Any]], str]:
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as exc:
        return None, str(exc)
    if not isinstance(data, dict):
        return None, f"top-level value is {type(data).__name__}, not an object"
    return data, ""
