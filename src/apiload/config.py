# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York


from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import yaml

from .errors import ConfigurationError
from .types import ConcurrencyProfile, EndpointSpec, Expectation, RetryPolicy, ValueCheck
from .values import CheckValue

_UNITS = {"ns": 1e-9, "us": 1e-6, "µs": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Any) -> float:
    """Parse ``"1m30s"``, ``"250ms"``, ``"2s"`` or a plain number of seconds."""
    if isinstance(value, bool):
        raise ConfigurationError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"invalid duration: {value!r}")
    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass
    total = 0.0
    pos = 0
    for m in _DURATION_PART.finditer(text):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _UNITS[m.group(2)]
        pos = m.end()
    if pos != len(text) or pos == 0:
        raise ConfigurationError(f"invalid duration: {value!r}")
    return total


def load_yaml(path: str | Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_endpoints(path: str | Path) -> List[EndpointSpec]:
    try:
        cfg = load_yaml(path)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"failed to parse {path}: {exc}") from exc
    if not isinstance(cfg, dict):
        raise ConfigurationError("config must be a mapping at the top level")
    raw = cfg.get("endpoints") or []
    if not isinstance(raw, list):
        raise ConfigurationError("'endpoints' must be a list")
    endpoints = [endpoint_from_dict(e, i) for i, e in enumerate(raw)]
    validate_endpoints(endpoints)
    return endpoints


def endpoint_from_dict(raw: Any, index: int = 0) -> EndpointSpec:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"endpoints[{index}] must be a mapping")
    name = str(raw.get("name") or f"endpoint-{index}")
    expect = raw.get("expect") or {}
    retry = raw.get("retry") or {}
    conc = raw.get("concurrent") or {}
    for key, section in (("expect", expect), ("retry", retry), ("concurrent", conc)):
        if not isinstance(section, dict):
            raise ConfigurationError(f"endpoint {name}: '{key}' must be a mapping")

    body = raw.get("body")
    if body is None:
        body = b""
    elif isinstance(body, (dict, list)):
        body = json.dumps(body).encode("utf-8")
    elif not isinstance(body, bytes):
        body = str(body).encode("utf-8")

    max_time = expect.get("maxTime")
    return EndpointSpec(
        name=name,
        url=str(raw.get("url") or ""),
        method=str(raw.get("method") or "").upper(),
        headers=_parse_headers(raw.get("headers"), name),
        body=body,
        expect=Expectation(
            status=_int(expect.get("status", 200), f"endpoint {name}: expect.status"),
            max_duration=parse_duration(max_time) if max_time is not None else None,
            values=tuple(_parse_value_checks(expect.get("values") or [], name)),
        ),
        retry=RetryPolicy(
            count=_int(retry.get("count", 0), f"endpoint {name}: retry.count"),
            delay=parse_duration(retry.get("delay", 0)),
        ),
        concurrent=ConcurrencyProfile(
            users=_int(conc.get("users", 0), f"endpoint {name}: concurrent.users"),
            delay=parse_duration(conc.get("delay", 0)),
            total=_int(conc.get("total", 0), f"endpoint {name}: concurrent.total"),
        ),
    )


def validate_endpoints(endpoints: Sequence[EndpointSpec]) -> None:
    """Reject specs that must not be run. Raises on the first problem found."""
    if not endpoints:
        raise ConfigurationError("no endpoints defined")
    for e in endpoints:
        if not e.url:
            raise ConfigurationError(f"endpoint {e.name}: missing URL")
        if not e.method:
            raise ConfigurationError(f"endpoint {e.name}: missing method")
        if e.retry.count < 0 or e.retry.delay < 0:
            raise ConfigurationError(f"endpoint {e.name}: retry count and delay must not be negative")
        c = e.concurrent
        if c.users < 0 or c.total < 0 or c.delay < 0:
            raise ConfigurationError(f"endpoint {e.name}: concurrent settings must not be negative")
        if c.users > 0 and c.total == 0:
            raise ConfigurationError(
                f"endpoint {e.name}: concurrent users set but total requests not specified"
            )
        if c.users > 0 and c.total < c.users:
            raise ConfigurationError(
                f"endpoint {e.name}: total requests ({c.total}) is less than users ({c.users})"
            )


def _int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ConfigurationError(f"{what} must be an integer, got {value!r}")
    return int(value)


def _parse_headers(raw: Any, name: str) -> Tuple[Tuple[str, str], ...]:
    if raw is None:
        return ()
    if isinstance(raw, dict):
        return tuple((str(k), str(v)) for k, v in raw.items())
    if isinstance(raw, list):
        pairs = []
        for h in raw:
            if not isinstance(h, dict) or "name" not in h:
                raise ConfigurationError(f"endpoint {name}: header entries need 'name' and 'value'")
            pairs.append((str(h["name"]), str(h.get("value", ""))))
        return tuple(pairs)
    raise ConfigurationError(f"endpoint {name}: 'headers' must be a mapping or a list")


def _parse_value_checks(raw: Any, name: str) -> List[ValueCheck]:
    if not isinstance(raw, list):
        raise ConfigurationError(f"endpoint {name}: 'expect.values' must be a list")
    checks = []
    for i, v in enumerate(raw):
        if not isinstance(v, dict) or not v.get("path"):
            raise ConfigurationError(f"endpoint {name}: expect.values[{i}] needs a 'path'")
        try:
            expected = CheckValue.of(v.get("value"))
        except TypeError as exc:
            raise ConfigurationError(f"endpoint {name}: expect.values[{i}]: {exc}") from exc
        checks.append(ValueCheck(path=str(v["path"]), expected=expected))
    return checks


def endpoint_to_dict(e: EndpointSpec) -> Dict[str, Any]:
    """Plain-data view of a spec, used by ``print-config``."""
    out: Dict[str, Any] = {
        "name": e.name,
        "url": e.url,
        "method": e.method,
        "headers": [list(h) for h in e.headers],
        "body": e.body.decode("utf-8", errors="replace"),
        "expect": {
            "status": e.expect.status,
            "maxTime": e.expect.max_duration,
            "values": [{"path": c.path, "value": c.expected.value} for c in e.expect.values],
        },
        "retry": {"count": e.retry.count, "delay": e.retry.delay},
    }
    if e.is_concurrent:
        out["concurrent"] = {
            "users": e.concurrent.users,
            "delay": e.concurrent.delay,
            "total": e.concurrent.total,
        }
    return out
