# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

"""Scalar values compared by value checks.

Expected values come from YAML and actual values come from JSON, so the same
logical value can arrive as ``1``, ``1.0`` or ``"1"``. Both sides are wrapped
in a :class:`CheckValue` and compared by their canonical string form.
"""

from __future__ import annotations

import enum
import json
import math
from dataclasses import dataclass
from typing import Any


class ValueKind(str, enum.Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    JSON = "json"  # lists/objects found in a response body


@dataclass(frozen=True)
class CheckValue:
    kind: ValueKind
    value: Any

    @classmethod
    def of(cls, value: Any) -> "CheckValue":
        if isinstance(value, CheckValue):
            return value
        if value is None:
            return cls(ValueKind.NULL, None)
        # bool before int: bool is a subclass of int
        if isinstance(value, bool):
            return cls(ValueKind.BOOLEAN, value)
        if isinstance(value, (int, float)):
            return cls(ValueKind.NUMBER, value)
        if isinstance(value, str):
            return cls(ValueKind.STRING, value)
        if isinstance(value, (list, tuple, dict)):
            return cls(ValueKind.JSON, value)
        raise TypeError(f"unsupported check value type: {type(value).__name__}")

    def canonical(self) -> str:
        if self.kind is ValueKind.NULL:
            return "null"
        if self.kind is ValueKind.BOOLEAN:
            return "true" if self.value else "false"
        if self.kind is ValueKind.NUMBER:
            return _canonical_number(self.value)
        if self.kind is ValueKind.JSON:
            return json.dumps(self.value, sort_keys=True, separators=(",", ":"))
        return str(self.value)

    def matches(self, other: Any) -> bool:
        return self.canonical() == CheckValue.of(other).canonical()

    def __str__(self) -> str:
        return self.canonical()


def _canonical_number(x: Any) -> str:
    if isinstance(x, int):
        return str(x)
    if math.isfinite(x) and x.is_integer():
        return str(int(x))
    return repr(float(x))
