# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

from typing import List, Sequence


class ApiLoadError(Exception):
    """Base class for errors raised by apiload."""


class TransportError(ApiLoadError):
    """The request never produced a response (connection failure, timeout, bad request)."""

    def __init__(self, message: str, *, timeout: bool = False):
        super().__init__(message)
        self.timeout = timeout


class ValidationFailure(ApiLoadError):
    """A response arrived but did not meet its expectation."""

    def __init__(self, violations: Sequence[str], status_code: int):
        self.violations: List[str] = list(violations)
        self.status_code = status_code
        super().__init__(f"validation failed: {'; '.join(self.violations)}")


class ConfigurationError(ApiLoadError):
    """An endpoint specification is malformed or self-contradictory."""


class CancellationError(ApiLoadError):
    """The run was cancelled before this request could start."""

    def __init__(self, message: str = "run cancelled before request started"):
        super().__init__(message)
