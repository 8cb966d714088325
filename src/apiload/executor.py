# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple

import aiohttp
from multidict import CIMultiDict

from .errors import TransportError
from .types import EndpointSpec, RawOutcome

logger = logging.getLogger(__name__)

# Fixed for every endpoint.
CLIENT_TIMEOUT_S = 30.0


@dataclass
class TransportResponse:
    status: int
    body: bytes
    headers: Tuple[Tuple[str, str], ...] = ()
    # Time to response headers, when the transport can measure it.
    elapsed: Optional[float] = None


class Transport(Protocol):
    """One request/response exchange. Raises :class:`TransportError` when no response arrives."""

    async def send(
        self,
        method: str,
        url: str,
        headers: Sequence[Tuple[str, str]],
        body: bytes,
        *,
        timeout: float,
    ) -> TransportResponse: ...


class AiohttpTransport:
    """Transport backed by a shared :class:`aiohttp.ClientSession`.

    Use as an async context manager, or pass an existing session (which is then
    left open on :meth:`close`).
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self._owned = session is None

    async def __aenter__(self) -> "AiohttpTransport":
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=0, ttl_dns_cache=60)
            self._session = aiohttp.ClientSession(connector=connector)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owned and self._session is not None:
            await self._session.close()
            self._session = None

    async def send(
        self,
        method: str,
        url: str,
        headers: Sequence[Tuple[str, str]],
        body: bytes,
        *,
        timeout: float,
    ) -> TransportResponse:
        if self._session is None:
            raise RuntimeError("AiohttpTransport used outside of 'async with'")
        t0 = time.perf_counter()
        try:
            async with self._session.request(
                method,
                url,
                headers=CIMultiDict(headers),
                data=body or None,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                elapsed = time.perf_counter() - t0
                data = await resp.read()
                return TransportResponse(
                    status=resp.status,
                    body=data,
                    headers=tuple(resp.headers.items()),
                    elapsed=elapsed,
                )
        except asyncio.TimeoutError as exc:
            raise TransportError(f"request timed out after {timeout:g}s", timeout=True) from exc
        except (aiohttp.ClientError, ValueError) as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc


async def execute(
    transport: Transport,
    spec: EndpointSpec,
    *,
    timeout: float = CLIENT_TIMEOUT_S,
) -> RawOutcome:
    """Send one request for ``spec`` and measure it.

    Transport failures come back as a :class:`RawOutcome` with ``error`` set and
    no status or body; they are never raised. An exception other than
    :class:`TransportError` escaping a transport is logged and treated the same.
    """
    t0 = time.perf_counter()
    try:
        resp = await transport.send(spec.method, spec.url, spec.headers, spec.body, timeout=timeout)
    except TransportError as exc:
        return RawOutcome(
            status=None,
            body=None,
            duration=time.perf_counter() - t0,
            error=str(exc),
            timeout=exc.timeout,
        )
    except Exception as exc:
        logger.warning("transport raised unexpectedly for %s %s", spec.method, spec.url, exc_info=True)
        return RawOutcome(
            status=None,
            body=None,
            duration=time.perf_counter() - t0,
            error=f"{type(exc).__name__}: {exc}",
        )
    duration = resp.elapsed if resp.elapsed is not None else time.perf_counter() - t0
    return RawOutcome(status=resp.status, body=resp.body, duration=duration, headers=resp.headers)
