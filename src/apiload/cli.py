# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence

from .config import endpoint_to_dict, load_endpoints
from .errors import ConfigurationError
from .events import LoggingEventSink
from .executor import AiohttpTransport
from .report import summary_to_json, write_json
from .runner import Runner
from .types import EndpointSpec, RunSummary

EXIT_FAILURES = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130


def _setup_logging(verbose: bool, log_file: Optional[str]) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True,
    )


async def _run(endpoints: Sequence[EndpointSpec], args: argparse.Namespace) -> RunSummary:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
        handles_sigint = True
    except (NotImplementedError, RuntimeError):
        handles_sigint = False
    deadline = loop.call_later(args.timeout_s, cancel.set) if args.timeout_s else None
    try:
        async with AiohttpTransport() as transport:
            runner = Runner(
                transport,
                sink=LoggingEventSink(),
                progress=args.progress,
                keep_records=not args.no_records,
            )
            return await runner.run(endpoints, cancel=cancel)
    finally:
        if deadline is not None:
            deadline.cancel()
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)


def main(argv: Optional[Sequence[str]] = None) -> None:
    p = argparse.ArgumentParser(prog="apiload", description="HTTP API load and validation runner")
    sub = p.add_subparsers(dest="cmd", required=True)

    runp = sub.add_parser("run", help="Run the endpoints of one config YAML")
    runp.add_argument("--config", "-c", required=True, help="Path to YAML config")
    runp.add_argument("--out", default="runs", help="Directory for run summaries")
    runp.add_argument("--run-id", default=None, help="Override run id")
    runp.add_argument("--progress", action="store_true", help="Show a progress bar for concurrent endpoints")
    runp.add_argument("--no-records", action="store_true", help="Do not keep per-request records")
    runp.add_argument("--log-file", default=None, help="Also write logs to this file")
    runp.add_argument("--timeout-s", type=float, default=None, help="Cancel the run after this many seconds")
    runp.add_argument("--verbose", "-v", action="store_true")

    ap = sub.add_parser("print-config", help="Print the parsed config for debugging")
    ap.add_argument("--config", "-c", required=True)

    args = p.parse_args(argv)

    try:
        endpoints = load_endpoints(args.config)
    except (ConfigurationError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG)

    if args.cmd == "print-config":
        print(json.dumps({"endpoints": [endpoint_to_dict(e) for e in endpoints]}, indent=2))
        return

    _setup_logging(args.verbose, args.log_file)
    summary = asyncio.run(_run(endpoints, args))

    run_id = args.run_id or time.strftime("%Y%m%d_%H%M%S")
    out = Path(args.out) / run_id / "summary.json"
    write_json(out, summary_to_json(summary, include_records=not args.no_records))

    for ep in summary.endpoints:
        print(
            f"{ep.name}: {ep.success_count}/{ep.total_requests} ok, "
            f"error rate {ep.error_rate:.2f}%, p95 {ep.percentiles.p95 * 1000:.1f} ms, "
            f"{ep.requests_per_second:.2f} req/s"
        )
    print(str(out))

    if summary.cancelled:
        sys.exit(EXIT_CANCELLED)
    if summary.global_stats.total_errors:
        sys.exit(EXIT_FAILURES)
