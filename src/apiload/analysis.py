# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

KEEP = [
    "run_id", "name", "method", "url", "concurrent_users", "total_requests",
    "success_count", "failure_count", "error_rate", "requests_per_second",
    "average_latency", "p50", "p95", "p99", "max_latency", "bytes_transferred",
]


def endpoint_frame(summary: Dict[str, Any], *, run_id: str = "") -> pd.DataFrame:
    """One row per endpoint of a serialized run summary."""
    rows: List[Dict[str, Any]] = []
    for ep in summary.get("endpoints", []):
        row = {k: v for k, v in ep.items() if not isinstance(v, (dict, list)) and v is not None}
        row.update(ep.get("percentiles") or {})
        row["run_id"] = run_id
        rows.append(row)
    return pd.DataFrame(rows)


def load_run_dir(run_dir: str | Path) -> pd.DataFrame:
    run_dir = Path(run_dir)
    frames: List[pd.DataFrame] = []
    for p in sorted(run_dir.glob("**/summary.json")):
        with p.open("r", encoding="utf-8") as f:
            frames.append(endpoint_frame(json.load(f), run_id=p.parent.name))
    if not frames:
        raise FileNotFoundError(f"No summary.json files under {run_dir}")
    return pd.concat(frames, ignore_index=True)


def summarize(df: pd.DataFrame) -> pd.DataFrame:
    cols = [c for c in KEEP if c in df.columns]
    out = df[cols].copy()
    out.sort_values([c for c in ("run_id", "name") if c in out.columns], inplace=True)
    return out


def run_totals(df: pd.DataFrame) -> pd.DataFrame:
    """One row per run: request counts summed over its endpoints, worst p95/p99."""
    out = (
        df.groupby("run_id", sort=True)
        .agg(
            endpoints=("name", "count"),
            total_requests=("total_requests", "sum"),
            success_count=("success_count", "sum"),
            failure_count=("failure_count", "sum"),
            bytes_transferred=("bytes_transferred", "sum"),
            worst_p95=("p95", "max"),
            worst_p99=("p99", "max"),
        )
        .reset_index()
    )
    has_requests = out["total_requests"] > 0
    out["error_rate"] = (out["failure_count"] / out["total_requests"] * 100).where(has_requests, 0.0)
    return out
