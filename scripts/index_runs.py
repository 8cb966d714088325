# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

"""Index every run summary under a runs/ directory.

Writes two tables next to each other:
- endpoints.csv: one row per (run, endpoint)
- runs.csv / runs.json: one row per run, endpoint counts summed

Usage
-----
python scripts/index_runs.py --runs runs --out runs [--failed-only]
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from apiload.analysis import load_run_dir, run_totals, summarize


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--runs", default="runs", help="Root runs directory to scan")
    ap.add_argument("--out", default="runs", help="Output directory for index files")
    ap.add_argument("--failed-only", action="store_true", help="Keep only runs with failed requests")
    args = ap.parse_args()

    endpoints = summarize(load_run_dir(args.runs))
    runs = run_totals(endpoints)
    if args.failed_only:
        runs = runs[runs["failure_count"] > 0]
        endpoints = endpoints[endpoints["run_id"].isin(runs["run_id"])]

    out = Path(args.out)
    out.mkdir(parents=True, exist_ok=True)
    endpoints.to_csv(out / "endpoints.csv", index=False)
    runs.to_csv(out / "runs.csv", index=False)
    (out / "runs.json").write_text(runs.to_json(orient="records", indent=2), encoding="utf-8")

    if runs.empty:
        print("No runs matched")
        return
    for row in runs.itertuples(index=False):
        print(
            f"{row.run_id}: {row.endpoints} endpoint(s), {row.success_count}/{row.total_requests} ok, "
            f"error rate {row.error_rate:.2f}%, worst p95 {row.worst_p95 * 1000:.1f} ms"
        )
    print(f"Wrote {out / 'endpoints.csv'}, {out / 'runs.csv'} and {out / 'runs.json'}")


if __name__ == "__main__":
    main()
