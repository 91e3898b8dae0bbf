"""CLI utility to recover stuck ContentFlow jobs in SQL storage."""

from __future__ import annotations

import argparse
import logging
import os
from datetime import timedelta

from contentflow.storage.sql_storage import SqlJobStore
from contentflow.tasks.maintenance import recover_stuck_jobs


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recover stuck ContentFlow jobs")
    parser.add_argument(
        "--connection-url",
        default=os.environ.get("CONTENTFLOW_DATABASE_URL"),
        help="SQLAlchemy connection URL (e.g., sqlite:///contentflow.db)",
    )
    parser.add_argument(
        "--max-age-seconds",
        type=float,
        default=float(os.environ.get("CONTENTFLOW_STUCK_THRESHOLD", 3600)),
        help="Recover jobs reserved longer than this many seconds.",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=int(os.environ.get("CONTENTFLOW_MAX_ATTEMPTS", 3)),
        help="Jobs at this many attempts are archived instead of released.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum number of jobs to recover.",
    )
    return parser


def main() -> None:
    parser = build_arg_parser()
    args = parser.parse_args()
    if not args.connection_url:
        parser.error("--connection-url or CONTENTFLOW_DATABASE_URL is required")
    logging.basicConfig(level=logging.INFO)

    store = SqlJobStore(connection_url=args.connection_url)
    report = recover_stuck_jobs(
        store,
        max_attempts=args.max_attempts,
        older_than=timedelta(seconds=args.max_age_seconds),
        limit=args.limit,
    )
    if not report.released and not report.archived:
        print("No stuck jobs recovered.")
        return
    print(f"Released {report.released} stuck jobs, archived {report.archived}.")


if __name__ == "__main__":
    main()
