"""Operator commands for the ingestion pipeline.

Usage:
  python scripts/ingestctl.py reconcile          # rebuild repeating jobs from sources
  python scripts/ingestctl.py schedules          # list registered repeating jobs
  python scripts/ingestctl.py trigger <id>       # enqueue a one-off fetch job
  python scripts/ingestctl.py run <id>           # ingest one source in-process

Reads configuration from .env via pydantic settings.
"""

from __future__ import annotations

import argparse
import json
from typing import List

from cti_ingest.celery_app import get_celery_app
from cti_ingest.connectors import ConnectorError
from cti_ingest.services.scheduler import default_reconciler, default_schedule_store
from cti_ingest.tasks.fetch import SourceNotFoundError, enqueue_source, ingest_source_core


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="cti-ingest operator commands")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("reconcile", help="Replace all repeating jobs with the enabled sources' schedules")
    sub.add_parser("schedules", help="List registered repeating jobs")
    trigger = sub.add_parser("trigger", help="Enqueue a one-off fetch job")
    trigger.add_argument("source_id")
    run = sub.add_parser("run", help="Ingest one source synchronously")
    run.add_argument("source_id")
    args = parser.parse_args(argv)

    if args.command == "reconcile":
        entries = default_reconciler().reconcile()
        print(f"Registered {len(entries)} repeating jobs.")
        for entry in entries:
            print(f"  {entry.key}  {entry.cron}")
        return 0

    if args.command == "schedules":
        for entry in default_schedule_store().entries():
            print(f"{entry.key}  {entry.cron}")
        return 0

    if args.command == "trigger":
        get_celery_app()
        result = enqueue_source(args.source_id)
        print(f"Accepted job {result.id} for source {args.source_id}.")
        return 0

    try:
        stats = ingest_source_core(args.source_id)
    except SourceNotFoundError as exc:
        print(f"Not found: {exc}")
        return 2
    except ConnectorError as exc:
        print(f"Fetch failed: {exc}")
        return 3
    print(json.dumps(stats.as_dict(), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
