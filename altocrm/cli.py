"""
AltoCRM CLI — entry point for all operations.

Usage:
    altocrm serve                   # Start the API (with the job poller)
    altocrm worker                  # Run the job poller on its own
    altocrm migrate status          # Show applied vs pending migrations
    altocrm migrate apply [VERSION] [--dry-run]
    altocrm enqueue TYPE [--payload JSON]
    altocrm version
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from altocrm.config import get_config, reset_config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="altocrm",
        description="AltoCRM — leads, pipeline, field locks, and a polled job queue.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")

    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: $ALTOCRM_HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: $PORT)")
    serve_parser.add_argument(
        "--no-worker", action="store_true", help="Don't run the job poller in the API process"
    )

    # worker
    worker_parser = subparsers.add_parser("worker", help="Run the background job poller")
    worker_parser.add_argument(
        "--interval", type=float, default=None, help="Poll interval in seconds"
    )

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Run database migrations")
    migrate_parser.add_argument("action", nargs="?", default="status", choices=["status", "apply"])
    migrate_parser.add_argument("target", nargs="?", default=None, help="Apply only this version")
    migrate_parser.add_argument("--dry-run", action="store_true", help="List without executing")

    # enqueue
    enqueue_parser = subparsers.add_parser("enqueue", help="Add a background job")
    enqueue_parser.add_argument("job_type", help="Registered job type, e.g. leads.purge_deleted")
    enqueue_parser.add_argument("--payload", default="{}", help="JSON object payload")

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from altocrm import __version__

        print(f"altocrm {__version__}")
        return 0

    logging.basicConfig(
        level=get_config().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        return _cmd_serve(args)
    elif args.command == "worker":
        return _cmd_worker(args)
    elif args.command == "migrate":
        return _cmd_migrate(args)
    elif args.command == "enqueue":
        return _cmd_enqueue(args)

    parser.print_help()
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import os

    import uvicorn

    if args.no_worker:
        os.environ["ALTOCRM_JOBS_ENABLED"] = "false"
        reset_config()
    cfg = get_config()

    host = args.host or cfg.host
    port = args.port or cfg.port
    print(f"Starting AltoCRM API on {host}:{port}...")
    uvicorn.run("altocrm.api.app:app", host=host, port=port)
    return 0


def _cmd_worker(args: argparse.Namespace) -> int:
    import asyncio

    from altocrm.jobs.worker import JobWorker

    worker = JobWorker(args.interval)
    print(f"Polling background_jobs every {worker.poll_seconds:.1f}s (Ctrl-C to stop)")
    try:
        asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        pass
    return 0


def _cmd_migrate(args: argparse.Namespace) -> int:
    from altocrm.db import migrate

    try:
        if args.action == "status":
            rows = migrate.status()
            if not rows:
                print("No migration files found.")
                return 0
            print(f"{'Version':<10} {'Filename':<40} {'Status':<10} {'Applied At'}")
            print("-" * 80)
            for r in rows:
                at = str(r["applied_at"])[:19] if r["applied_at"] else ""
                print(f"{r['version']:<10} {r['filename']:<40} {r['status']:<10} {at}")
            return 0

        applied = migrate.apply(version=args.target, dry_run=args.dry_run)
    except ConnectionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not applied:
        print("Nothing to apply.")
    for v in applied:
        print(f"{'[dry-run] ' if args.dry_run else ''}Applied {v}")
    return 0


def _cmd_enqueue(args: argparse.Namespace) -> int:
    from altocrm.jobs.queue import enqueue
    from altocrm.jobs.registry import UnknownJobTypeError, registered_types

    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as e:
        print(f"Error: --payload is not valid JSON: {e}", file=sys.stderr)
        return 1
    if not isinstance(payload, dict):
        print("Error: --payload must be a JSON object", file=sys.stderr)
        return 1

    try:
        job_id = enqueue(args.job_type, payload)
    except UnknownJobTypeError as e:
        print(f"Error: {e}. Known types: {', '.join(registered_types())}", file=sys.stderr)
        return 1
    print(f"Enqueued job {job_id} ({args.job_type})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
