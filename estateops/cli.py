from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from estateops.core.config import get_settings
from estateops.core.logging import configure_logging
from estateops.db.init_db import initialize_database
from estateops.db.models import JobKind, JobStatus
from estateops.db.session import get_session_factory
from estateops.jobs.engine import JobEngine
from estateops.jobs.errors import AdmissionRejectedError, JobParameterError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="estateops", description="Backup, restore and import job maintenance")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sweep = subparsers.add_parser("sweep", help="Delete finished jobs older than the retention horizon")
    sweep.add_argument("--retention-days", type=int, default=None, help="Override the configured retention")
    sweep.add_argument("--actor", default="system", help="Actor recorded in the activity log")

    reconcile = subparsers.add_parser(
        "reconcile",
        help="Fail jobs left pending or running by a previous process (stop the API server first)",
    )
    reconcile.add_argument(
        "--force",
        action="store_true",
        help="Confirm that no server process is running jobs against this database",
    )
    reconcile.add_argument("--actor", default="system", help="Actor recorded in the activity log")

    backup = subparsers.add_parser("backup", help="Run a backup and wait for it to finish")
    backup.add_argument("--name", default="Scheduled backup", help="Backup name")
    backup.add_argument("--compression-level", type=int, default=None, help="gzip level 0-9")
    backup.add_argument("--table", action="append", dest="tables", default=[], help="Restrict to a table (repeatable)")
    backup.add_argument("--actor", default="system", help="Actor recorded on the job")
    return parser


def _build_engine() -> JobEngine:
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    return JobEngine(settings, get_session_factory())


def run_backup(engine: JobEngine, args: argparse.Namespace) -> int:
    parameters: dict[str, object] = {"name": args.name, "included_tables": args.tables}
    if args.compression_level is not None:
        parameters["compression_level"] = args.compression_level
    try:
        job_id = engine.submit(JobKind.BACKUP, parameters, args.actor)
    except (AdmissionRejectedError, JobParameterError) as exc:
        logger.error("Backup rejected: %s", exc)
        return 2

    job = engine.wait(job_id)
    if job.status != JobStatus.COMPLETED:
        logger.error("Backup %s ended as %s: %s", job_id, job.status.value, job.error_message)
        return 1
    print(f"{job.id} {job.artifact_name} {job.size_bytes} {job.checksum}")
    return 0


def run_reconcile(engine: JobEngine, args: argparse.Namespace) -> int:
    # This process owns no jobs, so every pending or running record looks interrupted.
    if not args.force:
        logger.error(
            "Refusing to reconcile without --force: jobs owned by a running server would be marked failed. "
            "The server reconciles on startup; stop it before forcing."
        )
        return 2
    logger.warning("Forced reconcile by %s; any running server must be stopped", args.actor)
    print(f"reconciled {engine.reconcile_interrupted_jobs(actor=args.actor)}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    engine = _build_engine()

    if args.command == "sweep":
        try:
            removed = engine.sweep(args.retention_days, actor=args.actor)
        except ValueError as exc:
            logger.error("Sweep rejected: %s", exc)
            return 2
        print(f"removed {removed}")
        return 0

    if args.command == "reconcile":
        return run_reconcile(engine, args)

    return run_backup(engine, args)


if __name__ == "__main__":
    sys.exit(main())
