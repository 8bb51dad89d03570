"""
evalguard CLI - Scheduler entry points for evaluation and moderation jobs.

Usage:
    python -m evalguard.cli init-db
    python -m evalguard.cli run-dataset 42
    python -m evalguard.cli moderate-traces --sample 10 --since-minutes 60
    python -m evalguard.cli moderate-user-facing
    python -m evalguard.cli moderate-agent-types support billing
    python -m evalguard.cli guardrails

Enqueue commands drain the in-process queue before exiting.
"""

import argparse
import sys
from datetime import datetime, timedelta
from typing import List, Optional

from evalguard.database import init_db
from evalguard.errors import EvalguardError
from evalguard.jobs import DatasetRunnerJob, ModerationGuardrailJob
from evalguard.jobs.queue import JobStatus, get_queue
from evalguard.logging import setup_logging
from evalguard.models import Trace
from evalguard.services.rule_guardrail import RuleGuardrailService


def since_minutes(minutes: Optional[int]) -> Optional[datetime]:
    if minutes is None:
        return None
    return datetime.utcnow() - timedelta(minutes=minutes)


def drain() -> int:
    """Run all queued jobs; exit code 1 if any failed."""
    jobs = get_queue().run_pending()
    failed = [job for job in jobs if job.status == JobStatus.FAILED]

    print(f"Ran {len(jobs)} job(s), {len(failed)} failed")
    for job in failed:
        print(f"  {job.job_name} {job.id}: {job.error}")

    return 1 if failed else 0


def cmd_init_db(args) -> int:
    """Create database tables."""
    db = get_queue().session_factory()
    try:
        init_db(bind=db.get_bind())
    finally:
        db.close()
    print("Database initialized")
    return 0


def cmd_run_dataset(args) -> int:
    """Run one dataset run."""
    DatasetRunnerJob.enqueue(args.run_id)
    return drain()


def cmd_moderate_traces(args) -> int:
    """Moderate a sample of recent, un-reviewed traces."""
    db = get_queue().session_factory()
    try:
        scope = db.query(Trace)
        since = since_minutes(args.since_minutes)
        if since is not None:
            scope = scope.filter(Trace.created_at >= since)
        jobs = ModerationGuardrailJob.enqueue_for_scope(
            scope, sample_percentage=args.sample
        )
    finally:
        db.close()

    print(f"Enqueued {len(jobs)} trace(s) for moderation")
    return drain()


def cmd_moderate_user_facing(args) -> int:
    """Moderate recent user-facing sessions."""
    db = get_queue().session_factory()
    try:
        jobs = ModerationGuardrailJob.enqueue_user_facing(
            db, since=since_minutes(args.since_minutes)
        )
    finally:
        db.close()

    print(f"Enqueued {len(jobs)} session(s) for moderation")
    return drain()


def cmd_moderate_agent_types(args) -> int:
    """Moderate recent sessions of the given agent types."""
    db = get_queue().session_factory()
    try:
        jobs = ModerationGuardrailJob.enqueue_for_agent_types(
            db, args.agent_types, since=since_minutes(args.since_minutes)
        )
    finally:
        db.close()

    print(f"Enqueued {len(jobs)} session(s) for moderation")
    return drain()


def cmd_guardrails(args) -> int:
    """Apply rule guardrails to recent traces and sessions."""
    db = get_queue().session_factory()
    try:
        created = RuleGuardrailService(db).evaluate_all_recent(
            since=since_minutes(args.since_minutes)
        )
    finally:
        db.close()

    print(f"Created {created} review item(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="evalguard",
        description="Dataset evaluation and moderation guardrail jobs",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("init-db", help="Create database tables")

    run_parser = subparsers.add_parser("run-dataset", help="Run a dataset run")
    run_parser.add_argument("run_id", type=int, help="Dataset run id")

    traces_parser = subparsers.add_parser("moderate-traces", help="Moderate recent traces")
    traces_parser.add_argument("--sample", type=int, default=100, help="Sample percentage (1-100)")
    traces_parser.add_argument("--since-minutes", type=int, help="Only traces created in the last N minutes")

    user_parser = subparsers.add_parser("moderate-user-facing", help="Moderate user-facing sessions")
    user_parser.add_argument("--since-minutes", type=int, help="Lookback window in minutes")

    types_parser = subparsers.add_parser("moderate-agent-types", help="Moderate sessions by agent type")
    types_parser.add_argument("agent_types", nargs="+", help="Agent types to moderate")
    types_parser.add_argument("--since-minutes", type=int, help="Lookback window in minutes")

    guardrails_parser = subparsers.add_parser("guardrails", help="Apply rule guardrails")
    guardrails_parser.add_argument("--since-minutes", type=int, help="Lookback window in minutes")

    return parser


COMMANDS = {
    "init-db": cmd_init_db,
    "run-dataset": cmd_run_dataset,
    "moderate-traces": cmd_moderate_traces,
    "moderate-user-facing": cmd_moderate_user_facing,
    "moderate-agent-types": cmd_moderate_agent_types,
    "guardrails": cmd_guardrails,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging()
    try:
        return COMMANDS[args.command](args)
    except EvalguardError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
