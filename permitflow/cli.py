"""Command-line entry points for scheduled permit jobs.

Usage::

    python -m permitflow expire-permits
    python -m permitflow process-email-queue --limit 50
    python -m permitflow send-reminders
    python -m permitflow push-test "Hello from permitflow"

Each command prints a JSON summary and exits 1 if any item failed.
"""

import argparse
import json
import logging
import logging.handlers
import os
import sys
from typing import Optional, List, Callable

from sqlalchemy.orm import Session

from permitflow.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="permitflow",
        description="Permit lifecycle batch jobs",
    )
    parser.add_argument("--log-dir", default=None, help="Directory for log files")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--no-file-log", action="store_true", help="Log to the console only")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("expire-permits", help="Expire issued/active permits past valid_to")

    queue = sub.add_parser("process-email-queue", help="Deliver one batch of queued emails")
    queue.add_argument("--limit", type=int, default=None, help="Maximum emails to process")

    sub.add_parser("send-reminders", help="Queue expiry reminders and pending-approval alerts")

    push = sub.add_parser("push-test", help="Broadcast a test push to every subscription")
    push.add_argument("message", nargs="?", default=None)

    return parser


def configure_logging(
    settings: Settings,
    *,
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    file_logging: bool = True,
) -> logging.Logger:
    """
    Attach console and rotating-file handlers to the ``permitflow`` logger.

    Every module logs through ``logging.getLogger(__name__)``, so handlers
    set here cover the whole package. Calling it twice does not duplicate
    handlers. A log directory that cannot be created degrades to console
    output with a warning.

    Raises:
        ValueError: If the level name is unknown
    """
    level_name = (level or settings.log_level).upper()
    if level_name not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level_name}. Must be one of: {', '.join(LOG_LEVELS)}")

    root = logging.getLogger("permitflow")
    root.setLevel(level_name)
    if root.handlers:
        return root

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if file_logging:
        log_dir = log_dir or settings.log_dir
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                os.path.join(log_dir, "permitflow.log"),
                maxBytes=settings.log_file_max_bytes,
                backupCount=settings.log_file_backups,
            )
        except OSError as e:
            root.warning(f"File logging disabled, cannot write to {log_dir}: {e}")
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    return root


def run_command(args: argparse.Namespace, db: Session) -> dict:
    from permitflow.workers import jobs

    if args.command == "expire-permits":
        return jobs.expire_permits(db)
    if args.command == "process-email-queue":
        return jobs.process_email_queue(db, limit=args.limit)
    if args.command == "send-reminders":
        return jobs.send_reminders(db)
    if args.command == "push-test":
        return jobs.push_test(db, args.message)
    raise ValueError(f"Unknown command: {args.command}")


def main(
    argv: Optional[List[str]] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> int:
    """
    Run one batch command.

    Args:
        argv: Command-line arguments (sys.argv by default)
        session_factory: Session factory (the configured database by default)

    Returns:
        Process exit code: 0 when every item succeeded, 1 otherwise
    """
    args = build_parser().parse_args(argv)
    configure_logging(
        get_settings(),
        log_dir=args.log_dir,
        level=args.log_level,
        file_logging=not args.no_file_log,
    )

    if session_factory is None:
        from permitflow.db.session import SessionLocal
        session_factory = SessionLocal

    db = session_factory()
    try:
        summary = run_command(args, db)
    except Exception:
        logger.exception(f"{args.command} failed")
        return 1
    finally:
        db.close()

    print(json.dumps(summary, indent=2, default=str))
    return 1 if summary.get("failed") else 0


if __name__ == "__main__":
    sys.exit(main())
