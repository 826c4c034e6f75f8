"""Operator tool: report enrollment inconsistencies and repair orphans on request.

Nothing is written unless ``--repair CHILD_ID:PARENT_ID`` is given.
"""

from __future__ import annotations

import argparse
import importlib
import logging
from typing import Optional, Sequence

from dotenv import load_dotenv

from ..core.constants import DEFAULT_ISOLATION_LEVEL
from ..core.exceptions import DomainError
from .service import AuditReport, ConsistencyAuditor

logger = logging.getLogger(__name__)


def _pair(value: str) -> tuple[int, int]:
    try:
        child, parent = value.split(":", 1)
        return int(child), int(parent)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected CHILD_ID:PARENT_ID, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Audit child-parent enrollment links.")
    parser.add_argument(
        "--repair",
        metavar="CHILD_ID:PARENT_ID",
        type=_pair,
        action="append",
        default=[],
        help="link an orphan child to a parent with an approved enrollment (repeatable)",
    )
    parser.add_argument("--acting-user", type=int, default=None, help="user id recorded as the decider")
    return parser


def format_report(report: AuditReport) -> str:
    lines = [
        f"Orphan children: {len(report.orphans)}",
        *(f"  child {c.child_id}: {c.full_name}" for c in report.orphans),
        f"Children with several approved links: {len(report.duplicates)}",
        *(
            f"  child {d.child_id}: enrollments {', '.join(map(str, d.enrollment_ids))}"
            f" (parents {', '.join(map(str, d.parent_ids))})"
            for d in report.duplicates
        ),
        f"Dangling links: {len(report.dangling)}",
        *(f"  enrollment {d.enrollment_id} ({d.status.value}): {d.problem}" for d in report.dangling),
    ]
    return "\n".join(lines)


def run(auditor: ConsistencyAuditor, argv: Optional[Sequence[str]] = None, *, out=print) -> int:
    args = build_parser().parse_args(argv)

    out(format_report(auditor.report()))

    failures = 0
    for child_id, parent_id in args.repair:
        try:
            enrollment = auditor.repair_orphan(child_id, parent_id, acting_user_id=args.acting_user)
            out(f"Repaired child {child_id}: enrollment {enrollment.enrollment_id} approved for parent {parent_id}")
        except DomainError as e:
            failures += 1
            logger.warning("repair of child %s -> parent %s refused: %s", child_id, parent_id, e)
            out(f"Could not repair child {child_id}: {e}")
    return 1 if failures else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    from config import get_settings_module

    from ..container import build_container
    from ..main import configure_logging

    load_dotenv(override=False)
    settings = importlib.import_module(get_settings_module())
    configure_logging(getattr(settings, "LOG_LEVEL", "INFO"))
    container = build_container(
        db_config=dict(settings.DB_CONFIG),
        isolation_level=getattr(settings, "DB_ISOLATION_LEVEL", DEFAULT_ISOLATION_LEVEL),
    )
    return run(container.auditor, argv)
