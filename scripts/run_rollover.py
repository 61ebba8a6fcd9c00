#!/usr/bin/env python3
"""Year-end rollover — close one leave period and open the next.

Meant to run once, shortly after midnight on 1 January:
    5 0 1 1 *

Safe to re-run: staff whose period is already closed are reported as
"already processed" and left untouched.

Usage:
    python scripts/run_rollover.py 2025                 # roll 2025 into 2026 for everyone
    python scripts/run_rollover.py 2025 --staff <uuid>  # one staff member (repeatable)
    python scripts/run_rollover.py 2025 --concurrency 8
    python scripts/run_rollover.py 2025 --json          # machine-readable report

Exit codes:
    0 = every staff member processed or already processed
    1 = one or more staff members failed
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

# Load .env from project root before settings are read
for env_candidate in [
    PROJECT_ROOT / ".env",
    Path("/opt/leave-portal/.env"),
]:
    if env_candidate.exists():
        load_dotenv(env_candidate)
        break

from leave_portal.config import settings  # noqa: E402

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("run_rollover")

# Every mapped class must be imported before the first query
import leave_portal.leave.models  # noqa: E402,F401
import leave_portal.workcalendar.models  # noqa: E402,F401
from leave_portal.database import async_session_factory, engine  # noqa: E402
from leave_portal.ledger.rollover import run_year_end_rollover  # noqa: E402


async def _run(args: argparse.Namespace) -> int:
    try:
        report = await run_year_end_rollover(
            args.period,
            session_factory=async_session_factory,
            staff_ids=args.staff or None,
            concurrency=args.concurrency,
        )
    finally:
        await engine.dispose()

    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        print(f"""
{'=' * 60}
  ROLLOVER {report.period} → {report.period + 1}
  Processed         : {len(report.processed)}
  Already processed : {len(report.already_processed)}
  Failed            : {len(report.failures)}
{'=' * 60}""")
        for failure in report.failures:
            print(f"  ✗ {failure.staff_id}  [{failure.error_type}] {failure.detail}")

    return 0 if report.succeeded else 1


def main():
    parser = argparse.ArgumentParser(
        description="Close a leave period and carry balances into the next one",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("period", type=int, help="Period (calendar year) to close")
    parser.add_argument(
        "--staff", type=uuid.UUID, action="append",
        help="Only this staff member (may be given more than once)",
    )
    parser.add_argument(
        "--concurrency", type=int, default=None,
        help=f"Staff processed in parallel (default: {settings.ROLLOVER_CONCURRENCY})",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args()

    logger.info("Rolling over period %d (%s)", args.period, settings.ENVIRONMENT)

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
