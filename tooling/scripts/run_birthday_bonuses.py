#!/usr/bin/env python3
"""Award birthday bonus points to members whose birthday is today.

Intended usage: schedule once a day via cron. Re-running on the same day is
safe; each member is credited at most once per year.

Example:
    python tooling/scripts/run_birthday_bonuses.py --date 2024-06-01
"""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Award birthday bonus points")
    parser.add_argument(
        "--date",
        type=dt.date.fromisoformat,
        default=None,
        help="Treat this ISO date as today (defaults to the current UTC date).",
    )
    return parser.parse_args()


async def _run(today: dt.date | None) -> dict:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from brewpoints_api.db.session import async_session  # type: ignore import-position
    from brewpoints_api.jobs.loyalty import award_birthday_bonuses  # type: ignore import-position

    return await award_birthday_bonuses(session_factory=async_session, today=today)


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.date))
    logger.success("Birthday bonus run completed", **summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
