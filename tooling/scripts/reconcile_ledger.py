#!/usr/bin/env python3
"""Compare every account's stored balance with its ledger.

Example:
    python tooling/scripts/reconcile_ledger.py

With --fail-on-drift the script exits non-zero when any account has drifted.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile loyalty balances against the points ledger")
    parser.add_argument(
        "--fail-on-drift",
        action="store_true",
        help="Exit with status 1 if any account balance differs from its ledger sum.",
    )
    return parser.parse_args()


async def _run() -> dict:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from brewpoints_api.db.session import async_session  # type: ignore import-position
    from brewpoints_api.jobs.loyalty import reconcile_ledgers  # type: ignore import-position

    return await reconcile_ledgers(session_factory=async_session)


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run())
    drifted = summary["drifted"]
    for entry in drifted:
        logger.warning("Account drift", **entry)
    logger.success(
        "Ledger reconciliation completed",
        accounts_checked=summary["accounts_checked"],
        drifted=len(drifted),
    )
    return 1 if drifted and args.fail_on_drift else 0


if __name__ == "__main__":
    sys.exit(main())
