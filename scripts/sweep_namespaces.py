#!/usr/bin/env python3
"""Drop sandbox namespaces left behind by killed test workers.

Run it between CI jobs (or from cron on a shared test instance). Only
namespaces whose name carries the sandbox prefix and an embedded creation
time older than the cutoff are touched. The database URL comes from
--database-url or TEST_DATABASE_URL.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Sequence
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from schema_sandbox import config
from schema_sandbox.db import create_db_engine
from schema_sandbox.janitor import sweep_stale_namespaces


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Drop stale sandbox namespaces")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("TEST_DATABASE_URL"),
        help="Database URL (default: $TEST_DATABASE_URL)",
    )
    parser.add_argument(
        "--prefix",
        default=config.NAME_PREFIX,
        help=f"Namespace name prefix (default: {config.NAME_PREFIX})",
    )
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=config.STALE_AFTER_MINUTES,
        help=f"Minimum namespace age (default: {config.STALE_AFTER_MINUTES})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List stale namespaces without dropping them",
    )
    args = parser.parse_args(argv)

    if not args.database_url:
        print("No database URL: pass --database-url or set TEST_DATABASE_URL", file=sys.stderr)
        return 2

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    engine = create_db_engine(args.database_url, pool_size=1, max_overflow=0)
    try:
        names = sweep_stale_namespaces(
            engine,
            prefix=args.prefix,
            older_than=timedelta(minutes=args.older_than_minutes),
            dry_run=args.dry_run,
        )
    except SQLAlchemyError as exc:
        print(f"Sweep failed: {exc}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()

    verb = "Would drop" if args.dry_run else "Dropped"
    print(f"{verb} {len(names)} namespace(s)")
    for name in names:
        print(f"  {name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
