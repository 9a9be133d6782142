"""Schema Sandbox - Reclaiming namespaces leaked by dead workers.

A worker killed hard (SIGKILL, OOM, power loss) never runs its teardown.
The creation time embedded in every generated name lets a later run find
those namespaces and drop them, the same way expired stage locks are
reclaimed: by age, not by asking the owner.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from schema_sandbox import config
from schema_sandbox.db import drop_namespace, list_namespaces
from schema_sandbox.errors import CleanupError
from schema_sandbox.models import utc_now
from schema_sandbox.naming import parse_created_at

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def find_stale_namespaces(
    engine: Engine,
    prefix: str | None = None,
    older_than: timedelta | None = None,
    now: datetime | None = None,
) -> list[str]:
    """List generated namespaces older than a cutoff.

    Names with the prefix but not the exact generated shape are left alone:
    they were not created by this package.

    Args:
        engine: Shared engine.
        prefix: Name prefix. Defaults to config.NAME_PREFIX.
        older_than: Minimum age. Defaults to config.STALE_AFTER_MINUTES.
        now: Reference time. Defaults to the current UTC time.

    Returns:
        Sorted list of stale namespace names.
    """
    prefix = prefix if prefix is not None else config.NAME_PREFIX
    age = older_than if older_than is not None else timedelta(minutes=config.STALE_AFTER_MINUTES)
    cutoff = (now if now is not None else utc_now()) - age

    with engine.connect() as conn:
        names = list_namespaces(conn, prefix)

    stale = []
    for name in names:
        created_at = parse_created_at(name, prefix)
        if created_at is not None and created_at < cutoff:
            stale.append(name)
    return stale


def sweep_stale_namespaces(
    engine: Engine,
    prefix: str | None = None,
    older_than: timedelta | None = None,
    now: datetime | None = None,
    dry_run: bool = False,
) -> list[str]:
    """Drop stale namespaces.

    A failed drop is logged and the sweep moves on.

    Args:
        engine: Shared engine.
        prefix: Name prefix. Defaults to config.NAME_PREFIX.
        older_than: Minimum age. Defaults to config.STALE_AFTER_MINUTES.
        now: Reference time. Defaults to the current UTC time.
        dry_run: If True, only report what would be dropped.

    Returns:
        Names dropped (or, with dry_run, names that would be dropped).
    """
    stale = find_stale_namespaces(engine, prefix=prefix, older_than=older_than, now=now)
    if dry_run:
        for name in stale:
            logger.info("Would drop stale namespace %s", name)
        return stale

    dropped = []
    for name in stale:
        try:
            with engine.begin() as conn:
                drop_namespace(conn, name)
        except SQLAlchemyError as exc:
            logger.warning("%s", CleanupError(name, exc))
            continue
        logger.info("Dropped stale namespace %s", name)
        dropped.append(name)
    return dropped
