"""Schema Sandbox - Namespace name generation.

Names combine a nanosecond timestamp with a random suffix:

    t_1869a3c0f2b4e7d1_9f3c2a1b
    ^ ^                ^
    | |                random hex (disambiguates equal timestamps)
    | timestamp in ns, hex
    prefix

Uniqueness is statistical, not cryptographic. Callers must treat a
collision as possible and retry.
"""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from datetime import UTC, datetime

from schema_sandbox.config import MAX_IDENTIFIER_LENGTH, NAME_PREFIX, NAME_RANDOM_BYTES

# Unquoted PostgreSQL identifier, lowercase only
_PREFIX_RE = re.compile(r"[a-z_][a-z0-9_]*")

# Everything after the prefix in a generated name. Nanosecond timestamps
# since 2006 are 15 or 16 hex digits.
_GENERATED_RE = re.compile(rf"([0-9a-f]{{15,16}})_([0-9a-f]{{{2 * NAME_RANDOM_BYTES}}})")


class NameGenerator:
    """Produces collision-resistant namespace names.

    Args:
        prefix: Leading part of every name. Must be a lowercase identifier.
        clock: Returns the current time in nanoseconds.
        token: Returns n random bytes rendered as 2n hex characters.
    """

    def __init__(
        self,
        prefix: str = NAME_PREFIX,
        clock: Callable[[], int] = time.time_ns,
        token: Callable[[int], str] = secrets.token_hex,
    ):
        if not _PREFIX_RE.fullmatch(prefix):
            raise ValueError(f"Invalid namespace prefix: {prefix!r}")
        self.prefix = prefix
        self._clock = clock
        self._token = token

    def generate(self) -> str:
        """Return a fresh namespace name."""
        name = f"{self.prefix}{self._clock():x}_{self._token(NAME_RANDOM_BYTES).lower()}"
        if len(name) > MAX_IDENTIFIER_LENGTH:
            raise ValueError(
                f"Generated name exceeds {MAX_IDENTIFIER_LENGTH} characters: {name!r}"
            )
        return name


def parse_created_at(name: str, prefix: str = NAME_PREFIX) -> datetime | None:
    """Recover the creation time embedded in a generated name.

    Only the exact generated shape is accepted: prefix, a 15 or 16 digit
    hex timestamp, "_", and the hex random suffix. Hand-made schemas that
    merely share the prefix (t_a_backup, t_cafe_archive) are rejected.

    Args:
        name: A namespace name.
        prefix: Prefix the name was generated with.

    Returns:
        UTC datetime, or None if the name was not produced by NameGenerator.
    """
    if not name.startswith(prefix):
        return None
    match = _GENERATED_RE.fullmatch(name[len(prefix) :])
    if match is None:
        return None
    ns = int(match.group(1), 16)
    return datetime.fromtimestamp(ns / 1_000_000_000, UTC)
