"""Schema Sandbox - Configuration constants.

No external config libraries. Every value can be overridden through the
environment, and every component also accepts explicit overrides.
"""

import os
from pathlib import Path

# Repository root (parent of schema_sandbox/)
REPO_ROOT = Path(__file__).parent.parent.resolve()

# Connection descriptor supplied by the test runner / CI
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


def _get_int(name: str, default: int) -> int:
    """Get a positive integer from the environment or use default.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or invalid.

    Returns:
        The parsed value, or default.
    """
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = int(env_val)
            if value > 0:
                return value
        except ValueError:
            pass
    return default


def _get_delays(name: str, default: tuple[float, ...]) -> tuple[float, ...]:
    """Get a comma-separated list of non-negative delays (seconds).

    An empty string means "no retries".

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or invalid.

    Returns:
        Tuple of delays in seconds.
    """
    env_val = os.environ.get(name)
    if env_val is None:
        return default
    if not env_val.strip():
        return ()
    try:
        delays = tuple(float(part) for part in env_val.split(","))
    except ValueError:
        return default
    if any(d < 0 for d in delays):
        return default
    return delays


# Namespace names are "<prefix><timestamp_hex>_<random_hex>"
NAME_PREFIX = os.environ.get("SANDBOX_NAME_PREFIX", "t_")

# PostgreSQL truncates identifiers longer than NAMEDATALEN - 1
MAX_IDENTIFIER_LENGTH = 63

# Bytes of randomness in the name suffix (rendered as 2x hex chars)
NAME_RANDOM_BYTES = 4

# Name collision retry budget: total CREATE SCHEMA attempts per allocation
CREATE_ATTEMPTS = _get_int("SANDBOX_CREATE_ATTEMPTS", 3)

# Pool exhaustion retry policy
# Delays between checkout attempts; total attempts = 1 + len(delays)
CONNECT_RETRY_DELAYS_SECONDS = _get_delays(
    "SANDBOX_CONNECT_RETRY_DELAYS_SECONDS", (0.1, 0.5)
)
CONNECT_ATTEMPTS_TOTAL = 1 + len(CONNECT_RETRY_DELAYS_SECONDS)

# Shared pool sizing (sqlalchemy QueuePool)
POOL_SIZE = _get_int("SANDBOX_POOL_SIZE", 5)
POOL_MAX_OVERFLOW = _get_int("SANDBOX_POOL_MAX_OVERFLOW", 5)
POOL_TIMEOUT_SECONDS = _get_int("SANDBOX_POOL_TIMEOUT_SECONDS", 10)

# Namespaces older than this are considered leaked by the janitor
STALE_AFTER_MINUTES = _get_int("SANDBOX_STALE_AFTER_MINUTES", 60)

# Optional directory of *.sql files applied to every namespace
MIGRATIONS_DIR = os.environ.get("SANDBOX_MIGRATIONS_DIR")
