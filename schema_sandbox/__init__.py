"""Schema Sandbox - per-test PostgreSQL namespaces on a shared instance.

Provides:
- Namespace allocation with collision retry (allocator, naming)
- Ordered schema statements applied into one namespace (migrations)
- Pooled connections scoped to a namespace (session)
- Exactly-once teardown tokens (cleanup)
- The SchemaSandbox lifecycle object tying them together (lifecycle)
"""

from schema_sandbox.errors import (
    AllocationCancelled,
    AllocationError,
    BindError,
    CleanupError,
    LifecycleError,
    MigrationError,
    SandboxError,
)
from schema_sandbox.lifecycle import SchemaSandbox
from schema_sandbox.models import Allocation, AllocationState, Namespace

__version__ = "0.1.0"

__all__ = [
    "SchemaSandbox",
    "Allocation",
    "AllocationState",
    "Namespace",
    # errors
    "SandboxError",
    "AllocationError",
    "AllocationCancelled",
    "MigrationError",
    "BindError",
    "CleanupError",
    "LifecycleError",
]
