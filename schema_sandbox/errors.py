"""Schema Sandbox - Error taxonomy.

Setup-phase errors (allocation, migration, connection) propagate to the test.
Cleanup errors are only ever logged.
"""

from __future__ import annotations

from collections.abc import Sequence

# Statement text longer than this is truncated in error messages
_STATEMENT_PREVIEW_CHARS = 200


class SandboxError(Exception):
    """Base class for all sandbox errors."""

    code = "SANDBOX_ERROR"


class AllocationError(SandboxError):
    """Raised when a namespace could not be created.

    Error code: ALLOCATION_FAILURE
    """

    code = "ALLOCATION_FAILURE"

    def __init__(self, attempted: Sequence[str], reason: str, cause: BaseException | None = None):
        self.attempted = list(attempted)
        self.reason = reason
        self.cause = cause
        super().__init__(f"{self.code}: {reason} (attempted: {', '.join(self.attempted) or '-'})")


class AllocationCancelled(AllocationError):
    """Raised when the owning context cancelled the allocation.

    Error code: ALLOCATION_CANCELLED
    """

    code = "ALLOCATION_CANCELLED"


class MigrationError(SandboxError):
    """Raised when a schema statement fails inside a namespace.

    Error code: MIGRATION_FAILURE
    """

    code = "MIGRATION_FAILURE"

    def __init__(self, namespace: str, index: int, statement: str, cause: BaseException):
        self.namespace = namespace
        self.index = index
        self.statement = statement
        self.cause = cause
        preview = statement.strip()
        if len(preview) > _STATEMENT_PREVIEW_CHARS:
            preview = preview[:_STATEMENT_PREVIEW_CHARS] + "..."
        super().__init__(
            f"{self.code}: statement {index} failed in namespace '{namespace}': "
            f"{cause}\n    {preview}"
        )


class BindError(SandboxError):
    """Raised when no pooled connection could be bound to a namespace.

    Error code: CONNECTION_FAILURE
    """

    code = "CONNECTION_FAILURE"

    def __init__(self, namespace: str, attempts: int, cause: BaseException | None = None):
        self.namespace = namespace
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"{self.code}: could not bind a connection to namespace '{namespace}' "
            f"after {attempts} attempt(s): {cause}"
        )


class CleanupError(SandboxError):
    """Describes a failed namespace drop.

    Never raised out of a teardown token; built so the warning carries
    a consistent message.

    Error code: CLEANUP_FAILURE
    """

    code = "CLEANUP_FAILURE"

    def __init__(self, namespace: str, cause: BaseException):
        self.namespace = namespace
        self.cause = cause
        super().__init__(f"{self.code}: could not drop namespace '{namespace}': {cause}")


class LifecycleError(SandboxError):
    """Raised on an illegal allocation state transition.

    Error code: INVALID_TRANSITION
    """

    code = "INVALID_TRANSITION"

    def __init__(self, namespace: str | None, current: str, target: str):
        self.namespace = namespace
        self.current = current
        self.target = target
        super().__init__(
            f"{self.code}: namespace '{namespace}' cannot move from {current} to {target}"
        )
