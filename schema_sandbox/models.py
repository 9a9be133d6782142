"""Schema Sandbox - Allocation data model.

One Allocation tracks one namespace through its lifecycle:

    unallocated -> allocated -> migrated -> bound -> torn_down

No transition skips a state. torn_down is terminal; moving to it again is
a no-op rather than an error.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from schema_sandbox.errors import LifecycleError


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class AllocationState(str, Enum):
    UNALLOCATED = "unallocated"
    ALLOCATED = "allocated"
    MIGRATED = "migrated"
    BOUND = "bound"
    TORN_DOWN = "torn_down"


_NEXT_STATE = {
    AllocationState.UNALLOCATED: AllocationState.ALLOCATED,
    AllocationState.ALLOCATED: AllocationState.MIGRATED,
    AllocationState.MIGRATED: AllocationState.BOUND,
    AllocationState.BOUND: AllocationState.TORN_DOWN,
}


@dataclass(frozen=True)
class Namespace:
    """An isolated schema owned by one test for its duration."""

    name: str
    created_at: datetime = field(default_factory=utc_now)
    # Owning test identifier (e.g. pytest node id)
    owner: str | None = None


@dataclass
class Allocation:
    """Lifecycle record for one namespace."""

    owner: str | None = None
    namespace: Namespace | None = None
    state: AllocationState = AllocationState.UNALLOCATED
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def name(self) -> str | None:
        return self.namespace.name if self.namespace is not None else None

    def advance(self, target: AllocationState) -> bool:
        """Move to the next state.

        Args:
            target: The state to enter. Must directly follow the current one.

        Returns:
            True if the state changed, False for a repeated torn_down.

        Raises:
            LifecycleError: If target does not directly follow the current state.
        """
        with self._lock:
            if self.state is AllocationState.TORN_DOWN and target is AllocationState.TORN_DOWN:
                return False
            if _NEXT_STATE.get(self.state) is not target:
                raise LifecycleError(self.name, self.state.value, target.value)
            self.state = target
            return True

    def assign(self, namespace: Namespace) -> None:
        """Record the created namespace and enter the allocated state."""
        with self._lock:
            if self.state is not AllocationState.UNALLOCATED:
                raise LifecycleError(
                    namespace.name, self.state.value, AllocationState.ALLOCATED.value
                )
            self.namespace = namespace
            self.state = AllocationState.ALLOCATED
