"""Current/desired state pairs shared by every managed entity kind."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class ReconcileError(Exception):
    """Raised when a cloud call needed to converge an entity fails.

    Only the entity (and its subtree) that raised is affected; siblings keep
    reconciling.
    """

    pass


@dataclass
class DualState(Generic[T]):
    """Pair of optional snapshots for one aspect of a managed entity.

    ``current`` is what the cloud last reported, ``None`` when the object has
    not been created yet. ``desired`` is what routing intent asks for, ``None``
    when the object must not exist. The two ``None`` meanings are never
    interchangeable with an empty value.
    """

    current: T | None = None
    desired: T | None = None

    def adopt(self, snapshot: T | None) -> None:
        """Record a cloud-confirmed snapshot as the new current state."""
        self.current = snapshot

    def adopt_desired(self) -> None:
        """Record the desired snapshot as current after a successful call."""
        self.current = self.desired
