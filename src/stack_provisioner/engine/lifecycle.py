"""Per-node provisioning lifecycle."""

from __future__ import annotations

import threading
from enum import Enum
from typing import TYPE_CHECKING

from stack_provisioner.engine.errors import EngineError

if TYPE_CHECKING:
    from collections.abc import Iterable


class Lifecycle(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PROVISIONED = "provisioned"
    FAILED = "failed"
    SKIPPED = "skipped"


_ALLOWED: dict[Lifecycle, frozenset[Lifecycle]] = {
    Lifecycle.PENDING: frozenset({Lifecycle.IN_PROGRESS, Lifecycle.SKIPPED}),
    Lifecycle.IN_PROGRESS: frozenset({Lifecycle.PROVISIONED, Lifecycle.FAILED}),
    # Rollback, only ever taken right before a retry.
    Lifecycle.FAILED: frozenset({Lifecycle.PENDING}),
    Lifecycle.PROVISIONED: frozenset(),
    Lifecycle.SKIPPED: frozenset(),
}


class LifecycleError(EngineError):
    """An illegal lifecycle transition was attempted."""


class LifecycleTracker:
    """Thread-safe lifecycle state per node, moving forward only."""

    def __init__(self, nodes: Iterable[str]) -> None:
        self._states = {n: Lifecycle.PENDING for n in nodes}
        self._lock = threading.Lock()

    def get(self, node: str) -> Lifecycle:
        with self._lock:
            return self._states[node]

    def transition(self, node: str, target: Lifecycle) -> None:
        with self._lock:
            current = self._states[node]
            if target not in _ALLOWED[current]:
                raise LifecycleError(f"{node}: cannot go from {current.value} to {target.value}")
            self._states[node] = target
