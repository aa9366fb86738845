"""Provisioned-state stores.

The engine only talks to state through :class:`StateStore`: ``load()`` once
at the start of a run and ``save()`` once per successfully provisioned
resource. Writes are independent; there is no cross-resource transaction.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from pydantic import ValidationError as PydanticValidationError

from stack_provisioner.core.state import ResourceInstance, State
from stack_provisioner.engine.errors import StateStoreError
from stack_provisioner.engine.lock import StateLock

if TYPE_CHECKING:
    from contextlib import AbstractContextManager
    from pathlib import Path

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    def load(self) -> State:
        """Return the current state record. Raises ``StateStoreError`` on I/O failure."""

    def save(self, address: str, instance: ResourceInstance | None) -> None:
        """Record *instance* under *address*, or forget *address* when ``None``."""

    def record_orphan(self, address: str, instance: ResourceInstance) -> None:
        """Move *instance* out of the managed set into the orphan list."""

    def lock(self) -> AbstractContextManager[object]:
        """Exclusive lock held for the duration of a plan or apply."""


class LocalStateStore:
    """JSON state file on the local filesystem."""

    def __init__(self, path: Path, *, wait_for_lock: bool = True) -> None:
        self._path = path
        self._wait_for_lock = wait_for_lock
        self._state: State | None = None
        self._mutex = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def lock(self) -> StateLock:
        return StateLock(self._path, blocking=self._wait_for_lock)

    def load(self) -> State:
        with self._mutex:
            try:
                self._state = State.load_or_create(self._path)
            except (OSError, ValueError, PydanticValidationError) as e:
                raise StateStoreError(f"Cannot read state {self._path}: {e}") from e
            logger.debug(
                "State loaded: serial=%d, %d resources",
                self._state.serial,
                len(self._state.resources),
            )
            return self._state.model_copy(deep=True)

    def _current(self) -> State:
        if self._state is None:
            raise StateStoreError("State must be loaded before it is written")
        return self._state

    def _commit(self, state: State) -> None:
        """Persist *state*; on failure the previously persisted record stays authoritative."""
        candidate = state.model_copy(deep=True)
        candidate.serial += 1
        try:
            self._write(candidate)
        except OSError as e:
            raise StateStoreError(f"Cannot write state {self._path}: {e}") from e
        self._state = candidate

    def _write(self, state: State) -> None:
        state.save(self._path)

    def save(self, address: str, instance: ResourceInstance | None) -> None:
        with self._mutex:
            state = self._current().model_copy(deep=True)
            if instance is None:
                state.resources.pop(address, None)
            else:
                stored = instance.model_copy(deep=True)
                stored.updated_at = datetime.now(UTC)
                state.resources[address] = stored
            self._commit(state)

    def record_orphan(self, address: str, instance: ResourceInstance) -> None:
        with self._mutex:
            state = self._current().model_copy(deep=True)
            orphan = instance.model_copy(update={"orphaned": True}, deep=True)
            state.orphans.append(orphan)
            with contextlib.suppress(KeyError):
                if state.resources[address].attributes_hash == instance.attributes_hash:
                    del state.resources[address]
            self._commit(state)
