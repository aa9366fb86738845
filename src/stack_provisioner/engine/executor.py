"""Provisioning executors.

An executor performs one create/update/delete for a resource whose inputs
are already fully resolved, and reports the outputs the resource produced.
Failures surface as :class:`ProvisionError` with a kind the scheduler uses to
decide whether to retry.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, Self

from stack_provisioner.core.environment import Environment
from stack_provisioner.engine.errors import ProvisionError, ProvisionErrorKind
from stack_provisioner.engine.handlers import EngineContext, ResolvedResource
from stack_provisioner.engine.types import OperationKind

if TYPE_CHECKING:
    from types import TracebackType

    from stack_provisioner.core.state import ResourceInstance
    from stack_provisioner.engine.handlers import ResourceHandler
    from stack_provisioner.engine.registry import ResourceTypeRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutableAction:
    """One executor call. ``inputs`` never contain unresolved references."""

    key: str
    kind: OperationKind
    address: str
    unit: str
    resource_id: str
    resource_type: str
    inputs: dict[str, Any] = field(default_factory=dict)
    prior: ResourceInstance | None = None
    environment: Environment = field(default_factory=Environment)

    def resolved(self) -> ResolvedResource:
        return ResolvedResource(
            address=self.address,
            unit=self.unit,
            id=self.resource_id,
            resource_type=self.resource_type,
            inputs=dict(self.inputs),
        )


class Executor(Protocol):
    def execute(self, action: ExecutableAction, *, timeout: float | None) -> dict[str, Any]:
        """Run *action* and return the produced outputs (empty for deletes)."""


def classify_error(exc: BaseException) -> ProvisionErrorKind:
    """Map an arbitrary handler exception onto the provisioning error kinds."""
    if isinstance(exc, ProvisionError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ProvisionErrorKind.TIMEOUT
    if isinstance(exc, ConnectionError) or getattr(exc, "retryable", False):
        return ProvisionErrorKind.TRANSIENT
    return ProvisionErrorKind.FATAL


class HandlerExecutor:
    """Dispatch actions to the handler registered for the resource type.

    Each call starts on its own daemon thread so it can be abandoned when it
    exceeds its timeout. An abandoned call keeps running in the background
    without holding up later calls; handlers are expected to be idempotent,
    so the retry that follows is safe.
    """

    def __init__(self, registry: ResourceTypeRegistry) -> None:
        self._registry = registry
        self._closed = threading.Event()

    def _start(
        self, handler: ResourceHandler, ctx: EngineContext, action: ExecutableAction
    ) -> Future[dict[str, Any]]:
        if self._closed.is_set():
            raise RuntimeError("executor is closed")
        future: Future[dict[str, Any]] = Future()
        future.set_running_or_notify_cancel()

        def run() -> None:
            try:
                future.set_result(self._dispatch(handler, ctx, action))
            except BaseException as e:
                future.set_exception(e)

        threading.Thread(
            target=run, name=f"stack-provisioner-call:{action.key}", daemon=True
        ).start()
        return future

    def execute(self, action: ExecutableAction, *, timeout: float | None) -> dict[str, Any]:
        handler = self._registry.get(action.resource_type).handler
        ctx = EngineContext(environment=action.environment, unit=action.unit, timeout=timeout)
        logger.debug("Executing %s", action.key)
        future = self._start(handler, ctx, action)
        try:
            return future.result(timeout=timeout)
        except ProvisionError as e:
            if e.address:
                raise
            raise ProvisionError(e.kind, e.message, address=action.address) from e
        except TimeoutError as e:
            if future.done():
                message = str(e) or "timed out"
            else:
                message = f"{action.kind.value} did not finish within {timeout}s"
            raise ProvisionError(
                ProvisionErrorKind.TIMEOUT, message, address=action.address
            ) from e
        except Exception as e:
            raise ProvisionError(
                classify_error(e), str(e) or type(e).__name__, address=action.address
            ) from e

    @staticmethod
    def _dispatch(
        handler: ResourceHandler, ctx: EngineContext, action: ExecutableAction
    ) -> dict[str, Any]:
        match action.kind:
            case OperationKind.CREATE:
                return dict(handler.create(ctx, action.resolved()))
            case OperationKind.UPDATE:
                if action.prior is None:
                    raise ValueError(f"Missing prior state for update: {action.address}")
                return dict(handler.update(ctx, action.resolved(), action.prior))
            case OperationKind.DELETE:
                if action.prior is None:
                    raise ValueError(f"Missing prior state for delete: {action.address}")
                handler.delete(ctx, action.prior)
                return {}
            case _:
                raise ValueError(f"Operation kind {action.kind.value} has no executor call")

    def close(self) -> None:
        self._closed.set()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
