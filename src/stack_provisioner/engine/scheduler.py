"""Wave scheduler.

Runs a plan's operations wave by wave. Every operation of a wave is
dispatched to a thread pool at once; the next wave starts only after the
whole current wave has finished. State is written from the scheduling
thread only, one resource at a time, right after its executor call
succeeded.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from stack_provisioner.core.state import ResourceInstance
from stack_provisioner.engine.errors import (
    ApplyCanceled,
    ProvisionError,
    StateStoreError,
    UnresolvedReferenceError,
)
from stack_provisioner.engine.executor import ExecutableAction, classify_error
from stack_provisioner.engine.lifecycle import Lifecycle, LifecycleTracker
from stack_provisioner.engine.resolver import ReferenceResolver
from stack_provisioner.engine.retry import RetryPolicy
from stack_provisioner.engine.types import (
    SKIPPED_REASON,
    Action,
    ApplyResult,
    OperationKind,
    ReplaceMode,
    ResourceChange,
    ResourceFailure,
)
from stack_provisioner.resources.base import Resource

if TYPE_CHECKING:
    from stack_provisioner.core.state import State
    from stack_provisioner.engine.executor import Executor
    from stack_provisioner.engine.store import StateStore
    from stack_provisioner.engine.types import Plan, PlannedOperation

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ResourceChange, Literal["start", "done"]], None]

_PROVISION = frozenset({OperationKind.CREATE, OperationKind.UPDATE})


class CancellationToken:
    """Cooperative cancellation checked before every wave."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def canceled(self) -> bool:
        return self._event.is_set()


class _Run:
    """Mutable bookkeeping for one scheduler run."""

    def __init__(self, plan: Plan, state: State) -> None:
        self.plan = plan
        self.prior = dict(state.resources)
        self.outputs: dict[str, dict[str, Any]] = state.outputs()
        self.changes = {c.address: c for c in plan.changes}
        self.ops = {op.key: op for op in plan.operations}
        self.remaining = Counter(op.address for op in plan.operations)
        self.unit_work = Counter(
            self.changes[op.address].unit for op in plan.operations if op.kind in _PROVISION
        )
        self.lifecycle = LifecycleTracker(self.ops)
        self.blocked: set[str] = set()
        self.result = ApplyResult()
        self.stop = False

    def change(self, op: PlannedOperation) -> ResourceChange:
        return self.changes[op.address]

    def completed_units(self) -> set[str]:
        """Units with no create or update left to finish."""
        known = {c.unit for c in self.changes.values()}
        known.update(u for deps in self.plan.unit_dependencies.values() for u in deps)
        return {u for u in known if self.unit_work[u] == 0}


class Scheduler:
    """Execute plan operations in dependency waves.

    A failed operation blocks everything that depends on it, directly or not;
    those operations are skipped and reported as no-ops. Independent branches
    keep going unless ``fail_fast`` is set, in which case operations that have
    not started are canceled, running ones are awaited and no new wave starts.
    """

    def __init__(
        self,
        executor: Executor,
        store: StateStore,
        *,
        max_parallel: int = 4,
        fail_fast: bool = False,
        timeout: float | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        if max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        self._executor = executor
        self._store = store
        self._max_parallel = max_parallel
        self._fail_fast = fail_fast
        self._timeout = timeout
        self._retry = retry or RetryPolicy()

    def run(
        self,
        plan: Plan,
        state: State,
        *,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> ApplyResult:
        """Apply *plan* on top of *state* (the state the plan was made against)."""
        run = _Run(plan, state)
        resolver = ReferenceResolver(
            (ref for c in plan.changes for ref in c.references), plan.unit_dependencies
        )
        logger.info("Applying %d operations in %d waves", len(run.ops), len(plan.waves))

        with ThreadPoolExecutor(
            max_workers=self._max_parallel, thread_name_prefix="stack-provisioner"
        ) as pool:
            for index, wave in enumerate(plan.waves):
                if cancel is not None and cancel.canceled:
                    run.result.canceled = True
                if run.stop or run.result.canceled:
                    run.result.not_started.extend(k for w in plan.waves[index:] for k in w)
                    break
                logger.debug("Wave %d: %s", index, ", ".join(wave))
                try:
                    self._run_wave(run, wave, resolver, pool, progress)
                except KeyboardInterrupt:
                    run.result.not_started.extend(k for w in plan.waves[index + 1 :] for k in w)
                    raise ApplyCanceled(run.result) from None

        logger.info(
            "Apply finished: %d applied, %d failed, %d skipped",
            len(run.result.applied),
            len(run.result.failures),
            len(run.result.skipped),
        )
        return run.result

    # ── One wave ────────────────────────────────────────────────────

    def _run_wave(
        self,
        run: _Run,
        wave: list[str],
        resolver: ReferenceResolver,
        pool: ThreadPoolExecutor,
        progress: ProgressCallback | None,
    ) -> None:
        futures: dict[Future[tuple[dict[str, Any], int]], tuple[str, ExecutableAction]] = {}
        collected: set[str] = set()
        try:
            for key in wave:
                op = run.ops[key]
                if run.stop:
                    run.result.not_started.append(key)
                    continue
                if any(dep in run.blocked for dep in op.deps):
                    self._skip(run, key)
                    continue
                if op.kind is OperationKind.FORGET:
                    self._forget(run, key)
                    continue
                try:
                    self._check_unit_ready(run, op, resolver)
                    action = self._action(run, op, resolver)
                except UnresolvedReferenceError as e:
                    run.lifecycle.transition(key, Lifecycle.IN_PROGRESS)
                    run.lifecycle.transition(key, Lifecycle.FAILED)
                    self._fail(run, key, "fatal", str(e), attempts=0)
                    continue
                if progress is not None:
                    progress(run.change(op), "start")
                futures[pool.submit(self._attempt, run.lifecycle, action)] = (key, action)

            for future in as_completed(futures):
                if future.cancelled():
                    continue
                key, action = futures[future]
                collected.add(key)
                self._collect(run, key, action, future, progress)
                if run.stop:
                    self._cancel_pending(run, futures)
        except KeyboardInterrupt:
            logger.warning("Interrupted; waiting for running operations to finish")
            run.result.canceled = True
            run.stop = True
            self._cancel_pending(run, futures)
            for future, (key, action) in futures.items():
                if not future.cancelled() and key not in collected:
                    self._collect(run, key, action, future, progress)
            raise

    def _cancel_pending(
        self, run: _Run, futures: dict[Future[Any], tuple[str, ExecutableAction]]
    ) -> None:
        for future, (key, _) in futures.items():
            if future.cancel() and key not in run.result.not_started:
                run.result.not_started.append(key)

    @staticmethod
    def _check_unit_ready(run: _Run, op: PlannedOperation, resolver: ReferenceResolver) -> None:
        """Refuse to provision into a unit whose producer units are not finished."""
        if op.kind not in _PROVISION:
            return
        unit = run.change(op).unit
        completed = run.completed_units()
        if not resolver.unit_ready(unit, completed):
            waiting = [u for u in run.plan.unit_dependencies.get(unit, []) if u not in completed]
            raise UnresolvedReferenceError(
                op.address, [f"unit '{u}' not provisioned" for u in waiting]
            )

    def _action(
        self, run: _Run, op: PlannedOperation, resolver: ReferenceResolver
    ) -> ExecutableAction:
        change = run.change(op)
        inputs: dict[str, Any] = {}
        if op.kind is not OperationKind.DELETE:
            if change.desired is None:
                raise ValueError(f"Missing desired config for {op.key}")
            resource = Resource.model_validate(change.desired)
            inputs = resolver.resolve_inputs(resource, run.outputs)
        return ExecutableAction(
            key=op.key,
            kind=op.kind,
            address=op.address,
            unit=change.unit,
            resource_id=change.resource_id,
            resource_type=change.resource_type,
            inputs=inputs,
            prior=run.prior.get(op.address),
            environment=change.environment,
        )

    def _attempt(
        self, lifecycle: LifecycleTracker, action: ExecutableAction
    ) -> tuple[dict[str, Any], int]:
        """Worker thread: run one action under the retry policy."""
        lifecycle.transition(action.key, Lifecycle.IN_PROGRESS)

        def _rollback(_error: ProvisionError, _attempt: int) -> None:
            lifecycle.transition(action.key, Lifecycle.FAILED)
            lifecycle.transition(action.key, Lifecycle.PENDING)
            lifecycle.transition(action.key, Lifecycle.IN_PROGRESS)

        try:
            return self._retry.call(
                lambda: self._executor.execute(action, timeout=self._timeout),
                label=action.key,
                on_retry=_rollback,
            )
        except Exception:
            lifecycle.transition(action.key, Lifecycle.FAILED)
            raise

    # ── Results ─────────────────────────────────────────────────────

    def _collect(
        self,
        run: _Run,
        key: str,
        action: ExecutableAction,
        future: Future[tuple[dict[str, Any], int]],
        progress: ProgressCallback | None,
    ) -> None:
        try:
            outputs, _attempts = future.result()
        except ProvisionError as e:
            self._fail(run, key, e.kind.value, e.message, attempts=e.attempts)
            return
        except Exception as e:
            self._fail(run, key, classify_error(e).value, str(e) or type(e).__name__)
            return

        try:
            self._record(run, action, outputs)
        except StateStoreError as e:
            run.lifecycle.transition(key, Lifecycle.FAILED)
            run.blocked.add(key)
            run.result.state_error = run.result.state_error or str(e)
            run.result.failures.append(
                ResourceFailure(address=action.address, operation=key, kind="state", message=str(e))
            )
            run.stop = True
            return

        run.lifecycle.transition(key, Lifecycle.PROVISIONED)
        if action.kind in _PROVISION:
            run.unit_work[action.unit] -= 1
        logger.info("%s: done", key)
        self._finish_address(run, action.address, progress)

    def _record(self, run: _Run, action: ExecutableAction, outputs: dict[str, Any]) -> None:
        """Persist the outcome of one successful executor call."""
        change = run.changes[action.address]
        prior = run.prior.get(action.address)
        match action.kind:
            case OperationKind.CREATE:
                instance = ResourceInstance(
                    address=action.address,
                    unit=action.unit,
                    resource_id=action.resource_id,
                    resource_type=action.resource_type,
                    inputs=action.inputs,
                    outputs=outputs,
                    dependencies=list(change.depends_on),
                    environment=action.environment,
                    removal_policy=change.removal_policy,
                    created_at=datetime.now(UTC),
                )
                instance.rehash()
                if change.replace_mode is ReplaceMode.RETAIN_OLD and prior is not None:
                    self._store.record_orphan(action.address, prior)
                self._store.save(action.address, instance)
                run.outputs[action.address] = dict(outputs)
            case OperationKind.UPDATE:
                if prior is None:
                    raise ValueError(f"Missing prior state for update: {action.address}")
                instance = prior.model_copy(
                    update={
                        "inputs": action.inputs,
                        "outputs": outputs,
                        "dependencies": list(change.depends_on),
                        "environment": action.environment,
                        "removal_policy": change.removal_policy,
                    },
                    deep=True,
                )
                instance.rehash()
                self._store.save(action.address, instance)
                run.outputs[action.address] = dict(outputs)
            case OperationKind.DELETE:
                # After a create-before-destroy the address already holds the new instance.
                if change.replace_mode is not ReplaceMode.CREATE_BEFORE_DESTROY:
                    self._store.save(action.address, None)
                    run.outputs.pop(action.address, None)

    def _forget(self, run: _Run, key: str) -> None:
        op = run.ops[key]
        prior = run.prior.get(op.address)
        run.lifecycle.transition(key, Lifecycle.IN_PROGRESS)
        try:
            if prior is not None:
                self._store.record_orphan(op.address, prior)
        except StateStoreError as e:
            run.lifecycle.transition(key, Lifecycle.FAILED)
            run.blocked.add(key)
            run.result.state_error = run.result.state_error or str(e)
            run.result.failures.append(
                ResourceFailure(address=op.address, operation=key, kind="state", message=str(e))
            )
            run.stop = True
            return
        run.lifecycle.transition(key, Lifecycle.PROVISIONED)
        logger.info("%s: left in place, no longer managed", op.address)
        self._finish_address(run, op.address, None)

    def _finish_address(
        self, run: _Run, address: str, progress: ProgressCallback | None
    ) -> None:
        run.remaining[address] -= 1
        if run.remaining[address] > 0:
            return
        change = run.changes[address]
        run.result.applied.append(change)
        if progress is not None:
            progress(change, "done")

    def _fail(self, run: _Run, key: str, kind: str, message: str, *, attempts: int = 1) -> None:
        op = run.ops[key]
        logger.error("%s failed (%s): %s", key, kind, message)
        run.blocked.add(key)
        run.result.failures.append(
            ResourceFailure(
                address=op.address, operation=key, kind=kind, message=message, attempts=attempts
            )
        )
        if self._fail_fast:
            run.stop = True

    def _skip(self, run: _Run, key: str) -> None:
        op = run.ops[key]
        run.lifecycle.transition(key, Lifecycle.SKIPPED)
        run.blocked.add(key)
        if any(c.address == op.address for c in run.result.skipped):
            return
        logger.warning("%s: %s", op.address, SKIPPED_REASON)
        run.result.skipped.append(
            run.change(op).model_copy(update={"action": Action.NOOP, "reason": SKIPPED_REASON})
        )
