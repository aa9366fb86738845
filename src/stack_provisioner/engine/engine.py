"""Plan/apply engine."""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from stack_provisioner import __version__
from stack_provisioner.core.environment import Environment
from stack_provisioner.core.state import compute_state_digest
from stack_provisioner.engine.builder import GraphBuilder
from stack_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    StalePlanError,
    ValidationError,
)
from stack_provisioner.engine.executor import HandlerExecutor
from stack_provisioner.engine.handlers import EngineContext
from stack_provisioner.engine.planner import ReconciliationPlanner, operation_waves
from stack_provisioner.engine.resolver import ReferenceResolver
from stack_provisioner.engine.scheduler import Scheduler
from stack_provisioner.engine.types import Plan, PlanMetadata
from stack_provisioner.resources.references import ImportRef, OutputRef

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stack_provisioner.core.state import State
    from stack_provisioner.engine.builder import ResourceGraph
    from stack_provisioner.engine.executor import Executor
    from stack_provisioner.engine.registry import ResourceTypeRegistry
    from stack_provisioner.engine.retry import RetryPolicy
    from stack_provisioner.engine.scheduler import CancellationToken, ProgressCallback
    from stack_provisioner.engine.store import StateStore
    from stack_provisioner.engine.types import ApplyResult
    from stack_provisioner.resources.unit import DeploymentUnit

logger = logging.getLogger(__name__)


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_config_digest(units: Sequence[DeploymentUnit], environment: Environment) -> str:
    """Digest of everything declared, used to detect a plan made from other config."""
    items: list[dict[str, Any]] = [
        {
            "unit": u.id,
            "environment": environment.merged(u.env).model_dump(),
            "exports": u.exports,
            "imports": u.imports,
            "resources": [r.model_dump(mode="json", exclude={"address"}) for r in u.resources],
        }
        for u in units
    ]
    items.sort(key=lambda x: x["unit"])
    return _sha256_hex(_canonical_json(items))


class StackEngine:
    """Terraform-like plan/apply engine for multi-unit infrastructure."""

    def __init__(
        self,
        *,
        store: StateStore,
        registry: ResourceTypeRegistry,
        environment: Environment | None = None,
        executor: Executor | None = None,
        max_parallel: int = 4,
        fail_fast: bool = False,
        timeout: float | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._environment = environment or Environment()
        self._executor = executor
        self._max_parallel = max_parallel
        self._fail_fast = fail_fast
        self._timeout = timeout
        self._retry = retry
        self._planner = ReconciliationPlanner(registry, self._environment)

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def environment(self) -> Environment:
        return self._environment

    def graph(self, units: Sequence[DeploymentUnit]) -> ResourceGraph:
        """Build the dependency graph and type-check every reference."""
        graph = GraphBuilder().build(units)
        for r in graph.resources.values():
            self._registry.get(r.type)  # fail early if unknown
        ReferenceResolver.for_graph(graph).validate(graph.resources, self._registry)
        return graph

    def validate(self, units: Sequence[DeploymentUnit]) -> ResourceGraph:
        """Graph checks plus per-resource validation. Raises ``ValidationError``."""
        graph = self.graph(units)
        errors: list[str] = []
        for r in graph.resources.values():
            reg = self._registry.get(r.type)
            ctx = EngineContext(
                environment=self._planner.environment_for(graph, r.unit), unit=r.unit
            )
            errors.extend(f"{r.address}: {msg}" for msg in reg.handler.validate(ctx, r))
            for name, value in r.inputs.items():
                if isinstance(value, (OutputRef, ImportRef)):
                    continue
                expected = reg.schema.input_type(name)
                if not expected.matches(value):
                    errors.append(
                        f"{r.address}: input '{name}' expects {expected.value}, "
                        f"got {type(value).__name__}"
                    )
        if errors:
            raise ValidationError(errors)
        logger.debug("Validated %d resources", len(graph.resources))
        return graph

    def config_digest(self, units: Sequence[DeploymentUnit]) -> str:
        return compute_config_digest(units, self._environment)

    def check_plan_config(self, plan: Plan, units: Sequence[DeploymentUnit]) -> None:
        """Raise ``StalePlanError`` if *plan* was made from a different configuration."""
        expected = compute_config_digest([] if plan.metadata.destroy else units, self._environment)
        if plan.metadata.config_digest != expected:
            raise StalePlanError("Configuration changed since the plan was made; re-run plan")

    def plan(self, units: Sequence[DeploymentUnit], *, destroy: bool = False) -> Plan:
        logger.info("Planning %d units (destroy=%s)", len(units), destroy)
        with self._store.lock():
            state = self._store.load()

        if destroy:
            changes, operations = self._planner.plan_destroy(state)
            config_digest = compute_config_digest([], self._environment)
            unit_dependencies: dict[str, list[str]] = {}
        else:
            graph = self.validate(units)
            changes, operations = self._planner.plan(graph, state)
            config_digest = self.config_digest(units)
            unit_dependencies = {u: list(d) for u, d in graph.unit_dependencies.items() if d}

        metadata = PlanMetadata(
            created_at=datetime.now(UTC),
            destroy=destroy,
            environment=self._environment,
            state_lineage=state.lineage,
            state_serial=state.serial,
            state_digest=compute_state_digest(state),
            config_digest=config_digest,
            engine_version=__version__,
        )
        plan = Plan(
            metadata=metadata,
            changes=changes,
            operations=operations,
            waves=operation_waves(operations),
            unit_dependencies=unit_dependencies,
        )
        logger.info("Plan: %s", plan.summary())
        return plan

    def _load_state_for_apply(self, plan: Plan) -> State:
        state = self._store.load()
        if (
            state.serial == 0
            and plan.metadata.state_serial == 0
            and not state.resources
            and not state.orphans
        ):
            # Nothing was ever persisted; take over the lineage the plan was made with.
            state.lineage = plan.metadata.state_lineage
        return state

    @staticmethod
    def _check_not_stale(plan: Plan, state: State) -> None:
        if state.lineage != plan.metadata.state_lineage:
            raise StalePlanError("State lineage changed; re-run plan")
        if state.serial != plan.metadata.state_serial:
            raise StalePlanError("State serial changed; re-run plan")
        if compute_state_digest(state) != plan.metadata.state_digest:
            raise StalePlanError("State digest changed; re-run plan")

    def apply(
        self,
        plan: Plan,
        *,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> ApplyResult:
        """Execute *plan*. Raises ``ApplyError`` carrying the partial result on failure."""
        with self._store.lock():
            state = self._load_state_for_apply(plan)
            self._check_not_stale(plan, state)

            executor: Executor
            own: HandlerExecutor | None = None
            if self._executor is None:
                own = executor = HandlerExecutor(self._registry)
            else:
                executor = self._executor
            try:
                result = Scheduler(
                    executor,
                    self._store,
                    max_parallel=self._max_parallel,
                    fail_fast=self._fail_fast,
                    timeout=self._timeout,
                    retry=self._retry,
                ).run(plan, state, progress=progress, cancel=cancel)
            finally:
                if own is not None:
                    own.close()

        if result.canceled:
            raise ApplyCanceled(result)
        if result.state_error is not None:
            raise ApplyError(result, f"State store failed: {result.state_error}")
        if not result.ok:
            raise ApplyError(
                result,
                f"Apply finished with {len(result.failures)} failed and "
                f"{len(result.skipped)} skipped resources",
            )
        return result
