"""Engine types (plan, changes, operations, results)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from stack_provisioner.core.environment import Environment
from stack_provisioner.resources.base import RemovalPolicy
from stack_provisioner.resources.references import Reference

KNOWN_AFTER_APPLY = "(known after apply)"
SKIPPED_REASON = "skipped due to dependency failure"


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "no-op"


class ReplaceMode(str, Enum):
    DELETE_BEFORE_CREATE = "delete-before-create"
    CREATE_BEFORE_DESTROY = "create-before-destroy"
    RETAIN_OLD = "retain-old"


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    # State-only: hand a retained resource over to the orphan list.
    FORGET = "forget"


class PlanMetadata(BaseModel):
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    environment: Environment = Field(default_factory=Environment)
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    address: str
    unit: str
    resource_type: str
    action: Action
    reason: str = ""
    orphaned: bool = False
    replace_mode: ReplaceMode | None = None
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    depends_on: list[str] = Field(default_factory=list)
    references: list[Reference] = Field(default_factory=list)
    removal_policy: RemovalPolicy = RemovalPolicy.DESTROY
    environment: Environment = Field(default_factory=Environment)

    @property
    def resource_id(self) -> str:
        return self.address.split(".", 1)[1]


class PlannedOperation(BaseModel):
    """One executor call (or state-only step) in the apply graph."""

    key: str
    kind: OperationKind
    address: str
    deps: list[str] = Field(default_factory=list)


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]
    operations: list[PlannedOperation] = Field(default_factory=list)
    waves: list[list[str]] = Field(default_factory=list)
    unit_dependencies: dict[str, list[str]] = Field(default_factory=dict)

    def change(self, address: str) -> ResourceChange:
        return next(c for c in self.changes if c.address == address)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        return counts

    def has_changes(self) -> bool:
        return any(c.action != Action.NOOP or c.orphaned for c in self.changes)

    def diff_report(self) -> list[dict[str, Any]]:
        """Machine-readable diff: one entry per resource, in plan order."""
        return [
            {
                "kind": c.action.value,
                "address": c.address,
                "unit": c.unit,
                "resource_type": c.resource_type,
                "changed_attributes": sorted(c.diff or {}),
                "reason": c.reason,
                "orphaned": c.orphaned,
            }
            for c in self.changes
        ]

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class ResourceFailure(BaseModel):
    address: str
    operation: str
    kind: str
    message: str
    attempts: int = 1


class ApplyResult(BaseModel):
    applied: list[ResourceChange] = Field(default_factory=list)
    failures: list[ResourceFailure] = Field(default_factory=list)
    skipped: list[ResourceChange] = Field(default_factory=list)
    # Operation keys that never started (cancellation, fail-fast or a state error).
    not_started: list[str] = Field(default_factory=list)
    canceled: bool = False
    state_error: str | None = None

    @property
    def ok(self) -> bool:
        return not (self.failures or self.skipped or self.canceled or self.state_error)

    @property
    def status(self) -> str:
        if self.ok:
            return "success"
        return "partial" if self.state_error is None else "failed"

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.applied:
            counts[c.action.value] += 1
        return counts
