"""State management for tracking provisioned resources."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from stack_provisioner.core.environment import Environment
from stack_provisioner.resources.base import RemovalPolicy

logger = logging.getLogger(__name__)


def _canonical_json(obj: Any) -> str:
    # Stable encoding for hashes/digests. `default=str` keeps it robust for
    # datetimes/paths/etc while staying deterministic enough for our use.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's recorded inputs and outputs."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResourceInstance(BaseModel):
    """A provisioned resource as recorded in the state file.

    Attributes:
        address: Unique resource address (e.g., "dns.cert")
        unit: Owning deployment unit
        resource_id: Resource id within the unit
        resource_type: Type of the resource (e.g., "aws_certificate")
        inputs: Fully resolved inputs the resource was last provisioned with
        outputs: Outputs reported by the provider
        attributes_hash: SHA256 hash of inputs + outputs for change detection
        dependencies: Addresses this resource consumed outputs from
        removal_policy: Removal policy at the time of the last apply
        environment: Account and region the resource lives in
        orphaned: Retained resource no longer managed by any declaration
        created_at: When the resource was created
        updated_at: When the resource was last updated
    """

    address: str
    unit: str
    resource_id: str
    resource_type: str
    inputs: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    environment: Environment = Field(default_factory=Environment)
    removal_policy: RemovalPolicy = RemovalPolicy.DESTROY
    orphaned: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def retained(self) -> bool:
        return self.removal_policy is RemovalPolicy.RETAIN

    def rehash(self) -> None:
        self.attributes_hash = compute_attributes_hash(
            {"inputs": self.inputs, "outputs": self.outputs}
        )


class State(BaseModel):
    """Provisioned state record.

    Attributes:
        version: State file format version
        serial: Incremented on every write
        lineage: Identity of this state history
        resources: Mapping of resource addresses to instances
        orphans: Retained instances that were replaced and left in place
    """

    version: int = 1
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceInstance] = Field(default_factory=dict)
    orphans: list[ResourceInstance] = Field(default_factory=list)

    def outputs(self) -> dict[str, dict[str, Any]]:
        """Recorded outputs keyed by address."""
        return {addr: dict(inst.outputs) for addr, inst in self.resources.items()}

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        content = json.dumps(data, indent=2, sort_keys=True) + "\n"

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        """Load state from a JSON file."""
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path) -> "State":
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("Created new state for %s", path)
        return cls()


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection. Timestamps are left out so that they never
    force a re-plan.
    """
    resources = []
    for address, inst in sorted(state.resources.items(), key=lambda kv: kv[0]):
        resources.append(
            {
                "address": address,
                "resource_type": inst.resource_type,
                "attributes_hash": inst.attributes_hash,
                "dependencies": sorted(inst.dependencies),
                "removal_policy": inst.removal_policy.value,
                "environment": inst.environment.model_dump(),
                "orphaned": inst.orphaned,
            }
        )

    digestable = {
        "version": state.version,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
        "orphans": sorted(o.attributes_hash for o in state.orphans),
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
