"""Simulated provider handler.

Stands in for a real cloud API: outputs are derived deterministically from
the resource type, address, environment and immutable inputs, so creating
the same resource twice yields the same identifiers while a replacement
(which always changes one of those) yields new ones.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from stack_provisioner.engine.handlers import ResourceHandler
from stack_provisioner.resources.schema import ValueType

if TYPE_CHECKING:
    from stack_provisioner.core.state import ResourceInstance
    from stack_provisioner.engine.handlers import EngineContext, ResolvedResource
    from stack_provisioner.resources.base import Resource
    from stack_provisioner.resources.schema import ResourceSchema

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT = "000000000000"
DEFAULT_REGION = "us-east-1"


class SimulatedHandler(ResourceHandler):
    """In-memory handler for one resource type."""

    def __init__(self, resource_type: str, schema: ResourceSchema) -> None:
        self._resource_type = resource_type
        self._schema = schema
        self._live: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    @property
    def live(self) -> dict[str, dict[str, Any]]:
        """Outputs of every resource this handler currently holds, by address."""
        with self._lock:
            return {a: dict(o) for a, o in self._live.items()}

    def validate(self, ctx: EngineContext, desired: Resource) -> list[str]:
        _ = ctx
        if not self._schema.inputs:
            return []
        return [
            f"unknown input '{name}' for type '{self._resource_type}'"
            for name in desired.inputs
            if name not in self._schema.inputs
        ]

    def _token(self, ctx: EngineContext, desired: ResolvedResource) -> str:
        identity = {
            "type": self._resource_type,
            "address": desired.address,
            "account": ctx.environment.account,
            "region": ctx.environment.region,
            "immutable": {
                k: desired.inputs.get(k) for k in sorted(self._schema.immutable)
            },
        }
        payload = json.dumps(identity, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def _outputs(self, ctx: EngineContext, desired: ResolvedResource) -> dict[str, Any]:
        token = self._token(ctx, desired)
        account = ctx.environment.account or DEFAULT_ACCOUNT
        region = ctx.environment.region or DEFAULT_REGION
        service = self._resource_type.removeprefix("aws_").split("_", 1)[0]

        outputs: dict[str, Any] = {}
        for name, vtype in self._schema.outputs.items():
            given = desired.inputs.get(name)
            if given is not None and vtype.matches(given):
                outputs[name] = given
                continue
            match vtype:
                case ValueType.STRING if name.endswith("_arn"):
                    outputs[name] = f"arn:aws:{service}:{region}:{account}:{desired.id}/{token[:12]}"
                case ValueType.STRING if name.endswith("_id"):
                    outputs[name] = f"{name.removesuffix('_id').replace('_', '-')}-{token[:17]}"
                case ValueType.STRING if "domain" in name or name in ("dns_name", "endpoint", "fqdn"):
                    outputs[name] = f"{desired.id}-{token[:8]}.{region}.example.internal"
                case ValueType.NUMBER:
                    outputs[name] = int(token[:4], 16)
                case ValueType.BOOLEAN:
                    outputs[name] = False
                case ValueType.LIST:
                    outputs[name] = [f"{name}-{token[:8]}-{i}" for i in range(2)]
                case ValueType.MAP:
                    outputs[name] = {}
                case _:
                    outputs[name] = f"{desired.id}-{token[:12]}"
        return outputs

    def create(self, ctx: EngineContext, desired: ResolvedResource) -> dict[str, Any]:
        outputs = self._outputs(ctx, desired)
        with self._lock:
            self._live[desired.address] = outputs
        logger.debug("Simulated create %s", desired.address)
        return dict(outputs)

    def update(
        self, ctx: EngineContext, desired: ResolvedResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        _ = prior
        outputs = self._outputs(ctx, desired)
        with self._lock:
            self._live[desired.address] = outputs
        logger.debug("Simulated update %s", desired.address)
        return dict(outputs)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        _ = ctx
        with self._lock:
            # After a create-before-destroy the address already holds the new instance.
            if self._live.get(prior.address) == prior.outputs:
                del self._live[prior.address]
        logger.debug("Simulated delete %s", prior.address)
