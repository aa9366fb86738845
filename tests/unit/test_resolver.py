from __future__ import annotations

import pytest

from stack_provisioner.engine.builder import GraphBuilder
from stack_provisioner.engine.errors import ReferenceTypeError, UnresolvedReferenceError
from stack_provisioner.engine.handlers import ResourceHandler
from stack_provisioner.engine.registry import ResourceTypeRegistry
from stack_provisioner.engine.resolver import UNRESOLVED, ReferenceResolver
from stack_provisioner.engine.types import KNOWN_AFTER_APPLY
from stack_provisioner.resources import DeploymentUnit, Resource, ResourceSchema, ValueType, ref
from stack_provisioner.resources.references import Reference


def _registry() -> ResourceTypeRegistry:
    registry = ResourceTypeRegistry()
    registry.register(
        "vpc",
        ResourceSchema(outputs={"vpc_id": ValueType.STRING, "subnets": ValueType.LIST}),
        ResourceHandler(),
    )
    registry.register(
        "sg",
        ResourceSchema(
            inputs={"vpc_id": ValueType.STRING, "subnets": ValueType.LIST},
            outputs={"sg_id": ValueType.STRING},
        ),
        ResourceHandler(),
    )
    return registry


def _graph(inputs: dict[str, object]):
    unit = DeploymentUnit(
        id="net",
        resources=[
            Resource(id="vpc", type="vpc"),
            Resource(id="sg", type="sg", inputs=inputs),
        ],
    )
    return GraphBuilder().build([unit])


class TestResolve:
    def test_resolve_and_unresolved(self) -> None:
        reference = Reference(
            from_address="net.sg", input_path="vpc_id", to_address="net.vpc", output_name="vpc_id"
        )
        resolver = ReferenceResolver([reference])
        assert resolver.resolve(reference, {"net.vpc": {"vpc_id": "vpc-1"}}) == "vpc-1"
        assert resolver.resolve(reference, {}) is UNRESOLVED
        assert resolver.resolve(reference, {"net.vpc": {}}) is UNRESOLVED
        assert not UNRESOLVED

    def test_resolve_inputs_substitutes_nested_values(self) -> None:
        graph = _graph({"vpc_id": ref("vpc.vpc_id"), "tags": {"net": ref("vpc.vpc_id")}})
        resolver = ReferenceResolver.for_graph(graph)
        inputs = resolver.resolve_inputs(graph.resources["net.sg"], {"net.vpc": {"vpc_id": "v"}})
        assert inputs == {"vpc_id": "v", "tags": {"net": "v"}}

    def test_resolve_inputs_refuses_missing_producer(self) -> None:
        graph = _graph({"vpc_id": ref("vpc.vpc_id")})
        resolver = ReferenceResolver.for_graph(graph)
        with pytest.raises(UnresolvedReferenceError) as exc:
            resolver.resolve_inputs(graph.resources["net.sg"], {})
        assert exc.value.address == "net.sg"
        assert exc.value.references == ["net.sg:vpc_id <- net.vpc.vpc_id"]

    def test_preview_marks_pending_producers(self) -> None:
        graph = _graph({"vpc_id": ref("vpc.vpc_id")})
        resolver = ReferenceResolver.for_graph(graph)
        sg = graph.resources["net.sg"]
        outputs = {"net.vpc": {"vpc_id": "v"}}
        assert resolver.preview_inputs(sg, outputs) == {"vpc_id": "v"}
        assert resolver.preview_inputs(sg, outputs, {"net.vpc"}) == {"vpc_id": KNOWN_AFTER_APPLY}
        assert resolver.preview_inputs(sg, {}) == {"vpc_id": KNOWN_AFTER_APPLY}

    def test_unit_ready(self) -> None:
        resolver = ReferenceResolver([], {"infra": ["dns"], "dns": []})
        assert resolver.unit_ready("dns", set())
        assert not resolver.unit_ready("infra", set())
        assert resolver.unit_ready("infra", {"dns"})


class TestValidate:
    def test_matching_types_pass(self) -> None:
        graph = _graph({"vpc_id": ref("vpc.vpc_id"), "subnets": ref("vpc.subnets")})
        ReferenceResolver.for_graph(graph).validate(graph.resources, _registry())

    def test_type_mismatch(self) -> None:
        graph = _graph({"vpc_id": ref("vpc.subnets")})
        with pytest.raises(ReferenceTypeError) as exc:
            ReferenceResolver.for_graph(graph).validate(graph.resources, _registry())
        assert "output is list but input 'vpc_id' of 'sg' expects string" in exc.value.errors[0]

    def test_unknown_output(self) -> None:
        graph = _graph({"vpc_id": ref("vpc.nope")})
        with pytest.raises(ReferenceTypeError, match="has no output 'nope'"):
            ReferenceResolver.for_graph(graph).validate(graph.resources, _registry())

    def test_nested_reference_is_not_type_checked(self) -> None:
        graph = _graph({"subnets": [ref("vpc.vpc_id")]})
        ReferenceResolver.for_graph(graph).validate(graph.resources, _registry())
