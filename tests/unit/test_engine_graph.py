from __future__ import annotations

import pytest

from stack_provisioner.engine.builder import GraphBuilder
from stack_provisioner.engine.errors import (
    DanglingReferenceError,
    DependencyCycleError,
    DuplicateAddressError,
)
from stack_provisioner.engine.graph import DependencyGraph
from stack_provisioner.resources import DeploymentUnit, Resource, imported, ref


def _unit(uid: str, *resources: Resource, **kwargs: object) -> DeploymentUnit:
    return DeploymentUnit(id=uid, resources=list(resources), **kwargs)


class TestDependencyGraph:
    def test_waves_follow_declaration_order(self) -> None:
        g = DependencyGraph(["c", "a", "b", "d"], {"d": ["a", "b"], "b": ["c"]})
        assert g.waves() == [["c", "a"], ["b"], ["d"]]

    def test_waves_are_deterministic(self) -> None:
        deps = {"api": ["cert", "vpc"], "db": ["vpc"], "cert": ["zone"]}
        nodes = ["zone", "vpc", "cert", "db", "api"]
        first = DependencyGraph(nodes, deps).waves()
        for _ in range(5):
            assert DependencyGraph(nodes, deps).waves() == first
        assert first == [["zone", "vpc"], ["cert", "db"], ["api"]]

    def test_topological_and_reverse(self) -> None:
        g = DependencyGraph(["a", "b", "c"], {"b": ["a"], "c": ["b"]})
        assert g.topological_order() == ["a", "b", "c"]
        assert g.reverse_topological_order() == ["c", "b", "a"]

    def test_cycle_reports_exact_path(self) -> None:
        g = DependencyGraph(["a", "b", "c"], {"a": ["c"], "b": ["a"], "c": ["b"]})
        with pytest.raises(DependencyCycleError) as exc:
            g.waves()
        assert exc.value.path == ["a", "b", "c", "a"]
        assert "a -> b -> c -> a" in str(exc.value)

    def test_two_node_cycle(self) -> None:
        g = DependencyGraph(["a", "b"], {"a": ["b"], "b": ["a"]})
        assert g.find_cycle() == ["a", "b", "a"]

    def test_self_dependency_is_a_cycle(self) -> None:
        with pytest.raises(DependencyCycleError) as exc:
            DependencyGraph(["a"], {"a": ["a"]})
        assert exc.value.path == ["a", "a"]

    def test_acyclic_graph_has_no_cycle(self) -> None:
        g = DependencyGraph(["a", "b"], {"b": ["a"]})
        assert g.find_cycle() is None
        g.check_acyclic()

    def test_unknown_dependencies_are_ignored(self) -> None:
        g = DependencyGraph(["a"], {"a": ["elsewhere"]})
        assert g.dependencies("a") == []
        assert g.waves() == [["a"]]

    def test_ancestors_and_descendants(self) -> None:
        g = DependencyGraph(["a", "b", "c", "d"], {"b": ["a"], "c": ["b"], "d": []})
        assert g.ancestors("c") == {"a", "b"}
        assert g.descendants("a") == {"b", "c"}
        assert g.descendants("d") == set()


class TestGraphBuilder:
    def test_in_unit_reference_becomes_edge(self) -> None:
        unit = _unit(
            "dns",
            Resource(id="zone", type="aws_hosted_zone"),
            Resource(
                id="cert",
                type="aws_certificate",
                inputs={"hosted_zone_id": ref("zone.hosted_zone_id")},
            ),
        )
        graph = GraphBuilder().build([unit])
        assert graph.dependencies["dns.cert"] == ["dns.zone"]
        [reference] = graph.references
        assert reference.from_address == "dns.cert"
        assert reference.input_path == "hosted_zone_id"
        assert reference.to_address == "dns.zone"
        assert reference.output_name == "hosted_zone_id"

    def test_import_resolves_to_exporting_resource(self) -> None:
        dns = _unit(
            "dns",
            Resource(id="cert", type="aws_certificate"),
            exports={"certificate_arn": "cert.certificate_arn"},
        )
        infra = _unit(
            "infra",
            Resource(
                id="api_domain",
                type="aws_api_domain_name",
                inputs={"certificate_arn": imported("cert")},
            ),
            imports={"cert": "dns.certificate_arn"},
        )
        graph = GraphBuilder().build([infra, dns])
        assert graph.dependencies["infra.api_domain"] == ["dns.cert"]
        assert graph.unit_dependencies == {"infra": ["dns"], "dns": []}
        assert graph.unit_graph.topological_order() == ["dns", "infra"]
        assert graph.references_to("dns.cert")[0].from_address == "infra.api_domain"

    def test_unused_import_still_orders_units(self) -> None:
        dns = _unit(
            "dns",
            Resource(id="cert", type="aws_certificate"),
            exports={"arn": "cert.certificate_arn"},
        )
        site = _unit("site", Resource(id="bucket", type="aws_s3_bucket"), imports={"a": "dns.arn"})
        graph = GraphBuilder().build([site, dns])
        assert graph.unit_dependencies["site"] == ["dns"]
        assert graph.dependencies["site.bucket"] == []

    def test_nested_reference_paths(self) -> None:
        unit = _unit(
            "infra",
            Resource(id="sg", type="aws_security_group"),
            Resource(
                id="db",
                type="aws_db_instance",
                inputs={"allowed_security_groups": [ref("sg.security_group_id")]},
            ),
        )
        graph = GraphBuilder().build([unit])
        assert graph.references[0].input_path == "allowed_security_groups[0]"

    def test_cross_unit_depends_on(self) -> None:
        a = _unit("a", Resource(id="x", type="t"))
        b = _unit("b", Resource(id="y", type="t", depends_on=["a.x"]))
        graph = GraphBuilder().build([a, b])
        assert graph.dependencies["b.y"] == ["a.x"]
        assert graph.unit_dependencies["b"] == ["a"]

    def test_import_from_unknown_unit(self) -> None:
        unit = _unit(
            "site",
            Resource(id="cdn", type="t", inputs={"cert": imported("cert")}),
            imports={"cert": "dns.certificate_arn"},
        )
        with pytest.raises(DanglingReferenceError) as exc:
            GraphBuilder().build([unit])
        assert any("unknown unit 'dns'" in e for e in exc.value.errors)

    def test_import_of_missing_export(self) -> None:
        dns = _unit("dns", Resource(id="cert", type="t"))
        site = _unit(
            "site",
            Resource(id="cdn", type="t", inputs={"cert": imported("cert")}),
            imports={"cert": "dns.certificate_arn"},
        )
        with pytest.raises(DanglingReferenceError, match="does not export 'certificate_arn'"):
            GraphBuilder().build([dns, site])

    def test_depends_on_unknown_address(self) -> None:
        unit = _unit("a", Resource(id="x", type="t", depends_on=["b.missing"]))
        with pytest.raises(DanglingReferenceError, match="unknown resource 'b.missing'"):
            GraphBuilder().build([unit])

    def test_duplicate_unit_id(self) -> None:
        with pytest.raises(DuplicateAddressError):
            GraphBuilder().build([_unit("a"), _unit("a")])

    def test_resource_cycle_within_unit(self) -> None:
        unit = _unit(
            "a",
            Resource(id="x", type="t", inputs={"v": ref("y.out")}),
            Resource(id="y", type="t", inputs={"v": ref("x.out")}),
        )
        with pytest.raises(DependencyCycleError) as exc:
            GraphBuilder().build([unit])
        assert exc.value.path == ["a.x", "a.y", "a.x"]

    def test_unit_cycle_through_imports(self) -> None:
        a = _unit(
            "a",
            Resource(id="x", type="t"),
            exports={"ex": "x.out"},
            imports={"from_b": "b.ey"},
        )
        b = _unit(
            "b",
            Resource(id="y", type="t"),
            exports={"ey": "y.out"},
            imports={"from_a": "a.ex"},
        )
        with pytest.raises(DependencyCycleError) as exc:
            GraphBuilder().build([a, b])
        assert exc.value.path == ["a", "b", "a"]
