from __future__ import annotations

from stack_provisioner.cli.formatting import (
    action_style,
    changes_summary,
    format_apply_summary,
    format_change,
    format_changes,
    format_graph,
    format_plan,
    format_plan_summary,
    has_actionable_changes,
)
from stack_provisioner.engine.builder import GraphBuilder
from stack_provisioner.engine.types import (
    Action,
    OperationKind,
    Plan,
    PlanMetadata,
    PlannedOperation,
    ReplaceMode,
    ResourceChange,
)
from stack_provisioner.resources import DeploymentUnit, Resource, imported, ref

_META = PlanMetadata(
    destroy=False,
    state_lineage="lineage-1",
    state_serial=0,
    state_digest="digest",
    config_digest="cdigest",
    engine_version="0.1.0",
)


def _change(address: str, action: Action, **kwargs: object) -> ResourceChange:
    return ResourceChange(
        address=address,
        unit=address.split(".", 1)[0],
        resource_type="aws_thing",
        action=action,
        **kwargs,  # type: ignore[arg-type]
    )


class TestFormatChange:
    def test_create_shows_planned_inputs_aligned(self) -> None:
        out = format_change(
            _change(
                "dns.zone",
                Action.CREATE,
                planned={"domain_name": "example.com", "ttl": 300, "comment": None},
            ),
            color=False,
        )
        assert out.splitlines() == [
            "  # dns.zone will be created",
            '  + resource "aws_thing" "zone" {',
            '      + domain_name = "example.com"',
            "      + ttl         = 300",
            "      + comment     = null",
            "    }",
        ]

    def test_update_shows_diff(self) -> None:
        out = format_change(
            _change(
                "infra.role",
                Action.UPDATE,
                diff={"managed_policies": {"from": ["a"], "to": ["a", "b"]}},
            ),
            color=False,
        )
        assert "  # infra.role will be updated in-place" in out
        assert "      ~ managed_policies = ['a'] -> ['a', 'b']" in out

    def test_create_before_destroy_replace(self) -> None:
        out = format_change(
            _change(
                "dns.cert",
                Action.REPLACE,
                replace_mode=ReplaceMode.CREATE_BEFORE_DESTROY,
                reason="domain_name cannot be changed in place",
                diff={"domain_name": {"from": "a.example.com", "to": "b.example.com"}},
            ),
            color=False,
        )
        lines = out.splitlines()
        assert lines[0] == "  # dns.cert must be replaced (create before destroy)"
        assert lines[1] == "  # (domain_name cannot be changed in place)"
        assert lines[2] == '  +/- resource "aws_thing" "cert" {'

    def test_delete_before_create_symbol(self) -> None:
        change = _change("u.a", Action.REPLACE, replace_mode=ReplaceMode.DELETE_BEFORE_CREATE)
        assert action_style(change).symbol == "-/+"

    def test_retained_replacement(self) -> None:
        out = format_change(
            _change("assets.bucket", Action.CREATE, replace_mode=ReplaceMode.RETAIN_OLD),
            color=False,
        )
        assert "will be created (old instance retained)" in out

    def test_orphaned(self) -> None:
        change = _change("assets.bucket", Action.NOOP, orphaned=True)
        out = format_change(change, color=False)
        assert "  # assets.bucket will be removed from state and left in place" in out
        assert action_style(change).done_verb == "Removed from state"

    def test_color_adds_ansi(self) -> None:
        out = format_change(_change("u.a", Action.DELETE), color=True)
        assert "\x1b[" in out


class TestFormatChanges:
    def test_noop_only(self) -> None:
        changes = [_change("u.a", Action.NOOP)]
        assert format_changes(changes, color=False) == "No changes. Resources are up-to-date."

    def test_skips_noops(self) -> None:
        changes = [_change("u.a", Action.NOOP), _change("u.b", Action.DELETE)]
        out = format_changes(changes, color=False)
        assert "u.a" not in out
        assert "u.b will be destroyed" in out


class TestFormatPlan:
    def test_waves_follow_diff(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[_change("u.a", Action.CREATE), _change("u.b", Action.CREATE)],
            operations=[
                PlannedOperation(key="create:u.a", kind=OperationKind.CREATE, address="u.a"),
                PlannedOperation(
                    key="create:u.b",
                    kind=OperationKind.CREATE,
                    address="u.b",
                    deps=["create:u.a"],
                ),
            ],
            waves=[["create:u.a"], ["create:u.b"]],
        )
        out = format_plan(plan, color=False)
        assert out.endswith(
            "Execution order:\n  Wave 1:\n    create  u.a\n  Wave 2:\n    create  u.b"
        )

    def test_orphan_counts_as_actionable(self) -> None:
        plan = Plan(metadata=_META, changes=[_change("u.a", Action.NOOP, orphaned=True)])
        assert has_actionable_changes(plan)

    def test_no_waves_without_changes(self) -> None:
        plan = Plan(metadata=_META, changes=[_change("u.a", Action.NOOP)])
        assert "Execution order" not in format_plan(plan, color=False)


class TestFormatGraph:
    def test_units_and_waves(self) -> None:
        units = [
            DeploymentUnit(
                id="site",
                imports={"zone": "dns.zone_id"},
                resources=[
                    Resource(
                        id="record",
                        type="aws_route53_a_record",
                        inputs={"hosted_zone_id": imported("zone")},
                    )
                ],
            ),
            DeploymentUnit(
                id="dns",
                resources=[
                    Resource(id="zone", type="aws_hosted_zone"),
                    Resource(
                        id="cert",
                        type="aws_certificate",
                        inputs={"hosted_zone_id": ref("zone.hosted_zone_id")},
                    ),
                ],
                exports={"zone_id": "zone.hosted_zone_id"},
            ),
        ]
        out = format_graph(GraphBuilder().build(units), color=False)
        assert out.splitlines() == [
            "Units:",
            "  1. dns",
            "  2. site (after dns)",
            "",
            "Resource waves:",
            "  Wave 1:",
            "    dns.zone",
            "  Wave 2:",
            "    site.record <- dns.zone",
            "    dns.cert <- dns.zone",
        ]


class TestSummaries:
    def test_changes_summary(self) -> None:
        changes = [
            _change("u.a", Action.CREATE),
            _change("u.b", Action.CREATE),
            _change("u.c", Action.REPLACE),
            _change("u.d", Action.NOOP),
            _change("u.e", Action.NOOP, orphaned=True),
        ]
        assert changes_summary(changes) == {
            "create": 2,
            "update": 0,
            "replace": 1,
            "delete": 0,
            "orphan": 1,
        }

    def test_plan_summary(self) -> None:
        summary = {"create": 2, "update": 1, "replace": 0, "delete": 3, "orphan": 0}
        assert (
            format_plan_summary(summary, color=False)
            == "Plan: 2 to add, 1 to change, 0 to replace, 3 to destroy."
        )

    def test_plan_summary_with_orphans(self) -> None:
        summary = {"create": 0, "update": 0, "replace": 0, "delete": 0, "orphan": 2}
        assert format_plan_summary(summary, color=False).endswith(
            "2 retained resources will be left in place."
        )

    def test_apply_summary(self) -> None:
        summary = {"create": 1, "update": 0, "replace": 1, "delete": 0}
        assert (
            format_apply_summary(summary, color=False)
            == "Apply complete! Resources: 1 added, 0 changed, 1 replaced, 0 destroyed."
        )
