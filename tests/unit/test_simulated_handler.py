from __future__ import annotations

import pytest

from stack_provisioner.core.environment import Environment
from stack_provisioner.core.state import ResourceInstance
from stack_provisioner.engine.handlers import EngineContext, ResolvedResource
from stack_provisioner.handlers.simulated import SimulatedHandler
from stack_provisioner.resources import Resource
from stack_provisioner.resources.catalog import BUILTIN_SCHEMAS


def _handler(resource_type: str) -> SimulatedHandler:
    return SimulatedHandler(resource_type, BUILTIN_SCHEMAS[resource_type])


def _desired(resource_type: str, rid: str, **inputs: object) -> ResolvedResource:
    return ResolvedResource(
        address=f"u.{rid}", unit="u", id=rid, resource_type=resource_type, inputs=dict(inputs)
    )


def _prior(desired: ResolvedResource, outputs: dict[str, object]) -> ResourceInstance:
    return ResourceInstance(
        address=desired.address,
        unit=desired.unit,
        resource_id=desired.id,
        resource_type=desired.resource_type,
        outputs=outputs,
    )


@pytest.fixture
def ctx() -> EngineContext:
    return EngineContext(environment=Environment(account="111122223333", region="eu-west-1"))


class TestSimulatedHandler:
    def test_create_is_deterministic(self, ctx: EngineContext) -> None:
        desired = _desired("aws_certificate", "cert", domain_name="example.com")
        assert _handler("aws_certificate").create(ctx, desired) == _handler(
            "aws_certificate"
        ).create(ctx, desired)

    def test_output_shapes(self, ctx: EngineContext) -> None:
        outputs = _handler("aws_s3_bucket").create(
            ctx, _desired("aws_s3_bucket", "bucket", bucket_name="assets")
        )
        assert outputs["bucket_name"] == "assets"
        assert outputs["bucket_arn"].startswith("arn:aws:s3:eu-west-1:111122223333:bucket/")
        assert outputs["domain_name"].endswith(".eu-west-1.example.internal")

    def test_number_and_list_outputs(self, ctx: EngineContext) -> None:
        outputs = _handler("aws_vpc").create(ctx, _desired("aws_vpc", "vpc", cidr="10.0.0.0/16"))
        assert outputs["vpc_id"].startswith("vpc-")
        assert len(outputs["public_subnet_ids"]) == 2
        db = _handler("aws_db_instance").create(ctx, _desired("aws_db_instance", "db"))
        assert isinstance(db["port"], int)

    def test_defaults_without_environment(self) -> None:
        outputs = _handler("aws_certificate").create(
            EngineContext(), _desired("aws_certificate", "cert", domain_name="example.com")
        )
        assert outputs["certificate_arn"].startswith("arn:aws:certificate:us-east-1:000000000000:")

    def test_immutable_change_gives_new_identity(self, ctx: EngineContext) -> None:
        handler = _handler("aws_certificate")
        a = handler.create(ctx, _desired("aws_certificate", "cert", domain_name="a.example.com"))
        b = handler.create(ctx, _desired("aws_certificate", "cert", domain_name="b.example.com"))
        assert a["certificate_arn"] != b["certificate_arn"]

    def test_mutable_change_keeps_identity(self, ctx: EngineContext) -> None:
        handler = _handler("aws_iam_role")
        desired = _desired("aws_iam_role", "role", assumed_by="ec2", managed_policies=["a"])
        created = handler.create(ctx, desired)
        updated = handler.update(
            ctx,
            _desired("aws_iam_role", "role", assumed_by="ec2", managed_policies=["a", "b"]),
            _prior(desired, created),
        )
        assert updated["role_arn"] == created["role_arn"]

    def test_region_changes_identity(self, ctx: EngineContext) -> None:
        handler = _handler("aws_certificate")
        desired = _desired("aws_certificate", "cert", domain_name="example.com")
        other = EngineContext(environment=Environment(account="111122223333", region="us-east-1"))
        assert handler.create(ctx, desired) != handler.create(other, desired)

    def test_delete(self, ctx: EngineContext) -> None:
        handler = _handler("aws_vpc")
        desired = _desired("aws_vpc", "vpc", cidr="10.0.0.0/16")
        outputs = handler.create(ctx, desired)
        handler.delete(ctx, _prior(desired, outputs))
        assert handler.live == {}

    def test_delete_old_instance_keeps_replacement(self, ctx: EngineContext) -> None:
        handler = _handler("aws_certificate")
        old = _desired("aws_certificate", "cert", domain_name="a.example.com")
        old_outputs = handler.create(ctx, old)
        new_outputs = handler.create(
            ctx, _desired("aws_certificate", "cert", domain_name="b.example.com")
        )
        handler.delete(ctx, _prior(old, old_outputs))
        assert handler.live == {"u.cert": new_outputs}

    def test_validate_unknown_input(self, ctx: EngineContext) -> None:
        resource = Resource(unit="u", id="vpc", type="aws_vpc", inputs={"cidr": "x", "colour": 1})
        assert _handler("aws_vpc").validate(ctx, resource) == [
            "unknown input 'colour' for type 'aws_vpc'"
        ]
