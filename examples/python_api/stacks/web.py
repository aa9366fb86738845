from __future__ import annotations

from stack_provisioner.core import Environment
from stack_provisioner.resources import DeploymentUnit, RemovalPolicy, Resource, imported, ref


def certificate(*, domain: str) -> list[DeploymentUnit]:
    return [
        DeploymentUnit(
            id="dns",
            env=Environment(region="us-east-1"),
            resources=[
                Resource(id="zone", type="aws_hosted_zone", inputs={"domain_name": domain}),
                Resource(
                    id="cert",
                    type="aws_certificate",
                    inputs={
                        "domain_name": domain,
                        "subject_alternative_names": [f"*.{domain}"],
                        "hosted_zone_id": ref("zone.hosted_zone_id"),
                    },
                ),
            ],
            exports={
                "certificate_arn": "cert.certificate_arn",
                "hosted_zone_id": "zone.hosted_zone_id",
            },
        )
    ]


def static_site(*, name: str, domain: str) -> list[DeploymentUnit]:
    host = f"{name}.{domain}"
    return [
        DeploymentUnit(
            id=name,
            imports={
                "certificate_arn": "dns.certificate_arn",
                "hosted_zone_id": "dns.hosted_zone_id",
            },
            resources=[
                Resource(
                    id="bucket",
                    type="aws_s3_bucket",
                    removal_policy=RemovalPolicy.RETAIN,
                    inputs={"bucket_name": f"{name}-{domain.replace('.', '-')}"},
                ),
                Resource(
                    id="cdn",
                    type="aws_cloudfront_distribution",
                    inputs={
                        "origin_domain_name": ref("bucket.domain_name"),
                        "certificate_arn": imported("certificate_arn"),
                        "domain_names": [host],
                        "default_root_object": "index.html",
                    },
                ),
                Resource(
                    id="record",
                    type="aws_route53_a_record",
                    inputs={
                        "hosted_zone_id": imported("hosted_zone_id"),
                        "record_name": host,
                        "alias_target": ref("cdn.domain_name"),
                    },
                ),
            ],
        )
    ]
