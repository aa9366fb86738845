"""Built-in resource type schemas.

Covers the AWS building blocks a typical web stack uses: DNS zone and
certificate, network, compute, database, load balancing, HTTP API, object
storage and CDN. Only what the engine needs is described here; provider
behaviour lives behind the handlers.
"""

from __future__ import annotations

from stack_provisioner.resources.schema import ResourceSchema
from stack_provisioner.resources.schema import ValueType as T

BUILTIN_SCHEMAS: dict[str, ResourceSchema] = {
    "aws_hosted_zone": ResourceSchema(
        inputs={"domain_name": T.STRING, "hosted_zone_id": T.STRING},
        outputs={"hosted_zone_id": T.STRING, "zone_name": T.STRING},
        immutable=frozenset({"domain_name", "hosted_zone_id"}),
    ),
    "aws_certificate": ResourceSchema(
        inputs={
            "domain_name": T.STRING,
            "subject_alternative_names": T.LIST,
            "hosted_zone_id": T.STRING,
        },
        outputs={"certificate_arn": T.STRING},
        immutable=frozenset({"domain_name", "subject_alternative_names"}),
        compare={"subject_alternative_names": "set"},
        create_before_destroy=True,
    ),
    "aws_vpc": ResourceSchema(
        inputs={"max_azs": T.NUMBER, "cidr": T.STRING},
        outputs={
            "vpc_id": T.STRING,
            "public_subnet_ids": T.LIST,
            "private_subnet_ids": T.LIST,
        },
        immutable=frozenset({"cidr", "max_azs"}),
    ),
    "aws_security_group": ResourceSchema(
        inputs={
            "vpc_id": T.STRING,
            "description": T.STRING,
            "allow_all_outbound": T.BOOLEAN,
            "ingress": T.LIST,
        },
        outputs={"security_group_id": T.STRING},
        immutable=frozenset({"vpc_id", "description"}),
    ),
    "aws_iam_role": ResourceSchema(
        inputs={"assumed_by": T.STRING, "managed_policies": T.LIST},
        outputs={"role_arn": T.STRING, "role_name": T.STRING},
        immutable=frozenset({"assumed_by"}),
        compare={"managed_policies": "set"},
    ),
    "aws_iam_user": ResourceSchema(
        inputs={"user_name": T.STRING, "policies": T.LIST},
        outputs={"user_arn": T.STRING, "user_name": T.STRING},
        immutable=frozenset({"user_name"}),
    ),
    "aws_iam_access_key": ResourceSchema(
        inputs={"user_name": T.STRING},
        outputs={"access_key_id": T.STRING, "secret_access_key": T.STRING},
        immutable=frozenset({"user_name"}),
        create_before_destroy=True,
    ),
    "aws_instance": ResourceSchema(
        inputs={
            "vpc_id": T.STRING,
            "instance_type": T.STRING,
            "machine_image": T.STRING,
            "security_group_id": T.STRING,
            "role_arn": T.STRING,
            "key_name": T.STRING,
            "subnet_type": T.STRING,
        },
        outputs={"instance_id": T.STRING, "public_ip": T.STRING},
        immutable=frozenset({"vpc_id", "machine_image", "key_name", "subnet_type"}),
    ),
    "aws_network_load_balancer": ResourceSchema(
        inputs={"vpc_id": T.STRING, "internet_facing": T.BOOLEAN},
        outputs={"load_balancer_arn": T.STRING, "dns_name": T.STRING},
        immutable=frozenset({"vpc_id", "internet_facing"}),
    ),
    "aws_nlb_target_group": ResourceSchema(
        inputs={"vpc_id": T.STRING, "port": T.NUMBER, "targets": T.LIST},
        outputs={"target_group_arn": T.STRING},
        immutable=frozenset({"vpc_id", "port"}),
        compare={"targets": "set"},
    ),
    "aws_nlb_listener": ResourceSchema(
        inputs={"load_balancer_arn": T.STRING, "port": T.NUMBER, "target_group_arn": T.STRING},
        outputs={"listener_arn": T.STRING},
        immutable=frozenset({"load_balancer_arn"}),
    ),
    "aws_db_instance": ResourceSchema(
        inputs={
            "vpc_id": T.STRING,
            "engine": T.STRING,
            "engine_version": T.STRING,
            "database_name": T.STRING,
            "instance_type": T.STRING,
            "allocated_storage": T.NUMBER,
            "multi_az": T.BOOLEAN,
            "publicly_accessible": T.BOOLEAN,
            "allowed_security_groups": T.LIST,
        },
        outputs={"endpoint": T.STRING, "port": T.NUMBER, "secret_arn": T.STRING},
        immutable=frozenset({"vpc_id", "engine", "database_name"}),
        compare={"allowed_security_groups": "set"},
    ),
    "aws_vpc_link": ResourceSchema(
        inputs={"vpc_id": T.STRING, "name": T.STRING, "security_group_ids": T.LIST},
        outputs={"vpc_link_id": T.STRING},
        immutable=frozenset({"vpc_id"}),
    ),
    "aws_http_api": ResourceSchema(
        inputs={"name": T.STRING, "listener_arn": T.STRING, "vpc_link_id": T.STRING},
        outputs={"api_id": T.STRING, "api_endpoint": T.STRING, "default_stage": T.STRING},
    ),
    "aws_api_domain_name": ResourceSchema(
        inputs={"domain_name": T.STRING, "certificate_arn": T.STRING, "endpoint_type": T.STRING},
        outputs={"regional_domain_name": T.STRING, "regional_hosted_zone_id": T.STRING},
        immutable=frozenset({"domain_name", "endpoint_type"}),
    ),
    "aws_api_mapping": ResourceSchema(
        inputs={"api_id": T.STRING, "domain_name": T.STRING, "stage": T.STRING},
        outputs={"api_mapping_id": T.STRING},
        immutable=frozenset({"domain_name"}),
    ),
    "aws_s3_bucket": ResourceSchema(
        inputs={
            "bucket_name": T.STRING,
            "public_read_access": T.BOOLEAN,
            "block_public_access": T.MAP,
            "policy": T.LIST,
        },
        outputs={"bucket_name": T.STRING, "bucket_arn": T.STRING, "domain_name": T.STRING},
        immutable=frozenset({"bucket_name"}),
        compare={"block_public_access": "exact"},
    ),
    "aws_cloudfront_distribution": ResourceSchema(
        inputs={
            "origin_domain_name": T.STRING,
            "certificate_arn": T.STRING,
            "domain_names": T.LIST,
            "default_root_object": T.STRING,
            "viewer_protocol_policy": T.STRING,
            "error_responses": T.LIST,
        },
        outputs={"distribution_id": T.STRING, "domain_name": T.STRING},
        compare={"domain_names": "set"},
    ),
    "aws_route53_a_record": ResourceSchema(
        inputs={
            "hosted_zone_id": T.STRING,
            "record_name": T.STRING,
            "alias_target": T.STRING,
            "alias_hosted_zone_id": T.STRING,
        },
        outputs={"fqdn": T.STRING},
        immutable=frozenset({"hosted_zone_id", "record_name"}),
    ),
}
