"""Tests for YAML configuration loading."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from stack_provisioner.config.loader import ConfigError, load_config
from stack_provisioner.resources.base import RemovalPolicy
from stack_provisioner.resources.references import ImportRef, OutputRef

if TYPE_CHECKING:
    from collections.abc import Callable

    from stack_provisioner.config.schema import Config

_DNS_YAML = """\
units:
  dns:
    env:
      region: us-east-1
    resources:
      zone:
        type: aws_hosted_zone
        inputs:
          domain_name: example.com
      cert:
        type: aws_certificate
        removal_policy: retain
        inputs:
          domain_name: example.com
          hosted_zone_id: { ref: zone.hosted_zone_id }
    exports:
      certificate_arn: cert.certificate_arn
  site:
    imports:
      certificate_arn: dns.certificate_arn
    resources:
      cdn:
        type: aws_cloudfront_distribution
        inputs:
          origin_domain_name: origin.example.com
          certificate_arn: { import: certificate_arn }
"""


class TestLoadConfig:
    def test_empty_file(self, make_config: Callable[..., Config], tmp_path: Path) -> None:
        config = make_config("")
        assert config.deployment_units == []
        assert config.state_path == tmp_path / ".stack-state.json"
        assert config.config_dir == tmp_path

    def test_units_mapping(self, make_config: Callable[..., Config]) -> None:
        config = make_config(_DNS_YAML)
        dns, site = config.deployment_units
        assert dns.id == "dns"
        assert dns.env is not None and dns.env.region == "us-east-1"
        assert [r.address for r in dns.resources] == ["dns.zone", "dns.cert"]
        cert = dns.get("cert")
        assert cert is not None
        assert cert.removal_policy is RemovalPolicy.RETAIN
        assert cert.inputs["hosted_zone_id"] == OutputRef(ref="zone.hosted_zone_id")
        assert site.resources[0].inputs["certificate_arn"] == ImportRef(name="certificate_arn")
        assert site.imports == {"certificate_arn": "dns.certificate_arn"}

    def test_units_list(self, make_config: Callable[..., Config]) -> None:
        config = make_config("units:\n  - id: a\n  - id: b\n")
        assert [u.id for u in config.deployment_units] == ["a", "b"]

    def test_duplicate_unit_ids(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="Duplicate unit id 'a'"):
            make_config("units:\n  - id: a\n  - id: a\n")

    def test_invalid_unit(self, make_config: Callable[..., Config]) -> None:
        yaml = """\
units:
  a:
    resources:
      x:
        type: aws_vpc
        inputs:
          cidr: { ref: missing.cidr }
"""
        with pytest.raises(ConfigError, match="unknown resource 'missing'"):
            make_config(yaml)

    def test_top_level_must_be_mapping(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="expected a mapping"):
            make_config("- a\n- b\n")

    def test_unparseable_yaml(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            make_config("units: [unclosed\n")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            load_config(tmp_path / "nope.yaml")

    def test_absolute_state_path_kept(
        self, make_config: Callable[..., Config], tmp_path: Path
    ) -> None:
        target = tmp_path / "elsewhere" / "state.json"
        config = make_config(f"state_path: {target}\n")
        assert config.state_path == target

    def test_relative_state_path(self, make_config: Callable[..., Config], tmp_path: Path) -> None:
        config = make_config("state_path: state/prod.json\n")
        assert config.state_path == tmp_path / "state" / "prod.json"


class TestExecutionSettings:
    def test_defaults(self, make_config: Callable[..., Config]) -> None:
        execution = make_config("").execution
        assert execution.max_parallel == 4
        assert execution.fail_fast is False
        assert execution.timeout == 300.0
        assert execution.retry.max_attempts == 3
        assert execution.wait_for_lock is True

    def test_overrides(self, make_config: Callable[..., Config]) -> None:
        yaml = """\
execution:
  max_parallel: 8
  fail_fast: true
  timeout: 30
  wait_for_lock: false
  retry:
    max_attempts: 5
    base_delay: 0.5
"""
        execution = make_config(yaml).execution
        assert execution.max_parallel == 8
        assert execution.fail_fast is True
        assert execution.timeout == 30
        assert execution.wait_for_lock is False
        policy = execution.retry.policy()
        assert policy.max_attempts == 5
        assert policy.delay(2) == 1.0

    def test_unknown_key(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="extra"):
            make_config("execution:\n  parallelism: 2\n")

    def test_parallelism_must_be_positive(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="max_parallel"):
            make_config("execution:\n  max_parallel: 0\n")


class TestEnvironmentResolution:
    def test_yaml_value(self, make_config: Callable[..., Config]) -> None:
        config = make_config("environment:\n  account: 111122223333\n  region: eu-west-1\n")
        env = config.environment.to_environment()
        assert env.account == "111122223333"
        assert env.region == "eu-west-1"

    def test_env_var(
        self, make_config: Callable[..., Config], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("STACK_REGION", "ap-south-1")
        assert make_config("").environment.region == "ap-south-1"

    def test_dotenv(self, make_config: Callable[..., Config]) -> None:
        config = make_config("", dotenv="STACK_ACCOUNT=444455556666\nSTACK_REGION=sa-east-1\n")
        assert config.environment.account == "444455556666"
        assert config.environment.region == "sa-east-1"

    def test_yaml_beats_env_beats_dotenv(
        self, make_config: Callable[..., Config], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("STACK_REGION", "from-env")
        monkeypatch.setenv("STACK_ACCOUNT", "from-env")
        config = make_config(
            "environment:\n  region: from-yaml\n",
            dotenv="STACK_REGION=from-dotenv\nSTACK_ACCOUNT=from-dotenv\n",
        )
        assert config.environment.region == "from-yaml"
        assert config.environment.account == "from-env"

    def test_unset(self, make_config: Callable[..., Config]) -> None:
        env = make_config("").environment.to_environment()
        assert env.account is None
        assert env.region is None
