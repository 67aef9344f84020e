"""Tests for the rmami command line entry point"""

import json
import os
import tempfile

import pytest
import yaml

import rmami
from conftest import FakeRegistry, raw_image
from retention.errors import ConfigurationError, RegistryError


@pytest.fixture
def fake_ec2(monkeypatch):
    """Replace the EC2 registry with a scripted fake and capture how it was built"""
    state = {"registry": FakeRegistry(images=[raw_image(f"ami-{d}", d) for d in range(1, 6)]), "kwargs": None}

    def _factory(**kwargs):
        state["kwargs"] = kwargs
        return state["registry"]

    monkeypatch.setattr("retention.registry.EC2ImageRegistry", _factory)
    return state


class TestParseUserVars:
    """Tests for --var parsing"""

    def test_pairs(self):
        assert rmami.parse_user_vars(["role=web", "suffix=a=b"]) == {"role": "web", "suffix": "a=b"}

    def test_none(self):
        assert rmami.parse_user_vars(None) == {}

    def test_bad_pairs_are_aggregated(self):
        with pytest.raises(ConfigurationError) as exc_info:
            rmami.parse_user_vars(["novalue", "=x"])
        assert len(exc_info.value.errors) == 2


class TestMain:
    """Tests for main() exit codes and behaviour"""

    def test_dry_run(self, fake_ec2, capsys):
        code = rmami.main(["--config", "/nonexistent.yaml", "--region", "us-west-2", "--role", "web",
                           "--keep", "3", "--dry-run"])
        assert code == rmami.EXIT_OK
        assert fake_ec2["registry"].destructive_calls == []
        assert fake_ec2["registry"].closed
        assert fake_ec2["kwargs"]["region"] == "us-west-2"
        out = capsys.readouterr().out
        assert "would delete" in out
        assert "ami-5" in out

    def test_single_config_manager(self, fake_ec2, monkeypatch):
        """main() hands its ConfigManager to the provisioner instead of loading config twice"""
        def _no_new_manager(*args, **kwargs):
            raise AssertionError("ConfigManager built twice")

        monkeypatch.setattr("retention.provisioner.ConfigManager", _no_new_manager)
        code = rmami.main(["--config", "/nonexistent.yaml", "--region", "us-west-2", "--role", "web",
                           "--keep", "3", "--dry-run"])
        assert code == rmami.EXIT_OK

    def test_deletes(self, fake_ec2):
        code = rmami.main(["--config", "/nonexistent.yaml", "--region", "us-west-2", "--role", "web",
                           "--keep", "3"])
        assert code == rmami.EXIT_OK
        assert [c for c in fake_ec2["registry"].destructive_calls if c[0] == "deregister"] == [
            ("deregister", "ami-2"), ("deregister", "ami-1")]

    def test_keep_one_is_a_config_error(self, fake_ec2):
        code = rmami.main(["--config", "/nonexistent.yaml", "--region", "us-west-2", "--role", "web",
                           "--keep", "1"])
        assert code == rmami.EXIT_CONFIG
        assert fake_ec2["kwargs"] is None

    def test_missing_role_and_region(self, fake_ec2):
        code = rmami.main(["--config", "/nonexistent.yaml", "--keep", "3"])
        assert code == rmami.EXIT_CONFIG

    def test_registry_failure_exit_code(self, fake_ec2):
        fake_ec2["registry"].fail_on = {"ami-2"}
        code = rmami.main(["--config", "/nonexistent.yaml", "--region", "us-west-2", "--role", "web",
                           "--keep", "3"])
        assert code == rmami.EXIT_FAILED
        assert fake_ec2["registry"].destructive_calls == [("deregister", "ami-2")]
        assert fake_ec2["registry"].closed

    def test_query_failure_exit_code(self, fake_ec2):
        fake_ec2["registry"].list_error = RegistryError("denied", operation="DescribeImages")
        code = rmami.main(["--config", "/nonexistent.yaml", "--region", "us-west-2", "--role", "web",
                           "--keep", "3"])
        assert code == rmami.EXIT_FAILED

    def test_config_file_with_template_and_output(self, fake_ec2):
        data = {"rmami": {"region": "eu-west-1", "role": "{{user `role`}}", "keep": 4, "dry_run": True}}
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = os.path.join(tmpdir, "config.yaml")
            output_path = os.path.join(tmpdir, "run.json")
            with open(config_path, "w") as f:
                yaml.dump(data, f)

            code = rmami.main(["--config", config_path, "--var", "role=web", "--output", output_path])
            assert code == rmami.EXIT_OK
            with open(output_path) as f:
                summary = json.load(f)

        assert summary["state"] == "done"
        assert summary["dry_run"] is True
        assert summary["kept"] == ["ami-5", "ami-4", "ami-3", "ami-2"]
        assert summary["deleted"] == ["ami-1"]
        assert fake_ec2["registry"].calls[0] == ("list", "self", "web")

    def test_print_config(self, fake_ec2, capsys):
        code = rmami.main(["--config", "/nonexistent.yaml", "--role", "web", "--print-config"])
        assert code == rmami.EXIT_OK
        assert "role: web" in capsys.readouterr().out
        assert fake_ec2["kwargs"] is None
