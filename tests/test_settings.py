#!/usr/bin/env python3
"""
grnctl settings rendering and Settings accessors.
"""

import tomllib
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from grnctl.errors import ConfigurationError  # noqa: E402
from grnctl.settings import (  # noqa: E402
    Environment,
    NodeType,
    deep_merge_configs,
    expand_env_vars_or_fail,
    render_settings_chain,
    write_rendered_toml,
)

from conftest import make_settings  # noqa: E402


class TestEnumerations:
    def test_environment_parse_is_case_insensitive(self):
        assert Environment.parse("LIVE") is Environment.LIVE

    def test_unknown_environment_names_value(self):
        with pytest.raises(ConfigurationError, match="staging"):
            Environment.parse("staging")

    def test_unknown_node_type_lists_choices(self):
        with pytest.raises(ConfigurationError, match="validator, full, seed"):
            NodeType.parse("archive")

    def test_only_validator_has_validator_key(self):
        assert NodeType.VALIDATOR.has_validator_key
        assert not NodeType.FULL.has_validator_key
        assert not NodeType.SEED.has_validator_key


class TestRenderSettingsChain:
    def test_defaults_are_rendered_per_environment(self, tmp_path):
        config = render_settings_chain(tmp_path, Environment.TEST, {})

        assert config["identity"]["image"] == "graphene/tendermint:test"
        assert config["identity"]["volumes_dir"] == "volumes/test/tendermint"
        assert config["deploy"]["env_config_dir"] == "config/env/test"
        assert config["deploy"]["group_order"] == ["validator", "sentry"]

    def test_log_level_comes_from_environment(self, tmp_path):
        config = render_settings_chain(tmp_path, Environment.LOCAL, {"GRNCTL_LOG_LEVEL": "DEBUG"})

        assert config["grnctl"]["log_level"] == "DEBUG"

    def test_repository_override_is_merged_key_by_key(self, tmp_path):
        (tmp_path / "grnctl.toml.j2").write_text(
            '[deploy]\nlog_tail = 10\n\n[identity]\nimage = "registry.example/{{ deploy.network_base }}:{{ node_env }}"\n'
        )

        config = render_settings_chain(tmp_path, Environment.LIVE, {})

        assert config["deploy"]["log_tail"] == 10
        assert config["deploy"]["services_dir"] == "services"
        assert config["identity"]["image"] == "registry.example/graphene-net:live"
        assert config["identity"]["home"] == "/tendermint"

    def test_override_env_reference_must_be_set(self, tmp_path):
        (tmp_path / "grnctl.toml.j2").write_text('[identity]\nimage = "${GRAPHENE_IMAGE}"\n')

        with pytest.raises(ConfigurationError, match="GRAPHENE_IMAGE"):
            render_settings_chain(tmp_path, Environment.TEST, {})

        config = render_settings_chain(tmp_path, Environment.TEST, {"GRAPHENE_IMAGE": "custom:1"})
        assert config["identity"]["image"] == "custom:1"

    def test_invalid_toml_is_reported_with_source(self, tmp_path):
        (tmp_path / "grnctl.toml.j2").write_text("[deploy\n")

        with pytest.raises(ConfigurationError, match="grnctl.toml.j2"):
            render_settings_chain(tmp_path, Environment.TEST, {})

    def test_undefined_template_variable_fails(self, tmp_path):
        (tmp_path / "grnctl.toml.j2").write_text('[deploy]\nservices_dir = "{{ no_such_value }}"\n')

        with pytest.raises(ConfigurationError):
            render_settings_chain(tmp_path, Environment.TEST, {})


class TestHelpers:
    def test_expand_env_vars_reports_all_missing(self):
        with pytest.raises(ConfigurationError, match="A, B"):
            expand_env_vars_or_fail("x=$B y=${A}", "inline", {})

    def test_deep_merge_keeps_base_keys(self):
        merged = deep_merge_configs({"a": {"b": 1, "c": 2}}, {"a": {"c": 3}, "d": 4})

        assert merged == {"a": {"b": 1, "c": 3}, "d": 4}

    def test_write_rendered_toml(self, tmp_path):
        output = tmp_path / "out" / "grnctl.toml"
        write_rendered_toml(output, {"deploy": {"log_tail": 5}})

        with open(output, "rb") as f:
            assert tomllib.load(f) == {"deploy": {"log_tail": 5}}


class TestSettings:
    def test_project_names_and_groups(self, repo):
        settings = make_settings(repo)

        assert settings.deployment_id == "graphene_deployment_test"
        assert settings.project_name("sentry") == "graphene_deployment_test_sentry"
        assert [g.name for g in settings.groups] == ["validator", "sentry"]
        assert settings.groups[1].env_file == ".env.sentry"
        assert settings.env_config_dir == repo / "config" / "env" / "test"

    def test_cli_options_are_frozen_in(self, repo):
        settings = make_settings(repo, no_build=True, no_git_lfs=True, log_tail=7, skip_network=True)

        assert settings.build is False
        assert settings.git_lfs is False
        assert settings.log_tail == 7
        assert settings.skip_network is True
        assert settings.command_timeout is None

    def test_transport_values_come_from_captured_environment(self, repo):
        settings = make_settings(repo, environ={"NODE_KEY_JSON": "bm9kZQ==", "PRIV_VALIDATOR_KEY_JSON": ""})

        assert settings.node_key_b64 == "bm9kZQ=="
        assert settings.priv_validator_key_b64 is None
        assert "bm9kZQ==" not in repr(settings)

    def test_non_positive_log_tail_is_rejected(self, repo):
        with pytest.raises(ConfigurationError):
            make_settings(repo, log_tail=0)

    def test_group_order_must_reference_defined_groups(self, repo):
        (repo / "grnctl.toml.j2").write_text('[deploy]\ngroup_order = ["validator", "archive"]\n')
        settings = make_settings(repo)

        with pytest.raises(ConfigurationError, match="archive"):
            settings.groups
