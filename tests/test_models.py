"""
Tests for configuration document parsing.
"""

import json

import pytest

from horizon_agent.errors import ConfigurationError
from horizon_agent.json_utils import atomic_write_json, json_dumps, read_json
from horizon_agent.models import (
    ConfigurationSnapshot,
    DesktopEnvironment,
    PackageAction,
    RepositoryKind,
    ServiceConfig,
    default_configuration,
)

DOCUMENT = {
    "version": 1,
    "system": {"hostname": "workstation", "timezone": "Europe/Berlin"},
    "packages": [{"name": "git"}, {"name": "nano", "action": "remove"}],
    "services": [{"name": "nginx", "config": {"environment": {"WORKERS": "4"}}}],
    "users": [{"name": "alice", "uid": 1000, "groups": ["wheel"]}],
    "repositories": [{"name": "horizon", "url": "https://ostree.example", "kind": "ostree"}],
    "desktop": {"environment": "Hyprland", "settings": {"gaps": 8}},
    "automation": {"workflows": [{"name": "backup", "trigger": {"type": "schedule"}}]},
}


class TestParsing:
    def test_full_document(self):
        config = ConfigurationSnapshot.from_dict(DOCUMENT)

        assert config.system.hostname == "workstation"
        assert config.system.locale == "en_US.UTF-8"
        assert config.packages[1].action == PackageAction.REMOVE
        assert config.services[0].enabled is True
        assert config.services[0].config.environment == {"WORKERS": "4"}
        assert config.users[0].groups == ("wheel",)
        assert config.users[0].home == "/home/alice"
        assert config.repositories[0].kind == RepositoryKind.OSTREE
        assert config.desktop.environment == DesktopEnvironment.HYPRLAND
        assert config.automation.workflows[0].is_active
        assert config.installed_package_names() == ["git"]

    def test_document_survives_serialization(self):
        config = ConfigurationSnapshot.from_dict(DOCUMENT)
        assert ConfigurationSnapshot.from_dict(json.loads(json_dumps(config.to_dict()))) == config

    def test_minimal_document(self):
        config = ConfigurationSnapshot.from_dict({"system": {"hostname": "h"}})
        assert config.packages == ()
        assert config.desktop is None
        assert config.automation is None

    @pytest.mark.parametrize("document, message", [
        ({"version": 2, "system": {"hostname": "h"}}, "version"),
        ({}, "system"),
        ({"system": {}}, "hostname"),
        ({"system": {"hostname": "h"}, "packages": [{"name": "x", "action": "upgrade"}]}, "package action"),
        ({"system": {"hostname": "h"}, "desktop": {"environment": "cde"}}, "desktop environment"),
        ([], "JSON object"),
        ({"system": {"hostname": "h"}, "packages": [5]}, "Malformed"),
        ({"system": {"hostname": "h"}, "repositories": [{"name": "r", "url": "u", "priority": "high"}]}, "Malformed"),
        ({"system": {"hostname": "h"}, "automation": {"workflows": [{"name": "../x"}]}}, "workflow name"),
    ])
    def test_invalid_documents(self, document, message):
        with pytest.raises(ConfigurationError, match=message):
            ConfigurationSnapshot.from_dict(document)

    def test_default_configuration(self):
        config = default_configuration()
        assert (config.system.hostname, config.system.timezone, config.system.locale) == (
            "horizonos", "UTC", "en_US.UTF-8",
        )


class TestImmutability:
    def test_mappings_are_read_only(self):
        config = ConfigurationSnapshot.from_dict(DOCUMENT)

        with pytest.raises(TypeError):
            config.services[0].config.environment["WORKERS"] = "8"
        with pytest.raises(TypeError):
            config.desktop.settings["gaps"] = 0

    def test_caller_dict_is_copied(self):
        environment = {"PORT": "80"}
        service_config = ServiceConfig(environment=environment)
        environment["PORT"] = "8080"

        assert service_config.environment == {"PORT": "80"}

    def test_value_objects_are_hashable(self):
        config = ConfigurationSnapshot.from_dict(DOCUMENT)

        assert len({config.services[0], config.desktop, config.automation.workflows[0]}) == 3
        assert hash(config) == hash(ConfigurationSnapshot.from_dict(DOCUMENT))


class TestJsonUtils:
    def test_normalized_output_is_key_sorted(self):
        text = json_dumps({"b": 1, "a": 2}, normalize=True)
        assert text.index('"a"') < text.index('"b"')

    def test_atomic_write(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        atomic_write_json(path, {"services": ("sshd",), "kind": RepositoryKind.OSTREE})

        assert read_json(path) == {"services": ["sshd"], "kind": "ostree"}
        assert not (tmp_path / "nested" / "state.json.tmp").exists()
