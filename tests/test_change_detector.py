"""
Unit tests for change detection and classification.
"""

from dataclasses import replace

import pytest

from horizon_agent.change_detector import (
    ChangeDetector,
    ChangeType,
    ImpactLevel,
    UpdateStrategy,
    CLASSIFICATION,
    classify,
    detect_changes,
)
from horizon_agent.models import (
    AutomationConfig,
    DesktopConfig,
    DesktopEnvironment,
    Package,
    PackageAction,
    Repository,
    Service,
    ServiceConfig,
    Trigger,
    User,
    Workflow,
)


class TestNoChanges:
    def test_identical_snapshots(self, full_config):
        assert detect_changes(full_config, full_config) == []

    def test_equal_but_distinct_snapshots(self, full_config):
        copy = replace(full_config, packages=tuple(full_config.packages))
        assert detect_changes(full_config, copy) == []

    def test_deterministic(self, base_config, full_config):
        detector = ChangeDetector()
        first = detector.detect_changes(base_config, full_config)
        second = detector.detect_changes(base_config, full_config)
        assert first == second


class TestSystemFields:
    def test_hostname_change(self, base_config):
        """Only the hostname differs: one LIVE/LOW change."""
        target = replace(base_config, system=replace(base_config.system, hostname="new-host"))

        changes = detect_changes(base_config, target)

        assert len(changes) == 1
        change = changes[0]
        assert change.type == ChangeType.SYSTEM_CONFIG
        assert change.field == "hostname"
        assert change.old_value == "old-host"
        assert change.new_value == "new-host"
        assert change.update_strategy == UpdateStrategy.LIVE
        assert change.impact == ImpactLevel.LOW

    def test_each_field_independent(self, base_config):
        target = replace(
            base_config,
            system=replace(base_config.system, hostname="x", timezone="Asia/Tokyo", locale="ja_JP.UTF-8"),
        )
        changes = detect_changes(base_config, target)
        assert [c.field for c in changes] == ["hostname", "timezone", "locale"]
        assert all(c.impact == ImpactLevel.LOW for c in changes)


class TestPackages:
    def test_installs_are_aggregated(self, base_config):
        target = replace(base_config, packages=(Package("git"), Package("docker")))

        changes = detect_changes(base_config, target)

        assert len(changes) == 1
        assert changes[0].type == ChangeType.PACKAGE_INSTALL
        assert [p.name for p in changes[0].new_value] == ["git", "docker"]
        assert changes[0].update_strategy == UpdateStrategy.LIVE
        assert changes[0].impact == ImpactLevel.MEDIUM

    def test_dropped_package_is_removed(self, base_config):
        current = replace(base_config, packages=(Package("git"), Package("vim")))
        target = replace(base_config, packages=(Package("git"),))

        changes = detect_changes(current, target)

        assert [c.type for c in changes] == [ChangeType.PACKAGE_REMOVE]
        assert [p.name for p in changes[0].old_value] == ["vim"]

    def test_explicit_remove_action(self, base_config):
        current = replace(base_config, packages=(Package("nano"),))
        target = replace(base_config, packages=(Package("nano", PackageAction.REMOVE), Package("vim")))

        changes = detect_changes(current, target)

        assert [c.type for c in changes] == [ChangeType.PACKAGE_REMOVE, ChangeType.PACKAGE_INSTALL]
        assert [p.name for p in changes[0].old_value] == ["nano"]
        assert [p.name for p in changes[1].new_value] == ["vim"]


class TestServices:
    def test_add_and_remove(self, base_config):
        current = replace(base_config, services=(Service("cups"),))
        target = replace(base_config, services=(Service("nginx"),))

        changes = detect_changes(current, target)

        assert [c.type for c in changes] == [ChangeType.SERVICE_REMOVE, ChangeType.SERVICE_ADD]
        assert [c.affected_service for c in changes] == ["cups", "nginx"]
        assert all(c.update_strategy == UpdateStrategy.SERVICE_RELOAD for c in changes)
        assert all(c.impact == ImpactLevel.MEDIUM for c in changes)

    def test_enabled_flag_change(self, base_config):
        current = replace(base_config, services=(Service("sshd", enabled=True),))
        target = replace(base_config, services=(Service("sshd", enabled=False),))

        changes = detect_changes(current, target)

        assert len(changes) == 1
        assert changes[0].type == ChangeType.SERVICE_CONFIG
        assert "disable" in changes[0].description

    def test_config_change(self, base_config):
        current = replace(base_config, services=(Service("nginx", config=ServiceConfig()),))
        target = replace(
            base_config,
            services=(Service("nginx", config=ServiceConfig(environment={"WORKERS": "8"})),),
        )

        changes = detect_changes(current, target)

        assert [c.type for c in changes] == [ChangeType.SERVICE_CONFIG]
        assert changes[0].old_value.config != changes[0].new_value.config


class TestUsers:
    def test_user_lifecycle(self, base_config):
        current = replace(base_config, users=(User("bob"), User("carol", shell="/bin/bash")))
        target = replace(base_config, users=(User("carol", shell="/bin/zsh"), User("dave")))

        changes = detect_changes(current, target)

        assert [c.type for c in changes] == [
            ChangeType.USER_REMOVE,
            ChangeType.USER_ADD,
            ChangeType.USER_MODIFY,
        ]
        assert all(c.update_strategy == UpdateStrategy.LIVE for c in changes)
        assert "shell" in changes[2].description


class TestDesktop:
    def test_enabling_desktop_requires_reboot(self, base_config):
        target = replace(base_config, desktop=DesktopConfig(DesktopEnvironment.PLASMA))

        changes = detect_changes(base_config, target)

        assert len(changes) == 1
        assert changes[0].type == ChangeType.DESKTOP_CONFIG
        assert changes[0].update_strategy == UpdateStrategy.REBOOT_REQUIRED
        assert changes[0].impact == ImpactLevel.CRITICAL

    def test_switching_environment_requires_reboot(self, base_config):
        current = replace(base_config, desktop=DesktopConfig(DesktopEnvironment.GNOME))
        target = replace(base_config, desktop=DesktopConfig(DesktopEnvironment.HYPRLAND))

        change = detect_changes(current, target)[0]
        assert change.update_strategy == UpdateStrategy.REBOOT_REQUIRED

    def test_parameter_change_is_live(self, base_config):
        current = replace(base_config, desktop=DesktopConfig(DesktopEnvironment.PLASMA))
        target = replace(
            base_config,
            desktop=DesktopConfig(DesktopEnvironment.PLASMA, settings={"theme": "breeze-dark"}),
        )

        change = detect_changes(current, target)[0]
        assert change.update_strategy == UpdateStrategy.LIVE
        assert change.impact == ImpactLevel.HIGH


class TestAutomation:
    def _config(self, base_config, *workflows):
        return replace(base_config, automation=AutomationConfig(workflows=workflows))

    def test_active_workflow_is_medium(self, base_config):
        workflow = Workflow("backup", trigger=Trigger("schedule", {"cron": "0 2 * * *"}))

        change = detect_changes(base_config, self._config(base_config, workflow))[0]

        assert change.type == ChangeType.AUTOMATION_WORKFLOW
        assert change.update_strategy == UpdateStrategy.LIVE
        assert change.impact == ImpactLevel.MEDIUM

    def test_inactive_workflow_is_low(self, base_config):
        workflow = Workflow("backup", enabled=False, trigger=Trigger("schedule"))

        change = detect_changes(base_config, self._config(base_config, workflow))[0]

        assert change.impact == ImpactLevel.LOW

    def test_removal_before_addition(self, base_config):
        current = self._config(base_config, Workflow("old"))
        target = self._config(base_config, Workflow("new"))

        changes = detect_changes(current, target)

        assert [c.description for c in changes] == [
            "Remove automation workflow: old",
            "Add automation workflow: new",
        ]
        assert changes[0].new_value is None


class TestOrdering:
    def test_dependency_order(self, base_config):
        current = replace(
            base_config,
            packages=(Package("vim"),),
            services=(Service("cups"),),
        )
        target = replace(
            base_config,
            system=replace(base_config.system, hostname="new-host"),
            repositories=(Repository("extra", "https://mirror.example/extra"),),
            packages=(Package("git"),),
            users=(User("alice"),),
            services=(Service("nginx"),),
            desktop=DesktopConfig(DesktopEnvironment.SWAY),
            automation=AutomationConfig(workflows=(Workflow("sync"),)),
        )

        changes = detect_changes(current, target)

        assert [c.type for c in changes] == [
            ChangeType.SYSTEM_CONFIG,
            ChangeType.REPOSITORY,
            ChangeType.PACKAGE_REMOVE,
            ChangeType.PACKAGE_INSTALL,
            ChangeType.USER_ADD,
            ChangeType.SERVICE_REMOVE,
            ChangeType.SERVICE_ADD,
            ChangeType.DESKTOP_CONFIG,
            ChangeType.AUTOMATION_WORKFLOW,
        ]

    def test_repository_order_is_irrelevant(self, base_config):
        a = Repository("core", "https://mirror.example/core")
        b = Repository("extra", "https://mirror.example/extra")
        assert detect_changes(
            replace(base_config, repositories=(a, b)),
            replace(base_config, repositories=(b, a)),
        ) == []


class TestClassification:
    @pytest.mark.parametrize("change_type", list(ChangeType))
    def test_every_type_is_classified(self, change_type):
        strategy, impact = classify(change_type)
        assert isinstance(strategy, UpdateStrategy)
        assert isinstance(impact, ImpactLevel)
        assert change_type in CLASSIFICATION

    def test_change_is_immutable(self, base_config):
        target = replace(base_config, system=replace(base_config.system, hostname="h"))
        change = detect_changes(base_config, target)[0]
        with pytest.raises(AttributeError):
            change.impact = ImpactLevel.CRITICAL

    def test_to_dict_serializes_payloads(self, base_config):
        target = replace(base_config, packages=(Package("git"),))
        data = detect_changes(base_config, target)[0].to_dict()
        assert data["type"] == "package_install"
        assert data["new_value"] == [{"name": "git", "action": "install", "group": None}]
