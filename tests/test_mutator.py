"""
Tests for System Mutator verbs and the commands behind them.
"""

import json
import subprocess

import pytest

from horizon_agent.commands import CommandExecutor
from horizon_agent.errors import CommandError, MutationError
from horizon_agent.models import (
    AutomationConfig,
    DesktopConfig,
    DesktopEnvironment,
    Package,
    PackageAction,
    Repository,
    RepositoryKind,
    Service,
    ServiceConfig,
    SystemConfig,
    Trigger,
    User,
    Workflow,
)


class TestSystemVerbs:
    def test_hostname_and_timezone(self, mutator, executor):
        mutator.set_hostname("box")
        mutator.set_timezone("UTC")
        assert executor.calls == [
            ("hostnamectl", "set-hostname", "box"),
            ("timedatectl", "set-timezone", "UTC"),
        ]

    def test_locale_writes_locale_conf(self, mutator, executor, system_root):
        mutator.set_locale("de_DE.UTF-8")
        assert (system_root / "etc/locale.conf").read_text() == "LANG=de_DE.UTF-8\n"
        assert executor.calls == [("locale-gen",)]

    def test_failure_carries_output(self, mutator, executor):
        executor.fail("hostnamectl", stderr="Access denied")

        with pytest.raises(MutationError) as excinfo:
            mutator.set_hostname("box")

        assert excinfo.value.verb == "set_hostname"
        assert excinfo.value.output == "Access denied"

    def test_dry_run_runs_nothing(self, mutator, executor, system_root):
        mutator.apply_system_config(SystemConfig("box"), dry_run=True)
        assert executor.calls == []
        assert not (system_root / "etc/locale.conf").exists()

    def test_repositories(self, mutator, executor, config_root):
        mutator.configure_repositories([
            Repository("extra", "https://mirror.example/$repo", priority=10),
            Repository("disabled", "https://mirror.example/x", enabled=False),
            Repository("horizon", "https://ostree.example", kind=RepositoryKind.OSTREE,
                       gpg_check=False, branches=("horizonos/stable/x86_64",)),
        ])

        pacman = (config_root / "pacman-repos.conf").read_text()
        assert "[extra]\nServer = https://mirror.example/$repo" in pacman
        assert "disabled" not in pacman
        assert json.loads((config_root / "ostree-repos.json").read_text())[0]["name"] == "horizon"
        assert executor.calls == [(
            "ostree", "remote", "add", "--if-not-exists", "--no-gpg-verify",
            "horizon", "https://ostree.example", "horizonos/stable/x86_64",
        )]


class TestPackageVerbs:
    def test_manage_packages_splits_actions(self, mutator, executor):
        mutator.manage_packages([
            Package("git"),
            Package("nano", PackageAction.REMOVE),
            Package("htop"),
        ])
        assert executor.calls == [
            ("pacman", "-S", "--needed", "--noconfirm", "git", "htop"),
            ("pacman", "-R", "--noconfirm", "nano"),
        ]

    def test_package_availability(self, mutator, executor):
        executor.fail("pacman", "-Si", "ghost")
        assert mutator.is_package_available("git")
        assert not mutator.is_package_available("ghost")


class TestUserVerbs:
    def test_create_user(self, mutator, executor):
        mutator.create_users([User("alice", uid=1000, groups=("wheel", "video"))])
        assert executor.calls == [(
            "useradd", "-m", "-d", "/home/alice", "-s", "/bin/bash",
            "-u", "1000", "-G", "wheel,video", "alice",
        )]

    def test_modify_user_only_changed_fields(self, mutator, executor):
        mutator.modify_user(User("alice"), User("alice", shell="/bin/zsh"))
        assert executor.calls == [("usermod", "-s", "/bin/zsh", "alice")]

    def test_remove_users(self, mutator, executor):
        mutator.remove_users([User("bob")])
        assert executor.calls == [("userdel", "bob")]

    def test_manage_users_modifies_existing(self, mutator, executor):
        executor.respond("id", "-u", "alice", output="1000\n")
        mutator.manage_users([User("alice", shell="/bin/zsh"), User("bob")])
        assert ("usermod", "-s", "/bin/zsh", "alice") in executor.calls
        assert executor.calls[-1][0] == "useradd"
        assert executor.calls[-1][-1] == "bob"


class TestServiceVerbs:
    def test_configure_services(self, mutator, executor, system_root):
        mutator.configure_services([
            Service("nginx", config=ServiceConfig(environment={"PORT": "8080"})),
            Service("cups", enabled=False),
        ])

        dropin = (system_root / "etc/systemd/system/nginx.service.d/horizon.conf").read_text()
        assert dropin == '[Service]\nRestart=on-failure\nEnvironment="PORT=8080"\n'
        assert executor.calls == [
            ("systemctl", "daemon-reload"),
            ("systemctl", "enable", "--now", "nginx"),
            ("systemctl", "disable", "--now", "cups"),
        ]

    def test_remove_service_clears_dropin(self, mutator, executor, system_root):
        service = Service("nginx", config=ServiceConfig())
        mutator.configure_services([service])
        executor.calls.clear()

        mutator.remove_service(service)

        assert not (system_root / "etc/systemd/system/nginx.service.d/horizon.conf").exists()
        assert executor.calls == [
            ("systemctl", "disable", "--now", "nginx"),
            ("systemctl", "daemon-reload"),
        ]


class TestDesktopAndAutomation:
    def test_configure_desktop(self, mutator, executor, system_root):
        mutator.configure_desktop(DesktopConfig(
            DesktopEnvironment.PLASMA,
            auto_login=True,
            auto_login_user="alice",
            settings={"theme": "breeze-dark"},
        ))

        assert (system_root / "etc/xdg/plasmarc").read_text() == "theme = breeze-dark\n"
        assert "autologin-user=alice" in (
            system_root / "etc/lightdm/lightdm.conf.d/50-horizon-autologin.conf"
        ).read_text()
        assert executor.calls == [("systemctl", "enable", "sddm")]

    def test_desktop_parameters_only(self, mutator, executor):
        mutator.configure_desktop(DesktopConfig(DesktopEnvironment.SWAY), enable_session=False)
        assert executor.calls == []

    def test_configure_automation_prunes_stale(self, mutator, executor, config_root):
        workflows = config_root / "workflows"
        workflows.mkdir(parents=True)
        (workflows / "stale.json").write_text("{}")

        mutator.configure_automation(AutomationConfig(workflows=(
            Workflow("backup", trigger=Trigger("schedule", {"cron": "@daily"})),
        )))

        assert sorted(p.name for p in workflows.iterdir()) == ["backup.json"]
        assert json.loads((workflows / "backup.json").read_text())["trigger"]["type"] == "schedule"
        assert executor.calls[-1] == ("systemctl", "reload-or-restart", "horizonos-automation")

    def test_remove_workflow(self, mutator, executor, config_root):
        mutator.update_automation_workflow(Workflow("backup"))
        mutator.remove_automation_workflow("backup")
        assert not (config_root / "workflows" / "backup.json").exists()


class TestPermissions:
    def test_root(self, mutator, executor):
        executor.respond("id", "-u", output="0\n")
        assert mutator.has_required_permissions()

    def test_not_root(self, mutator, executor):
        executor.respond("id", "-u", output="1000\n")
        assert not mutator.has_required_permissions()


class TestCommandExecutor:
    def test_dry_run_returns_empty(self, monkeypatch):
        def forbidden(*args, **kwargs):
            raise AssertionError("subprocess must not run in dry-run mode")

        monkeypatch.setattr(subprocess, "run", forbidden)
        assert CommandExecutor(dry_run=True).run("rm", "-rf", "/") == ""

    def test_non_zero_exit(self, monkeypatch):
        monkeypatch.setattr(
            subprocess, "run",
            lambda *a, **kw: subprocess.CompletedProcess(a[0], 3, stdout="", stderr="bad"),
        )
        with pytest.raises(CommandError) as excinfo:
            CommandExecutor().run("false")
        assert excinfo.value.returncode == 3
        assert excinfo.value.stderr == "bad"

    def test_unchecked_exit(self, monkeypatch):
        monkeypatch.setattr(
            subprocess, "run",
            lambda *a, **kw: subprocess.CompletedProcess(a[0], 1, stdout="disabled\n", stderr=""),
        )
        assert CommandExecutor().run("systemctl", "is-enabled", "x", check=False) == "disabled\n"

    def test_timeout_is_failure(self, monkeypatch):
        def slow(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

        monkeypatch.setattr(subprocess, "run", slow)
        with pytest.raises(CommandError) as excinfo:
            CommandExecutor(timeout=1).run("pacman", "-Syu")
        assert excinfo.value.timed_out

    def test_missing_program(self, monkeypatch):
        def missing(argv, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", argv[0])

        monkeypatch.setattr(subprocess, "run", missing)
        with pytest.raises(CommandError) as excinfo:
            CommandExecutor().run("no-such-tool")
        assert excinfo.value.returncode == 127


class TestWorkflowNames:
    @pytest.mark.parametrize("name", ["../../escaped", "nested/backup", "..", ""])
    def test_update_rejects_names_outside_workflows_dir(self, mutator, executor, tmp_path, name):
        with pytest.raises(MutationError, match="Invalid workflow name"):
            mutator.update_automation_workflow(Workflow(name))

        assert not (tmp_path / "etc" / "escaped.json").exists()
        assert executor.calls == []

    def test_remove_does_not_unlink_outside(self, mutator, config_root):
        outside = config_root.parent / "escaped.json"
        outside.parent.mkdir(parents=True, exist_ok=True)
        outside.write_text("{}")

        with pytest.raises(MutationError):
            mutator.remove_automation_workflow("../../escaped")

        assert outside.exists()

    def test_configure_writes_nothing_when_a_name_is_invalid(self, mutator, config_root):
        with pytest.raises(MutationError):
            mutator.configure_automation(AutomationConfig(workflows=(
                Workflow("backup"), Workflow("../escaped"),
            )))

        assert not (config_root / "workflows" / "backup.json").exists()
