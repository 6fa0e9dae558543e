"""
Pytest configuration and fixtures for horizon-agent tests.

External commands never run: every component is wired to a FakeExecutor
that records argv and returns scripted output or failures.
"""

from pathlib import Path
from typing import Dict, List, Tuple

import pytest

from horizon_agent.commands import CommandExecutor
from horizon_agent.deployment import DeploymentManager
from horizon_agent.engine import ExecutionEngine
from horizon_agent.errors import CommandError, DeploymentError
from horizon_agent.live_update import LiveUpdateManager
from horizon_agent.models import (
    ConfigurationSnapshot,
    SystemConfig,
    Package,
    Service,
    ServiceConfig,
    User,
)
from horizon_agent.mutator import SystemMutator
from horizon_agent.notifier import LoggingNotifier
from horizon_agent.service_reloader import ServiceReloader
from horizon_agent.state_sync import StateSyncManager
from horizon_agent.system_probe import SystemProbe


class FakeExecutor(CommandExecutor):
    """Records every command; answers from scripted prefixes."""

    def __init__(self):
        super().__init__(dry_run=False, timeout=None)
        self.calls: List[Tuple[str, ...]] = []
        self.outputs: Dict[Tuple[str, ...], str] = {}
        self.failures: Dict[Tuple[str, ...], Tuple[int, str, bool]] = {}

    def respond(self, *prefix: str, output: str) -> None:
        self.outputs[tuple(prefix)] = output

    def fail(
        self, *prefix: str, returncode: int = 1, stderr: str = "simulated failure", timed_out: bool = False
    ) -> None:
        """Script a failure. Timeouts raise even with check=False, like CommandExecutor."""
        self.failures[tuple(prefix)] = (returncode, stderr, timed_out)

    def mark(self, label: str) -> None:
        """Insert a marker into the call log (for ordering assertions)."""
        self.calls.append(("#" + label,))

    def run(self, *argv: str, check: bool = True, input=None) -> str:
        self.calls.append(tuple(argv))
        for prefix, (returncode, stderr, timed_out) in self.failures.items():
            if argv[: len(prefix)] == prefix:
                if check or timed_out:
                    raise CommandError(argv, returncode, "", stderr, timed_out=timed_out)
                return ""
        for prefix in sorted(self.outputs, key=len, reverse=True):
            if argv[: len(prefix)] == prefix:
                return self.outputs[prefix]
        return ""

    def called(self, *prefix: str) -> List[Tuple[str, ...]]:
        return [call for call in self.calls if call[: len(prefix)] == prefix]


class FakeDeployment(DeploymentManager):
    """In-memory deployment store; newest commit first."""

    def __init__(self):
        self.commits = []
        self.deployed = None
        self.fail_commit = False

    def repository_exists(self):
        return True

    def create_commit(self, config):
        if self.fail_commit:
            raise DeploymentError("ostree commit failed")
        commit_id = f"commit-{len(self.commits) + 1}"
        self.commits.insert(0, commit_id)
        return commit_id

    def deploy_commit(self, commit_id):
        self.deployed = commit_id

    def rollback(self, commit_id):
        if commit_id not in self.commits:
            raise DeploymentError(f"unknown commit {commit_id}")
        self.deployed = commit_id

    def get_current_commit(self):
        return self.deployed

    def get_available_commits(self):
        return list(self.commits)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def config_root(tmp_path) -> Path:
    return tmp_path / "etc" / "horizonos"


@pytest.fixture
def system_root(tmp_path) -> Path:
    root = tmp_path / "sysroot"
    root.mkdir()
    return root


@pytest.fixture
def probe(executor) -> SystemProbe:
    return SystemProbe(executor)


@pytest.fixture
def mutator(executor, system_root, config_root) -> SystemMutator:
    return SystemMutator(executor, system_root, config_root)


@pytest.fixture
def state_sync(config_root, probe, mutator) -> StateSyncManager:
    return StateSyncManager(config_root, probe, mutator)


@pytest.fixture
def notifier() -> LoggingNotifier:
    return LoggingNotifier()


@pytest.fixture
def live_updates(mutator, state_sync, executor, notifier) -> LiveUpdateManager:
    return LiveUpdateManager(mutator, state_sync, ServiceReloader(executor), notifier=notifier)


@pytest.fixture
def base_config() -> ConfigurationSnapshot:
    """Minimal applied configuration: a hostname and nothing else."""
    return ConfigurationSnapshot(system=SystemConfig(hostname="old-host"))


@pytest.fixture
def full_config() -> ConfigurationSnapshot:
    """A configuration touching every section except desktop/automation."""
    return ConfigurationSnapshot(
        system=SystemConfig(hostname="workstation", timezone="Europe/Berlin", locale="de_DE.UTF-8"),
        packages=(Package("git"), Package("htop")),
        services=(
            Service("sshd"),
            Service("nginx", config=ServiceConfig(environment={"WORKERS": "4"})),
        ),
        users=(User("alice", uid=1000, groups=("wheel",)),),
    )


@pytest.fixture
def deployment() -> FakeDeployment:
    return FakeDeployment()


@pytest.fixture
def engine(mutator, deployment, state_sync, live_updates, probe) -> ExecutionEngine:
    return ExecutionEngine(mutator, deployment, state_sync, live_updates, probe)
