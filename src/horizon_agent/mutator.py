"""System Mutator: one verb per mutation kind.

Each verb builds a `Command`, executes it, and raises `MutationError` if the
command reports FAILED. With `dry_run=True` the intended action is logged
and nothing is executed. Verbs never partially succeed silently.
"""

from pathlib import Path
from typing import Sequence
import logging

from .commands import Command, CommandExecutor, CommandStatus
from .commands.automation import UpdateWorkflow, RemoveWorkflow, ConfigureAutomation
from .commands.desktop import ConfigureDesktop
from .commands.packages import InstallPackages, RemovePackages
from .commands.services import (
    ConfigureServices,
    UpdateServiceConfig,
    RemoveService,
    StartService,
    StopService,
)
from .commands.system import SetHostname, SetTimezone, SetLocale, ConfigureRepositories
from .commands.users import CreateUsers, ModifyUser, RemoveUsers, EnsureUsers
from .errors import CommandError, MutationError
from .models import (
    SystemConfig,
    Package,
    PackageAction,
    Service,
    User,
    Repository,
    DesktopConfig,
    AutomationConfig,
    Workflow,
)

logger = logging.getLogger(__name__)


class SystemMutator:
    """Stateless imperative layer over the Command Executor."""

    def __init__(
        self,
        executor: CommandExecutor,
        system_root: Path = Path("/"),
        config_root: Path = Path("/etc/horizonos"),
    ):
        self.executor = executor
        self.system_root = Path(system_root)
        self.config_root = Path(config_root)

    @property
    def workflows_dir(self) -> Path:
        return self.config_root / "workflows"

    def _execute(self, verb: str, command: Command, dry_run: bool) -> None:
        result = command.execute(dry_run=dry_run)
        if result.status == CommandStatus.FAILED:
            logger.error(f"{verb} failed: {result.error}")
            raise MutationError(verb, result.error or "command failed", result.output)
        if result.status == CommandStatus.APPLIED:
            logger.info(f"{verb}: {command.describe()}")

    # System settings

    def set_hostname(self, hostname: str, dry_run: bool = False) -> None:
        self._execute("set_hostname", SetHostname(hostname, self.executor, self.system_root), dry_run)

    def set_timezone(self, timezone: str, dry_run: bool = False) -> None:
        self._execute("set_timezone", SetTimezone(timezone, self.executor, self.system_root), dry_run)

    def set_locale(self, locale: str, dry_run: bool = False) -> None:
        self._execute("set_locale", SetLocale(locale, self.executor, self.system_root), dry_run)

    def apply_system_config(self, system: SystemConfig, dry_run: bool = False) -> None:
        self.set_hostname(system.hostname, dry_run=dry_run)
        self.set_timezone(system.timezone, dry_run=dry_run)
        self.set_locale(system.locale, dry_run=dry_run)

    def configure_repositories(self, repositories: Sequence[Repository], dry_run: bool = False) -> None:
        command = ConfigureRepositories(repositories, self.config_root, self.executor, self.system_root)
        self._execute("configure_repositories", command, dry_run)

    # Packages

    def install_packages(self, packages: Sequence[Package], dry_run: bool = False) -> None:
        self._execute("install_packages", InstallPackages(packages, self.executor), dry_run)

    def remove_packages(self, packages: Sequence[Package], dry_run: bool = False) -> None:
        self._execute("remove_packages", RemovePackages(packages, self.executor), dry_run)

    def manage_packages(self, packages: Sequence[Package], dry_run: bool = False) -> None:
        """Install everything marked INSTALL, then remove everything marked REMOVE."""
        to_install = [p for p in packages if p.action == PackageAction.INSTALL]
        to_remove = [p for p in packages if p.action == PackageAction.REMOVE]
        if to_install:
            self.install_packages(to_install, dry_run=dry_run)
        if to_remove:
            self.remove_packages(to_remove, dry_run=dry_run)

    # Users

    def create_users(self, users: Sequence[User], dry_run: bool = False) -> None:
        self._execute("create_users", CreateUsers(users, self.executor), dry_run)

    def modify_user(self, old: User, new: User, dry_run: bool = False) -> None:
        self._execute("modify_user", ModifyUser(old, new, self.executor), dry_run)

    def remove_users(self, users: Sequence[User], dry_run: bool = False) -> None:
        self._execute("remove_users", RemoveUsers(users, self.executor), dry_run)

    def manage_users(self, users: Sequence[User], dry_run: bool = False) -> None:
        self._execute("manage_users", EnsureUsers(users, self.executor), dry_run)

    # Services

    def configure_services(self, services: Sequence[Service], dry_run: bool = False) -> None:
        command = ConfigureServices(services, self.executor, self.system_root)
        self._execute("configure_services", command, dry_run)

    def update_service_config(self, old: Service, new: Service, dry_run: bool = False) -> None:
        command = UpdateServiceConfig(old, new, self.executor, self.system_root)
        self._execute("update_service_config", command, dry_run)

    def remove_service(self, service: Service, dry_run: bool = False) -> None:
        self._execute("remove_service", RemoveService(service, self.executor, self.system_root), dry_run)

    def start_service(self, service_name: str, dry_run: bool = False) -> None:
        self._execute("start_service", StartService(service_name, self.executor), dry_run)

    def stop_service(self, service_name: str, dry_run: bool = False) -> None:
        self._execute("stop_service", StopService(service_name, self.executor), dry_run)

    # Desktop and automation

    def configure_desktop(
        self, desktop: DesktopConfig, dry_run: bool = False, enable_session: bool = True
    ) -> None:
        command = ConfigureDesktop(desktop, self.executor, self.system_root, enable_session)
        self._execute("configure_desktop", command, dry_run)

    def configure_automation(self, automation: AutomationConfig, dry_run: bool = False) -> None:
        command = ConfigureAutomation(automation, self.workflows_dir, self.executor)
        self._execute("configure_automation", command, dry_run)

    def update_automation_workflow(self, workflow: Workflow, dry_run: bool = False) -> None:
        command = UpdateWorkflow(workflow, self.workflows_dir, self.executor)
        self._execute("update_automation_workflow", command, dry_run)

    def remove_automation_workflow(self, workflow_name: str, dry_run: bool = False) -> None:
        command = RemoveWorkflow(workflow_name, self.workflows_dir, self.executor)
        self._execute("remove_automation_workflow", command, dry_run)

    # Pre-flight predicates

    def has_required_permissions(self) -> bool:
        try:
            return self.executor.run("id", "-u").strip() == "0"
        except CommandError:
            return False

    def is_package_available(self, package_name: str) -> bool:
        try:
            self.executor.run("pacman", "-Si", package_name)
            return True
        except CommandError:
            return False
