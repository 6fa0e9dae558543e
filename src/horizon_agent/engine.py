"""Execution Engine: the top-level façade.

Full deployments (first install, major upgrades) run the staged pipeline:
- commit the configuration to the deployment store
- system settings, repositories, packages, services, users
- desktop and automation, when configured
- stage the commit as the next-boot deployment

Any stage that raises aborts the remaining stages. Nothing already done
is undone; the result lists the completed operations so the caller can
decide to roll back.

Incremental updates on a running system go through the Live Update
Manager (`reconcile`).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any, Union
import logging
import threading

from .change_detector import ChangeDetector
from .commands import CommandExecutor
from .deployment import DeploymentManager, make_deployment_manager
from .errors import DeploymentError, HorizonError, StateSyncError, UpdateInProgressError
from .live_update import (
    LiveUpdateManager,
    LiveUpdateOptions,
    LiveUpdateResult,
    LiveUpdateCapability,
    EXIT_SUCCESS,
    EXIT_FAILURE,
)
from .models import ConfigurationSnapshot, default_configuration
from .mutator import SystemMutator
from .notifier import UpdateNotifier, LoggingNotifier, DesktopNotifier, CompositeNotifier
from .service_reloader import ServiceReloader
from .settings import AgentSettings
from .state_sync import StateSyncManager, StateSnapshot, SyncStatus
from .system_probe import SystemProbe, SystemInfo

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    OSTREE_COMMIT = "ostree_commit"
    SYSTEM_CONFIG = "system_config"
    REPOSITORIES = "repositories"
    PACKAGES = "packages"
    SERVICES = "services"
    USERS = "users"
    DESKTOP = "desktop"
    AUTOMATION = "automation"
    OSTREE_DEPLOY = "ostree_deploy"
    OSTREE_ROLLBACK = "ostree_rollback"


@dataclass
class ExecutionOperation:
    kind: OperationKind
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "description": self.description}


class ErrorKind(str, Enum):
    OSTREE_ERROR = "ostree_error"
    PACKAGE_NOT_FOUND = "package_not_found"
    PERMISSION_ERROR = "permission_error"
    ROLLBACK_FAILED = "rollback_failed"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass
class ExecutionError:
    kind: ErrorKind
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


@dataclass
class ExecutionSuccess:
    operations: List[ExecutionOperation]
    commit_id: Optional[str] = None

    outcome = "success"
    exit_code = EXIT_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "exit_code": self.exit_code,
            "commit_id": self.commit_id,
            "operations": [op.to_dict() for op in self.operations],
        }


@dataclass
class ExecutionFailure:
    operations: List[ExecutionOperation]
    errors: List[ExecutionError]

    outcome = "failure"
    exit_code = EXIT_FAILURE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "exit_code": self.exit_code,
            "operations": [op.to_dict() for op in self.operations],
            "errors": [e.to_dict() for e in self.errors],
        }


ExecutionResult = Union[ExecutionSuccess, ExecutionFailure]


@dataclass
class ValidationResult:
    errors: List[ExecutionError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": [e.to_dict() for e in self.errors]}


@dataclass
class SystemStatus:
    current_commit: Optional[str]
    available_commits: List[str]
    system_info: SystemInfo
    sync_status: SyncStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_commit": self.current_commit,
            "available_commits": list(self.available_commits),
            "system_info": self.system_info.to_dict(),
            "sync_status": self.sync_status.to_dict(),
        }


def _error_kind(error: Exception) -> ErrorKind:
    if isinstance(error, DeploymentError):
        return ErrorKind.OSTREE_ERROR
    return ErrorKind.UNEXPECTED_ERROR


class ExecutionEngine:
    """Wires the reconciliation components together."""

    def __init__(
        self,
        mutator: SystemMutator,
        deployment: DeploymentManager,
        state_sync: StateSyncManager,
        live_updates: LiveUpdateManager,
        probe: SystemProbe,
    ):
        self.mutator = mutator
        self.deployment = deployment
        self.state_sync = state_sync
        self.live_updates = live_updates
        self.probe = probe
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls, settings: AgentSettings, notifier: Optional[UpdateNotifier] = None
    ) -> "ExecutionEngine":
        executor = CommandExecutor(dry_run=settings.dry_run, timeout=settings.command_timeout)
        probe = SystemProbe(executor)
        mutator = SystemMutator(executor, settings.system_root, settings.config_root)
        state_sync = StateSyncManager(settings.config_root, probe, mutator)

        if notifier is None:
            notifiers: List[UpdateNotifier] = [LoggingNotifier()]
            if settings.desktop_notify:
                notifiers.append(DesktopNotifier(executor))
            notifier = CompositeNotifier(notifiers)

        live_updates = LiveUpdateManager(
            mutator,
            state_sync,
            ServiceReloader(executor),
            notifier=notifier,
            change_detector=ChangeDetector(),
        )
        deployment = make_deployment_manager(settings.deploy_backend, settings.ostree_repo, executor)
        logger.info(
            f"Engine ready: backend={settings.deploy_backend}, config_root={settings.config_root}, "
            f"dry_run={settings.dry_run}"
        )
        return cls(mutator, deployment, state_sync, live_updates, probe)

    # Full deployment pipeline

    def apply_configuration(self, config: ConfigurationSnapshot, dry_run: bool = False) -> ExecutionResult:
        if not self._lock.acquire(blocking=False):
            raise UpdateInProgressError("A deployment is already in progress")
        try:
            return self._apply_configuration(config, dry_run)
        finally:
            self._lock.release()

    def _apply_configuration(self, config: ConfigurationSnapshot, dry_run: bool) -> ExecutionResult:
        operations: List[ExecutionOperation] = []
        commit_id: Optional[str] = None

        def commit() -> str:
            nonlocal commit_id
            if dry_run:
                return "would commit configuration"
            commit_id = self.deployment.create_commit(config)
            return f"Created commit {commit_id}"

        def deploy() -> str:
            if dry_run or commit_id is None:
                return "would deploy commit"
            self.deployment.deploy_commit(commit_id)
            return f"Deployed commit {commit_id}"

        def system() -> str:
            self.mutator.apply_system_config(config.system, dry_run=dry_run)
            return (
                f"Set hostname {config.system.hostname}, timezone {config.system.timezone}, "
                f"locale {config.system.locale}"
            )

        def repositories() -> str:
            self.mutator.configure_repositories(config.repositories, dry_run=dry_run)
            return f"Configured {len(config.repositories)} repositories"

        def packages() -> str:
            self.mutator.manage_packages(config.packages, dry_run=dry_run)
            return f"Managed {len(config.packages)} packages"

        def services() -> str:
            self.mutator.configure_services(config.services, dry_run=dry_run)
            return f"Configured {len(config.services)} services"

        def users() -> str:
            self.mutator.manage_users(config.users, dry_run=dry_run)
            return f"Managed {len(config.users)} users"

        def desktop() -> str:
            self.mutator.configure_desktop(config.desktop, dry_run=dry_run)
            return f"Configured {config.desktop.environment.value} desktop"

        def automation() -> str:
            self.mutator.configure_automation(config.automation, dry_run=dry_run)
            return f"Configured {len(config.automation.workflows)} automation workflows"

        stages: List[tuple] = [
            (OperationKind.OSTREE_COMMIT, commit),
            (OperationKind.SYSTEM_CONFIG, system),
            (OperationKind.REPOSITORIES, repositories),
            (OperationKind.PACKAGES, packages),
            (OperationKind.SERVICES, services),
            (OperationKind.USERS, users),
        ]
        if config.desktop is not None:
            stages.append((OperationKind.DESKTOP, desktop))
        if config.automation is not None:
            stages.append((OperationKind.AUTOMATION, automation))
        stages.append((OperationKind.OSTREE_DEPLOY, deploy))

        for kind, stage in stages:
            try:
                description = stage()
            except Exception as e:
                logger.error(f"Stage {kind.value} failed: {e}", exc_info=True)
                return ExecutionFailure(operations, [ExecutionError(_error_kind(e), str(e))])
            operations.append(ExecutionOperation(kind, description))
            logger.info(f"[{kind.value}] {description}")

        if not dry_run:
            try:
                self.state_sync.sync_state(config)
            except StateSyncError as e:
                return ExecutionFailure(operations, [ExecutionError(ErrorKind.UNEXPECTED_ERROR, str(e))])

        return ExecutionSuccess(operations, commit_id)

    def rollback(self, commit_id: str) -> ExecutionResult:
        try:
            self.deployment.rollback(commit_id)
        except Exception as e:
            logger.error(f"Rollback to {commit_id} failed: {e}", exc_info=True)
            return ExecutionFailure([], [ExecutionError(ErrorKind.ROLLBACK_FAILED, str(e))])
        operation = ExecutionOperation(OperationKind.OSTREE_ROLLBACK, f"Rolled back to commit {commit_id}")
        return ExecutionSuccess([operation], commit_id)

    def validate_configuration(self, config: ConfigurationSnapshot, dry_run: bool = False) -> ValidationResult:
        """Pre-flight checks. Permission and package checks are skipped in dry run."""
        result = ValidationResult()

        if not self.deployment.repository_exists():
            result.errors.append(ExecutionError(
                ErrorKind.OSTREE_ERROR, "Deployment repository does not exist"
            ))

        if dry_run:
            return result

        if not self.mutator.has_required_permissions():
            result.errors.append(ExecutionError(
                ErrorKind.PERMISSION_ERROR, "Insufficient permissions for system configuration"
            ))

        for name in config.installed_package_names():
            if not self.mutator.is_package_available(name):
                result.errors.append(ExecutionError(
                    ErrorKind.PACKAGE_NOT_FOUND, f"Package not found: {name}"
                ))

        return result

    # Operator surface

    def last_applied_config(self) -> ConfigurationSnapshot:
        return self.state_sync.load_current_config() or default_configuration()

    def reconcile(
        self,
        current: Optional[ConfigurationSnapshot],
        target: ConfigurationSnapshot,
        options: Optional[LiveUpdateOptions] = None,
    ) -> LiveUpdateResult:
        """Live-update from `current` (last applied when None) to `target`."""
        if current is None:
            current = self.last_applied_config()
        return self.live_updates.apply_live_updates(current, target, options)

    def can_reconcile(
        self, current: Optional[ConfigurationSnapshot], target: ConfigurationSnapshot
    ) -> LiveUpdateCapability:
        if current is None:
            current = self.last_applied_config()
        return self.live_updates.can_apply_live_updates(current, target)

    def deploy_full(self, target: ConfigurationSnapshot, dry_run: bool = False) -> ExecutionResult:
        validation = self.validate_configuration(target, dry_run=dry_run)
        if not validation.valid:
            for error in validation.errors:
                logger.error(f"Validation failed: {error.message}")
            return ExecutionFailure([], validation.errors)
        return self.apply_configuration(target, dry_run=dry_run)

    def rollback_to(self, commit_id: str) -> ExecutionResult:
        return self.rollback(commit_id)

    def list_snapshots(self) -> List[StateSnapshot]:
        return self.state_sync.list_snapshots()

    def restore_snapshot(self, snapshot_id: str) -> Optional[ConfigurationSnapshot]:
        return self.live_updates.restore_snapshot(snapshot_id)

    def status(self) -> SystemStatus:
        current_commit: Optional[str] = None
        available: List[str] = []
        try:
            current_commit = self.deployment.get_current_commit()
            available = self.deployment.get_available_commits()
        except HorizonError as e:
            logger.warning(f"Deployment store unavailable: {e}")

        try:
            last_applied = self.last_applied_config()
        except StateSyncError as e:
            logger.warning(f"{e}; checking drift against defaults")
            last_applied = default_configuration()

        return SystemStatus(
            current_commit=current_commit,
            available_commits=available,
            system_info=self.probe.get_system_info(),
            sync_status=self.state_sync.check_sync(last_applied),
        )
