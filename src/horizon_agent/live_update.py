"""Live Update Manager.

Reconciles a running system from one configuration snapshot to another
without rebooting, where that is possible.

State machine:
- IDLE: ready
- DETECTING: diffing current against target
- PLANNING: splitting changes into live (LIVE + SERVICE_RELOAD) and reboot
- REFUSED: reboot changes present and partial updates not allowed.
  Nothing was mutated and no snapshot was taken.
- APPLYING: snapshot taken, live changes applied one at a time in
  detection order
- COMPLETED: all live changes applied, or the first failure reported
- ROLLED_BACK: a snapshot was restored

Exit conditions while APPLYING:
- Stop at the first failing change. Earlier changes stay applied; the
  caller decides whether to restore the snapshot.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any, Callable, Union
import logging
import threading

from .change_detector import ChangeDetector, ChangeType, ConfigChange, UpdateStrategy
from .errors import HorizonError, ServiceReloadError, UnsupportedChangeError, UpdateInProgressError
from .models import ConfigurationSnapshot, Service
from .mutator import SystemMutator
from .notifier import UpdateNotifier, CompositeNotifier
from .service_reloader import ServiceReloader
from .state_sync import StateSyncManager, StateSnapshot

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_REBOOT_REQUIRED = 2


class UpdatePhase(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    PLANNING = "planning"
    APPLYING = "applying"
    REFUSED = "refused"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


@dataclass
class LiveUpdateOptions:
    allow_partial_update: bool = True
    dry_run: bool = False


@dataclass
class LiveUpdateSuccess:
    applied_changes: List[ConfigChange]
    pending_reboot_changes: List[ConfigChange] = field(default_factory=list)
    snapshot_id: Optional[str] = None

    outcome = "success"
    exit_code = EXIT_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "exit_code": self.exit_code,
            "applied_changes": [c.to_dict() for c in self.applied_changes],
            "pending_reboot_changes": [c.to_dict() for c in self.pending_reboot_changes],
            "snapshot_id": self.snapshot_id,
        }


@dataclass
class LiveUpdateRebootRequired:
    changes: List[ConfigChange]

    outcome = "reboot_required"
    exit_code = EXIT_REBOOT_REQUIRED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "exit_code": self.exit_code,
            "changes": [c.to_dict() for c in self.changes],
        }


@dataclass
class LiveUpdateFailure:
    """`failed_change` is None when the update failed before any change ran
    (snapshot creation, concurrent update)."""
    applied_changes: List[ConfigChange]
    failed_change: Optional[ConfigChange]
    error: Exception
    snapshot_id: Optional[str] = None

    outcome = "failure"
    exit_code = EXIT_FAILURE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "exit_code": self.exit_code,
            "applied_changes": [c.to_dict() for c in self.applied_changes],
            "failed_change": self.failed_change.to_dict() if self.failed_change else None,
            "error": str(self.error),
            "error_type": type(self.error).__name__,
            "snapshot_id": self.snapshot_id,
        }


LiveUpdateResult = Union[LiveUpdateSuccess, LiveUpdateRebootRequired, LiveUpdateFailure]


@dataclass
class LiveUpdateCapability:
    can_fully_update: bool
    live_updatable_changes: int
    reboot_required_changes: int
    estimated_duration: int  # seconds
    changes: List[ConfigChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_fully_update": self.can_fully_update,
            "live_updatable_changes": self.live_updatable_changes,
            "reboot_required_changes": self.reboot_required_changes,
            "estimated_duration": self.estimated_duration,
            "changes": [c.to_dict() for c in self.changes],
        }


def estimate_duration(changes: List[ConfigChange]) -> int:
    """Rough planning estimate in seconds. Not a guarantee."""
    total = 0
    for change in changes:
        if change.type == ChangeType.PACKAGE_INSTALL:
            total += 30 * max(len(change.new_value or ()), 1)
        elif change.type == ChangeType.PACKAGE_REMOVE:
            total += 10 * max(len(change.old_value or ()), 1)
        elif change.update_strategy == UpdateStrategy.SERVICE_RELOAD:
            total += 5
        elif change.type == ChangeType.USER_ADD:
            total += 5 * max(len(change.new_value or ()), 1)
        elif change.type == ChangeType.USER_MODIFY:
            total += 3
        elif change.type == ChangeType.SYSTEM_CONFIG:
            pass
        else:
            total += 2
    return total


def _partition(changes: List[ConfigChange]):
    live = [c for c in changes if c.update_strategy != UpdateStrategy.REBOOT_REQUIRED]
    reboot = [c for c in changes if c.update_strategy == UpdateStrategy.REBOOT_REQUIRED]
    return live, reboot


class LiveUpdateManager:
    """Applies configuration changes to a running system.

    Collaborators are injected so each can be replaced by a fake in tests.
    """

    def __init__(
        self,
        mutator: SystemMutator,
        state_sync: StateSyncManager,
        service_reloader: ServiceReloader,
        notifier: Optional[UpdateNotifier] = None,
        change_detector: Optional[ChangeDetector] = None,
    ):
        self.mutator = mutator
        self.state_sync = state_sync
        self.service_reloader = service_reloader
        self.notifier = CompositeNotifier([notifier] if notifier is not None else [])
        self.change_detector = change_detector or ChangeDetector()
        self.phase = UpdatePhase.IDLE
        self.last_result: Optional[LiveUpdateResult] = None
        self._lock = threading.Lock()

        self._handlers: Dict[ChangeType, Callable[[ConfigChange, bool], None]] = {
            ChangeType.SYSTEM_CONFIG: self._apply_system_change,
            ChangeType.REPOSITORY: self._apply_repository_change,
            ChangeType.PACKAGE_REMOVE: self._apply_package_remove,
            ChangeType.PACKAGE_INSTALL: self._apply_package_install,
            ChangeType.USER_REMOVE: self._apply_user_remove,
            ChangeType.USER_ADD: self._apply_user_add,
            ChangeType.USER_MODIFY: self._apply_user_modify,
            ChangeType.SERVICE_REMOVE: self._apply_service_remove,
            ChangeType.SERVICE_ADD: self._apply_service_add,
            ChangeType.SERVICE_CONFIG: self._apply_service_config,
            ChangeType.DESKTOP_CONFIG: self._apply_desktop_change,
            ChangeType.AUTOMATION_WORKFLOW: self._apply_automation_change,
        }

    def is_running(self) -> bool:
        return self._lock.locked()

    def apply_live_updates(
        self,
        current: ConfigurationSnapshot,
        target: ConfigurationSnapshot,
        options: Optional[LiveUpdateOptions] = None,
    ) -> LiveUpdateResult:
        """Reconcile the running system from `current` to `target`.

        Raises:
            UpdateInProgressError if another update is running in this process
        """
        options = options or LiveUpdateOptions()
        if not self._lock.acquire(blocking=False):
            raise UpdateInProgressError("A live update is already in progress")
        try:
            result = self._run(current, target, options)
            self.last_result = result
            return result
        finally:
            self._lock.release()

    def _run(
        self,
        current: ConfigurationSnapshot,
        target: ConfigurationSnapshot,
        options: LiveUpdateOptions,
    ) -> LiveUpdateResult:
        self.phase = UpdatePhase.DETECTING
        changes = self.change_detector.detect_changes(current, target)
        logger.info(f"Detected {len(changes)} changes")

        self.phase = UpdatePhase.PLANNING
        live, reboot = _partition(changes)

        if reboot and not options.allow_partial_update:
            logger.warning(f"Refusing live update: {len(reboot)} changes require a reboot")
            self.notifier.reboot_required(reboot)
            self.phase = UpdatePhase.REFUSED
            return LiveUpdateRebootRequired(changes)

        if not live:
            if reboot:
                self.notifier.reboot_required(reboot)
            else:
                self.notifier.no_changes()
            self.phase = UpdatePhase.COMPLETED
            return LiveUpdateSuccess([], reboot)

        self.phase = UpdatePhase.APPLYING
        self.notifier.update_starting(target)

        snapshot: Optional[StateSnapshot] = None
        if not options.dry_run:
            try:
                snapshot = self.state_sync.create_snapshot()
            except HorizonError as e:
                logger.error(f"Aborting live update, snapshot failed: {e}")
                self.notifier.update_failed(e)
                self.phase = UpdatePhase.COMPLETED
                return LiveUpdateFailure([], None, e)
        snapshot_id = snapshot.id if snapshot else None

        applied: List[ConfigChange] = []
        for change in live:
            try:
                self._apply_change(change, options.dry_run)
            except Exception as e:
                logger.error(f"Change failed: {change.description}: {e}", exc_info=True)
                self.notifier.change_failed(change, e)
                self.notifier.update_failed(e)
                self.phase = UpdatePhase.COMPLETED
                return LiveUpdateFailure(applied, change, e, snapshot_id)
            applied.append(change)
            self.notifier.change_applied(change)

        if not options.dry_run:
            try:
                self.state_sync.sync_state(target)
            except HorizonError as e:
                logger.error(f"Changes applied but state sync failed: {e}")
                self.notifier.update_failed(e)
                self.phase = UpdatePhase.COMPLETED
                return LiveUpdateFailure(applied, None, e, snapshot_id)

        if reboot:
            self.notifier.reboot_required(reboot)
        self.notifier.update_completed(applied, reboot)
        self.phase = UpdatePhase.COMPLETED
        return LiveUpdateSuccess(applied, reboot, snapshot_id)

    def can_apply_live_updates(
        self, current: ConfigurationSnapshot, target: ConfigurationSnapshot
    ) -> LiveUpdateCapability:
        """Detection and classification only. Never mutates."""
        changes = self.change_detector.detect_changes(current, target)
        live, reboot = _partition(changes)
        return LiveUpdateCapability(
            can_fully_update=not reboot,
            live_updatable_changes=len(live),
            reboot_required_changes=len(reboot),
            estimated_duration=estimate_duration(changes),
            changes=changes,
        )

    def restore_snapshot(self, snapshot_id: str) -> Optional[ConfigurationSnapshot]:
        if not self._lock.acquire(blocking=False):
            raise UpdateInProgressError("Cannot restore a snapshot while an update is running")
        try:
            config = self.state_sync.restore_snapshot(snapshot_id)
            self.phase = UpdatePhase.ROLLED_BACK
            self.notifier.snapshot_restored(snapshot_id)
            return config
        finally:
            self._lock.release()

    # Dispatch

    def _apply_change(self, change: ConfigChange, dry_run: bool) -> None:
        handler = self._handlers.get(change.type)
        if handler is None:
            raise UnsupportedChangeError(f"No live handler for change type {change.type.value}")
        logger.info(f"Applying: {change.description}")
        handler(change, dry_run)

    def _apply_system_change(self, change: ConfigChange, dry_run: bool) -> None:
        setters = {
            "hostname": self.mutator.set_hostname,
            "timezone": self.mutator.set_timezone,
            "locale": self.mutator.set_locale,
        }
        setter = setters.get(change.field)
        if setter is None:
            raise UnsupportedChangeError(f"Unknown system field: {change.field}")
        setter(change.new_value, dry_run=dry_run)

    def _apply_repository_change(self, change: ConfigChange, dry_run: bool) -> None:
        self.mutator.configure_repositories(change.new_value, dry_run=dry_run)

    def _apply_package_remove(self, change: ConfigChange, dry_run: bool) -> None:
        self.mutator.remove_packages(change.old_value, dry_run=dry_run)

    def _apply_package_install(self, change: ConfigChange, dry_run: bool) -> None:
        self.mutator.install_packages(change.new_value, dry_run=dry_run)

    def _apply_user_remove(self, change: ConfigChange, dry_run: bool) -> None:
        self.mutator.remove_users(change.old_value, dry_run=dry_run)

    def _apply_user_add(self, change: ConfigChange, dry_run: bool) -> None:
        self.mutator.create_users(change.new_value, dry_run=dry_run)

    def _apply_user_modify(self, change: ConfigChange, dry_run: bool) -> None:
        self.mutator.modify_user(change.old_value, change.new_value, dry_run=dry_run)

    def _apply_service_remove(self, change: ConfigChange, dry_run: bool) -> None:
        self.mutator.remove_service(change.old_value, dry_run=dry_run)

    def _apply_service_add(self, change: ConfigChange, dry_run: bool) -> None:
        # enable --now starts the unit with its fresh config; no reload needed
        self.mutator.configure_services([change.new_value], dry_run=dry_run)

    def _apply_service_config(self, change: ConfigChange, dry_run: bool) -> None:
        old: Service = change.old_value
        new: Service = change.new_value
        self.mutator.update_service_config(old, new, dry_run=dry_run)
        if not (old.enabled and new.enabled) or old.config == new.config:
            return
        if dry_run:
            logger.info(f"DRY RUN: would reload {new.name}")
            return
        result = self.service_reloader.reload_service(new.name, graceful=True)
        if not result.ok:
            raise ServiceReloadError(new.name, result.error)

    def _apply_desktop_change(self, change: ConfigChange, dry_run: bool) -> None:
        if change.new_value is None:
            raise UnsupportedChangeError("Disabling the desktop cannot be applied live")
        # Environment swaps are REBOOT_REQUIRED and never reach here.
        self.mutator.configure_desktop(change.new_value, dry_run=dry_run, enable_session=False)

    def _apply_automation_change(self, change: ConfigChange, dry_run: bool) -> None:
        if change.new_value is None:
            self.mutator.remove_automation_workflow(change.old_value.name, dry_run=dry_run)
        else:
            self.mutator.update_automation_workflow(change.new_value, dry_run=dry_run)
