"""Update lifecycle notifications.

`UpdateNotifier` is the interface the Live Update Manager reports to. It
is a side channel: a handler that raises is logged and ignored, it never
changes the outcome of an update.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Sequence
import logging

from .change_detector import ConfigChange, ImpactLevel
from .commands import CommandExecutor
from .errors import CommandError
from .models import ConfigurationSnapshot

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    UPDATE_STARTED = "update_started"
    NO_CHANGES = "no_changes"
    REBOOT_REQUIRED = "reboot_required"
    CHANGE_APPLIED = "change_applied"
    CHANGE_FAILED = "change_failed"
    UPDATE_COMPLETED = "update_completed"
    UPDATE_FAILED = "update_failed"
    SNAPSHOT_RESTORED = "snapshot_restored"


@dataclass
class UpdateEvent:
    type: EventType
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    details: Dict[str, str] = field(default_factory=dict)


class UpdateNotifier:
    """Interface. The default implementation of every hook does nothing."""

    def update_starting(self, target: ConfigurationSnapshot) -> None:
        pass

    def no_changes(self) -> None:
        pass

    def reboot_required(self, changes: Sequence[ConfigChange]) -> None:
        pass

    def change_applied(self, change: ConfigChange) -> None:
        pass

    def change_failed(self, change: ConfigChange, error: BaseException) -> None:
        pass

    def update_completed(
        self, applied: Sequence[ConfigChange], pending_reboot: Sequence[ConfigChange]
    ) -> None:
        pass

    def update_failed(self, error: BaseException) -> None:
        pass

    def snapshot_restored(self, snapshot_id: str) -> None:
        pass


class LoggingNotifier(UpdateNotifier):
    """Logs every event and keeps them in memory for status reports."""

    def __init__(self, max_events: int = 500):
        self.events: List[UpdateEvent] = []
        self.max_events = max_events

    def _record(self, event: UpdateEvent, level: int = logging.INFO) -> None:
        self.events.append(event)
        if len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]
        logger.log(level, f"[{event.type.value}] {event.message}")

    def update_starting(self, target: ConfigurationSnapshot) -> None:
        self._record(UpdateEvent(
            EventType.UPDATE_STARTED,
            f"Starting live update for configuration: {target.system.hostname}",
            details={
                "hostname": target.system.hostname,
                "packages": str(len(target.packages)),
                "services": str(len(target.services)),
            },
        ))

    def no_changes(self) -> None:
        self._record(UpdateEvent(EventType.NO_CHANGES, "No configuration changes detected"))

    def reboot_required(self, changes: Sequence[ConfigChange]) -> None:
        self._record(UpdateEvent(
            EventType.REBOOT_REQUIRED,
            f"Reboot required for {len(changes)} changes",
            details={"changes": ", ".join(c.description for c in changes)},
        ), logging.WARNING)

    def change_applied(self, change: ConfigChange) -> None:
        self._record(UpdateEvent(
            EventType.CHANGE_APPLIED,
            f"Applied: {change.description}",
            details={"change_type": change.type.value, "impact": change.impact.value},
        ))

    def change_failed(self, change: ConfigChange, error: BaseException) -> None:
        self._record(UpdateEvent(
            EventType.CHANGE_FAILED,
            f"Failed: {change.description}",
            details={"change_type": change.type.value, "error": str(error)},
        ), logging.ERROR)

    def update_completed(
        self, applied: Sequence[ConfigChange], pending_reboot: Sequence[ConfigChange]
    ) -> None:
        message = f"Live update completed: {len(applied)} changes applied"
        if pending_reboot:
            message += f", {len(pending_reboot)} pending reboot"
        self._record(UpdateEvent(EventType.UPDATE_COMPLETED, message))

    def update_failed(self, error: BaseException) -> None:
        self._record(UpdateEvent(EventType.UPDATE_FAILED, f"Live update failed: {error}"), logging.ERROR)

    def snapshot_restored(self, snapshot_id: str) -> None:
        self._record(UpdateEvent(EventType.SNAPSHOT_RESTORED, f"Restored snapshot {snapshot_id}"))


class DesktopNotifier(UpdateNotifier):
    """Pops desktop notifications through notify-send.

    Only significant events are shown: MEDIUM+ impact changes, reboot
    requests and failures.
    """

    def __init__(self, executor: CommandExecutor, app_name: str = "HorizonOS"):
        self.executor = executor
        self.app_name = app_name

    def _send(self, title: str, message: str, urgency: str = "normal") -> None:
        try:
            self.executor.run("notify-send", "-a", self.app_name, "-u", urgency, title, message)
        except CommandError as e:
            logger.debug(f"notify-send failed: {e}")

    def update_starting(self, target: ConfigurationSnapshot) -> None:
        self._send("System Update Starting", "Applying configuration updates...")

    def reboot_required(self, changes: Sequence[ConfigChange]) -> None:
        body = "\n".join(f"- {c.description}" for c in changes)
        self._send("Reboot Required", f"Some changes require a system reboot:\n{body}", "critical")

    def change_applied(self, change: ConfigChange) -> None:
        if change.impact.rank >= ImpactLevel.MEDIUM.rank:
            self._send("Configuration Updated", change.description)

    def change_failed(self, change: ConfigChange, error: BaseException) -> None:
        self._send("Update Failed", f"Failed to apply: {change.description}\nError: {error}", "critical")

    def update_completed(
        self, applied: Sequence[ConfigChange], pending_reboot: Sequence[ConfigChange]
    ) -> None:
        self._send("System Update Complete", f"{len(applied)} changes applied")


class CompositeNotifier(UpdateNotifier):
    """Fans events out to several notifiers."""

    def __init__(self, notifiers: Optional[Sequence[UpdateNotifier]] = None):
        self.notifiers = list(notifiers or [])

    def _dispatch(self, hook: str, *args) -> None:
        for notifier in self.notifiers:
            try:
                getattr(notifier, hook)(*args)
            except Exception as e:
                logger.warning(f"Notifier {type(notifier).__name__}.{hook} failed: {e}", exc_info=True)

    def update_starting(self, target):
        self._dispatch("update_starting", target)

    def no_changes(self):
        self._dispatch("no_changes")

    def reboot_required(self, changes):
        self._dispatch("reboot_required", changes)

    def change_applied(self, change):
        self._dispatch("change_applied", change)

    def change_failed(self, change, error):
        self._dispatch("change_failed", change, error)

    def update_completed(self, applied, pending_reboot):
        self._dispatch("update_completed", applied, pending_reboot)

    def update_failed(self, error):
        self._dispatch("update_failed", error)

    def snapshot_restored(self, snapshot_id):
        self._dispatch("snapshot_restored", snapshot_id)
