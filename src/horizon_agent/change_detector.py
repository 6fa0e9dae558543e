"""Change detection between two configuration snapshots.

`detect_changes(current, target)` is pure: it reads both snapshots and
returns an ordered list of `ConfigChange`s. Order is dependency-respecting:

1. system fields (hostname, timezone, locale)
2. repositories
3. package removals, then package installs
4. users (removals, additions, modifications)
5. service removals, then service additions / config changes
6. desktop
7. automation workflows

Removals come before additions so a name reused with a different
definition never collides with its predecessor.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple, Iterable

from .models import (
    ConfigurationSnapshot,
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


class ChangeType(str, Enum):
    SYSTEM_CONFIG = "system_config"
    REPOSITORY = "repository"
    PACKAGE_REMOVE = "package_remove"
    PACKAGE_INSTALL = "package_install"
    USER_REMOVE = "user_remove"
    USER_ADD = "user_add"
    USER_MODIFY = "user_modify"
    SERVICE_REMOVE = "service_remove"
    SERVICE_ADD = "service_add"
    SERVICE_CONFIG = "service_config"
    DESKTOP_CONFIG = "desktop_config"
    AUTOMATION_WORKFLOW = "automation_workflow"


class UpdateStrategy(str, Enum):
    LIVE = "live"                          # applied immediately
    SERVICE_RELOAD = "service_reload"      # applied, then the service is reloaded
    REBOOT_REQUIRED = "reboot_required"    # staged for the next boot only


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _IMPACT_RANK[self]


_IMPACT_RANK = {
    ImpactLevel.LOW: 0,
    ImpactLevel.MEDIUM: 1,
    ImpactLevel.HIGH: 2,
    ImpactLevel.CRITICAL: 3,
}

# (strategy, impact) per change type. DESKTOP_CONFIG and AUTOMATION_WORKFLOW
# are refined by classify() below.
CLASSIFICATION: Dict[ChangeType, Tuple[UpdateStrategy, ImpactLevel]] = {
    ChangeType.SYSTEM_CONFIG: (UpdateStrategy.LIVE, ImpactLevel.LOW),
    ChangeType.REPOSITORY: (UpdateStrategy.LIVE, ImpactLevel.MEDIUM),
    ChangeType.PACKAGE_REMOVE: (UpdateStrategy.LIVE, ImpactLevel.MEDIUM),
    ChangeType.PACKAGE_INSTALL: (UpdateStrategy.LIVE, ImpactLevel.MEDIUM),
    ChangeType.USER_REMOVE: (UpdateStrategy.LIVE, ImpactLevel.HIGH),
    ChangeType.USER_ADD: (UpdateStrategy.LIVE, ImpactLevel.HIGH),
    ChangeType.USER_MODIFY: (UpdateStrategy.LIVE, ImpactLevel.HIGH),
    ChangeType.SERVICE_REMOVE: (UpdateStrategy.SERVICE_RELOAD, ImpactLevel.MEDIUM),
    ChangeType.SERVICE_ADD: (UpdateStrategy.SERVICE_RELOAD, ImpactLevel.MEDIUM),
    ChangeType.SERVICE_CONFIG: (UpdateStrategy.SERVICE_RELOAD, ImpactLevel.MEDIUM),
    ChangeType.DESKTOP_CONFIG: (UpdateStrategy.LIVE, ImpactLevel.HIGH),
    ChangeType.AUTOMATION_WORKFLOW: (UpdateStrategy.LIVE, ImpactLevel.LOW),
}


def classify(
    change_type: ChangeType,
    environment_changed: bool = False,
    active_workflow: bool = False,
) -> Tuple[UpdateStrategy, ImpactLevel]:
    """Return (strategy, impact) for a change type.

    Args:
        change_type: Kind of change
        environment_changed: Desktop only. True when the desktop
            environment itself is swapped, enabled or disabled.
        active_workflow: Automation only. True when the change touches an
            enabled workflow that has a trigger.
    """
    if change_type == ChangeType.DESKTOP_CONFIG and environment_changed:
        return UpdateStrategy.REBOOT_REQUIRED, ImpactLevel.CRITICAL
    if change_type == ChangeType.AUTOMATION_WORKFLOW and active_workflow:
        return UpdateStrategy.LIVE, ImpactLevel.MEDIUM
    return CLASSIFICATION[change_type]


@dataclass(frozen=True)
class ConfigChange:
    """One detected difference between two snapshots.

    Strategy and impact are derived from the type at construction time;
    use `ConfigChange.create()` rather than passing them by hand.
    """
    type: ChangeType
    description: str
    update_strategy: UpdateStrategy
    impact: ImpactLevel
    field: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    affected_service: Optional[str] = None

    @classmethod
    def create(
        cls,
        change_type: ChangeType,
        description: str,
        old_value: Any = None,
        new_value: Any = None,
        field: Optional[str] = None,
        affected_service: Optional[str] = None,
        environment_changed: bool = False,
        active_workflow: bool = False,
    ) -> "ConfigChange":
        strategy, impact = classify(change_type, environment_changed, active_workflow)
        return cls(
            type=change_type,
            description=description,
            update_strategy=strategy,
            impact=impact,
            field=field,
            old_value=old_value,
            new_value=new_value,
            affected_service=affected_service,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "field": self.field,
            "description": self.description,
            "update_strategy": self.update_strategy.value,
            "impact": self.impact.value,
            "affected_service": self.affected_service,
            "old_value": _payload(self.old_value),
            "new_value": _payload(self.new_value),
        }


def _payload(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_payload(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return str(value)


def _names(items: Iterable) -> str:
    return ", ".join(item.name for item in items)


class ChangeDetector:
    """Diffs two configuration snapshots."""

    def detect_changes(
        self, current: ConfigurationSnapshot, target: ConfigurationSnapshot
    ) -> List[ConfigChange]:
        changes: List[ConfigChange] = []
        changes.extend(self._system_changes(current.system, target.system))
        changes.extend(self._repository_changes(current.repositories, target.repositories))
        changes.extend(self._package_changes(current.packages, target.packages))
        changes.extend(self._user_changes(current.users, target.users))
        changes.extend(self._service_changes(current.services, target.services))
        changes.extend(self._desktop_changes(current.desktop, target.desktop))
        changes.extend(self._automation_changes(current.automation, target.automation))
        return changes

    def _system_changes(self, current: SystemConfig, new: SystemConfig) -> List[ConfigChange]:
        changes = []
        for name in ("hostname", "timezone", "locale"):
            old_value = getattr(current, name)
            new_value = getattr(new, name)
            if old_value != new_value:
                changes.append(ConfigChange.create(
                    ChangeType.SYSTEM_CONFIG,
                    f"{name.capitalize()} change: {old_value} -> {new_value}",
                    old_value=old_value,
                    new_value=new_value,
                    field=name,
                ))
        return changes

    def _repository_changes(
        self, current: Tuple[Repository, ...], new: Tuple[Repository, ...]
    ) -> List[ConfigChange]:
        if set(current) == set(new):
            return []
        return [ConfigChange.create(
            ChangeType.REPOSITORY,
            "Repository configuration changed",
            old_value=tuple(current),
            new_value=tuple(new),
        )]

    def _package_changes(
        self, current: Tuple[Package, ...], new: Tuple[Package, ...]
    ) -> List[ConfigChange]:
        current_actions = {p.name: p.action for p in current}
        new_actions = {p.name: p.action for p in new}

        # Installed now, and either dropped from the target or marked for removal.
        to_remove = [
            p for p in current
            if p.action == PackageAction.INSTALL
            and new_actions.get(p.name) != PackageAction.INSTALL
        ]
        # Explicit removals the current snapshot never mentioned.
        removed_names = {p.name for p in to_remove}
        to_remove.extend(
            p for p in new
            if p.action == PackageAction.REMOVE
            and p.name not in current_actions
            and p.name not in removed_names
        )

        to_install = [
            p for p in new
            if p.action == PackageAction.INSTALL
            and current_actions.get(p.name) != PackageAction.INSTALL
        ]

        changes = []
        if to_remove:
            changes.append(ConfigChange.create(
                ChangeType.PACKAGE_REMOVE,
                f"Remove packages: {_names(to_remove)}",
                old_value=tuple(to_remove),
                new_value=(),
            ))
        if to_install:
            changes.append(ConfigChange.create(
                ChangeType.PACKAGE_INSTALL,
                f"Install packages: {_names(to_install)}",
                old_value=(),
                new_value=tuple(to_install),
            ))
        return changes

    def _user_changes(self, current: Tuple[User, ...], new: Tuple[User, ...]) -> List[ConfigChange]:
        current_map = {u.name: u for u in current}
        new_map = {u.name: u for u in new}
        changes = []

        removed = [u for u in current if u.name not in new_map]
        if removed:
            changes.append(ConfigChange.create(
                ChangeType.USER_REMOVE,
                f"Remove users: {_names(removed)}",
                old_value=tuple(removed),
                new_value=(),
            ))

        added = [u for u in new if u.name not in current_map]
        if added:
            changes.append(ConfigChange.create(
                ChangeType.USER_ADD,
                f"Add users: {_names(added)}",
                old_value=(),
                new_value=tuple(added),
            ))

        for user in new:
            old = current_map.get(user.name)
            if old is None or old == user:
                continue
            modifications = []
            if old.uid != user.uid:
                modifications.append("UID")
            if old.shell != user.shell:
                modifications.append("shell")
            if old.groups != user.groups:
                modifications.append("groups")
            if old.home != user.home:
                modifications.append("home directory")
            changes.append(ConfigChange.create(
                ChangeType.USER_MODIFY,
                f"Modify user {user.name}: {', '.join(modifications) or 'attributes'}",
                old_value=old,
                new_value=user,
            ))
        return changes

    def _service_changes(
        self, current: Tuple[Service, ...], new: Tuple[Service, ...]
    ) -> List[ConfigChange]:
        current_map = {s.name: s for s in current}
        new_map = {s.name: s for s in new}
        changes = []

        for service in current:
            if service.name not in new_map:
                changes.append(ConfigChange.create(
                    ChangeType.SERVICE_REMOVE,
                    f"Remove service: {service.name}",
                    old_value=service,
                    affected_service=service.name,
                ))

        for service in new:
            old = current_map.get(service.name)
            if old is None:
                state = "enabled" if service.enabled else "disabled"
                changes.append(ConfigChange.create(
                    ChangeType.SERVICE_ADD,
                    f"Add service: {service.name} ({state})",
                    new_value=service,
                    affected_service=service.name,
                ))
            elif old != service:
                if old.enabled != service.enabled:
                    verb = "enable" if service.enabled else "disable"
                    description = f"Service {service.name}: {verb}"
                else:
                    description = f"Update configuration for service: {service.name}"
                changes.append(ConfigChange.create(
                    ChangeType.SERVICE_CONFIG,
                    description,
                    old_value=old,
                    new_value=service,
                    affected_service=service.name,
                ))
        return changes

    def _desktop_changes(
        self, current: Optional[DesktopConfig], new: Optional[DesktopConfig]
    ) -> List[ConfigChange]:
        if current == new:
            return []
        if current is None:
            description = f"Enable desktop environment: {new.environment.value}"
            environment_changed = True
        elif new is None:
            description = "Disable desktop environment"
            environment_changed = True
        elif current.environment != new.environment:
            description = (
                f"Switch desktop environment: {current.environment.value} -> {new.environment.value}"
            )
            environment_changed = True
        else:
            description = f"Update {new.environment.value} desktop configuration"
            environment_changed = False
        return [ConfigChange.create(
            ChangeType.DESKTOP_CONFIG,
            description,
            old_value=current,
            new_value=new,
            environment_changed=environment_changed,
        )]

    def _automation_changes(
        self, current: Optional[AutomationConfig], new: Optional[AutomationConfig]
    ) -> List[ConfigChange]:
        current_workflows = {w.name: w for w in (current.workflows if current else ())}
        new_workflows = {w.name: w for w in (new.workflows if new else ())}
        changes = []

        for name, workflow in current_workflows.items():
            if name not in new_workflows:
                changes.append(self._workflow_change(f"Remove automation workflow: {name}", workflow, None))

        for name, workflow in new_workflows.items():
            old = current_workflows.get(name)
            if old is None:
                changes.append(self._workflow_change(f"Add automation workflow: {name}", None, workflow))
            elif old != workflow:
                changes.append(self._workflow_change(f"Update automation workflow: {name}", old, workflow))
        return changes

    @staticmethod
    def _workflow_change(
        description: str, old: Optional[Workflow], new: Optional[Workflow]
    ) -> ConfigChange:
        active = any(w is not None and w.is_active for w in (old, new))
        return ConfigChange.create(
            ChangeType.AUTOMATION_WORKFLOW,
            description,
            old_value=old,
            new_value=new,
            active_workflow=active,
        )


def detect_changes(
    current: ConfigurationSnapshot, target: ConfigurationSnapshot
) -> List[ConfigChange]:
    """Module-level shortcut for `ChangeDetector().detect_changes()`."""
    return ChangeDetector().detect_changes(current, target)
