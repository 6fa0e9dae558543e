"""Configuration snapshot model.

The authoring layer hands us a JSON document describing the whole system.
These frozen dataclasses are the parsed, immutable form of that document;
the reconciliation core only ever compares and reads them.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Optional, List, Dict, Any, Mapping, Tuple

from .errors import ConfigurationError

SCHEMA_VERSION = 1


class PackageAction(str, Enum):
    INSTALL = "install"
    REMOVE = "remove"


class RepositoryKind(str, Enum):
    PACKAGE = "package"
    OSTREE = "ostree"


class DesktopEnvironment(str, Enum):
    PLASMA = "plasma"
    HYPRLAND = "hyprland"
    GNOME = "gnome"
    XFCE = "xfce"
    SWAY = "sway"


def _enum(enum_cls, value, what: str):
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        raise ConfigurationError(f"Unknown {what}: {value!r}")


def _require(data: Dict[str, Any], key: str, what: str):
    if key not in data:
        raise ConfigurationError(f"{what} is missing required field '{key}'")
    return data[key]


def _frozen(obj, name: str) -> None:
    """Replace a dict field of a frozen dataclass with a read-only view."""
    object.__setattr__(obj, name, MappingProxyType(dict(getattr(obj, name))))


def validate_workflow_name(name: str) -> str:
    """Workflow names become file names under the workflows directory."""
    if not isinstance(name, str) or name in ("", ".", "..") or any(c in name for c in "/\\\0"):
        raise ConfigurationError(f"Invalid workflow name: {name!r}")
    return name


@dataclass(frozen=True)
class SystemConfig:
    hostname: str
    timezone: str = "UTC"
    locale: str = "en_US.UTF-8"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemConfig":
        return cls(
            hostname=_require(data, "hostname", "system"),
            timezone=data.get("timezone", "UTC"),
            locale=data.get("locale", "en_US.UTF-8"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"hostname": self.hostname, "timezone": self.timezone, "locale": self.locale}


@dataclass(frozen=True)
class Package:
    name: str
    action: PackageAction = PackageAction.INSTALL
    group: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Package":
        return cls(
            name=_require(data, "name", "package"),
            action=_enum(PackageAction, data.get("action", "install"), "package action"),
            group=data.get("group"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "action": self.action.value, "group": self.group}


@dataclass(frozen=True)
class ServiceConfig:
    auto_restart: bool = True
    restart_on_failure: bool = True
    environment: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        _frozen(self, "environment")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceConfig":
        return cls(
            auto_restart=bool(data.get("auto_restart", True)),
            restart_on_failure=bool(data.get("restart_on_failure", True)),
            environment=dict(data.get("environment", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auto_restart": self.auto_restart,
            "restart_on_failure": self.restart_on_failure,
            "environment": dict(self.environment),
        }


@dataclass(frozen=True)
class Service:
    name: str
    enabled: bool = True
    config: Optional[ServiceConfig] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Service":
        config = data.get("config")
        return cls(
            name=_require(data, "name", "service"),
            enabled=bool(data.get("enabled", True)),
            config=ServiceConfig.from_dict(config) if config is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "config": self.config.to_dict() if self.config else None,
        }


@dataclass(frozen=True)
class User:
    name: str
    shell: str = "/bin/bash"
    uid: Optional[int] = None
    groups: Tuple[str, ...] = ()
    home_dir: Optional[str] = None

    @property
    def home(self) -> str:
        return self.home_dir or f"/home/{self.name}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            name=_require(data, "name", "user"),
            shell=data.get("shell", "/bin/bash"),
            uid=data.get("uid"),
            groups=tuple(data.get("groups", ())),
            home_dir=data.get("home_dir"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "uid": self.uid,
            "shell": self.shell,
            "groups": list(self.groups),
            "home_dir": self.home_dir,
        }


@dataclass(frozen=True)
class Repository:
    """A package (pacman) or ostree remote."""
    name: str
    url: str
    kind: RepositoryKind = RepositoryKind.PACKAGE
    enabled: bool = True
    gpg_check: bool = True
    priority: int = 50
    branches: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Repository":
        return cls(
            name=_require(data, "name", "repository"),
            url=_require(data, "url", "repository"),
            kind=_enum(RepositoryKind, data.get("kind", "package"), "repository kind"),
            enabled=bool(data.get("enabled", True)),
            gpg_check=bool(data.get("gpg_check", True)),
            priority=int(data.get("priority", 50)),
            branches=tuple(data.get("branches", ())),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "kind": self.kind.value,
            "enabled": self.enabled,
            "gpg_check": self.gpg_check,
            "priority": self.priority,
            "branches": list(self.branches),
        }


@dataclass(frozen=True)
class DesktopConfig:
    environment: DesktopEnvironment
    auto_login: bool = False
    auto_login_user: Optional[str] = None
    settings: Mapping[str, Any] = field(default_factory=dict, hash=False)  # theme, gaps, widgets...

    def __post_init__(self):
        _frozen(self, "settings")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DesktopConfig":
        return cls(
            environment=_enum(
                DesktopEnvironment, _require(data, "environment", "desktop"), "desktop environment"
            ),
            auto_login=bool(data.get("auto_login", False)),
            auto_login_user=data.get("auto_login_user"),
            settings=dict(data.get("settings", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment.value,
            "auto_login": self.auto_login,
            "auto_login_user": self.auto_login_user,
            "settings": dict(self.settings),
        }


@dataclass(frozen=True)
class Trigger:
    type: str  # schedule, file_watch, hotkey, system_event...
    params: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        _frozen(self, "params")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trigger":
        return cls(type=_require(data, "type", "trigger"), params=dict(data.get("params", {})))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "params": dict(self.params)}


@dataclass(frozen=True)
class Workflow:
    name: str
    description: str = ""
    enabled: bool = True
    priority: int = 50
    trigger: Optional[Trigger] = None
    actions: Tuple[Mapping[str, Any], ...] = field(default=(), hash=False)
    conditions: Tuple[Mapping[str, Any], ...] = field(default=(), hash=False)

    def __post_init__(self):
        object.__setattr__(self, "actions", tuple(MappingProxyType(dict(a)) for a in self.actions))
        object.__setattr__(self, "conditions", tuple(MappingProxyType(dict(c)) for c in self.conditions))

    @property
    def is_active(self) -> bool:
        """Enabled and wired to a trigger, i.e. it can fire on its own."""
        return self.enabled and self.trigger is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workflow":
        trigger = data.get("trigger")
        return cls(
            name=validate_workflow_name(_require(data, "name", "workflow")),
            description=data.get("description", ""),
            enabled=bool(data.get("enabled", True)),
            priority=int(data.get("priority", 50)),
            trigger=Trigger.from_dict(trigger) if trigger is not None else None,
            actions=tuple(dict(a) for a in data.get("actions", ())),
            conditions=tuple(dict(c) for c in data.get("conditions", ())),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "priority": self.priority,
            "trigger": self.trigger.to_dict() if self.trigger else None,
            "actions": [dict(a) for a in self.actions],
            "conditions": [dict(c) for c in self.conditions],
        }


@dataclass(frozen=True)
class AutomationConfig:
    workflows: Tuple[Workflow, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutomationConfig":
        return cls(workflows=tuple(Workflow.from_dict(w) for w in data.get("workflows", ())))

    def to_dict(self) -> Dict[str, Any]:
        return {"workflows": [w.to_dict() for w in self.workflows]}


@dataclass(frozen=True)
class ConfigurationSnapshot:
    """A complete compiled system configuration."""
    system: SystemConfig
    packages: Tuple[Package, ...] = ()
    services: Tuple[Service, ...] = ()
    users: Tuple[User, ...] = ()
    repositories: Tuple[Repository, ...] = ()
    desktop: Optional[DesktopConfig] = None
    automation: Optional[AutomationConfig] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigurationSnapshot":
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration document must be a JSON object")
        version = data.get("version", SCHEMA_VERSION)
        if version != SCHEMA_VERSION:
            raise ConfigurationError(f"Unsupported configuration version: {version}")
        try:
            return cls._from_document(data)
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Malformed configuration document: {e}") from e

    @classmethod
    def _from_document(cls, data: Dict[str, Any]) -> "ConfigurationSnapshot":
        desktop = data.get("desktop")
        automation = data.get("automation")
        return cls(
            system=SystemConfig.from_dict(_require(data, "system", "configuration")),
            packages=tuple(Package.from_dict(p) for p in data.get("packages", ())),
            services=tuple(Service.from_dict(s) for s in data.get("services", ())),
            users=tuple(User.from_dict(u) for u in data.get("users", ())),
            repositories=tuple(Repository.from_dict(r) for r in data.get("repositories", ())),
            desktop=DesktopConfig.from_dict(desktop) if desktop is not None else None,
            automation=AutomationConfig.from_dict(automation) if automation is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "system": self.system.to_dict(),
            "packages": [p.to_dict() for p in self.packages],
            "services": [s.to_dict() for s in self.services],
            "users": [u.to_dict() for u in self.users],
            "repositories": [r.to_dict() for r in self.repositories],
            "desktop": self.desktop.to_dict() if self.desktop else None,
            "automation": self.automation.to_dict() if self.automation else None,
        }

    def installed_package_names(self) -> List[str]:
        return [p.name for p in self.packages if p.action == PackageAction.INSTALL]


def default_configuration() -> ConfigurationSnapshot:
    """Configuration assumed when nothing has been applied yet."""
    return ConfigurationSnapshot(
        system=SystemConfig(hostname="horizonos", timezone="UTC", locale="en_US.UTF-8")
    )
