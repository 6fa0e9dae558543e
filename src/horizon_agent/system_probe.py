"""Live system probing via systemd and pacman tools.

Discovers actual system state: hostname, timezone, locale, service
states, installed packages. Everything is read-only.
"""

from dataclasses import dataclass, asdict
from typing import List, Optional, Dict, Any
import logging

from .commands import CommandExecutor
from .errors import CommandError

logger = logging.getLogger(__name__)


@dataclass
class SystemState:
    """System facts captured into snapshots."""
    hostname: str
    timezone: str
    locale: str
    kernel: str
    uptime: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemState":
        return cls(
            hostname=data.get("hostname", ""),
            timezone=data.get("timezone", ""),
            locale=data.get("locale", ""),
            kernel=data.get("kernel", ""),
            uptime=data.get("uptime", ""),
        )


@dataclass
class ServiceState:
    """One row of `systemctl list-units`."""
    name: str  # unit name without .service
    loaded: str  # loaded, not-found, masked
    active: str  # active, inactive, failed
    sub: str  # running, exited, dead

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SystemInfo:
    """Summary shown in status reports."""
    uptime: str
    kernel_version: str
    memory_info: str
    hostname: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SystemProbe:
    """System probing interface."""

    def __init__(self, executor: CommandExecutor):
        self.executor = executor

    def _read(self, *argv: str) -> str:
        """Run a read-only query; failures degrade to an empty string."""
        try:
            return self.executor.run(*argv).strip()
        except CommandError as e:
            logger.debug(f"Probe {' '.join(argv)} failed: {e}")
            return ""

    def get_hostname(self) -> str:
        return self._read("hostnamectl", "hostname") or self._read("hostname")

    def get_timezone(self) -> str:
        return self._read("timedatectl", "show", "-p", "Timezone", "--value")

    def get_locale(self) -> str:
        """Parse `LANG=` out of `localectl status`."""
        output = self._read("localectl", "status")
        for line in output.splitlines():
            if "System Locale" in line and "LANG=" in line:
                return line.split("LANG=", 1)[1].strip()
        return ""

    def capture_system_state(self) -> SystemState:
        return SystemState(
            hostname=self.get_hostname(),
            timezone=self.get_timezone(),
            locale=self.get_locale(),
            kernel=self._read("uname", "-r"),
            uptime=self._read("uptime", "-p"),
        )

    def capture_service_states(self) -> Dict[str, ServiceState]:
        """Get all service units keyed by name.

        Uses `systemctl list-units --plain`; header and legend lines are
        skipped by requiring a `.service` unit name.
        """
        output = self._read(
            "systemctl", "list-units", "--type=service", "--all",
            "--no-pager", "--plain", "--no-legend",
        )
        states = {}
        for line in output.splitlines():
            parts = line.split(None, 4)
            if len(parts) < 4 or not parts[0].endswith(".service"):
                continue
            name = parts[0][: -len(".service")]
            states[name] = ServiceState(name=name, loaded=parts[1], active=parts[2], sub=parts[3])
        return states

    def capture_installed_packages(self) -> List[str]:
        output = self._read("pacman", "-Qq")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def is_service_enabled(self, service_name: str) -> bool:
        return self._read("systemctl", "is-enabled", service_name) == "enabled"

    def is_service_active(self, service_name: str) -> bool:
        return self._read("systemctl", "is-active", service_name) == "active"

    def get_system_info(self) -> SystemInfo:
        return SystemInfo(
            uptime=self._read("uptime"),
            kernel_version=self._read("uname", "-r"),
            memory_info=self._read("free", "-h"),
            hostname=self.get_hostname(),
        )

    def get_service_property(self, service_name: str, prop: str) -> Optional[str]:
        """Read one `systemctl show` property, e.g. CanReload or MainPID."""
        output = self._read("systemctl", "show", "-p", prop, service_name)
        prefix = f"{prop}="
        for line in output.splitlines():
            if line.startswith(prefix):
                return line[len(prefix):].strip()
        return None
