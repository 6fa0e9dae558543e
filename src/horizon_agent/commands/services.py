"""Service commands: Configure, UpdateConfig, Remove, Start, Stop.

Services are systemd units. Per-service environment lives in a drop-in
at /etc/systemd/system/<name>.service.d/horizon.conf.
"""

from pathlib import Path
from typing import Sequence

from ..json_utils import atomic_write_text
from ..models import Service, ServiceConfig
from . import Command, CommandExecutor


def render_dropin(config: ServiceConfig) -> str:
    lines = ["[Service]"]
    if config.auto_restart:
        lines.append("Restart=on-failure" if config.restart_on_failure else "Restart=always")
    else:
        lines.append("Restart=no")
    for key, value in sorted(config.environment.items()):
        lines.append(f'Environment="{key}={value}"')
    return "\n".join(lines) + "\n"


class ServiceCommand(Command):
    """Base class for service operations."""

    def __init__(self, name: str, executor: CommandExecutor, system_root: Path = Path("/")):
        super().__init__(f"service:{name}", executor, system_root)

    def _dropin_path(self, service_name: str) -> Path:
        return self._path(f"etc/systemd/system/{service_name}.service.d/horizon.conf")

    def _write_dropin(self, service: Service) -> bool:
        """Write or clear the drop-in. Returns True if systemd must reload."""
        dropin = self._dropin_path(service.name)
        if service.config is not None:
            atomic_write_text(dropin, render_dropin(service.config))
            return True
        if dropin.exists():
            dropin.unlink()
            return True
        return False


class ConfigureServices(ServiceCommand):
    """Enable+start or disable+stop each service."""

    def __init__(self, services: Sequence[Service], executor: CommandExecutor, system_root: Path = Path("/")):
        super().__init__("configure", executor, system_root)
        self.services = list(services)

    def describe(self) -> str:
        return f"configure services: {', '.join(s.name for s in self.services)}"

    def _apply(self) -> None:
        reload_needed = False
        for service in self.services:
            reload_needed = self._write_dropin(service) or reload_needed
        if reload_needed:
            self._run("systemctl", "daemon-reload")
        for service in self.services:
            if service.enabled:
                self._run("systemctl", "enable", "--now", service.name)
            else:
                self._run("systemctl", "disable", "--now", service.name)


class UpdateServiceConfig(ServiceCommand):
    """Apply a changed service definition (enabled flag and/or config)."""

    def __init__(self, old: Service, new: Service, executor: CommandExecutor, system_root: Path = Path("/")):
        super().__init__("update", executor, system_root)
        self.old = old
        self.new = new

    def describe(self) -> str:
        return f"update config for service {self.new.name}"

    def _apply(self) -> None:
        if self.old.config != self.new.config and self._write_dropin(self.new):
            self._run("systemctl", "daemon-reload")
        if self.old.enabled != self.new.enabled:
            if self.new.enabled:
                self._run("systemctl", "enable", "--now", self.new.name)
            else:
                self._run("systemctl", "disable", "--now", self.new.name)


class RemoveService(ServiceCommand):
    """Disable and stop a service no longer managed by the configuration."""

    def __init__(self, service: Service, executor: CommandExecutor, system_root: Path = Path("/")):
        super().__init__("remove", executor, system_root)
        self.service = service

    def describe(self) -> str:
        return f"remove service {self.service.name}"

    def _apply(self) -> None:
        self._run("systemctl", "disable", "--now", self.service.name)
        dropin = self._dropin_path(self.service.name)
        if dropin.exists():
            dropin.unlink()
            self._run("systemctl", "daemon-reload")


class StartService(ServiceCommand):
    def __init__(self, service_name: str, executor: CommandExecutor):
        super().__init__("start", executor)
        self.service_name = service_name

    def describe(self) -> str:
        return f"start service {self.service_name}"

    def _apply(self) -> None:
        self._run("systemctl", "start", self.service_name)


class StopService(ServiceCommand):
    def __init__(self, service_name: str, executor: CommandExecutor):
        super().__init__("stop", executor)
        self.service_name = service_name

    def describe(self) -> str:
        return f"stop service {self.service_name}"

    def _apply(self) -> None:
        self._run("systemctl", "stop", self.service_name)
