"""Desktop command: configure the desktop environment and display manager."""

from pathlib import Path
from typing import Dict, Any

from ..json_utils import atomic_write_text
from ..models import DesktopConfig, DesktopEnvironment
from . import Command, CommandExecutor

# Session unit and settings file per environment.
ENVIRONMENTS: Dict[DesktopEnvironment, Dict[str, str]] = {
    DesktopEnvironment.PLASMA: {"unit": "sddm", "config": "etc/xdg/plasmarc"},
    DesktopEnvironment.HYPRLAND: {"unit": "sddm", "config": "etc/hypr/hyprland.conf"},
    DesktopEnvironment.GNOME: {"unit": "gdm", "config": "etc/dconf/db/local.d/00-horizon"},
    DesktopEnvironment.XFCE: {"unit": "lightdm", "config": "etc/xdg/xfce4/horizon.rc"},
    DesktopEnvironment.SWAY: {"unit": "greetd", "config": "etc/sway/config.d/horizon.conf"},
}


def render_settings(settings: Dict[str, Any]) -> str:
    return "".join(f"{key} = {settings[key]}\n" for key in sorted(settings))


class ConfigureDesktop(Command):
    def __init__(
        self,
        desktop: DesktopConfig,
        executor: CommandExecutor,
        system_root: Path = Path("/"),
        enable_session: bool = True,
    ):
        super().__init__("desktop:configure", executor, system_root)
        self.desktop = desktop
        self.enable_session = enable_session

    def describe(self) -> str:
        return f"configure {self.desktop.environment.value} desktop"

    def _apply(self) -> None:
        env = ENVIRONMENTS[self.desktop.environment]
        atomic_write_text(self._path(env["config"]), render_settings(self.desktop.settings))

        if self.desktop.auto_login and self.desktop.auto_login_user:
            atomic_write_text(
                self._path("etc/lightdm/lightdm.conf.d/50-horizon-autologin.conf"),
                "[Seat:*]\n"
                f"autologin-user={self.desktop.auto_login_user}\n"
                "autologin-user-timeout=0\n",
            )

        if self.enable_session:
            self._run("systemctl", "enable", env["unit"])
