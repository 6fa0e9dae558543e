"""Runtime settings, read from HORIZON_* environment variables."""

from dataclasses import dataclass
from pathlib import Path
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AgentSettings:
    """Paths and knobs for one agent process."""
    config_root: Path = Path("/etc/horizonos")
    system_root: Path = Path("/")
    ostree_repo: Path = Path("/ostree/repo")
    deploy_backend: str = "ostree"  # ostree | git
    dry_run: bool = False
    desktop_notify: bool = False
    command_timeout: float = 300.0  # seconds, per external command
    log_dir: Path = Path("logs")
    host: str = "0.0.0.0"
    port: int = 2371

    @property
    def workflows_dir(self) -> Path:
        return self.config_root / "workflows"

    @property
    def snapshots_dir(self) -> Path:
        return self.config_root / "snapshots"

    @classmethod
    def from_env(cls) -> "AgentSettings":
        defaults = cls()
        return cls(
            config_root=Path(os.environ.get("HORIZON_CONFIG_ROOT", str(defaults.config_root))),
            system_root=Path(os.environ.get("HORIZON_SYSTEM_ROOT", str(defaults.system_root))),
            ostree_repo=Path(os.environ.get("HORIZON_OSTREE_REPO", str(defaults.ostree_repo))),
            deploy_backend=os.environ.get("HORIZON_DEPLOY_BACKEND", defaults.deploy_backend).lower(),
            dry_run=_env_bool("HORIZON_DRY_RUN", defaults.dry_run),
            desktop_notify=_env_bool("HORIZON_DESKTOP_NOTIFY", defaults.desktop_notify),
            command_timeout=float(os.environ.get("HORIZON_COMMAND_TIMEOUT", defaults.command_timeout)),
            log_dir=Path(os.environ.get("HORIZON_LOG_DIR", str(defaults.log_dir))),
            host=os.environ.get("HORIZON_HOST", defaults.host),
            port=int(os.environ.get("HORIZON_PORT", defaults.port)),
        )
