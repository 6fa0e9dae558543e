"""Persisted state: the current configuration marker and snapshots.

Layout under the configuration root:

    current-config.json      last applied ConfigurationSnapshot
    current-state.json       sync summary (hostname, services, packages...)
    workflows/               one document per automation workflow
    snapshots/<id>/          config.json, system-state.json,
                             services.json, packages.txt

Key invariant: a snapshot directory is only visible under its final name
once all four artifacts are on disk. Artifacts are written into
`snapshots/.staging-<id>/` and published with a single rename.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Union
import hashlib
import logging
import shutil

from .errors import StateSyncError, SnapshotError, ConfigurationError, MutationError
from .json_utils import atomic_write_json, atomic_write_text, json_dumps, read_json
from .models import ConfigurationSnapshot
from .mutator import SystemMutator
from .system_probe import SystemProbe, SystemState

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "snapshot-"
STAGING_PREFIX = ".staging-"
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%f"

CONFIG_ARTIFACT = "config.json"
STATE_ARTIFACT = "system-state.json"
SERVICES_ARTIFACT = "services.json"
PACKAGES_ARTIFACT = "packages.txt"
ARTIFACTS = (CONFIG_ARTIFACT, STATE_ARTIFACT, SERVICES_ARTIFACT, PACKAGES_ARTIFACT)


@dataclass(frozen=True)
class StateSnapshot:
    id: str
    timestamp: datetime
    config_path: Path
    state_path: Path
    services_path: Path
    packages_path: Path

    @classmethod
    def at(cls, directory: Path, snapshot_id: str, timestamp: datetime) -> "StateSnapshot":
        return cls(
            id=snapshot_id,
            timestamp=timestamp,
            config_path=directory / CONFIG_ARTIFACT,
            state_path=directory / STATE_ARTIFACT,
            services_path=directory / SERVICES_ARTIFACT,
            packages_path=directory / PACKAGES_ARTIFACT,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "config_path": str(self.config_path),
            "state_path": str(self.state_path),
            "services_path": str(self.services_path),
            "packages_path": str(self.packages_path),
        }


@dataclass(frozen=True)
class SyncIssue:
    component: str  # config, system, service, package
    field: str
    expected: str
    actual: str


@dataclass
class SyncStatus:
    issues: List[SyncIssue] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            "in_sync": self.in_sync,
            "issues": [vars(issue) for issue in self.issues],
        }


def config_hash(config: ConfigurationSnapshot) -> str:
    return hashlib.sha256(json_dumps(config.to_dict(), normalize=True).encode()).hexdigest()


def _parse_snapshot_time(snapshot_id: str) -> Optional[datetime]:
    stamp = snapshot_id[len(SNAPSHOT_PREFIX):].split("-", 1)[0]
    try:
        return datetime.strptime(stamp, TIMESTAMP_FORMAT)
    except ValueError:
        return None


class StateSyncManager:
    """Persists the last applied configuration and state snapshots."""

    def __init__(self, config_root: Path, probe: SystemProbe, mutator: SystemMutator):
        self.config_root = Path(config_root)
        self.snapshots_dir = self.config_root / "snapshots"
        self.current_config_file = self.config_root / "current-config.json"
        self.current_state_file = self.config_root / "current-state.json"
        self.probe = probe
        self.mutator = mutator
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)
        self._discard_staging()

    def _discard_staging(self) -> None:
        """Remove staging directories left behind by an interrupted snapshot."""
        for leftover in self.snapshots_dir.glob(f"{STAGING_PREFIX}*"):
            logger.warning(f"Discarding incomplete snapshot {leftover.name}")
            shutil.rmtree(leftover, ignore_errors=True)

    # Current configuration marker

    def load_current_config(self) -> Optional[ConfigurationSnapshot]:
        if not self.current_config_file.exists():
            return None
        try:
            return ConfigurationSnapshot.from_dict(read_json(self.current_config_file))
        except (ValueError, ConfigurationError) as e:
            raise StateSyncError(f"Corrupt current configuration {self.current_config_file}: {e}")

    def get_current_state(self) -> Dict[str, Any]:
        if not self.current_state_file.exists():
            return {}
        return read_json(self.current_state_file)

    def sync_state(self, config: ConfigurationSnapshot) -> None:
        """Record `config` as the applied configuration (atomic replace)."""
        state = {
            "last_sync": datetime.now().isoformat(),
            "config_hash": config_hash(config),
            "hostname": config.system.hostname,
            "timezone": config.system.timezone,
            "locale": config.system.locale,
            "services": {s.name: s.enabled for s in config.services},
            "packages": config.installed_package_names(),
            "users": [u.name for u in config.users],
        }
        try:
            atomic_write_json(self.current_config_file, config.to_dict())
            atomic_write_json(self.current_state_file, state)
        except OSError as e:
            raise StateSyncError(f"Failed to persist current configuration: {e}")
        logger.info(f"Synced state for {config.system.hostname} ({state['config_hash'][:12]})")

    # Snapshots

    def _new_snapshot_id(self, timestamp: datetime) -> str:
        base = f"{SNAPSHOT_PREFIX}{timestamp.strftime(TIMESTAMP_FORMAT)}"
        snapshot_id = base
        suffix = 1
        while (self.snapshots_dir / snapshot_id).exists():
            snapshot_id = f"{base}-{suffix}"
            suffix += 1
        return snapshot_id

    def create_snapshot(self) -> StateSnapshot:
        """Capture config, system facts, service states and packages.

        Raises:
            SnapshotError if any artifact cannot be written; nothing is
            left behind under the snapshot id in that case.
        """
        timestamp = datetime.now()
        snapshot_id = self._new_snapshot_id(timestamp)
        staging = self.snapshots_dir / f"{STAGING_PREFIX}{snapshot_id}"
        final = self.snapshots_dir / snapshot_id

        try:
            staging.mkdir(parents=True)
            current = self.load_current_config()
            atomic_write_json(staging / CONFIG_ARTIFACT, current.to_dict() if current else None)
            atomic_write_json(staging / STATE_ARTIFACT, self.probe.capture_system_state().to_dict())
            services = {
                name: state.to_dict() for name, state in self.probe.capture_service_states().items()
            }
            atomic_write_json(staging / SERVICES_ARTIFACT, services)
            atomic_write_text(
                staging / PACKAGES_ARTIFACT, "\n".join(self.probe.capture_installed_packages())
            )
            staging.rename(final)
        except Exception as e:
            shutil.rmtree(staging, ignore_errors=True)
            logger.error(f"Snapshot {snapshot_id} failed: {e}", exc_info=True)
            raise SnapshotError(f"Failed to create snapshot {snapshot_id}: {e}") from e

        logger.info(f"Created snapshot {snapshot_id}")
        return StateSnapshot.at(final, snapshot_id, timestamp)

    def list_snapshots(self) -> List[StateSnapshot]:
        """Complete snapshots, newest first."""
        snapshots = []
        for directory in self.snapshots_dir.iterdir():
            if not directory.is_dir() or not directory.name.startswith(SNAPSHOT_PREFIX):
                continue
            if not all((directory / name).exists() for name in ARTIFACTS):
                continue
            timestamp = _parse_snapshot_time(directory.name)
            if timestamp is None:
                continue
            snapshots.append(StateSnapshot.at(directory, directory.name, timestamp))
        return sorted(snapshots, key=lambda s: (s.timestamp, s.id), reverse=True)

    def get_snapshot(self, snapshot_id: str) -> StateSnapshot:
        for snapshot in self.list_snapshots():
            if snapshot.id == snapshot_id:
                return snapshot
        raise SnapshotError(f"Snapshot not found: {snapshot_id}")

    def restore_snapshot(self, snapshot: Union[StateSnapshot, str]) -> Optional[ConfigurationSnapshot]:
        """Reapply system facts and service states from a snapshot.

        Package lists are not replayed. The snapshot's configuration, if it
        has one, becomes the current configuration again.
        """
        if isinstance(snapshot, str):
            snapshot = self.get_snapshot(snapshot)
        if not snapshot.config_path.exists() or not snapshot.state_path.exists():
            raise SnapshotError(f"Snapshot files not found: {snapshot.id}")

        try:
            config_data = read_json(snapshot.config_path)
            config = ConfigurationSnapshot.from_dict(config_data) if config_data else None
            state = SystemState.from_dict(read_json(snapshot.state_path))
            services = read_json(snapshot.services_path) if snapshot.services_path.exists() else {}
        except (ValueError, ConfigurationError) as e:
            raise SnapshotError(f"Snapshot {snapshot.id} is unreadable: {e}") from e

        try:
            if state.hostname:
                self.mutator.set_hostname(state.hostname)
            if state.timezone:
                self.mutator.set_timezone(state.timezone)
            if state.locale:
                self.mutator.set_locale(state.locale)
            for name, service in services.items():
                if service.get("active") == "active":
                    self.mutator.start_service(name)
                elif service.get("loaded") == "loaded":
                    self.mutator.stop_service(name)
        except MutationError as e:
            raise SnapshotError(f"Failed to restore snapshot {snapshot.id}: {e}") from e

        if config is not None:
            self.sync_state(config)
        logger.info(f"Restored snapshot {snapshot.id}")
        return config

    def cleanup_snapshots(self, keep: int = 10) -> List[str]:
        """Delete all but the `keep` newest snapshots. Returns removed ids."""
        removed = []
        for snapshot in self.list_snapshots()[keep:]:
            shutil.rmtree(self.snapshots_dir / snapshot.id, ignore_errors=True)
            removed.append(snapshot.id)
        if removed:
            logger.info(f"Removed {len(removed)} old snapshots")
        return removed

    # Drift

    def check_sync(self, last_applied: ConfigurationSnapshot) -> SyncStatus:
        """Compare the on-disk marker and the live system with `last_applied`."""
        status = SyncStatus()

        try:
            on_disk = self.load_current_config()
        except StateSyncError as e:
            on_disk = None
            status.issues.append(SyncIssue("config", "current-config.json", "readable", str(e)))
        if on_disk is not None and on_disk != last_applied:
            status.issues.append(SyncIssue(
                "config", "current-config.json", config_hash(last_applied), config_hash(on_disk)
            ))

        hostname = self.probe.get_hostname()
        if hostname and hostname != last_applied.system.hostname:
            status.issues.append(SyncIssue("system", "hostname", last_applied.system.hostname, hostname))

        for service in last_applied.services:
            enabled = self.probe.is_service_enabled(service.name)
            if enabled != service.enabled:
                status.issues.append(SyncIssue(
                    "service", service.name, str(service.enabled).lower(), str(enabled).lower()
                ))

        wanted = last_applied.installed_package_names()
        if wanted:
            installed = set(self.probe.capture_installed_packages())
            for name in wanted:
                if name not in installed:
                    status.issues.append(SyncIssue("package", name, "installed", "not installed"))

        return status
