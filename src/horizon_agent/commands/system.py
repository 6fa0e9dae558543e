"""System commands: hostname, timezone, locale, repositories.

- SetHostname: hostnamectl set-hostname
- SetTimezone: timedatectl set-timezone
- SetLocale: write /etc/locale.conf, run locale-gen
- ConfigureRepositories: write pacman and ostree remote definitions
"""

from pathlib import Path
from typing import Sequence

from ..json_utils import atomic_write_text, atomic_write_json
from ..models import Repository, RepositoryKind
from . import Command, CommandExecutor


class SystemCommand(Command):
    """Base class for system-level settings."""

    def __init__(self, name: str, executor: CommandExecutor, system_root: Path = Path("/")):
        super().__init__(f"system:{name}", executor, system_root)


class SetHostname(SystemCommand):
    def __init__(self, hostname: str, executor: CommandExecutor, system_root: Path = Path("/")):
        super().__init__("hostname", executor, system_root)
        self.hostname = hostname

    def describe(self) -> str:
        return f"set hostname to {self.hostname}"

    def _apply(self) -> None:
        self._run("hostnamectl", "set-hostname", self.hostname)


class SetTimezone(SystemCommand):
    def __init__(self, timezone: str, executor: CommandExecutor, system_root: Path = Path("/")):
        super().__init__("timezone", executor, system_root)
        self.timezone = timezone

    def describe(self) -> str:
        return f"set timezone to {self.timezone}"

    def _apply(self) -> None:
        self._run("timedatectl", "set-timezone", self.timezone)


class SetLocale(SystemCommand):
    def __init__(self, locale: str, executor: CommandExecutor, system_root: Path = Path("/")):
        super().__init__("locale", executor, system_root)
        self.locale = locale

    def describe(self) -> str:
        return f"set locale to {self.locale}"

    def _apply(self) -> None:
        atomic_write_text(self._path("etc/locale.conf"), f"LANG={self.locale}\n")
        self._run("locale-gen")


class ConfigureRepositories(SystemCommand):
    """Write repository definitions under the agent's config root.

    Package repositories become a pacman include file; ostree remotes are
    kept as JSON and registered with `ostree remote add`.
    """

    def __init__(
        self,
        repositories: Sequence[Repository],
        config_root: Path,
        executor: CommandExecutor,
        system_root: Path = Path("/"),
    ):
        super().__init__("repositories", executor, system_root)
        self.repositories = list(repositories)
        self.config_root = Path(config_root)

    def describe(self) -> str:
        return f"configure {len(self.repositories)} repositories"

    def _apply(self) -> None:
        package_repos = [r for r in self.repositories if r.kind == RepositoryKind.PACKAGE]
        ostree_repos = [r for r in self.repositories if r.kind == RepositoryKind.OSTREE]

        lines = []
        for repo in sorted(package_repos, key=lambda r: r.priority):
            if not repo.enabled:
                continue
            lines.append(f"[{repo.name}]")
            lines.append(f"Server = {repo.url}")
            if not repo.gpg_check:
                lines.append("SigLevel = Never")
            lines.append("")
        atomic_write_text(self.config_root / "pacman-repos.conf", "\n".join(lines))

        atomic_write_json(
            self.config_root / "ostree-repos.json", [r.to_dict() for r in ostree_repos]
        )
        for repo in ostree_repos:
            if not repo.enabled:
                continue
            args = ["ostree", "remote", "add", "--if-not-exists"]
            if not repo.gpg_check:
                args.append("--no-gpg-verify")
            args.extend([repo.name, repo.url, *repo.branches])
            self._run(*args)
