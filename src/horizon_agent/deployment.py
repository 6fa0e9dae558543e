"""Atomic deployments over a content-addressed, versioned store.

Full-system changes are never applied to the running system. They are
committed to the store on a fixed branch and staged as the next-boot
deployment; they take effect on reboot.

Two stores implement `DeploymentManager`:
- OSTreeDeploymentManager: the `ostree` CLI (production hosts)
- GitDeploymentManager: a bare git repository via GitPython, for hosts
  without ostree and for tests. The next-boot deployment is the
  `deploy/next-boot` ref.

Both serialize the configuration into a temporary tree that is removed
whether the commit succeeds or not.
"""

from pathlib import Path
from typing import Optional, List
import binascii
import json
import logging
import tempfile

from git import Actor, Repo, InvalidGitRepositoryError, NoSuchPathError, GitCommandError
from git.exc import BadName, BadObject
from git.index import IndexFile
from git.index.typ import BaseIndexEntry
from git.objects import Commit

from .commands import CommandExecutor
from .errors import CommandError, DeploymentError
from .json_utils import json_dumps
from .models import ConfigurationSnapshot

logger = logging.getLogger(__name__)

BRANCH = "horizonos/stable/x86_64"
OS_NAME = "horizonos"
COMMIT_SUBJECT = "HorizonOS configuration update"
CONFIG_FILE = "config.json"
AGENT_ACTOR = Actor("HorizonOS Agent", "agent@horizonos.local")


def write_commit_tree(config: ConfigurationSnapshot, tree_dir: Path) -> None:
    """Lay out the files that make up one configuration commit."""
    etc = tree_dir / "etc" / "horizonos"
    etc.mkdir(parents=True, exist_ok=True)
    (etc / CONFIG_FILE).write_text(json_dumps(config.to_dict(), normalize=True), encoding="utf-8")


class DeploymentManager:
    """Interface for the versioned filesystem store."""

    branch = BRANCH

    def repository_exists(self) -> bool:
        raise NotImplementedError

    def create_commit(self, config: ConfigurationSnapshot) -> str:
        raise NotImplementedError

    def deploy_commit(self, commit_id: str) -> None:
        raise NotImplementedError

    def rollback(self, commit_id: str) -> None:
        raise NotImplementedError

    def get_current_commit(self) -> Optional[str]:
        raise NotImplementedError

    def get_available_commits(self) -> List[str]:
        raise NotImplementedError


class OSTreeDeploymentManager(DeploymentManager):
    """Drives `ostree` through the Command Executor."""

    def __init__(self, repo_path: Path, executor: CommandExecutor, os_name: str = OS_NAME):
        self.repo_path = Path(repo_path)
        self.executor = executor
        self.os_name = os_name

    def _ostree(self, *args: str) -> str:
        try:
            return self.executor.run("ostree", *args)
        except CommandError as e:
            raise DeploymentError(f"ostree {args[0]} failed: {e.stderr.strip() or e}") from e

    def repository_exists(self) -> bool:
        return (self.repo_path / "config").exists()

    def create_commit(self, config: ConfigurationSnapshot) -> str:
        with tempfile.TemporaryDirectory(prefix="horizonos-commit-") as tmp:
            write_commit_tree(config, Path(tmp))
            commit_id = self._ostree(
                "commit",
                f"--repo={self.repo_path}",
                f"--tree=dir={tmp}",
                f"--subject={COMMIT_SUBJECT}",
                f"--branch={self.branch}",
            ).strip()
        logger.info(f"Created ostree commit {commit_id[:12]} on {self.branch}")
        return commit_id

    def deploy_commit(self, commit_id: str) -> None:
        self._ostree("admin", "deploy", f"--os={self.os_name}", commit_id)
        logger.info(f"Staged {commit_id[:12]} as next-boot deployment")

    def rollback(self, commit_id: str) -> None:
        available = self.get_available_commits()
        if available and commit_id not in available:
            raise DeploymentError(f"Commit {commit_id} is not in {self.branch} history")
        self._ostree("admin", "deploy", f"--os={self.os_name}", commit_id)
        logger.info(f"Rolled back next-boot deployment to {commit_id[:12]}")

    def get_current_commit(self) -> Optional[str]:
        """Checksum of the booted deployment (the `*` line of admin status)."""
        output = self._ostree("admin", "status")
        for line in output.splitlines():
            stripped = line.strip()
            if stripped.startswith("*"):
                parts = stripped.split()
                if len(parts) >= 3:
                    # "* horizonos <checksum>.0"
                    return parts[2].split(".", 1)[0]
        return None

    def get_available_commits(self) -> List[str]:
        output = self._ostree("log", f"--repo={self.repo_path}", self.branch)
        commits = []
        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[0] == "commit":
                commits.append(parts[1])
        return commits


class GitDeploymentManager(DeploymentManager):
    """A bare git repository used as the content-addressed store.

    Commits are built directly from blobs into a throwaway index, so the
    store never needs a working tree. Identical configurations produce
    identical tree ids.
    """

    DEPLOY_REF = "deploy/next-boot"

    def __init__(self, repo_path: Path):
        self.repo_path = Path(repo_path).resolve()
        self.repo = self._init_repo()

    def _init_repo(self) -> Repo:
        self.repo_path.mkdir(parents=True, exist_ok=True)
        try:
            repo = Repo(self.repo_path)
            logger.debug(f"Found existing deployment store at {self.repo_path}")
        except (InvalidGitRepositoryError, NoSuchPathError):
            logger.info(f"Initializing deployment store at {self.repo_path}")
            repo = Repo.init(self.repo_path, bare=True)
        return repo

    def repository_exists(self) -> bool:
        return self.repo_path.exists() and self.repo.bare

    def _branch_commit(self, name: str) -> Optional[Commit]:
        if name in self.repo.heads:
            return self.repo.heads[name].commit
        return None

    def _resolve(self, commit_id: str) -> Commit:
        try:
            return self.repo.commit(commit_id)
        except (BadName, BadObject, ValueError) as e:
            raise DeploymentError(f"Unknown commit {commit_id}: {e}") from e

    def create_commit(self, config: ConfigurationSnapshot) -> str:
        try:
            with tempfile.TemporaryDirectory(prefix="horizonos-commit-") as tmp:
                tree_dir = Path(tmp) / "tree"
                write_commit_tree(config, tree_dir)

                index = IndexFile(self.repo, str(Path(tmp) / "index"))
                entries = []
                for path in sorted(p for p in tree_dir.rglob("*") if p.is_file()):
                    hexsha = self.repo.git.hash_object("-w", str(path))
                    relative = path.relative_to(tree_dir).as_posix()
                    entries.append(BaseIndexEntry((0o100644, binascii.unhexlify(hexsha), 0, relative)))
                index.add(entries, write=False)
                tree = index.write_tree()

                parent = self._branch_commit(self.branch)
                commit = Commit.create_from_tree(
                    self.repo,
                    tree,
                    COMMIT_SUBJECT,
                    parent_commits=[parent] if parent is not None else [],
                    head=False,
                    author=AGENT_ACTOR,
                    committer=AGENT_ACTOR,
                )
                self.repo.create_head(self.branch, commit, force=True)
        except (GitCommandError, OSError, ValueError) as e:
            raise DeploymentError(f"Failed to commit configuration: {e}") from e

        logger.info(f"Created commit {commit.hexsha[:12]} on {self.branch}")
        return commit.hexsha

    def deploy_commit(self, commit_id: str) -> None:
        commit = self._resolve(commit_id)
        self.repo.create_head(self.DEPLOY_REF, commit, force=True)
        logger.info(f"Staged {commit.hexsha[:12]} as next-boot deployment")

    def rollback(self, commit_id: str) -> None:
        commit = self._resolve(commit_id)
        if commit.hexsha not in self.get_available_commits():
            raise DeploymentError(f"Commit {commit_id} is not in {self.branch} history")
        self.repo.create_head(self.DEPLOY_REF, commit, force=True)
        logger.info(f"Rolled back next-boot deployment to {commit.hexsha[:12]}")

    def get_current_commit(self) -> Optional[str]:
        commit = self._branch_commit(self.DEPLOY_REF)
        return commit.hexsha if commit is not None else None

    def get_available_commits(self) -> List[str]:
        if self.branch not in self.repo.heads:
            return []
        return [c.hexsha for c in self.repo.iter_commits(self.branch)]

    def read_config(self, commit_id: str) -> ConfigurationSnapshot:
        """Load the configuration stored in a commit."""
        commit = self._resolve(commit_id)
        blob = commit.tree / "etc" / "horizonos" / CONFIG_FILE
        return ConfigurationSnapshot.from_dict(json.loads(blob.data_stream.read().decode("utf-8")))


def make_deployment_manager(
    backend: str, repo_path: Path, executor: CommandExecutor
) -> DeploymentManager:
    if backend == "ostree":
        return OSTreeDeploymentManager(repo_path, executor)
    if backend == "git":
        return GitDeploymentManager(repo_path)
    raise ValueError(f"Unknown deployment backend: {backend}")
