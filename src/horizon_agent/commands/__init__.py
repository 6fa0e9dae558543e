"""Command execution layer.

`CommandExecutor` runs external OS commands (or only logs them in dry-run
mode). `Command` subclasses wrap one mutation kind each:
- Take typed input (hostname, package list, user, ...)
- Execute via hostnamectl/pacman/useradd/systemctl
- Return status: applied or failed
- Are idempotent by intent (same input, same end state)
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional
import logging
import subprocess

from ..errors import CommandError, ConfigurationError

logger = logging.getLogger(__name__)


class CommandExecutor:
    """Runs external commands and returns their stdout.

    Timeouts are the executor's policy; a timed-out command raises
    CommandError exactly like a failed one.
    """

    def __init__(self, dry_run: bool = False, timeout: Optional[float] = 300.0):
        self.dry_run = dry_run
        self.timeout = timeout

    def run(self, *argv: str, check: bool = True, input: Optional[str] = None) -> str:
        """Execute a command and return stdout.

        Args:
            argv: Program and arguments (no shell)
            check: If True, raise on non-zero exit
            input: Optional text fed to stdin

        Returns:
            Stdout as string (empty in dry-run mode)

        Raises:
            CommandError if the command fails or times out and check=True
        """
        if self.dry_run:
            logger.info(f"DRY RUN: {' '.join(argv)}")
            return ""

        logger.debug(f"Running: {' '.join(argv)}")
        try:
            result = subprocess.run(
                list(argv),
                input=input,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(argv, None, _text(e.stdout), _text(e.stderr), timed_out=True)
        except FileNotFoundError as e:
            raise CommandError(argv, 127, "", str(e))

        if result.returncode != 0 and check:
            raise CommandError(argv, result.returncode, result.stdout, result.stderr)

        return result.stdout


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value


class CommandStatus(str, Enum):
    """Result of command execution."""
    APPLIED = "applied"
    SKIPPED = "skipped"  # dry run
    FAILED = "failed"


@dataclass
class CommandResult:
    """Result of executing a command."""
    status: CommandStatus
    error: Optional[str] = None
    output: Optional[str] = None  # captured stdout/stderr of the failing call


class Command:
    """Base class for all mutation commands.

    Subclasses implement `_apply()`; `execute()` turns exceptions into a
    FAILED CommandResult so callers get one shape back.
    """

    def __init__(self, name: str, executor: CommandExecutor, system_root: Path = Path("/")):
        self.name = name
        self.executor = executor
        self.system_root = Path(system_root)

    def describe(self) -> str:
        """Human-readable summary used for dry-run logging."""
        return self.name

    def execute(self, dry_run: bool = False) -> CommandResult:
        if dry_run:
            logger.info(f"DRY RUN: would {self.describe()}")
            return CommandResult(status=CommandStatus.SKIPPED)
        try:
            self._apply()
            return CommandResult(status=CommandStatus.APPLIED)
        except CommandError as e:
            return CommandResult(
                status=CommandStatus.FAILED,
                error=str(e),
                output=(e.stderr or e.stdout).strip(),
            )
        except (OSError, ConfigurationError) as e:
            return CommandResult(status=CommandStatus.FAILED, error=str(e))

    def _apply(self) -> None:
        raise NotImplementedError

    def _run(self, *argv: str) -> str:
        return self.executor.run(*argv)

    def _path(self, relative: str) -> Path:
        """Resolve a path under the managed system root."""
        return self.system_root / relative.lstrip("/")


__all__ = [
    "CommandExecutor",
    "CommandStatus",
    "CommandResult",
    "Command",
    "CommandError",
]
