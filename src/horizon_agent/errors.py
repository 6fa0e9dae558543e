"""Exception hierarchy for the reconciliation core.

Collaborators (executor, mutator, deployment store, snapshot store) raise
these; the orchestrators turn them into result variants.
"""

from typing import Optional, Sequence


class HorizonError(Exception):
    """Base class for all agent errors."""


class ConfigurationError(HorizonError):
    """A configuration document could not be parsed."""


class CommandError(HorizonError):
    """An external command exited non-zero or timed out."""

    def __init__(
        self,
        argv: Sequence[str],
        returncode: Optional[int],
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
    ):
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out
        if timed_out:
            detail = "timed out"
        else:
            detail = f"exit code {returncode}"
        super().__init__(
            f"Command failed ({detail}): {' '.join(self.argv)}\n"
            f"Stderr: {stderr}\nStdout: {stdout}"
        )


class MutationError(HorizonError):
    """A System Mutator verb failed. Carries the failing command output."""

    def __init__(self, verb: str, message: str, output: Optional[str] = None):
        self.verb = verb
        self.output = output
        super().__init__(f"{verb}: {message}")


class DeploymentError(HorizonError):
    """The versioned filesystem store rejected an operation."""


class StateSyncError(HorizonError):
    """Reading or writing persisted state failed."""


class SnapshotError(StateSyncError):
    """A snapshot could not be created or restored."""


class UnsupportedChangeError(HorizonError):
    """No live handler exists for a change type."""


class UpdateInProgressError(HorizonError):
    """A live update is already running in this process."""


class ServiceReloadError(HorizonError):
    """The Service Reloader reported a failure for a service."""

    def __init__(self, service: str, cause: BaseException):
        self.service = service
        self.cause = cause
        super().__init__(f"Failed to reload {service}: {cause}")
