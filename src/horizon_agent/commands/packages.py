"""Package commands: Install, Remove.

Both run one pacman transaction for the whole list so a failure leaves
pacman's own rollback in charge.
"""

from typing import Sequence

from ..models import Package
from . import Command, CommandExecutor


class PackageCommand(Command):
    """Base class for package operations."""

    def __init__(self, name: str, packages: Sequence[Package], executor: CommandExecutor):
        super().__init__(f"packages:{name}", executor)
        self.packages = list(packages)

    @property
    def package_names(self):
        return [p.name for p in self.packages]


class InstallPackages(PackageCommand):
    def __init__(self, packages: Sequence[Package], executor: CommandExecutor):
        super().__init__("install", packages, executor)

    def describe(self) -> str:
        return f"install packages: {', '.join(self.package_names)}"

    def _apply(self) -> None:
        if not self.packages:
            return
        self._run("pacman", "-S", "--needed", "--noconfirm", *self.package_names)


class RemovePackages(PackageCommand):
    def __init__(self, packages: Sequence[Package], executor: CommandExecutor):
        super().__init__("remove", packages, executor)

    def describe(self) -> str:
        return f"remove packages: {', '.join(self.package_names)}"

    def _apply(self) -> None:
        if not self.packages:
            return
        self._run("pacman", "-R", "--noconfirm", *self.package_names)
