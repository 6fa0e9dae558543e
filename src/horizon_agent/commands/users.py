"""User commands: Create, Modify, Remove."""

from typing import Sequence, List

from ..models import User
from . import Command, CommandExecutor


def useradd_args(user: User) -> List[str]:
    args = ["useradd", "-m", "-d", user.home, "-s", user.shell]
    if user.uid is not None:
        args.extend(["-u", str(user.uid)])
    if user.groups:
        args.extend(["-G", ",".join(user.groups)])
    args.append(user.name)
    return args


class CreateUsers(Command):
    def __init__(self, users: Sequence[User], executor: CommandExecutor):
        super().__init__("users:create", executor)
        self.users = list(users)

    def describe(self) -> str:
        return f"create users: {', '.join(u.name for u in self.users)}"

    def _apply(self) -> None:
        for user in self.users:
            self._run(*useradd_args(user))


class ModifyUser(Command):
    """Bring an existing account in line with its new definition."""

    def __init__(self, old: User, new: User, executor: CommandExecutor):
        super().__init__("users:modify", executor)
        self.old = old
        self.new = new

    def describe(self) -> str:
        return f"modify user {self.new.name}"

    def _apply(self) -> None:
        args = ["usermod"]
        if self.old.shell != self.new.shell:
            args.extend(["-s", self.new.shell])
        if self.old.uid != self.new.uid and self.new.uid is not None:
            args.extend(["-u", str(self.new.uid)])
        if self.old.groups != self.new.groups:
            args.extend(["-G", ",".join(self.new.groups)])
        if self.old.home != self.new.home:
            args.extend(["-d", self.new.home, "-m"])
        if len(args) == 1:
            return
        args.append(self.new.name)
        self._run(*args)


class RemoveUsers(Command):
    """Delete accounts. Home directories are left in place."""

    def __init__(self, users: Sequence[User], executor: CommandExecutor):
        super().__init__("users:remove", executor)
        self.users = list(users)

    def describe(self) -> str:
        return f"remove users: {', '.join(u.name for u in self.users)}"

    def _apply(self) -> None:
        for user in self.users:
            self._run("userdel", user.name)


class EnsureUsers(Command):
    """Create each user, falling back to usermod when the account exists.

    Used by full deployments where the starting state is unknown.
    """

    def __init__(self, users: Sequence[User], executor: CommandExecutor):
        super().__init__("users:ensure", executor)
        self.users = list(users)

    def describe(self) -> str:
        return f"ensure users: {', '.join(u.name for u in self.users)}"

    def _apply(self) -> None:
        for user in self.users:
            exists = self.executor.run("id", "-u", user.name, check=False).strip()
            if not exists:
                self._run(*useradd_args(user))
                continue
            self._run("usermod", "-s", user.shell, user.name)
            if user.groups:
                self._run("usermod", "-G", ",".join(user.groups), user.name)
