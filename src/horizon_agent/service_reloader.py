"""Service reloads without full restarts where the service allows it.

Method selection:
- graceful and a known/detected reload path: signal, command or
  `systemctl reload`
- otherwise: `systemctl restart` (stop + start)

One external call per reload. Failures are reported, never retried.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, List, Dict, Union
import logging
import time

from .commands import CommandExecutor
from .errors import CommandError

logger = logging.getLogger(__name__)


class ReloadMethod(str, Enum):
    SIGNAL = "signal"
    COMMAND = "command"
    SYSTEMD = "systemd"
    RESTART = "restart"


@dataclass(frozen=True)
class ReloadStrategy:
    """How a service picks up new configuration.

    `argument` is the signal name for SIGNAL and the argv string for
    COMMAND; unused otherwise.
    """
    method: ReloadMethod
    argument: Optional[str] = None

    @classmethod
    def signal(cls, name: str = "HUP") -> "ReloadStrategy":
        return cls(ReloadMethod.SIGNAL, name)

    @classmethod
    def command(cls, command: str) -> "ReloadStrategy":
        return cls(ReloadMethod.COMMAND, command)


SYSTEMD_RELOAD = ReloadStrategy(ReloadMethod.SYSTEMD)
RESTART = ReloadStrategy(ReloadMethod.RESTART)

KNOWN_STRATEGIES: Dict[str, ReloadStrategy] = {
    # Web servers
    "nginx": ReloadStrategy.signal("HUP"),
    "apache2": ReloadStrategy.command("apachectl graceful"),
    "httpd": ReloadStrategy.command("apachectl graceful"),
    # Mail
    "postfix": ReloadStrategy.command("postfix reload"),
    "dovecot": ReloadStrategy.command("doveadm reload"),
    # DNS
    "bind9": ReloadStrategy.command("rndc reload"),
    "named": ReloadStrategy.command("rndc reload"),
    # Other
    "sshd": ReloadStrategy.signal("HUP"),
    "rsyslog": ReloadStrategy.signal("HUP"),
    "NetworkManager": SYSTEMD_RELOAD,
    "systemd-resolved": SYSTEMD_RELOAD,
    "systemd-timesyncd": SYSTEMD_RELOAD,
    # Display managers cannot reload in place
    "gdm": RESTART,
    "sddm": RESTART,
    "lightdm": RESTART,
}

# Reload order when several services change together.
PRIORITY_ORDER = ["NetworkManager", "systemd-resolved", "sshd", "nginx", "apache2", "httpd"]


@dataclass(frozen=True)
class ReloadSuccess:
    service_name: str
    method: ReloadMethod

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ReloadFailure:
    service_name: str
    error: Exception

    @property
    def ok(self) -> bool:
        return False


ReloadResult = Union[ReloadSuccess, ReloadFailure]


@dataclass
class ServiceReloadState:
    service_name: str
    last_reload_attempt: float = 0.0
    last_successful_reload: float = 0.0
    reload_count: int = 0
    last_error: Optional[str] = None


class ServiceReloader:
    """Picks a reload method per service and applies it."""

    def __init__(self, executor: CommandExecutor, strategies: Optional[Dict[str, ReloadStrategy]] = None):
        self.executor = executor
        self.strategies: Dict[str, ReloadStrategy] = dict(KNOWN_STRATEGIES)
        if strategies:
            self.strategies.update(strategies)
        self.states: Dict[str, ServiceReloadState] = {}

    def register_strategy(self, service_name: str, strategy: ReloadStrategy) -> None:
        self.strategies[service_name] = strategy

    def get_reload_state(self, service_name: str) -> Optional[ServiceReloadState]:
        return self.states.get(service_name)

    def reload_service(self, service_name: str, graceful: bool = True) -> ReloadResult:
        state = self.states.setdefault(service_name, ServiceReloadState(service_name))
        state.last_reload_attempt = time.time()

        try:
            strategy = self._strategy_for(service_name) if graceful else RESTART
            self._apply(service_name, strategy)
        except CommandError as e:
            logger.warning(f"Reload of {service_name} failed: {e}")
            state.last_error = str(e)
            return ReloadFailure(service_name, e)

        state.last_successful_reload = time.time()
        state.reload_count += 1
        state.last_error = None
        logger.info(f"Reloaded {service_name} via {strategy.method.value}")
        return ReloadSuccess(service_name, strategy.method)

    def reload_services(self, service_names: List[str], graceful: bool = True) -> Dict[str, ReloadResult]:
        """Reload several services sequentially in dependency order."""
        ordered = sorted(
            service_names,
            key=lambda s: PRIORITY_ORDER.index(s) if s in PRIORITY_ORDER else len(PRIORITY_ORDER),
        )
        return {name: self.reload_service(name, graceful=graceful) for name in ordered}

    def _strategy_for(self, service_name: str) -> ReloadStrategy:
        strategy = self.strategies.get(service_name)
        if strategy is not None:
            return strategy
        strategy = self._detect_strategy(service_name)
        self.strategies[service_name] = strategy
        return strategy

    def _detect_strategy(self, service_name: str) -> ReloadStrategy:
        """Ask systemd whether the unit declares ExecReload."""
        output = self.executor.run("systemctl", "show", "-p", "CanReload", service_name, check=False)
        if "CanReload=yes" in output:
            return SYSTEMD_RELOAD
        return RESTART

    def _apply(self, service_name: str, strategy: ReloadStrategy) -> None:
        if strategy.method == ReloadMethod.SIGNAL:
            self.executor.run(
                "systemctl", "kill", "--kill-whom=main", f"--signal={strategy.argument}", service_name
            )
        elif strategy.method == ReloadMethod.COMMAND:
            self.executor.run(*strategy.argument.split())
        elif strategy.method == ReloadMethod.SYSTEMD:
            self.executor.run("systemctl", "reload", service_name)
        elif strategy.method == ReloadMethod.RESTART:
            self.executor.run("systemctl", "restart", service_name)
        else:
            raise ValueError(f"Unhandled reload method: {strategy.method}")
