"""
Tests for reload method selection and dispatch.
"""

from horizon_agent.service_reloader import (
    ReloadFailure,
    ReloadMethod,
    ReloadStrategy,
    ReloadSuccess,
    ServiceReloader,
)


class TestMethodSelection:
    def test_known_signal_service(self, executor):
        result = ServiceReloader(executor).reload_service("nginx")

        assert result == ReloadSuccess("nginx", ReloadMethod.SIGNAL)
        assert executor.calls == [("systemctl", "kill", "--kill-whom=main", "--signal=HUP", "nginx")]

    def test_known_command_service(self, executor):
        result = ServiceReloader(executor).reload_service("postfix")

        assert result.method == ReloadMethod.COMMAND
        assert executor.calls == [("postfix", "reload")]

    def test_not_graceful_restarts(self, executor):
        result = ServiceReloader(executor).reload_service("nginx", graceful=False)

        assert result.method == ReloadMethod.RESTART
        assert executor.calls == [("systemctl", "restart", "nginx")]

    def test_unknown_service_with_exec_reload(self, executor):
        executor.respond("systemctl", "show", "-p", "CanReload", output="CanReload=yes\n")

        result = ServiceReloader(executor).reload_service("myapp")

        assert result.method == ReloadMethod.SYSTEMD
        assert executor.calls[-1] == ("systemctl", "reload", "myapp")

    def test_unknown_service_without_reload_restarts(self, executor):
        executor.respond("systemctl", "show", "-p", "CanReload", output="CanReload=no\n")

        result = ServiceReloader(executor).reload_service("myapp")

        assert result.method == ReloadMethod.RESTART
        assert executor.calls[-1] == ("systemctl", "restart", "myapp")

    def test_detection_is_cached(self, executor):
        reloader = ServiceReloader(executor)
        reloader.reload_service("myapp")
        reloader.reload_service("myapp")

        assert len(executor.called("systemctl", "show")) == 1

    def test_registered_strategy_wins(self, executor):
        reloader = ServiceReloader(executor)
        reloader.register_strategy("nginx", ReloadStrategy.command("nginx -s reload"))

        reloader.reload_service("nginx")

        assert executor.calls == [("nginx", "-s", "reload")]


class TestFailures:
    def test_failure_is_reported_not_retried(self, executor):
        executor.fail("systemctl", "kill")
        reloader = ServiceReloader(executor)

        result = reloader.reload_service("sshd")

        assert isinstance(result, ReloadFailure)
        assert not result.ok
        assert len(executor.calls) == 1
        state = reloader.get_reload_state("sshd")
        assert state.reload_count == 0
        assert state.last_error

    def test_success_updates_state(self, executor):
        reloader = ServiceReloader(executor)
        reloader.reload_service("sshd")

        state = reloader.get_reload_state("sshd")
        assert state.reload_count == 1
        assert state.last_error is None
        assert state.last_successful_reload >= state.last_reload_attempt


class TestBatch:
    def test_priority_order(self, executor):
        results = ServiceReloader(executor).reload_services(["nginx", "sshd", "NetworkManager"])

        assert list(results) == ["NetworkManager", "sshd", "nginx"]
        assert all(r.ok for r in results.values())


class TestDetectionFailures:
    def test_detection_timeout_is_a_failure(self, executor):
        executor.fail("systemctl", "show", timed_out=True, returncode=None)
        reloader = ServiceReloader(executor)

        result = reloader.reload_service("myapp")

        assert isinstance(result, ReloadFailure)
        assert result.error.timed_out
        assert executor.called("systemctl", "restart") == []
        assert reloader.get_reload_state("myapp").last_error

    def test_failed_detection_is_not_cached(self, executor):
        executor.fail("systemctl", "show", timed_out=True, returncode=None)
        reloader = ServiceReloader(executor)
        reloader.reload_service("myapp")

        executor.failures.clear()
        executor.respond("systemctl", "show", "-p", "CanReload", output="CanReload=yes\n")

        assert reloader.reload_service("myapp") == ReloadSuccess("myapp", ReloadMethod.SYSTEMD)
