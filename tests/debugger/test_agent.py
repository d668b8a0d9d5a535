"""Tests for the debugger agent."""

import time
from unittest.mock import DEFAULT, MagicMock, patch

import httpx
import pytest

from cloudbind import debugger
from cloudbind.core.credentials import Credentials
from cloudbind.core.exceptions import CloudError, NotFoundError, UnavailableError
from cloudbind.debugger.agent import Agent, debuggee_from_env
from cloudbind.debugger.breakpoint import Breakpoint, Debuggee
from cloudbind.debugger.service import Service

BREAKPOINT = {"id": "b1", "location": {"path": "app/main.py", "line": 3}}


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def short_poll(*args):
    # Stand-in for the long poll so the worker does not spin.
    time.sleep(0.005)
    return DEFAULT


@pytest.fixture
def service():
    svc = MagicMock(spec=Service)
    svc.register_debuggee.return_value = {"debuggee": {"id": "d1"}}
    svc.list_active_breakpoints.return_value = {"waitExpired": True}
    svc.list_active_breakpoints.side_effect = short_poll
    return svc


@pytest.fixture
def agent(service):
    agent = Agent(service, Debuggee("p", "api", "v1"))
    yield agent
    agent.stop(timeout=2)


class TestDebuggeeFromEnv:
    """Service name and version defaults."""

    def test_app_engine_variables(self):
        debuggee = debuggee_from_env("p", environ={"GAE_SERVICE": "web", "GAE_VERSION": "42"})

        assert debuggee.service_name == "web"
        assert debuggee.service_version == "42"

    def test_fallbacks(self):
        debuggee = debuggee_from_env("p", environ={})

        assert debuggee.service_name == "default"
        assert debuggee.service_version == "unversioned"

    def test_explicit_values_win(self):
        debuggee = debuggee_from_env("p", "svc", "v9", environ={"GAE_SERVICE": "web"})

        assert (debuggee.service_name, debuggee.service_version) == ("svc", "v9")


class TestAgentProtocol:
    """Register, poll and report, called directly."""

    def test_register(self, agent, service):
        assert agent.register()

        assert agent.debuggee_id == "d1"
        sent = service.register_debuggee.call_args.args[0]
        assert sent["labels"] == {"module": "api", "version": "v1"}

    def test_disabled_debuggee(self, agent, service):
        service.register_debuggee.return_value = {"debuggee": {"id": "d1", "isDisabled": True}}

        assert not agent.register()
        assert agent.debuggee_id is None

    def test_poll_updates_tracer_and_wait_token(self, agent, service):
        agent.register()
        service.list_active_breakpoints.return_value = {
            "breakpoints": [BREAKPOINT],
            "nextWaitToken": "w1",
        }

        agent.poll()
        service.list_active_breakpoints.return_value = {"waitExpired": True}
        agent.poll()

        assert [bp.id for bp in agent.tracer.active] == ["b1"]
        assert service.list_active_breakpoints.call_args_list[1].args == ("d1", "w1")

    def test_poll_before_register_raises(self, agent, service):
        with pytest.raises(CloudError, match="not registered"):
            agent.poll()

        service.list_active_breakpoints.assert_not_called()

    def test_report(self, agent, service):
        agent.register()
        bp = Breakpoint.from_api(BREAKPOINT)
        bp.complete()

        agent.report(bp)

        debuggee_id, payload = service.update_active_breakpoint.call_args.args
        assert debuggee_id == "d1"
        assert payload["id"] == "b1"
        assert payload["isFinalState"] is True

    def test_report_failure_is_logged(self, agent, service, caplog):
        agent.register()
        service.update_active_breakpoint.side_effect = UnavailableError("down")

        agent.report(Breakpoint.from_api(BREAKPOINT))

        assert "Failed to report breakpoint b1" in caplog.text


class TestAgentThread:
    """Background worker lifecycle."""

    def test_start_and_stop(self, agent, service):
        agent.start()

        assert wait_for(lambda: service.list_active_breakpoints.called)
        assert agent.running
        assert agent.tracer.installed

        agent.stop(timeout=2)

        assert not agent.running
        assert not agent.tracer.installed

    def test_registration_retried_with_backoff(self, agent, service):
        service.register_debuggee.side_effect = [
            UnavailableError("down"),
            {"debuggee": {"id": "d7"}},
        ]

        with patch("cloudbind.debugger.agent._MIN_BACKOFF", 0.01):
            agent.start()
            assert wait_for(lambda: agent.debuggee_id == "d7")

        assert service.register_debuggee.call_count == 2

    def test_reregisters_when_debuggee_unknown(self, agent, service):
        polls = []

        def poll(*args):
            polls.append(args)
            if len(polls) == 1:
                raise NotFoundError("gone")
            return short_poll()

        service.list_active_breakpoints.side_effect = poll

        agent.start()

        assert wait_for(lambda: service.register_debuggee.call_count >= 2)

    def test_survives_unexpected_poll_failure(self, agent, service, caplog):
        polls = []

        def poll(*args):
            polls.append(args)
            if len(polls) == 1:
                raise RuntimeError("boom")
            return short_poll()

        service.list_active_breakpoints.side_effect = poll

        with patch("cloudbind.debugger.agent._MIN_BACKOFF", 0.01):
            agent.start()
            assert wait_for(lambda: len(polls) >= 2)

        assert agent.running
        assert "Unexpected debugger agent failure" in caplog.text

    def test_survives_non_json_controller_response(self, caplog):
        polls = []

        def handler(request):
            if request.url.path.endswith("/register"):
                return httpx.Response(200, json={"debuggee": {"id": "d1"}})
            polls.append(request)
            if len(polls) == 1:
                return httpx.Response(200, content=b"<html>")
            time.sleep(0.005)
            return httpx.Response(200, json={"waitExpired": True})

        svc = Service(Credentials("t"), transport=httpx.MockTransport(handler))
        agent = Agent(svc, Debuggee("p", "api", "v1"))
        try:
            with patch("cloudbind.debugger.agent._MIN_BACKOFF", 0.01):
                agent.start()
                assert wait_for(lambda: len(polls) >= 2)

            assert agent.running
            assert "not JSON" in caplog.text
        finally:
            agent.close()


class TestFactory:
    """debugger.new()."""

    def test_new_uses_debugger_project(self, monkeypatch):
        monkeypatch.setenv("DEBUGGER_PROJECT", "dbg-project")
        monkeypatch.setenv("GAE_SERVICE", "worker")
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))

        agent = debugger.new(token="t", transport=transport)

        assert agent.debuggee.project_id == "dbg-project"
        assert agent.debuggee.service_name == "worker"
        agent.close()
