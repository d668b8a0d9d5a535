"""Tests for the debugger controller REST facade."""

import pytest

from cloudbind.core.credentials import Credentials
from cloudbind.debugger.service import Service

BASE = "/v2/controller/debuggees"


@pytest.fixture
def controller(api):
    svc = Service(Credentials("test-token"), transport=api.transport())
    yield svc
    svc.close()


class TestControllerRequests:
    """Endpoints used by the agent."""

    def test_register_wraps_debuggee(self, controller, api):
        api.add("POST", f"{BASE}/register", {"debuggee": {"id": "d1"}})

        result = controller.register_debuggee({"project": "p"})

        assert result == {"debuggee": {"id": "d1"}}
        assert api.bodies("POST", f"{BASE}/register") == [{"debuggee": {"project": "p"}}]

    def test_list_sends_wait_token(self, controller, api):
        api.add("GET", f"{BASE}/d1/breakpoints", {"breakpoints": []})

        controller.list_active_breakpoints("d1", "token-1")

        params = api.calls("GET", f"{BASE}/d1/breakpoints")[0].url.params
        assert params["waitToken"] == "token-1"
        assert params["successOnTimeout"] == "true"

    def test_first_list_has_no_wait_token(self, controller, api):
        api.add("GET", f"{BASE}/d1/breakpoints", {"breakpoints": []})

        controller.list_active_breakpoints("d1")

        assert "waitToken" not in api.calls("GET", f"{BASE}/d1/breakpoints")[0].url.params

    def test_update_puts_breakpoint(self, controller, api):
        api.add("PUT", f"{BASE}/d1/breakpoints/b1", {})

        controller.update_active_breakpoint("d1", {"id": "b1", "isFinalState": True})

        assert api.bodies("PUT", f"{BASE}/d1/breakpoints/b1") == [
            {"breakpoint": {"id": "b1", "isFinalState": True}}
        ]
