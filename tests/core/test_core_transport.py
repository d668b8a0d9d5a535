"""Tests for the REST connection, pagination and long-running operations."""

from unittest.mock import Mock, patch

import httpx
import pytest

from cloudbind.core.connection import Connection
from cloudbind.core.credentials import Credentials
from cloudbind.core.exceptions import (
    AuthError,
    ClientClosedError,
    NotFoundError,
    TransportError,
)
from cloudbind.core.jobs import Job
from cloudbind.core.paging import Page


def connection_for(handler, credentials=None):
    credentials = credentials or Credentials("tok")
    return Connection(
        "https://api.test/v1", credentials, transport=httpx.MockTransport(handler)
    )


class TestConnection:
    """Request/response handling."""

    def test_prefixes_base_path_and_sends_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        conn = connection_for(handler)

        assert conn.get("projects/p", params={"a": 1, "b": None}) == {"ok": True}
        assert seen[0].url.path == "/v1/projects/p"
        assert dict(seen[0].url.params) == {"a": "1"}
        assert seen[0].headers["Authorization"] == "Bearer tok"

    def test_empty_body_is_empty_dict(self):
        conn = connection_for(lambda request: httpx.Response(204))

        assert conn.delete("x") == {}

    def test_error_body_is_mapped(self):
        def handler(request):
            return httpx.Response(
                404, json={"error": {"code": 404, "message": "No such thing", "status": "NOT_FOUND"}}
            )

        conn = connection_for(handler)

        with pytest.raises(NotFoundError, match="No such thing"):
            conn.get("x")

    def test_non_json_error_body(self):
        conn = connection_for(lambda request: httpx.Response(404, text="<html>"))

        with pytest.raises(NotFoundError, match="HTTP 404"):
            conn.get("x")

    def test_non_json_success_body_is_transport_error(self):
        conn = connection_for(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(TransportError, match="not JSON"):
            conn.get("x")

    def test_unauthenticated_invalidates_credentials(self):
        credentials = Mock(spec=Credentials)
        credentials.headers.return_value = {"Authorization": "Bearer old"}
        conn = connection_for(lambda request: httpx.Response(401, json={}), credentials)

        with pytest.raises(AuthError):
            conn.get("x")
        credentials.invalidate.assert_called_once()

    def test_network_failure_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        conn = connection_for(handler)

        with pytest.raises(TransportError):
            conn.post("x", {})

    def test_closed_connection_rejects_requests(self):
        conn = connection_for(lambda request: httpx.Response(200, json={}))
        conn.close()
        conn.close()

        assert conn.closed
        with pytest.raises(ClientClosedError):
            conn.get("x")


class TestPage:
    """Token-based pagination."""

    def make_page(self, responses):
        fetch = Mock(side_effect=lambda token, max: responses[token])
        page = Page.from_response(
            responses[None], key="items", item=lambda raw: raw["v"], fetch=fetch, max=None
        )
        return page, fetch

    def test_walks_every_page(self):
        page, fetch = self.make_page(
            {
                None: {"items": [{"v": 1}], "nextPageToken": "A"},
                "A": {"items": [{"v": 2}], "nextPageToken": "B"},
                "B": {"items": [{"v": 3}], "nextPageToken": ""},
            }
        )

        assert list(page.all()) == [1, 2, 3]
        assert fetch.call_count == 2

    def test_request_limit(self):
        page, fetch = self.make_page(
            {
                None: {"items": [{"v": 1}], "nextPageToken": "A"},
                "A": {"items": [{"v": 2}], "nextPageToken": "B"},
                "B": {"items": [{"v": 3}]},
            }
        )

        assert list(page.all(request_limit=1)) == [1, 2]
        assert fetch.call_count == 1

    def test_page_is_a_list(self):
        page, _ = self.make_page({None: {"items": [{"v": 1}, {"v": 2}]}})

        assert page == [1, 2]
        assert page.token is None
        assert not page.has_next()


class TestJob:
    """Long-running operation polling."""

    def test_polls_until_done(self):
        states = iter(
            [
                {"name": "operations/1", "done": False},
                {"name": "operations/1", "done": True, "response": {"value": 7}},
            ]
        )
        get = Mock(side_effect=lambda name: next(states))
        job = Job({"name": "operations/1"}, get=get, wrap=lambda raw: raw["value"])

        with patch("cloudbind.core.jobs.time.sleep") as sleep:
            job.wait_until_done(interval=1.0)

        assert job.result == 7
        assert get.call_count == 2
        delays = [c.args[0] for c in sleep.call_args_list]
        assert delays == [1.0, 1.3]

    def test_error_is_mapped(self):
        job = Job(
            {"name": "operations/2", "done": True, "error": {"code": 6, "message": "exists"}},
            get=Mock(),
        )

        assert job.error.status == "ALREADY_EXISTS"
        assert job.error.status_code == 409
        assert job.result is None

    def test_timeout(self):
        job = Job({"name": "operations/3"}, get=Mock(return_value={"name": "operations/3"}))

        with patch("cloudbind.core.jobs.time.sleep"):
            with pytest.raises(TimeoutError):
                job.wait_until_done(interval=1.0, timeout=0.5)
