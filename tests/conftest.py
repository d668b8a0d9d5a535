"""Shared fixtures: a routed fake REST API and in-memory session doubles."""

import itertools
import json
import time

import httpx
import pytest

from cloudbind.core.credentials import Credentials
from cloudbind.core.exceptions import UnavailableError
from cloudbind.spanner.pool import SessionPool, SessionPoolOptions
from cloudbind.spanner.service import Service

PROJECT = "test-project"
DB_PATH = f"projects/{PROJECT}/instances/inst/databases/db"
SESSION = f"{DB_PATH}/sessions/s1"


class FakeApi:
    """Routes ``(method, path)`` to canned JSON and records every request.

    Unrouted requests answer 404 NOT_FOUND, like the real service does for
    missing resources.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, body=None, status=200):
        """``body`` may be a dict or a callable taking the request."""
        self.routes[(method, "/" + path.lstrip("/"))] = (status, body)

    def handler(self, request):
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(
                404,
                json={"error": {"code": 404, "message": "Not found", "status": "NOT_FOUND"}},
            )
        status, body = route
        if callable(body):
            body = body(request)
        return httpx.Response(status, json=body if body is not None else {})

    def transport(self):
        return httpx.MockTransport(self.handler)

    def calls(self, method, path):
        path = "/" + path.lstrip("/")
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def bodies(self, method, path):
        return [json.loads(r.content) for r in self.calls(method, path)]


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def service(api):
    svc = Service(PROJECT, Credentials("test-token"), transport=api.transport())
    yield svc
    svc.close()


class FakeSession:
    """Stands in for :class:`cloudbind.spanner.session.Session` in pool tests."""

    _ids = itertools.count(1)

    def __init__(self):
        self.name = f"{DB_PATH}/sessions/fake{next(self._ids)}"
        self.transaction_id = None
        self.invalid = False
        self.last_updated_at = time.monotonic()
        self.keepalive_calls = 0
        self.fail_keepalive = False
        self.keepalive_gate = None
        self.deleted = False

    @property
    def session_id(self):
        return self.name.rsplit("/", 1)[-1]

    @property
    def has_transaction(self):
        return self.transaction_id is not None

    def idle_since(self, seconds, now=None):
        now = time.monotonic() if now is None else now
        return self.last_updated_at + seconds < now

    def begin_transaction(self, options=None):
        self.transaction_id = f"tx-{self.session_id}"
        return self.transaction_id

    def keepalive(self):
        self.keepalive_calls += 1
        if self.keepalive_gate is not None:
            self.keepalive_gate.wait(5)
        if self.fail_keepalive:
            raise UnavailableError("session expired")
        self.last_updated_at = time.monotonic()

    def delete(self):
        self.deleted = True


@pytest.fixture
def make_pool():
    """Build started pools of FakeSessions; every pool is closed afterwards.

    With ``gate`` set, session creation blocks until the event is set and the
    pool is returned without waiting for its initial sessions.
    """
    pools = []

    def factory(gate=None, **options):
        created = []

        def new_session():
            if gate is not None:
                gate.wait(5)
            session = FakeSession()
            created.append(session)
            return session

        pool = SessionPool(new_session, SessionPoolOptions(**options))
        pool.created = created
        pools.append(pool)
        if gate is None:
            assert pool.wait_ready(timeout=5)
        return pool

    yield factory
    for pool in pools:
        pool.close()
