"""Tests for the Spanner data client."""

import datetime

import pytest

from cloudbind.core.exceptions import AbortedError, ClientClosedError, ConfigurationError
from cloudbind.spanner.client import Client
from cloudbind.spanner.range import KeyRange

DB = "projects/test-project/instances/inst/databases/db"
SESSION = f"{DB}/sessions/s1"


@pytest.fixture
def routed(api):
    api.add("POST", f"/v1/{DB}/sessions", {"name": SESSION})
    api.add("DELETE", f"/v1/{SESSION}", {})
    api.add("POST", f"/v1/{SESSION}:beginTransaction", {"id": "tx1"})
    api.add("POST", f"/v1/{SESSION}:commit", {"commitTimestamp": "2024-05-01T12:00:00.123456789Z"})
    api.add("POST", f"/v1/{SESSION}:rollback", {})
    api.add(
        "POST",
        f"/v1/{SESSION}:executeSql",
        {
            "metadata": {
                "rowType": {
                    "fields": [
                        {"name": "id", "type": {"code": "INT64"}},
                        {"name": "name", "type": {"code": "STRING"}},
                    ]
                }
            },
            "rows": [["1", "Ada"], ["2", "Grace"]],
        },
    )
    return api


@pytest.fixture
def client(service, routed):
    db = Client(service, "inst", "db", pool={"min": 0, "max": 2})
    yield db
    db.close()


class TestClientReads:
    """Single-use read-only queries."""

    def test_execute_decodes_rows(self, client):
        rows = list(client.execute("SELECT id, name FROM users"))

        assert rows == [{"id": 1, "name": "Ada"}, {"id": 2, "name": "Grace"}]

    def test_execute_uses_strong_single_use_transaction(self, client, routed):
        client.execute("SELECT 1")

        body = routed.bodies("POST", f"/v1/{SESSION}:executeSql")[0]
        assert body["transaction"] == {
            "singleUse": {"readOnly": {"strong": True, "returnReadTimestamp": True}}
        }

    def test_execute_encodes_params(self, client, routed):
        client.execute("SELECT * FROM users WHERE id = @id", params={"id": 7})

        body = routed.bodies("POST", f"/v1/{SESSION}:executeSql")[0]
        assert body["params"] == {"id": "7"}
        assert body["paramTypes"] == {"id": {"code": "INT64"}}

    def test_execute_with_staleness(self, client, routed):
        client.execute("SELECT 1", staleness=10)

        body = routed.bodies("POST", f"/v1/{SESSION}:executeSql")[0]
        assert body["transaction"]["singleUse"]["readOnly"]["exactStaleness"] == "10.0s"

    def test_conflicting_bounds_raise(self, client):
        with pytest.raises(ValueError):
            client.execute("SELECT 1", strong=True, staleness=5)

    def test_session_returned_after_read(self, client):
        client.execute("SELECT 1")

        assert client.pool.leased_count == 0
        assert client.pool.available_count == 1


class TestClientWrites:
    """Single-shot mutations and the commit context manager."""

    def test_insert_commits_single_use(self, client, routed):
        timestamp = client.insert("users", {"id": 1, "name": "Ada"})

        body = routed.bodies("POST", f"/v1/{SESSION}:commit")[0]
        assert timestamp == "2024-05-01T12:00:00.123456789Z"
        assert body["singleUseTransaction"] == {"readWrite": {}}
        assert body["mutations"] == [
            {"insert": {"table": "users", "columns": ["id", "name"], "values": [["1", "Ada"]]}}
        ]

    def test_upsert_uses_insert_or_update(self, client, routed):
        client.upsert("users", [{"id": 1}, {"id": 2}])

        mutation = routed.bodies("POST", f"/v1/{SESSION}:commit")[0]["mutations"][0]
        assert mutation == {
            "insertOrUpdate": {"table": "users", "columns": ["id"], "values": [["1"], ["2"]]}
        }

    def test_delete_by_range(self, client, routed):
        client.delete("users", KeyRange(1, 10, exclude_end=True))

        mutation = routed.bodies("POST", f"/v1/{SESSION}:commit")[0]["mutations"][0]
        assert mutation == {
            "delete": {
                "table": "users",
                "keySet": {"ranges": [{"startClosed": ["1"], "endOpen": ["10"]}]},
            }
        }

    def test_delete_all_rows(self, client, routed):
        client.delete("users")

        mutation = routed.bodies("POST", f"/v1/{SESSION}:commit")[0]["mutations"][0]
        assert mutation["delete"]["keySet"] == {"all": True}

    def test_commit_block_sends_nothing_on_error(self, client, routed):
        with pytest.raises(RuntimeError):
            with client.commit() as c:
                c.insert("users", {"id": 1})
                raise RuntimeError("boom")

        assert routed.calls("POST", f"/v1/{SESSION}:commit") == []


class TestClientTransactions:
    """Read-write transactions."""

    def test_commits_buffered_mutations(self, client, routed):
        with client.transaction() as tx:
            tx.insert("users", {"id": 3, "name": "Linus"})

        body = routed.bodies("POST", f"/v1/{SESSION}:commit")[0]
        assert body["transactionId"] == "tx1"
        assert "singleUseTransaction" not in body
        assert tx.finished
        assert tx.committed_at == "2024-05-01T12:00:00.123456789Z"
        assert client.pool.leased_count == 0

    def test_rolls_back_on_error(self, client, routed):
        with pytest.raises(KeyError):
            with client.transaction() as tx:
                tx.insert("users", {"id": 3})
                raise KeyError("boom")

        assert routed.bodies("POST", f"/v1/{SESSION}:rollback") == [{"transactionId": "tx1"}]
        assert routed.calls("POST", f"/v1/{SESSION}:commit") == []
        assert client.pool.leased_count == 0
        assert client.pool.available_count == 1

    def test_dml_sequence_numbers_increase(self, client, routed):
        with client.transaction() as tx:
            tx.execute("UPDATE users SET name = 'x' WHERE id = 1")
            tx.execute("UPDATE users SET name = 'y' WHERE id = 2")

        seqnos = [b["seqno"] for b in routed.bodies("POST", f"/v1/{SESSION}:executeSql")]
        assert seqnos == ["1", "2"]

    def test_aborted_commit_propagates(self, client, routed):
        routed.add(
            "POST",
            f"/v1/{SESSION}:commit",
            {"error": {"code": 409, "message": "Transaction aborted", "status": "ABORTED"}},
            status=409,
        )

        with pytest.raises(AbortedError):
            with client.transaction() as tx:
                tx.insert("users", {"id": 1})

        assert client.pool.leased_count == 0

    def test_snapshot_reads_share_transaction(self, client, routed):
        when = datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)

        with client.snapshot(timestamp=when) as snap:
            snap.execute("SELECT 1")
            snap.execute("SELECT 2")

        begin = routed.bodies("POST", f"/v1/{SESSION}:beginTransaction")[0]
        assert begin["options"]["readOnly"]["readTimestamp"] == "2024-01-02T03:04:05.000000Z"
        selectors = [b["transaction"] for b in routed.bodies("POST", f"/v1/{SESSION}:executeSql")]
        assert selectors == [{"id": "tx1"}, {"id": "tx1"}]


class TestClientLifecycle:
    """Construction and shutdown."""

    def test_invalid_pool_options_fail_before_any_request(self, service, api):
        with pytest.raises(ConfigurationError):
            Client(service, "inst", "db", pool={"min": 5, "max": 1})

        assert api.requests == []

    def test_closed_client_rejects_calls(self, client):
        client.close()

        with pytest.raises(ClientClosedError):
            client.execute("SELECT 1")

    def test_close_deletes_pooled_sessions(self, client, routed):
        client.execute("SELECT 1")

        client.close()

        assert len(routed.calls("DELETE", f"/v1/{SESSION}")) == 1

    def test_range_helper(self):
        key_range = Client.range(1, 5, exclude_begin=True)

        assert key_range == KeyRange(1, 5, exclude_begin=True)
        assert not key_range.begin_closed
        assert key_range.end_closed
