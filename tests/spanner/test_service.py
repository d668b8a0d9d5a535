"""Tests for the Spanner REST facade."""

import pytest

from cloudbind.core.exceptions import AbortedError, AlreadyExistsError, NotFoundError

PROJECT_PATH = "/v1/projects/test-project"


class TestServicePaths:
    """Resource path construction."""

    def test_instance_path(self, service):
        assert service.instance_path("inst") == "projects/test-project/instances/inst"

    def test_full_instance_path_passes_through(self, service):
        assert service.instance_path("projects/other/instances/x") == "projects/other/instances/x"

    def test_database_path(self, service):
        assert (
            service.database_path("inst", "db")
            == "projects/test-project/instances/inst/databases/db"
        )

    def test_instance_config_path(self, service):
        assert (
            service.instance_config_path("regional-us-central1")
            == "projects/test-project/instanceConfigs/regional-us-central1"
        )


class TestServiceRequests:
    """Request bodies and query parameters."""

    def test_list_instances_sends_page_params(self, service, api):
        api.add("GET", f"{PROJECT_PATH}/instances", {"instances": []})

        service.list_instances(token="abc", max=5)

        request = api.calls("GET", f"{PROJECT_PATH}/instances")[0]
        assert request.url.params["pageToken"] == "abc"
        assert request.url.params["pageSize"] == "5"
        assert request.headers["Authorization"] == "Bearer test-token"

    def test_list_instances_omits_unset_params(self, service, api):
        api.add("GET", f"{PROJECT_PATH}/instances", {"instances": []})

        service.list_instances()

        request = api.calls("GET", f"{PROJECT_PATH}/instances")[0]
        assert "pageToken" not in request.url.params

    def test_create_instance_body(self, service, api):
        api.add("POST", f"{PROJECT_PATH}/instances", {"name": "operations/1"})

        service.create_instance(
            "inst", name="Main", config="regional-us-central1", nodes=3, labels={"env": 1}
        )

        body = api.bodies("POST", f"{PROJECT_PATH}/instances")[0]
        assert body == {
            "instanceId": "inst",
            "instance": {
                "name": "projects/test-project/instances/inst",
                "displayName": "Main",
                "config": "projects/test-project/instanceConfigs/regional-us-central1",
                "nodeCount": 3,
                "labels": {"env": "1"},
            },
        }

    def test_update_instance_field_mask(self, service, api):
        api.add("PATCH", f"{PROJECT_PATH}/instances/inst", {"name": "operations/2"})

        service.update_instance("inst", nodes=5, labels={"a": "b"})

        body = api.bodies("PATCH", f"{PROJECT_PATH}/instances/inst")[0]
        assert body["fieldMask"] == "nodeCount,labels"
        assert "displayName" not in body["instance"]

    def test_create_database_statement(self, service, api):
        api.add("POST", f"{PROJECT_PATH}/instances/inst/databases", {"name": "operations/3"})

        service.create_database("inst", "db", ["CREATE TABLE t (id INT64) PRIMARY KEY (id)"])

        body = api.bodies("POST", f"{PROJECT_PATH}/instances/inst/databases")[0]
        assert body["createStatement"] == "CREATE DATABASE `db`"
        assert body["extraStatements"] == ["CREATE TABLE t (id INT64) PRIMARY KEY (id)"]

    def test_update_ddl_with_operation_id(self, service, api):
        path = f"{PROJECT_PATH}/instances/inst/databases/db/ddl"
        api.add("PATCH", path, {"name": "operations/4"})

        service.update_database_ddl("inst", "db", ["DROP TABLE t"], operation_id="op4")

        assert api.bodies("PATCH", path)[0] == {
            "statements": ["DROP TABLE t"],
            "operationId": "op4",
        }

    def test_batch_create_sessions(self, service, api):
        db = "projects/test-project/instances/inst/databases/db"
        api.add("POST", f"/v1/{db}/sessions:batchCreate", {"session": []})

        service.batch_create_sessions(db, 4, labels={"team": "a"})

        assert api.bodies("POST", f"/v1/{db}/sessions:batchCreate")[0] == {
            "sessionCount": 4,
            "sessionTemplate": {"labels": {"team": "a"}},
        }


class TestServiceErrors:
    """Remote faults map onto the exception hierarchy."""

    def test_missing_resource_raises_not_found(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.get_instance("missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.status == "NOT_FOUND"

    def test_status_string_wins_over_http_code(self, service, api):
        api.add(
            "POST",
            f"{PROJECT_PATH}/instances",
            {"error": {"code": 409, "message": "exists", "status": "ALREADY_EXISTS"}},
            status=409,
        )

        with pytest.raises(AlreadyExistsError):
            service.create_instance("inst")

    def test_aborted_is_distinct_from_already_exists(self, service, api):
        session = "projects/test-project/instances/inst/databases/db/sessions/s1"
        api.add(
            "POST",
            f"/v1/{session}:commit",
            {"error": {"code": 409, "message": "aborted", "status": "ABORTED"}},
            status=409,
        )

        with pytest.raises(AbortedError):
            service.commit(session, [], "tx1")
