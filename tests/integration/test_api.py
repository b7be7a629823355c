import sqlite3

import pytest
from fastapi.testclient import TestClient

from api.main import app


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("QUERYGATE_CONFIG_HOME", str(tmp_path / "global"))
    return TestClient(app)


@pytest.fixture
def db_file(tmp_path):
    db_path = tmp_path / "metrics.db"
    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute("CREATE TABLE metrics (name TEXT PRIMARY KEY, value REAL)")
        conn.execute("INSERT INTO metrics VALUES ('latency', 12.5), ('errors', 3)")
        conn.commit()
    finally:
        conn.close()
    return str(db_path)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_query_returns_envelope(client, db_file):
    response = client.post(
        "/query",
        json={"engine": "sqlite", "file": db_file, "sql": "SELECT name, value FROM metrics ORDER BY name", "max_rows": 1},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["command"] == "query"
    assert body["data"]["rows"] == [["errors", 3.0]]
    assert body["data"]["truncated"] is True
    assert body["meta"]["rows_returned"] == 1


def test_write_statement_maps_to_403(client, db_file):
    response = client.post("/query", json={"engine": "sqlite", "file": db_file, "sql": "DROP TABLE metrics"})
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "CAPABILITY_VIOLATION"


def test_failed_statement_maps_to_422(client, db_file):
    response = client.post("/query", json={"engine": "sqlite", "file": db_file, "sql": "SELECT * FROM missing"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "QUERY_FAILED"


def test_connection_failure_maps_to_502(client, tmp_path):
    response = client.post("/connect", json={"engine": "sqlite", "file": str(tmp_path / "absent.db")})
    assert response.status_code == 502
    assert response.json()["error"]["code"] == "CONNECTION_FAILED"


def test_missing_profile_maps_to_400(client):
    response = client.post("/query", json={"name": "nope", "sql": "SELECT 1"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CONFIG_ERROR"


def test_connect_save_then_query_by_name(client, db_file, tmp_path):
    response = client.post("/connect", json={"engine": "sqlite", "file": db_file, "name": "metrics", "save": "local"})
    assert response.status_code == 200
    assert response.json()["data"]["saved"]["path"] == str(tmp_path / ".querygate" / "config.json")

    response = client.post("/query", json={"name": "metrics", "sql": "SELECT count(*) FROM metrics"})
    assert response.json()["data"]["rows"] == [[2]]


def test_introspect_table_details(client, db_file):
    response = client.post(
        "/introspect",
        json={"engine": "sqlite", "file": db_file, "operation": "table_details", "target": "metrics", "fields": ["columns", "primary_key"]},
    )
    assert response.status_code == 200
    table = response.json()["data"]["table"]
    assert [column["name"] for column in table["columns"]] == ["name", "value"]
    assert table["primary_key"] == ["name"]
    assert table["indexes"] == []


def test_introspect_unsupported_operation_maps_to_400(client, db_file):
    response = client.post("/introspect", json={"engine": "sqlite", "file": db_file, "operation": "list_databases"})
    assert response.status_code == 400
    assert "ListDatabases" in response.json()["error"]["message"]


def test_request_validation_is_rejected_by_fastapi(client):
    response = client.post("/query", json={"engine": "sqlite", "file": "x.db", "sql": "SELECT 1", "max_rows": -5})
    assert response.status_code == 422
    assert "detail" in response.json()
