from fastapi.testclient import TestClient

from dqaudit.main import app
from dqaudit.store import STORE


MISSING_ID = "00000000-0000-0000-0000-000000000000"


def _create_rule(client: TestClient, **fields) -> dict:
    response = client.post("/v1/rules", json={"target_table": "customers", **fields})
    assert response.status_code == 201, response.text
    return response.json()


def test_health():
    client = TestClient(app)
    assert client.get("/health").json() == {"status": "ok"}


def test_create_and_fetch_rule():
    client = TestClient(app)
    rule = _create_rule(client, target_column="email", rule_type="format_email", severity="high")

    assert rule["rule_type"] == "FORMAT_EMAIL"
    assert rule["dimension"] == "VALIDITY"
    assert rule["severity"] == "HIGH"
    assert rule["target_schema"] == "main"
    assert rule["rule_name"] == "customers.email - FORMAT_EMAIL"

    fetched = client.get(f"/v1/rules/{rule['id']}")
    assert fetched.status_code == 200
    assert fetched.json() == rule


def test_invalid_rule_is_rejected_with_error_payload():
    client = TestClient(app)
    response = client.post(
        "/v1/rules",
        json={"target_table": "customers", "target_column": "age", "rule_type": "RANGE_CHECK", "min_value": 1},
    )

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "INVALID_RULE"
    assert "max_value" in error["message"]
    assert error["retryable"] is False


def test_unknown_rule_returns_404():
    client = TestClient(app)

    assert client.get(f"/v1/rules/{MISSING_ID}").json()["error"]["code"] == "RULE_NOT_FOUND"
    assert client.post(f"/v1/rules/{MISSING_ID}/activate").status_code == 404
    assert client.post(f"/v1/rules/{MISSING_ID}/deactivate").status_code == 404


def test_deactivate_hides_rule_from_default_listing():
    client = TestClient(app)
    kept = _create_rule(client, target_column="email", rule_type="NULL_CHECK")
    dropped = _create_rule(client, target_column="phone", rule_type="NULL_CHECK")

    response = client.post(f"/v1/rules/{dropped['id']}/deactivate")
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    active = client.get("/v1/rules", params={"target_schema": "main"}).json()["items"]
    assert [rule["id"] for rule in active] == [kept["id"]]
    everything = client.get("/v1/rules", params={"include_inactive": True}).json()["items"]
    assert {rule["id"] for rule in everything} == {kept["id"], dropped["id"]}

    assert client.post(f"/v1/rules/{dropped['id']}/activate").json()["is_active"] is True


def test_audit_endpoint_runs_rules_and_exposes_results(sample_tables):
    client = TestClient(app)
    fk = _create_rule(
        client,
        target_column="segment_id",
        rule_type="FK_CHECK",
        reference_table="segments",
        reference_column="segment_id",
    )
    _create_rule(client, target_column="email", rule_type="NULL_CHECK")

    response = client.post("/v1/audits", json={"target_schema": "main", "target_table": "customers"})
    assert response.status_code == 201, response.text
    summary = response.json()
    assert summary["state"] == "COMPLETE"
    assert summary["rules_evaluated"] == 2
    assert summary["status_counts"] == {"FAIL": 1, "PASS": 1}
    assert summary["table_scores"][0]["target_table"] == "customers"

    run_id = summary["run_id"]
    results = client.get(f"/v1/runs/{run_id}/results").json()
    assert results["run_id"] == run_id
    assert {item["status"] for item in results["items"]} == {"PASS", "FAIL"}

    scores = client.get("/v1/scores", params={"target_table": "customers"}).json()["items"]
    assert [score["run_id"] for score in scores] == [run_id]
    assert scores[0]["consistency_score"] == 16.67

    exceptions = client.get("/v1/exceptions", params={"rule_id": fk["id"], "is_resolved": False}).json()["items"]
    assert [(item["primary_key_value"], item["column_value"]) for item in exceptions] == [("3", "99")]


def test_resolve_exception_endpoint(sample_tables):
    client = TestClient(app)
    _create_rule(
        client,
        target_column="segment_id",
        rule_type="FK_CHECK",
        reference_table="segments",
        reference_column="segment_id",
    )
    client.post("/v1/audits", json={"target_schema": "main"})
    [record] = STORE.list_exceptions()

    response = client.post(
        f"/v1/exceptions/{record['id']}/resolve",
        json={"resolved_by": "data-steward", "notes": "segment 99 is being migrated"},
    )
    assert response.status_code == 200
    assert response.json()["is_resolved"] is True
    assert client.get("/v1/exceptions", params={"is_resolved": False}).json()["items"] == []

    missing = client.post(f"/v1/exceptions/{MISSING_ID}/resolve", json={"resolved_by": "data-steward"})
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "EXCEPTION_NOT_FOUND"


def test_reopen_exception_endpoint(sample_tables):
    client = TestClient(app)
    _create_rule(
        client,
        target_column="segment_id",
        rule_type="FK_CHECK",
        reference_table="segments",
        reference_column="segment_id",
    )
    client.post("/v1/audits", json={"target_schema": "main"})
    [record] = STORE.list_exceptions()
    client.post(f"/v1/exceptions/{record['id']}/resolve", json={"resolved_by": "data-steward"})

    response = client.post(f"/v1/exceptions/{record['id']}/reopen", json={"notes": "migration was rolled back"})
    assert response.status_code == 200
    reopened = response.json()
    assert reopened["is_resolved"] is False
    assert reopened["resolved_by"] is None
    assert reopened["notes"] == "migration was rolled back"

    assert client.post(f"/v1/exceptions/{record['id']}/reopen").status_code == 200
    open_items = client.get("/v1/exceptions", params={"is_resolved": False}).json()["items"]
    assert [item["id"] for item in open_items] == [record["id"]]

    missing = client.post(f"/v1/exceptions/{MISSING_ID}/reopen")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "EXCEPTION_NOT_FOUND"


def test_run_results_for_unknown_run_are_empty():
    client = TestClient(app)
    response = client.get(f"/v1/runs/{MISSING_ID}/results")
    assert response.status_code == 200
    assert response.json()["items"] == []
