import json

import pytest

from dqaudit import mcp_tools
from dqaudit.errors import InvalidRule, RuleNotFound
from dqaudit.mcp_server import MCP_TOOL_NAMES, create_mcp_server


MISSING_ID = "00000000-0000-0000-0000-000000000000"


def _fk_rule() -> dict:
    return mcp_tools.add_rule(
        target_table="customers",
        target_column="segment_id",
        rule_type="FK_CHECK",
        reference_table="segments",
        reference_column="segment_id",
        severity="critical",
    )


def test_mcp_rule_management_flow():
    rule = mcp_tools.add_rule(
        target_table="customers",
        target_column="status",
        rule_type="DOMAIN_CHECK",
        allowed_values=["ACTIVE", "CLOSED"],
    )
    assert rule["allowed_values"] == ["ACTIVE", "CLOSED"]
    assert rule["warning_pct"] == 90.0

    listed = mcp_tools.list_rules(target_schema="main", target_table="customers")
    assert [item["id"] for item in listed] == [rule["id"]]

    paused = mcp_tools.set_rule_active(rule_id=rule["id"], active=False)
    assert paused["is_active"] is False
    assert mcp_tools.list_rules(target_schema="main") == []
    assert len(mcp_tools.list_rules(target_schema="main", include_inactive=True)) == 1


def test_mcp_add_rule_surfaces_configuration_errors():
    with pytest.raises(InvalidRule, match="regex_pattern"):
        mcp_tools.add_rule(target_table="customers", target_column="email", rule_type="REGEX_MATCH")
    with pytest.raises(RuleNotFound):
        mcp_tools.set_rule_active(rule_id=MISSING_ID, active=True)


def test_mcp_audit_and_review_flow(sample_tables):
    rule = _fk_rule()

    summary = mcp_tools.run_audit(target_schema="main", target_table="customers")
    assert summary["state"] == "COMPLETE"
    assert summary["status_counts"] == {"FAIL": 1}

    results = mcp_tools.get_run_results(run_id=summary["run_id"])
    assert [(item["rule_id"], item["status"], item["failed"]) for item in results] == [(rule["id"], "FAIL", 1)]

    scores = mcp_tools.list_table_scores(target_schema="main", since="2000-01-01")
    assert [item["target_table"] for item in scores] == ["customers"]
    assert mcp_tools.list_table_scores(since="2999-01-01") == []

    [exception] = mcp_tools.list_exceptions(rule_id=rule["id"], is_resolved=False)
    resolved = mcp_tools.resolve_exception(exception_id=exception["id"], resolved_by="data-steward")
    assert resolved["is_resolved"] is True
    assert mcp_tools.list_exceptions(is_resolved=False) == []

    reopened = mcp_tools.reopen_exception(exception_id=exception["id"], notes="segment 99 still missing")
    assert reopened["is_resolved"] is False
    assert reopened["notes"] == "segment 99 still missing"
    assert [item["id"] for item in mcp_tools.list_exceptions(is_resolved=False)] == [exception["id"]]


def test_mcp_tool_names_cover_the_audit_surface():
    assert set(MCP_TOOL_NAMES) == {
        "add_rule",
        "list_rules",
        "set_rule_active",
        "run_audit",
        "get_run_results",
        "list_table_scores",
        "list_exceptions",
        "resolve_exception",
        "reopen_exception",
    }
    for name in MCP_TOOL_NAMES:
        assert callable(getattr(mcp_tools, name))


def test_mcp_server_constructs():
    pytest.importorskip("mcp")
    server = create_mcp_server()
    assert server is not None


def test_mcp_wrapped_tool_reports_domain_code():
    pytest.importorskip("mcp")
    server = create_mcp_server()
    wrapped = server._tool_manager.get_tool("set_rule_active").fn
    try:
        wrapped(rule_id=MISSING_ID, active=True)
        raise AssertionError("Expected RuntimeError")
    except RuntimeError as exc:
        payload = json.loads(str(exc))
    assert payload["error"]["code"] == "RULE_NOT_FOUND"
