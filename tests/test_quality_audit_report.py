import json

from dqaudit.registry import RuleRegistry
from scripts.run_quality_audit import build_report, main


def _add_rules() -> dict[str, str]:
    registry = RuleRegistry()
    return {
        "email": registry.add({"target_table": "customers", "target_column": "email", "rule_type": "NULL_CHECK"}),
        "phone": registry.add({"target_table": "customers", "target_column": "phone", "rule_type": "FORMAT_PHONE"}),
        "age": registry.add(
            {"target_table": "customers", "target_column": "age", "rule_type": "RANGE_CHECK", "min_value": 0, "max_value": 120}
        ),
    }


def test_report_includes_results_and_scores(sample_tables):
    rule_ids = _add_rules()

    report = build_report("main", "customers")

    assert report["state"] == "COMPLETE"
    assert report["rules_evaluated"] == 3
    by_rule = {result["rule_id"]: result for result in report["results"]}
    assert by_rule[rule_ids["email"]]["status"] == "PASS"
    assert by_rule[rule_ids["phone"]]["total"] == 3
    assert by_rule[rule_ids["age"]]["pass_rate"] == 50.0
    assert [score["target_table"] for score in report["table_scores"]] == ["customers"]


def test_cli_text_output_and_exit_code(sample_tables, capsys):
    _add_rules()

    assert main(["--schema", "main"]) == 0
    out = capsys.readouterr().out
    assert "(COMPLETE)" in out
    assert "customers.age | RANGE_CHECK | 50.00% (2/4)" in out
    assert "main.customers |" in out


def test_cli_fail_on_error_flags_failing_rules(sample_tables, capsys):
    _add_rules()

    assert main(["--schema", "main", "--format", "json", "--fail-on-error"]) == 1
    report = json.loads(capsys.readouterr().out)
    assert report["status_counts"]["FAIL"] >= 1


def test_cli_passes_clean_scope(sample_tables, capsys):
    RuleRegistry().add({"target_table": "customers", "target_column": "customer_id", "rule_type": "PK_VIOLATION"})

    assert main(["--schema", "main", "--fail-on-error", "--format", "json"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["status_counts"] == {"PASS": 1}
