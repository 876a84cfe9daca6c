from __future__ import annotations

from datetime import date
from typing import Any

from dqaudit.audit import AuditOrchestrator
from dqaudit.config import SETTINGS
from dqaudit.domain import Scope
from dqaudit.registry import RuleRegistry
from dqaudit.store import STORE, SqlStore, result_to_dict, rule_to_dict


def _store(s: SqlStore | None) -> SqlStore:
    return s or STORE


def _registry(store: SqlStore | None) -> RuleRegistry:
    return RuleRegistry(_store(store), SETTINGS)


def add_rule(
    *,
    target_table: str,
    rule_type: str,
    target_column: str | None = None,
    target_schema: str | None = None,
    threshold_pct: float | None = None,
    warning_pct: float | None = None,
    severity: str | None = None,
    description: str | None = None,
    min_value: str | None = None,
    max_value: str | None = None,
    allowed_values: list[str] | None = None,
    regex_pattern: str | None = None,
    reference_schema: str | None = None,
    reference_table: str | None = None,
    reference_column: str | None = None,
    related_column: str | None = None,
    comparison_operator: str | None = None,
    store: SqlStore | None = None,
) -> dict[str, Any]:
    draft = {
        "target_schema": target_schema,
        "target_table": target_table,
        "target_column": target_column,
        "rule_type": rule_type,
        "threshold_pct": threshold_pct,
        "warning_pct": warning_pct,
        "severity": severity,
        "description": description,
        "min_value": min_value,
        "max_value": max_value,
        "allowed_values": allowed_values,
        "regex_pattern": regex_pattern,
        "reference_schema": reference_schema,
        "reference_table": reference_table,
        "reference_column": reference_column,
        "related_column": related_column,
        "comparison_operator": comparison_operator,
    }
    registry = _registry(store)
    rule_id = registry.add(draft)
    return rule_to_dict(registry.get_rule(rule_id))


def list_rules(
    target_schema: str | None = None,
    target_table: str | None = None,
    include_inactive: bool = False,
    store: SqlStore | None = None,
) -> list[dict[str, Any]]:
    rules = _registry(store).list_rules(schema=target_schema, table=target_table, include_inactive=include_inactive)
    return [rule_to_dict(rule) for rule in rules]


def set_rule_active(rule_id: str, active: bool, store: SqlStore | None = None) -> dict[str, Any]:
    return rule_to_dict(_registry(store).set_active(rule_id, active))


def run_audit(
    target_schema: str | None = None,
    target_table: str | None = None,
    store: SqlStore | None = None,
) -> dict[str, Any]:
    scope = Scope(schema=target_schema or SETTINGS.default_schema, table=target_table)
    summary = AuditOrchestrator(store=_store(store)).run_audit(scope)
    return summary.as_dict()


def get_run_results(
    run_id: str,
    target_schema: str | None = None,
    target_table: str | None = None,
    store: SqlStore | None = None,
) -> list[dict[str, Any]]:
    results = _store(store).results_for_run(run_id, schema=target_schema, table=target_table)
    return [result_to_dict(result) for result in results]


def list_table_scores(
    target_schema: str | None = None,
    target_table: str | None = None,
    since: str | None = None,
    store: SqlStore | None = None,
) -> list[dict[str, Any]]:
    since_date = date.fromisoformat(since) if since else None
    return _store(store).list_table_scores(schema=target_schema, table=target_table, since=since_date)


def list_exceptions(
    rule_id: str | None = None,
    run_id: str | None = None,
    is_resolved: bool | None = None,
    limit: int = 100,
    store: SqlStore | None = None,
) -> list[dict[str, Any]]:
    return _store(store).list_exceptions(rule_id=rule_id, run_id=run_id, is_resolved=is_resolved, limit=limit)


def resolve_exception(
    exception_id: str,
    resolved_by: str,
    notes: str | None = None,
    store: SqlStore | None = None,
) -> dict[str, Any]:
    return _store(store).resolve_exception(exception_id, resolved_by=resolved_by, notes=notes)


def reopen_exception(
    exception_id: str,
    notes: str | None = None,
    store: SqlStore | None = None,
) -> dict[str, Any]:
    return _store(store).reopen_exception(exception_id, notes=notes)
