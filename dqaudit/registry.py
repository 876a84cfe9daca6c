"""Rule definitions and their lifecycle.

Drafts are validated here, before anything is persisted, so a rule that
reaches the dispatcher always has the parameters its evaluator needs. Names
are not checked against the identifier grammar at this point; that happens
at dispatch, on every run.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from dqaudit.checks.validity import parse_number, parse_temporal
from dqaudit.config import SETTINGS, AuditSettings
from dqaudit.domain import Rule, Scope
from dqaudit.errors import InvalidRule, RuleNotFound
from dqaudit.models import ComparisonOperator, RuleType, Severity
from dqaudit.store import STORE, SqlStore


DEFAULT_THRESHOLD_PCT = 95.0
DEFAULT_WARNING_PCT = 90.0

REQUIRED_PARAMETERS: dict[RuleType, tuple[str, ...]] = {
    RuleType.NULL_CHECK: (),
    RuleType.EMPTY_CHECK: (),
    RuleType.REQUIRED: (),
    RuleType.DUPLICATE: (),
    RuleType.PK_VIOLATION: (),
    RuleType.RANGE_CHECK: ("min_value", "max_value"),
    RuleType.DOMAIN_CHECK: ("allowed_values",),
    RuleType.REGEX_MATCH: ("regex_pattern",),
    RuleType.FORMAT_EMAIL: (),
    RuleType.FORMAT_PHONE: (),
    RuleType.FK_CHECK: ("reference_table", "reference_column"),
    RuleType.CROSS_FIELD: ("related_column", "comparison_operator"),
    RuleType.CROSS_TABLE: ("reference_table", "reference_column"),
}

# Rule types that may omit target_column. None of the current types operate on
# a whole table, so every rule needs a column for now.
TABLE_LEVEL_RULE_TYPES: frozenset[RuleType] = frozenset()

_TEXT_FIELDS = (
    "target_column",
    "description",
    "regex_pattern",
    "reference_schema",
    "reference_table",
    "reference_column",
    "related_column",
    "comparison_operator",
    "created_by",
)


def rule_name(table: str, column: str | None, rule_type: RuleType) -> str:
    return f"{table}.{column or '*'} - {rule_type.value}"


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _text(value: Any) -> str | None:
    if _blank(value):
        return None
    return str(value).strip()


def _percentage(draft: Mapping[str, Any], name: str, default: float) -> float:
    raw = draft.get(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidRule(f"{name} must be a number, got {raw!r}") from exc
    if not 0.0 <= value <= 100.0:
        raise InvalidRule(f"{name} must be within [0, 100], got {value}")
    return value


_TRUE_WORDS = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_WORDS = frozenset({"false", "0", "no", "n", "off"})


def _flag(draft: Mapping[str, Any], name: str, default: bool) -> bool:
    raw = draft.get(name)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        word = raw.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise InvalidRule(f"{name} must be a boolean, got {raw!r}")


def _bound(raw: Any) -> str | None:
    if _blank(raw):
        return None
    if isinstance(raw, bool):
        raise InvalidRule(f"Range bound must be a number or date, got {raw!r}")
    return str(raw).strip()


def _comparable(low: str, high: str) -> tuple[Any, Any] | None:
    numbers = parse_number(low), parse_number(high)
    if None not in numbers:
        return numbers
    moments = parse_temporal(low, "datetime"), parse_temporal(high, "datetime")
    if None in moments or (moments[0].tzinfo is None) != (moments[1].tzinfo is None):
        return None
    return moments


def _allowed_values(raw: Any) -> list[str] | None:
    if raw is None:
        return None
    if isinstance(raw, str) or not isinstance(raw, (list, tuple)):
        raise InvalidRule("allowed_values must be a list of strings")
    values = [str(item) for item in raw if item is not None]
    if not values:
        raise InvalidRule("allowed_values must not be empty")
    return values


def validate_draft(draft: Mapping[str, Any], default_schema: str) -> dict[str, Any]:
    """Return the normalized payload for *draft* or raise ``InvalidRule``."""
    try:
        rule_type = RuleType(str(draft.get("rule_type", "")).strip().upper())
    except ValueError as exc:
        raise InvalidRule(f"Unknown rule_type {draft.get('rule_type')!r}") from exc

    payload: dict[str, Any] = {name: _text(draft.get(name)) for name in _TEXT_FIELDS}
    payload["rule_type"] = rule_type.value
    payload["target_schema"] = _text(draft.get("target_schema")) or default_schema
    payload["target_table"] = _text(draft.get("target_table"))
    if payload["target_table"] is None:
        raise InvalidRule("target_table is required")
    if payload["target_column"] is None and rule_type not in TABLE_LEVEL_RULE_TYPES:
        raise InvalidRule(f"target_column is required for {rule_type.value}")

    threshold = _percentage(draft, "threshold_pct", DEFAULT_THRESHOLD_PCT)
    warning = _percentage(draft, "warning_pct", min(DEFAULT_WARNING_PCT, threshold))
    if warning > threshold:
        raise InvalidRule(f"warning_pct {warning} must not exceed threshold_pct {threshold}")
    payload["threshold_pct"] = threshold
    payload["warning_pct"] = warning

    severity = draft.get("severity") or Severity.MEDIUM.value
    try:
        payload["severity"] = Severity(str(severity).strip().upper()).value
    except ValueError as exc:
        raise InvalidRule(f"Unknown severity {severity!r}") from exc

    payload["min_value"] = _bound(draft.get("min_value"))
    payload["max_value"] = _bound(draft.get("max_value"))
    payload["allowed_values"] = _allowed_values(draft.get("allowed_values"))
    payload["is_active"] = _flag(draft, "is_active", True)

    missing = [name for name in REQUIRED_PARAMETERS[rule_type] if payload.get(name) is None]
    if missing:
        raise InvalidRule(f"{rule_type.value} requires {', '.join(missing)}")

    _validate_parameters(rule_type, payload)
    payload["rule_name"] = rule_name(payload["target_table"], payload["target_column"], rule_type)
    return payload


def _validate_parameters(rule_type: RuleType, payload: dict[str, Any]) -> None:
    if rule_type is RuleType.RANGE_CHECK:
        bounds = _comparable(payload["min_value"], payload["max_value"])
        # Text bounds are accepted; they are checked against the column type at dispatch.
        if bounds is not None and bounds[0] > bounds[1]:
            raise InvalidRule(
                f"min_value {payload['min_value']!r} must not exceed max_value {payload['max_value']!r}"
            )
    elif rule_type is RuleType.REGEX_MATCH:
        try:
            re.compile(payload["regex_pattern"])
        except re.error as exc:
            raise InvalidRule(f"regex_pattern does not compile: {exc}") from exc
    elif rule_type is RuleType.FORMAT_PHONE:
        _validate_phone_bounds(payload)
    elif rule_type is RuleType.CROSS_FIELD:
        try:
            ComparisonOperator(payload["comparison_operator"])
        except ValueError as exc:
            allowed = ", ".join(op.value for op in ComparisonOperator)
            raise InvalidRule(f"comparison_operator must be one of {allowed}") from exc


def _validate_phone_bounds(payload: dict[str, Any]) -> None:
    digits: list[int] = []
    for name in ("min_value", "max_value"):
        raw = payload.get(name)
        if raw is None:
            continue
        value = parse_number(raw)
        if not isinstance(value, int) or value < 1:
            raise InvalidRule(f"FORMAT_PHONE {name} must be a positive integer, got {raw!r}")
        payload[name] = str(value)
        digits.append(value)
    if len(digits) == 2 and digits[0] > digits[1]:
        raise InvalidRule("FORMAT_PHONE min_value must not exceed max_value")


class RuleRegistry:
    def __init__(self, store: SqlStore | None = None, settings: AuditSettings | None = None) -> None:
        self.store = store or STORE
        self.settings = settings or SETTINGS

    def add(self, draft: Mapping[str, Any]) -> str:
        payload = validate_draft(draft, self.settings.default_schema)
        return self.store.create_rule(payload).id

    def get(self, scope: Scope) -> list[Rule]:
        """Active rules in *scope*, ordered by (table, rule_type, id)."""
        return self.store.list_rules(schema=scope.schema, table=scope.table, include_inactive=False)

    def get_rule(self, rule_id: str) -> Rule:
        rule = self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFound(f"Rule {rule_id} not found")
        return rule

    def list_rules(
        self,
        schema: str | None = None,
        table: str | None = None,
        include_inactive: bool = False,
    ) -> list[Rule]:
        return self.store.list_rules(schema=schema, table=table, include_inactive=include_inactive)

    def set_active(self, rule_id: str, active: bool) -> Rule:
        return self.store.set_rule_active(rule_id, active)

    def activate(self, rule_id: str) -> Rule:
        return self.set_active(rule_id, True)

    def deactivate(self, rule_id: str) -> Rule:
        return self.set_active(rule_id, False)
