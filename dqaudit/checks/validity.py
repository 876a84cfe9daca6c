"""Format, range and domain checks.

All validity checks exclude nulls from the denominator: a null is neither a
pass nor a failure of a format or range rule, completeness rules own it.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from dqaudit.checks.primitives import Measurement
from dqaudit.config import AuditSettings
from dqaudit.domain import Rule
from dqaudit.errors import InvalidRule
from dqaudit.executor import Between, InValues, Matches, Not, NotNull, Predicate, QueryExecutor, all_of
from dqaudit.models import RuleType


# Deliberately loose: something, "@", a domain containing a dot. This is a
# shape heuristic, not RFC 5322 validation.
EMAIL_PATTERN = r"[^@\s]+@[^@\s]+\.[^@\s]+"

PHONE_SEPARATORS = r"[ .()-]"


def phone_pattern(min_digits: int, max_digits: int) -> str:
    """Optional leading "+", then digits and separators only, locale-agnostic."""
    return rf"\+?{PHONE_SEPARATORS}*(?:[0-9]{PHONE_SEPARATORS}*){{{min_digits},{max_digits}}}"


def parse_number(raw: str) -> int | float | None:
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def parse_temporal(raw: str, kind: str) -> date | datetime | None:
    text = str(raw).strip()
    try:
        if kind == "date":
            return date.fromisoformat(text[:10]) if len(text) > 10 and text[10] in "T " else date.fromisoformat(text)
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def coerce_bound(raw: str, kind: str, rule: Rule) -> Any:
    """Convert a configured range bound to the column's scalar type."""
    if kind == "numeric":
        value = parse_number(raw)
    elif kind in ("date", "datetime"):
        value = parse_temporal(raw, kind)
    else:
        value = str(raw)
    if value is None:
        raise InvalidRule(
            f"RANGE_CHECK bound {raw!r} is not a valid {kind} value for "
            f"{rule.target_schema}.{rule.target_table}.{rule.target_column}"
        )
    return value


def _range_predicate(rule: Rule, executor: QueryExecutor) -> Predicate:
    kind = executor.column_type(rule.target_schema, rule.target_table, rule.target_column)
    low = coerce_bound(rule.min_value, kind, rule)
    high = coerce_bound(rule.max_value, kind, rule)
    if low > high:
        raise InvalidRule(f"RANGE_CHECK min_value {rule.min_value!r} exceeds max_value {rule.max_value!r}")
    return Between(rule.target_column, low, high)


def _phone_bounds(rule: Rule, settings: AuditSettings | None) -> tuple[int, int]:
    low = settings.phone_min_digits if settings else 7
    high = settings.phone_max_digits if settings else 15
    if rule.min_value is not None:
        low = int(rule.min_value)
    if rule.max_value is not None:
        high = int(rule.max_value)
    return low, high


def _valid_predicate(rule: Rule, executor: QueryExecutor, settings: AuditSettings | None) -> tuple[Predicate, str]:
    column = rule.target_column
    if rule.rule_type is RuleType.RANGE_CHECK:
        reason = f"value outside [{rule.min_value}, {rule.max_value}]"
        return _range_predicate(rule, executor), reason
    if rule.rule_type is RuleType.DOMAIN_CHECK:
        return InValues(column, tuple(rule.allowed_values or ())), "value not in allowed list"
    if rule.rule_type is RuleType.REGEX_MATCH:
        return Matches(column, rule.regex_pattern), f"value does not match {rule.regex_pattern}"
    if rule.rule_type is RuleType.FORMAT_EMAIL:
        return Matches(column, EMAIL_PATTERN), "value is not email-shaped"
    if rule.rule_type is RuleType.FORMAT_PHONE:
        low, high = _phone_bounds(rule, settings)
        return Matches(column, phone_pattern(low, high)), f"value is not a {low}-{high} digit phone number"
    raise InvalidRule(f"{rule.rule_type.value} is not a validity rule")


def evaluate(rule: Rule, executor: QueryExecutor, settings: AuditSettings | None = None) -> Measurement:
    valid, reason = _valid_predicate(rule, executor, settings)
    present = NotNull(rule.target_column)
    total = executor.count_where(rule.target_schema, rule.target_table, present)
    passed = executor.count_where(rule.target_schema, rule.target_table, all_of(present, valid))
    return Measurement(
        total=total,
        passed=passed,
        violations=all_of(present, Not(valid)),
        reason=reason,
    )
