from __future__ import annotations

import re

from dqaudit.domain import Rule
from dqaudit.errors import InvalidIdentifier


IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_safe_identifier(value: object) -> bool:
    return isinstance(value, str) and IDENTIFIER_PATTERN.fullmatch(value) is not None


def validate_identifier(value: object, role: str) -> str:
    if not is_safe_identifier(value):
        raise InvalidIdentifier(role, value)
    return value  # type: ignore[return-value]


def validate_rule_identifiers(rule: Rule) -> None:
    """Reject any name on *rule* that would reach query construction unchecked."""
    validate_identifier(rule.target_schema, "schema")
    validate_identifier(rule.target_table, "table")
    optional = (
        ("column", rule.target_column),
        ("related column", rule.related_column),
        ("reference schema", rule.reference_schema),
        ("reference table", rule.reference_table),
        ("reference column", rule.reference_column),
    )
    for role, value in optional:
        if value is not None:
            validate_identifier(value, role)
