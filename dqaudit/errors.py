"""Error taxonomy for the audit engine.

Configuration errors fail fast at registration; identifier and execution
errors are caught per rule by the dispatcher and recorded as ERROR results;
only ``OrchestratorFailure`` aborts a run.
"""

from __future__ import annotations


class AuditError(Exception):
    code = "AUDIT_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRule(AuditError, ValueError):
    code = "INVALID_RULE"


class InvalidIdentifier(AuditError, ValueError):
    code = "INVALID_IDENTIFIER"

    def __init__(self, role: str, value: object) -> None:
        super().__init__(f"Unsafe {role} identifier: {value!r}")
        self.role = role
        self.value = value


class ExecutionError(AuditError, RuntimeError):
    code = "EXECUTION_ERROR"

    TARGET_NOT_FOUND = "TARGET_NOT_FOUND"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    TRANSIENT = "TRANSIENT"

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind == self.TRANSIENT

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class OrchestratorFailure(AuditError, RuntimeError):
    code = "ORCHESTRATOR_FAILURE"


class RuleNotFound(AuditError, KeyError):
    code = "RULE_NOT_FOUND"

    def __str__(self) -> str:
        return self.message


class ExceptionNotFound(AuditError, KeyError):
    code = "EXCEPTION_NOT_FOUND"

    def __str__(self) -> str:
        return self.message
