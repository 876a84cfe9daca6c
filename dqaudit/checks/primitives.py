from __future__ import annotations

from dataclasses import dataclass

from dqaudit.executor import Predicate
from dqaudit.models import CheckStatus


PASS_RATE_PRECISION = 2


@dataclass(frozen=True)
class Measurement:
    """Raw counts produced by one evaluator for one rule."""

    total: int
    passed: int
    forced_status: CheckStatus | None = None
    violations: Predicate | None = None
    reason: str = ""

    @property
    def failed(self) -> int:
        return self.total - self.passed


def clamp(value: float, lower: float = 0.0, upper: float = 100.0) -> float:
    return max(lower, min(upper, value))


def pass_rate(passed: int, total: int) -> float:
    # Vacuous pass: nothing to check is reported as fully passing.
    if total <= 0:
        return 100.0
    return round(clamp(passed * 100.0 / total), PASS_RATE_PRECISION)


def derive_status(rate: float, threshold_pct: float, warning_pct: float) -> CheckStatus:
    if rate >= threshold_pct:
        return CheckStatus.PASS
    if rate >= warning_pct:
        return CheckStatus.WARN
    return CheckStatus.FAIL


def classify(measurement: Measurement, threshold_pct: float, warning_pct: float) -> tuple[float, CheckStatus]:
    rate = pass_rate(measurement.passed, measurement.total)
    if measurement.forced_status is not None:
        return rate, measurement.forced_status
    return rate, derive_status(rate, threshold_pct, warning_pct)
