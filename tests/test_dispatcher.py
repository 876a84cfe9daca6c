from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from dqaudit.config import load_settings
from dqaudit.dispatcher import CheckDispatcher
from dqaudit.domain import Rule
from dqaudit.errors import ExecutionError
from dqaudit.executor import NotNull
from dqaudit.models import CheckStatus, RuleType, Severity
from dqaudit.store import MemoryResultSink


RUN_TS = datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)


def make_rule(rule_id: str, column: str = "email", table: str = "customers", **params) -> Rule:
    rule_type = params.pop("rule_type", RuleType.NULL_CHECK)
    return Rule(
        id=rule_id,
        rule_name=f"{table}.{column} - {rule_type.value}",
        target_schema="main",
        target_table=table,
        target_column=column,
        rule_type=rule_type,
        threshold_pct=95.0,
        warning_pct=90.0,
        severity=Severity.MEDIUM,
        **params,
    )


class FakeExecutor:
    """Answers every count from a table of canned values."""

    def __init__(self, counts=None, fail_tables=None):
        self.counts = counts or {}
        self.fail_tables = fail_tables or {}
        self.calls: list[tuple] = []
        self.samples: list[tuple[str | None, str | None]] = []

    def _check(self, table_name):
        if table_name in self.fail_tables:
            raise self.fail_tables[table_name]

    def count_where(self, schema, table_name, predicate=None):
        self.calls.append(("count_where", table_name, predicate))
        self._check(table_name)
        key = "total" if predicate is None else "passed"
        return self.counts.get((table_name, key), 10)

    def count_grouped_duplicates(self, schema, table_name, column_name):
        self._check(table_name)
        return self.counts.get((table_name, "duplicates"), 0)

    def count_anti_join(self, child_schema, child_table, child_column, parent_schema, parent_table, parent_column):
        self._check(child_table)
        return self.counts.get((child_table, "orphans"), 0)

    def column_type(self, schema, table_name, column_name):
        self._check(table_name)
        return "numeric"

    def sample_where(self, schema, table_name, column_name, predicate, limit):
        self.calls.append(("sample_where", table_name, predicate, limit))
        return self.samples[:limit]


def test_results_follow_input_order_and_carry_rule_context():
    sink = MemoryResultSink()
    executor = FakeExecutor(counts={("orders", "passed"): 9})
    rules = [make_rule("r1"), make_rule("r2", table="orders")]

    outcome = CheckDispatcher(executor, sink).run(rules, "run-1", RUN_TS)

    assert [result.rule_id for result in outcome.results] == ["r1", "r2"]
    first, second = outcome.results
    assert first.status is CheckStatus.PASS
    assert first.pass_rate == 100.0
    assert second.status is CheckStatus.WARN
    assert (second.total, second.passed, second.failed) == (10, 9, 1)
    assert second.threshold_used == 95.0
    assert second.run_date.isoformat() == "2026-03-02"
    assert len(sink.results) == 2
    assert outcome.skipped == []


def test_one_failing_rule_does_not_abort_the_batch():
    executor = FakeExecutor(
        fail_tables={"ghosts": ExecutionError(ExecutionError.TARGET_NOT_FOUND, "Table main.ghosts not found")}
    )
    rules = [make_rule("r1"), make_rule("r2", table="ghosts"), make_rule("r3", column="phone")]

    outcome = CheckDispatcher(executor, MemoryResultSink()).run(rules, "run-1", RUN_TS)

    statuses = [result.status for result in outcome.results]
    assert statuses == [CheckStatus.PASS, CheckStatus.ERROR, CheckStatus.PASS]
    errored = outcome.errored[0]
    assert errored.rule_id == "r2"
    assert errored.pass_rate is None
    assert errored.error_message == "TARGET_NOT_FOUND: Table main.ghosts not found"


def test_unexpected_exceptions_are_recorded_as_errors():
    executor = FakeExecutor(fail_tables={"customers": ZeroDivisionError("boom")})

    outcome = CheckDispatcher(executor, MemoryResultSink()).run([make_rule("r1")], "run-1", RUN_TS)

    assert outcome.results[0].status is CheckStatus.ERROR
    assert outcome.results[0].error_message == "ZeroDivisionError: boom"


def test_unsafe_identifier_never_reaches_the_executor():
    executor = FakeExecutor()
    rule = make_rule("r1", table="customers; DROP TABLE customers")

    outcome = CheckDispatcher(executor, MemoryResultSink()).run([rule], "run-1", RUN_TS)

    assert outcome.results[0].status is CheckStatus.ERROR
    assert "Unsafe table identifier" in outcome.results[0].error_message
    assert executor.calls == []


def test_uncoercible_range_bound_is_recorded_as_error():
    rule = make_rule("r1", column="age", rule_type=RuleType.RANGE_CHECK, min_value="young", max_value="120")

    outcome = CheckDispatcher(FakeExecutor(), MemoryResultSink()).run([rule], "run-1", RUN_TS)

    assert outcome.results[0].status is CheckStatus.ERROR
    assert "young" in outcome.results[0].error_message


def test_forced_fail_is_applied_for_duplicates():
    executor = FakeExecutor(counts={("customers", "duplicates"): 1})
    rule = make_rule("r1", rule_type=RuleType.DUPLICATE)

    result = CheckDispatcher(executor, MemoryResultSink()).run([rule], "run-1", RUN_TS).results[0]

    assert result.pass_rate == 90.0
    assert result.status is CheckStatus.FAIL


def test_failing_records_are_sampled_into_the_sink(monkeypatch):
    monkeypatch.setenv("DQ_EXCEPTION_SAMPLE_SIZE", "2")
    executor = FakeExecutor(counts={("customers", "passed"): 7})
    executor.samples = [("1", None), ("2", None), ("3", None)]
    sink = MemoryResultSink()

    result = CheckDispatcher(executor, sink, settings=load_settings()).run([make_rule("r1")], "run-1", RUN_TS).results[0]

    violations = sink.violations[result.id]
    assert [violation.primary_key_value for violation in violations] == ["1", "2"]
    assert violations[0].reason == "value is null"
    assert executor.calls[-1][3] == 2


def test_sampling_can_be_disabled(monkeypatch):
    monkeypatch.setenv("DQ_EXCEPTION_SAMPLE_SIZE", "0")
    executor = FakeExecutor(counts={("customers", "passed"): 7})

    CheckDispatcher(executor, MemoryResultSink(), settings=load_settings()).run([make_rule("r1")], "run-1", RUN_TS)

    assert not [call for call in executor.calls if call[0] == "sample_where"]


def test_passing_rule_is_not_sampled():
    executor = FakeExecutor()

    CheckDispatcher(executor, MemoryResultSink()).run([make_rule("r1")], "run-1", RUN_TS)

    assert all(call[0] == "count_where" for call in executor.calls)
    assert executor.calls[1][2] == NotNull("email")


def test_events_are_emitted_per_rule():
    events: list[tuple[str, dict]] = []
    executor = FakeExecutor(fail_tables={"ghosts": ExecutionError(ExecutionError.TRANSIENT, "connection reset")})
    rules = [make_rule("r1"), make_rule("r2", table="ghosts")]

    CheckDispatcher(executor, MemoryResultSink(), listener=lambda kind, payload: events.append((kind, payload))).run(
        rules, "run-1", RUN_TS
    )

    kinds = [kind for kind, _ in events]
    assert kinds == ["rule_started", "rule_evaluated", "rule_started", "rule_errored"]
    assert events[1][1]["status"] == "PASS"
    assert events[3][1]["error_code"] == "EXECUTION_ERROR"


def test_cancellation_skips_rules_not_yet_started():
    cancel = threading.Event()

    class CancellingExecutor(FakeExecutor):
        def count_where(self, schema, table_name, predicate=None):
            cancel.set()
            return super().count_where(schema, table_name, predicate)

    rules = [make_rule("r1"), make_rule("r2"), make_rule("r3")]
    dispatcher = CheckDispatcher(CancellingExecutor(), MemoryResultSink(), max_workers=1)

    outcome = dispatcher.run(rules, "run-1", RUN_TS, cancel_event=cancel)

    assert [result.rule_id for result in outcome.results] == ["r1"]
    assert outcome.skipped == ["r2", "r3"]
    assert outcome.skipped_tables == {("main", "customers")}


def test_uncancelled_run_has_no_skipped_tables():
    rules = [make_rule("r1"), make_rule("r2", table="segments", column="name")]

    outcome = CheckDispatcher(FakeExecutor(), MemoryResultSink(), max_workers=1).run(rules, "run-1", RUN_TS)

    assert outcome.skipped == []
    assert outcome.skipped_tables == frozenset()


def test_rules_are_evaluated_concurrently():
    barrier = threading.Barrier(2, timeout=5)

    class RendezvousExecutor(FakeExecutor):
        def count_where(self, schema, table_name, predicate=None):
            # Both workers must be inside a query at once for either to proceed.
            barrier.wait()
            return super().count_where(schema, table_name, predicate)

    rules = [make_rule("r1"), make_rule("r2", column="phone")]
    sink = MemoryResultSink()

    outcome = CheckDispatcher(RendezvousExecutor(), sink, max_workers=2).run(rules, "run-1", RUN_TS)

    assert [result.status for result in outcome.results] == [CheckStatus.PASS, CheckStatus.PASS]
    assert len(sink.results) == 2


def test_empty_rule_list_yields_empty_outcome():
    outcome = CheckDispatcher(FakeExecutor(), MemoryResultSink()).run([], "run-1", RUN_TS)

    assert outcome.results == []
    assert outcome.skipped == []


def test_max_workers_is_at_least_one():
    assert CheckDispatcher(FakeExecutor(), MemoryResultSink(), max_workers=0).max_workers >= 1


@pytest.mark.parametrize("rule_type", [RuleType.FK_CHECK, RuleType.CROSS_TABLE])
def test_referential_rules_use_anti_join(rule_type):
    executor = FakeExecutor(counts={("customers", "orphans"): 2})
    rule = make_rule(
        "r1",
        column="segment_id",
        rule_type=rule_type,
        reference_table="segments",
        reference_column="segment_id",
    )

    result = CheckDispatcher(executor, MemoryResultSink()).run([rule], "run-1", RUN_TS).results[0]

    assert (result.total, result.passed, result.failed) == (10, 8, 2)
    assert result.status is CheckStatus.FAIL
