#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dqaudit.audit import run_audit
from dqaudit.errors import OrchestratorFailure
from dqaudit.store import STORE, result_to_dict


def build_report(schema: str, table: str | None = None) -> dict[str, Any]:
    summary = run_audit(schema, table)
    report = summary.as_dict()
    report["results"] = [result_to_dict(result) for result in STORE.results_for_run(summary.run_id)]
    return report


def _render_text(report: dict[str, Any]) -> str:
    counts = report["status_counts"]
    lines = [
        f"Run: {report['run_id']} ({report['state']})",
        f"Scope: {report['scope']['schema']}.{report['scope']['table'] or '*'}",
        f"Evaluated: {report['rules_evaluated']}  Errored: {report['errored_count']}  Skipped: {report['skipped_count']}",
        "Status: " + ", ".join(f"{name}={counts.get(name, 0)}" for name in ("PASS", "WARN", "FAIL", "ERROR")),
        "",
        "Results:",
    ]
    for result in report["results"]:
        rate = "-" if result["pass_rate"] is None else f"{result['pass_rate']:.2f}%"
        target = f"{result['target_table']}.{result['target_column'] or '*'}"
        line = f"- {result['status']:<5} | {target} | {result['rule_type']} | {rate} ({result['passed']}/{result['total']})"
        if result["error_message"]:
            line += f" | {result['error_message']}"
        lines.append(line)

    lines.extend(["", "Scores:"])
    for score in report["table_scores"]:
        lines.append(
            f"- {score['target_schema']}.{score['target_table']} | {score['overall_score']:.2f} ({score['grade']}) | "
            f"C={score['completeness_score']:.2f} U={score['uniqueness_score']:.2f} "
            f"V={score['validity_score']:.2f} K={score['consistency_score']:.2f}"
        )
    for name in report["unscored_tables"]:
        lines.append(f"- {name} | not scored (run cancelled before all its rules ran)")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run data-quality rules for a schema and score its tables.")
    parser.add_argument("--schema", required=True)
    parser.add_argument("--table", default=None)
    parser.add_argument("--format", choices=["text", "json"], default="text")
    parser.add_argument(
        "--fail-on-error",
        action="store_true",
        help="Exit 1 when any rule fails or errors.",
    )
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        report = build_report(args.schema, args.table)
    except OrchestratorFailure as exc:
        print(json.dumps({"error": {"code": exc.code, "message": exc.message, "retryable": True}}), file=sys.stderr)
        return 2

    if args.format == "json":
        print(json.dumps(report, indent=2, default=str))
    else:
        print(_render_text(report))

    counts = report["status_counts"]
    if args.fail_on_error and (counts.get("FAIL", 0) or counts.get("ERROR", 0)):
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
