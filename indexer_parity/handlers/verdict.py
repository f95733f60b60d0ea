from typing import Any, Dict, List, Sequence

from indexer_parity.handlers.comparator import Comparison
from indexer_parity.transformers.coverage import IndexerReport
from indexer_parity.transformers.entity_router import ENTITY_TABLES, REQUIRED_TABLES

INDEXER_FAILURES = "indexer_failures"
CROSS_INDEXER_MISMATCHES = "cross_indexer_mismatches"


def indexer_problems(report: IndexerReport, required_tables: Sequence[str] = REQUIRED_TABLES) -> List[str]:
    """Problem codes that fail one replica on its own."""
    problems = []
    if not report.available:
        problems.append("unavailable")
    if report.errors:
        problems.append("errors")

    for table in required_tables:
        entry = report.coverage.get(table)
        if entry is None or not entry.supported:
            problems.append(f"{table}:unsupported")
        if entry is not None and entry.errors:
            problems.append(f"{table}:fetch_error")
        if entry is not None and entry.canonical and entry.canonical.conflicting_duplicate_key_count > 0:
            problems.append(f"{table}:conflicting_duplicate_keys")

    if report.id_invariants is None:
        problems.append("id_invariants:not_computed")
    elif not report.id_invariants.passed:
        problems.append(f"id_invariants:{','.join(report.id_invariants.failed_checks)}")

    if report.tx_signature_checks is None:
        problems.append("tx_signature:not_computed")
    elif not report.tx_signature_checks.passed:
        problems.append(f"tx_signature:{','.join(report.tx_signature_checks.failing_tables)}")

    if report.missing_assets:
        problems.append("missing_assets")
    return problems


def evaluate_verdict(
    reports: Sequence[IndexerReport],
    comparison: Comparison,
    required_tables: Sequence[str] = REQUIRED_TABLES,
) -> Dict[str, Any]:
    failing = []
    for report in reports:
        problems = indexer_problems(report, required_tables)
        if problems:
            failing.append({"baseUrl": report.base_url, "problems": problems})

    reasons = []
    if failing:
        reasons.append(INDEXER_FAILURES)
    if comparison.mismatch_count > 0:
        reasons.append(CROSS_INDEXER_MISMATCHES)

    return {
        "pass": not reasons,
        "reasons": reasons,
        "mismatchCount": comparison.mismatch_count,
        "failingIndexers": failing,
    }


def build_coverage_summary(reports: Sequence[IndexerReport], tables: Sequence[str] = ENTITY_TABLES) -> Dict[str, Any]:
    """Per table: which replicas serve it and whether their fingerprints agree."""
    summary = {}
    for table in tables:
        states = []
        for report in reports:
            entry = report.coverage.get(table)
            states.append(
                {
                    "baseUrl": report.base_url,
                    "endpoint": entry.endpoint if entry else None,
                    "supported": entry.supported if entry else False,
                    "count": entry.count if entry else None,
                    "includeOrphaned": dict(entry.include_orphaned) if entry else None,
                    "keyHash": entry.canonical.key_hash if entry and entry.canonical else None,
                    "payloadHash": entry.hash if entry else None,
                }
            )

        supported = [state for state in states if state["supported"]]
        summary[table] = {
            "supportedOn": len(supported),
            "unsupportedOn": len(states) - len(supported),
            "allSupported": len(supported) == len(states),
            "allEqualCount": len({s["count"] for s in supported}) <= 1,
            "allEqualKeyHash": len({s["keyHash"] for s in supported}) <= 1,
            "allEqualPayloadHash": len({s["payloadHash"] for s in supported}) <= 1,
            "states": states,
        }
    return summary
