import argparse
import json
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv
load_dotenv()

from indexer_parity.config import DEFAULT_CONFIG_PATH, VerifyConfig, build_config, load_yaml
from indexer_parity.errors import ConfigError
from indexer_parity.extractors.indexer import FetchResult, fetch_paged_table, fetch_rows_by_assets
from indexer_parity.extractors.indexer_client import IndexerClient, root_from_rest
from indexer_parity.handlers.comparator import compare_indexers
from indexer_parity.handlers.invariants import evaluate_id_invariants
from indexer_parity.handlers.tx_signatures import evaluate_tx_signature_checks
from indexer_parity.handlers.verdict import build_coverage_summary, evaluate_verdict
from indexer_parity.loaders.report import default_report_path, write_report
from indexer_parity.transformers.canonical import string_or_null
from indexer_parity.transformers.coverage import (
    IndexerReport,
    build_coverage_entry,
    live_rows,
    make_empty_coverage_entry,
)
from indexer_parity.transformers.entity_router import (
    ENTITY_CONFIG,
    TX_ENTITY_TABLES,
    get_all_tables,
    get_asset_scoped_tables,
)

EXIT_PASS = 0
EXIT_ERROR = 1
EXIT_FAIL = 2

SessionFactory = Optional[Callable[[], Any]]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Strict cross-indexer integrity and parity check")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH)
    parser.add_argument("--indexers", default=None, help="Comma-separated REST base URLs")
    parser.add_argument("--timeout-seconds", type=float, default=None)
    parser.add_argument("--page-size", type=int, default=None)
    parser.add_argument("--max-pages", type=int, default=None)
    parser.add_argument("--expected-indexers", type=int, default=None)
    parser.add_argument("--allow-any-count", action="store_true", help="Do not require the expected indexer count")
    parser.add_argument("--max-workers", type=int, default=None)
    parser.add_argument("--assets-file", default=None, help="Restrict the check to the assets listed one per line")
    parser.add_argument("--asset-chunk-size", type=int, default=None)
    parser.add_argument("--output", default=None)
    return parser.parse_args(argv)


def tables_for(config: VerifyConfig) -> List[str]:
    return get_asset_scoped_tables() if config.asset_scoped else get_all_tables()


def _client(base_url: str, config: VerifyConfig, session_factory: SessionFactory) -> IndexerClient:
    return IndexerClient(base_url, timeout=config.timeout_seconds, session=session_factory() if session_factory else None)


def check_health(base_url: str, config: VerifyConfig, session_factory: SessionFactory = None) -> Tuple[bool, Any, List[Dict[str, Any]]]:
    """Health, then stats. Returns (available, stats, errors)."""
    client = _client(base_url, config, session_factory)
    try:
        health = client.health()
        if not health.ok:
            return False, None, [
                {"kind": "connectivity", "endpoint": "health", "status": health.status,
                 "message": f"health_http_{health.status or 'ERR'}"}
            ]
        stats = client.stats()
        if not stats.ok:
            return True, None, [
                {"kind": "connectivity", "endpoint": "stats", "status": stats.status,
                 "message": f"stats_http_{stats.status or 'ERR'}"}
            ]
        return True, stats.payload, []
    finally:
        client.close()


def fetch_table(base_url: str, table: str, config: VerifyConfig, session_factory: SessionFactory = None) -> FetchResult:
    client = _client(base_url, config, session_factory)
    try:
        if config.asset_scoped:
            return fetch_rows_by_assets(
                client.http, ENTITY_CONFIG[table], config.assets,
                config.asset_chunk_size, config.page_size, config.max_pages,
            )
        return fetch_paged_table(client.http, ENTITY_CONFIG[table], config.page_size, config.max_pages)
    finally:
        client.close()


def finalize_report(report: IndexerReport, fetched: Dict[str, FetchResult], config: VerifyConfig) -> IndexerReport:
    """Coverage, invariants and signature checks for one replica. Pure over `fetched`."""
    rows: Dict[str, List[Dict[str, Any]]] = {}
    for table in tables_for(config):
        result = fetched.get(table)
        if result is None:
            continue
        report.coverage[table] = build_coverage_entry(table, result)
        report.errors.extend(result.errors)
        rows[table] = live_rows(result.rows)

    report.id_invariants = evaluate_id_invariants(
        agents=rows.get("agents", []),
        feedbacks=rows.get("feedbacks", []),
        feedback_responses=rows.get("feedback_responses", []),
        revocations=rows.get("revocations", []),
        check_agent_sequence=not config.asset_scoped,
    )
    report.tx_signature_checks = evaluate_tx_signature_checks({table: rows.get(table, []) for table in TX_ENTITY_TABLES})

    if config.asset_scoped:
        found = {string_or_null(row.get("asset")) for row in rows.get("agents", []) if isinstance(row, dict)}
        report.missing_assets = [asset for asset in config.assets if asset not in found]
    return report


def analyze_indexers(config: VerifyConfig, session_factory: SessionFactory = None) -> List[IndexerReport]:
    tables = tables_for(config)
    reports = []
    for base_url in config.indexers:
        report = IndexerReport(base_url=base_url, root=root_from_rest(base_url))
        for table in tables:
            report.coverage[table] = make_empty_coverage_entry(table, ENTITY_CONFIG[table].include_orphaned)
        reports.append(report)

    fetched: Dict[str, Dict[str, FetchResult]] = {report.base_url: {} for report in reports}

    with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
        health_checks = {executor.submit(check_health, report.base_url, config, session_factory): report for report in reports}
        for future in as_completed(health_checks):
            report = health_checks[future]
            report.available, report.stats, errors = future.result()
            report.errors.extend(errors)
            print(f"  {'✅' if report.available else '❌'} {report.base_url} health")

        futures = {
            executor.submit(fetch_table, report.base_url, table, config, session_factory): (report.base_url, table)
            for report in reports
            if report.available
            for table in tables
        }
        for future in as_completed(futures):
            base_url, table = futures[future]
            try:
                result = future.result()
            except Exception as exc:
                result = FetchResult(entity=table)
                result.errors.append(
                    {"kind": "internal", "endpoint": table, "status": None, "message": f"{table}:{type(exc).__name__}: {exc}"}
                )
            fetched[base_url][table] = result
            print(f"  📄 {base_url} {table}: {len(result.rows)} rows via {result.endpoint or '-'} ({result.pages} pages)")

    for report in reports:
        if not report.available:
            continue
        try:
            finalize_report(report, fetched[report.base_url], config)
        except Exception as exc:
            report.errors.append(
                {"kind": "internal", "endpoint": None, "status": None, "message": f"finalize:{type(exc).__name__}: {exc}"}
            )
            print(f"  ❌ {report.base_url} analysis failed: {type(exc).__name__}: {exc}")
    return reports


def run_verification(config: VerifyConfig, session_factory: SessionFactory = None) -> Dict[str, Any]:
    tables = tables_for(config)
    print(f"🔎 Verifying {len(config.indexers)} indexers across {len(tables)} tables...")
    reports = analyze_indexers(config, session_factory)
    comparison = compare_indexers(reports, tables)
    verdict = evaluate_verdict(reports, comparison, required_tables=tables)

    config_out = config.to_dict()
    config_out["requiredTables"] = tables
    return {
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "config": config_out,
        "coverage": build_coverage_summary(reports, tables),
        "indexers": [report.to_dict() for report in reports],
        "mismatches": comparison.mismatches,
        "verdict": verdict,
    }


def main(argv: Optional[List[str]] = None, session_factory: SessionFactory = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_yaml(args.config) if Path(args.config).exists() else {}
        config = build_config(
            settings,
            {
                "indexers": args.indexers,
                "timeout_seconds": args.timeout_seconds,
                "page_size": args.page_size,
                "max_pages": args.max_pages,
                "expected_indexers": args.expected_indexers,
                "strict": False if args.allow_any_count else None,
                "max_workers": args.max_workers,
                "assets_file": args.assets_file,
                "asset_chunk_size": args.asset_chunk_size,
                "output": args.output,
            },
        )
        report = run_verification(config, session_factory)
        path = write_report(config.output or default_report_path(), report)
    except (ConfigError, yaml.YAMLError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except Exception as exc:
        print(f"Unexpected error: {type(exc).__name__}: {exc}", file=sys.stderr)
        return EXIT_ERROR

    verdict = report["verdict"]
    print(
        json.dumps(
            {
                "report": str(path),
                "pass": verdict["pass"],
                "mismatchCount": verdict["mismatchCount"],
                "failingIndexers": len(verdict["failingIndexers"]),
            }
        )
    )
    return EXIT_PASS if verdict["pass"] else EXIT_FAIL


if __name__ == "__main__":
    sys.exit(main())
