import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from indexer_parity.transformers.canonical import canonicalize, normalize_tx_signature
from indexer_parity.transformers.entity_router import TX_ENTITY_TABLES

BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")
MIN_SIGNATURE_LENGTH = 32
SAMPLE_LIMIT = 8

MISSING = "missing"
INVALID = "invalid"
OK = "ok"


def classify_tx_signature(value: Any) -> str:
    sig = normalize_tx_signature(value)
    if not sig:
        return MISSING
    if len(sig) < MIN_SIGNATURE_LENGTH or not BASE58_RE.match(sig):
        return INVALID
    return OK


@dataclass
class TableSignatureCheck:
    passed: bool = True
    checked_rows: int = 0
    missing_count: int = 0
    invalid_format_count: int = 0
    missing_samples: List[str] = field(default_factory=list)
    invalid_samples: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "checkedRows": self.checked_rows,
            "missingCount": self.missing_count,
            "invalidFormatCount": self.invalid_format_count,
            "missingSamples": list(self.missing_samples),
            "invalidSamples": list(self.invalid_samples),
        }


@dataclass
class TxSignatureChecks:
    passed: bool
    failing_tables: List[str]
    checks: Dict[str, TableSignatureCheck]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "failingTables": list(self.failing_tables),
            "checks": {table: check.to_dict() for table, check in self.checks.items()},
        }


def check_table_signatures(table: str, rows: List[Dict[str, Any]]) -> TableSignatureCheck:
    check = TableSignatureCheck(checked_rows=len(rows))
    for ordinal, row in enumerate(rows):
        status = classify_tx_signature(row.get("tx_signature") if isinstance(row, dict) else None)
        if status == MISSING:
            check.missing_count += 1
            if len(check.missing_samples) < SAMPLE_LIMIT:
                check.missing_samples.append(canonicalize(table, row, ordinal)[0])
        elif status == INVALID:
            check.invalid_format_count += 1
            if len(check.invalid_samples) < SAMPLE_LIMIT:
                check.invalid_samples.append(canonicalize(table, row, ordinal)[0])
    check.passed = check.missing_count == 0 and check.invalid_format_count == 0
    return check


def evaluate_tx_signature_checks(rows_by_table: Dict[str, List[Dict[str, Any]]]) -> TxSignatureChecks:
    """Every row of every transactional table must carry a well-formed signature."""
    checks = {table: check_table_signatures(table, rows_by_table.get(table) or []) for table in TX_ENTITY_TABLES}
    failing = [table for table, check in checks.items() if not check.passed]
    return TxSignatureChecks(passed=not failing, failing_tables=failing, checks=checks)
