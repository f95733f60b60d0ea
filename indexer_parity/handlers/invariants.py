"""
Sequence invariants over live rows.

Ids handed out by the on-chain programs are dense counters: the agent id is
global, feedback index/id and revocation id count per asset, and response id
counts per (asset, client, feedback index). A replica that dropped or
duplicated an event shows up here as a null, a duplicate or a gap.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import pandera as pa
from pandera import Check, Column

from indexer_parity.transformers.canonical import as_int, string_or_null

GAP_SAMPLE_LIMIT = 8
ISSUE_SAMPLE_LIMIT = 12
GLOBAL_SCOPE = "*"

SEQUENCE_SCHEMA = pa.DataFrameSchema(
    {
        "scope": Column(object, Check(lambda s: s.map(lambda v: isinstance(v, str)))),
        "value": Column(
            object,
            Check(lambda s: s.map(lambda v: isinstance(v, int) and not isinstance(v, bool))),
            nullable=True,
        ),
    }
)

ScopeFn = Callable[[Dict[str, Any]], str]


def safe_string(value: Any) -> str:
    return string_or_null(value) or ""


def _get(row: Any, field_name: str) -> Any:
    return row.get(field_name) if isinstance(row, dict) else None


def asset_scope(row: Dict[str, Any]) -> str:
    return safe_string(_get(row, "asset"))


def feedback_scope(row: Dict[str, Any]) -> str:
    return "|".join(
        [safe_string(_get(row, "asset")), safe_string(_get(row, "client_address")), safe_string(_get(row, "feedback_index"))]
    )


def build_sequence_frame(rows: List[Dict[str, Any]], field_name: str, scope_fn: Optional[ScopeFn] = None) -> pd.DataFrame:
    scopes = [scope_fn(row) if scope_fn else GLOBAL_SCOPE for row in rows]
    values = [as_int(_get(row, field_name)) for row in rows]
    # object dtype keeps ints exact and None as None
    df = pd.DataFrame(
        {
            "scope": pd.Series(scopes, dtype=object),
            "value": pd.Series(values, dtype=object),
        }
    )
    return SEQUENCE_SCHEMA.validate(df)


def _gaps(unique: List[int]) -> List[tuple]:
    return [(prev + 1, cur - 1) for prev, cur in zip(unique, unique[1:]) if cur > prev + 1]


@dataclass
class GlobalCheck:
    ok: bool
    checked_rows: int = 0
    numeric_rows: int = 0
    null_count: int = 0
    duplicate_count: int = 0
    gap_count: int = 0
    min: Optional[int] = None
    max: Optional[int] = None
    start_issue: bool = False
    gap_samples: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "checkedRows": self.checked_rows,
            "numericRows": self.numeric_rows,
            "nullCount": self.null_count,
            "duplicateCount": self.duplicate_count,
            "gapCount": self.gap_count,
            "min": self.min,
            "max": self.max,
            "startIssue": self.start_issue,
            "gapSamples": list(self.gap_samples),
            "skipped": self.skipped,
        }


@dataclass
class ScopedCheck:
    ok: bool
    checked_rows: int = 0
    scopes: int = 0
    scopes_with_null: int = 0
    scopes_with_dup: int = 0
    scopes_with_gap: int = 0
    scopes_with_start: int = 0
    null_count: int = 0
    duplicate_count: int = 0
    gap_count: int = 0
    gap_samples: List[str] = field(default_factory=list)
    issue_samples: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "checkedRows": self.checked_rows,
            "scopes": self.scopes,
            "scopesWithNull": self.scopes_with_null,
            "scopesWithDup": self.scopes_with_dup,
            "scopesWithGap": self.scopes_with_gap,
            "scopesWithStart": self.scopes_with_start,
            "nullCount": self.null_count,
            "duplicateCount": self.duplicate_count,
            "gapCount": self.gap_count,
            "gapSamples": list(self.gap_samples),
            "issueSamples": [dict(sample) for sample in self.issue_samples],
        }


def check_global_numeric(
    rows: List[Dict[str, Any]],
    field_name: str,
    start_at_zero: bool = False,
    check_gaps: bool = True,
) -> GlobalCheck:
    df = build_sequence_frame(rows, field_name)
    numeric = df["value"].dropna().tolist()
    unique = sorted(set(numeric))

    result = GlobalCheck(
        ok=False,
        checked_rows=len(df),
        numeric_rows=len(numeric),
        null_count=int(df["value"].isna().sum()),
        duplicate_count=len(numeric) - len(unique),
        min=unique[0] if unique else None,
        max=unique[-1] if unique else None,
    )
    if check_gaps:
        for low, high in _gaps(unique):
            result.gap_count += high - low + 1
            if len(result.gap_samples) < GAP_SAMPLE_LIMIT:
                result.gap_samples.append(f"{low}-{high}")
    result.start_issue = start_at_zero and bool(unique) and unique[0] != 0
    result.ok = (
        result.null_count == 0
        and result.duplicate_count == 0
        and result.gap_count == 0
        and not result.start_issue
    )
    return result


def check_scoped_numeric(
    rows: List[Dict[str, Any]],
    field_name: str,
    scope_fn: ScopeFn,
    start_at_zero: bool = False,
) -> ScopedCheck:
    """Global check per scope. Scopes never affect each other's numbering."""
    df = build_sequence_frame(rows, field_name, scope_fn)
    result = ScopedCheck(ok=False, checked_rows=len(df))

    def sample(issue: Dict[str, Any]) -> None:
        if len(result.issue_samples) < ISSUE_SAMPLE_LIMIT:
            result.issue_samples.append(issue)

    for scope, group in df.groupby("scope", sort=True):
        result.scopes += 1
        values = group["value"]

        null_count = int(values.isna().sum())
        if null_count:
            result.scopes_with_null += 1
            result.null_count += null_count
            sample({"scope": scope, "type": "null_id", "count": null_count})

        numeric = values.dropna().tolist()
        unique = sorted(set(numeric))
        if len(unique) != len(numeric):
            result.scopes_with_dup += 1
            result.duplicate_count += len(numeric) - len(unique)
            sample({"scope": scope, "type": "duplicate_id", "count": len(numeric) - len(unique)})

        if start_at_zero and unique and unique[0] != 0:
            result.scopes_with_start += 1
            sample({"scope": scope, "type": "start_not_zero", "first": unique[0]})

        gaps = _gaps(unique)
        if gaps:
            result.scopes_with_gap += 1
            sample({"scope": scope, "type": "id_gap", "from": gaps[0][0] - 1, "to": gaps[0][1] + 1})
        for low, high in gaps:
            result.gap_count += high - low + 1
            if len(result.gap_samples) < GAP_SAMPLE_LIMIT:
                result.gap_samples.append(f"{scope}:{low}-{high}")

    result.ok = (
        result.scopes_with_null == 0
        and result.scopes_with_dup == 0
        and result.scopes_with_gap == 0
        and result.scopes_with_start == 0
    )
    return result


@dataclass
class IdInvariants:
    passed: bool
    failed_checks: List[str]
    checks: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "failedChecks": list(self.failed_checks),
            "checks": {name: check.to_dict() for name, check in self.checks.items()},
        }


def evaluate_id_invariants(
    agents: List[Dict[str, Any]],
    feedbacks: List[Dict[str, Any]],
    feedback_responses: List[Dict[str, Any]],
    revocations: List[Dict[str, Any]],
    check_agent_sequence: bool = True,
) -> IdInvariants:
    """Run every id invariant over live rows. Callers filter orphaned rows."""
    if check_agent_sequence:
        agents_check = check_global_numeric(agents, "agent_id")
    else:
        # a subset of assets cannot be expected to hold a dense global id range
        agents_check = GlobalCheck(ok=True, checked_rows=len(agents), skipped=True)

    checks = {
        "agentsGlobalId": agents_check,
        "feedbackIndexPerAsset": check_scoped_numeric(feedbacks, "feedback_index", asset_scope, start_at_zero=True),
        "feedbackIdPerAsset": check_scoped_numeric(feedbacks, "feedback_id", asset_scope),
        "responsesPerFeedback": check_scoped_numeric(feedback_responses, "response_id", feedback_scope),
        "revocationIdPerAsset": check_scoped_numeric(revocations, "revocation_id", asset_scope),
    }
    failed = [name for name, check in checks.items() if not check.ok]
    return IdInvariants(passed=not failed, failed_checks=failed, checks=checks)
