"""
Cross-replica parity.

The first replica is the reference; every other replica is diffed against it
table by table. Two replicas agree on a table when both serve it, hold the
same key set, the same digest per key, and neither holds conflicting
duplicates.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from indexer_parity.transformers.coverage import CoverageEntry, IndexerReport
from indexer_parity.transformers.entity_router import ENTITY_TABLES

DIFF_SAMPLE_LIMIT = 12


@dataclass
class KeyDiff:
    missing_in_right_count: int = 0
    missing_in_left_count: int = 0
    payload_diff_count: int = 0
    missing_in_right: List[str] = field(default_factory=list)
    missing_in_left: List[str] = field(default_factory=list)
    payload_diff: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.missing_in_right_count or self.missing_in_left_count or self.payload_diff_count)


@dataclass
class Comparison:
    mismatches: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def mismatch_count(self) -> int:
        return len(self.mismatches)


def diff_key_sets(left: Dict[str, str], right: Dict[str, str], sample_limit: int = DIFF_SAMPLE_LIMIT) -> KeyDiff:
    """Exact counts, bounded samples. Samples follow the maps' insertion order."""
    diff = KeyDiff()
    for key, left_digest in left.items():
        right_digest = right.get(key)
        if right_digest is None:
            diff.missing_in_right_count += 1
            if len(diff.missing_in_right) < sample_limit:
                diff.missing_in_right.append(key)
        elif right_digest != left_digest:
            diff.payload_diff_count += 1
            if len(diff.payload_diff) < sample_limit:
                diff.payload_diff.append(key)

    for key in right:
        if key not in left:
            diff.missing_in_left_count += 1
            if len(diff.missing_in_left) < sample_limit:
                diff.missing_in_left.append(key)
    return diff


def _conflict_count(entry: CoverageEntry) -> int:
    return entry.canonical.conflicting_duplicate_key_count if entry.canonical else 0


def compare_coverage(table: str, left_url: str, left: Optional[CoverageEntry], right_url: str, right: Optional[CoverageEntry]) -> Optional[Dict[str, Any]]:
    """Mismatch record for one (table, pair), or None when the pair agrees."""
    base = {"table": table, "left": left_url, "right": right_url}

    if left is None or right is None:
        return dict(base, kind="missing_coverage", details="Coverage entry missing")

    if left.supported != right.supported:
        return dict(base, kind="support", leftValue=left.supported, rightValue=right.supported)

    if not left.supported:
        return None

    left_conflicts = _conflict_count(left)
    right_conflicts = _conflict_count(right)
    duplicate_conflict_mismatch = left_conflicts != right_conflicts or left_conflicts > 0 or right_conflicts > 0

    hashes = {
        "leftKeyHash": left.canonical.key_hash if left.canonical else None,
        "rightKeyHash": right.canonical.key_hash if right.canonical else None,
        "leftPayloadHash": left.hash,
        "rightPayloadHash": right.hash,
    }

    if left.canonical is None or right.canonical is None:
        # no key maps to diff, fall back to the fingerprints
        if (
            left.count != right.count
            or hashes["leftKeyHash"] != hashes["rightKeyHash"]
            or hashes["leftPayloadHash"] != hashes["rightPayloadHash"]
            or duplicate_conflict_mismatch
        ):
            return dict(
                base,
                kind="canonical_summary",
                leftCount=left.count,
                rightCount=right.count,
                duplicateConflictMismatch=duplicate_conflict_mismatch,
                **hashes,
            )
        return None

    if (
        not duplicate_conflict_mismatch
        and left.canonical.key_hash == right.canonical.key_hash
        and left.canonical.payload_hash == right.canonical.payload_hash
    ):
        return None

    diff = diff_key_sets(left.canonical.digests, right.canonical.digests)
    if diff.empty and not duplicate_conflict_mismatch:
        return None

    return dict(
        base,
        kind="canonical",
        leftCount=left.count,
        rightCount=right.count,
        leftUniqueKeys=left.canonical.unique_key_count,
        rightUniqueKeys=right.canonical.unique_key_count,
        missingInRightCount=diff.missing_in_right_count,
        missingInLeftCount=diff.missing_in_left_count,
        payloadDiffCount=diff.payload_diff_count,
        duplicateConflictMismatch=duplicate_conflict_mismatch,
        samples={
            "missingInRight": diff.missing_in_right,
            "missingInLeft": diff.missing_in_left,
            "payloadDiff": diff.payload_diff,
            "leftDuplicateConflictKeys": list(left.canonical.sample_conflict_keys),
            "rightDuplicateConflictKeys": list(right.canonical.sample_conflict_keys),
        },
        **hashes,
    )


def compare_indexers(reports: Sequence[IndexerReport], tables: Sequence[str] = ENTITY_TABLES) -> Comparison:
    comparison = Comparison()
    if len(reports) < 2:
        return comparison

    ref = reports[0]
    for table in tables:
        for other in reports[1:]:
            try:
                mismatch = compare_coverage(
                    table, ref.base_url, ref.coverage.get(table), other.base_url, other.coverage.get(table)
                )
            except Exception as exc:
                mismatch = {
                    "kind": "comparison_error",
                    "table": table,
                    "left": ref.base_url,
                    "right": other.base_url,
                    "details": f"{type(exc).__name__}: {exc}",
                }
            if mismatch is not None:
                comparison.mismatches.append(mismatch)
    return comparison
