from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from indexer_parity.transformers.canonical import is_live_row
from indexer_parity.transformers.canonical_index import CanonicalIndex, build_canonical_index


@dataclass
class CoverageEntry:
    table: str
    endpoint: Optional[str] = None
    candidates_tried: List[Dict[str, Any]] = field(default_factory=list)
    supported: bool = False
    pages: int = 0
    count: int = 0
    orphaned_count: int = 0
    include_orphaned: Dict[str, bool] = field(
        default_factory=lambda: {"requested": False, "used": False, "fallbackToPlain": False}
    )
    canonical: Optional[CanonicalIndex] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def hash(self) -> Optional[str]:
        return self.canonical.payload_hash if self.canonical else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "endpoint": self.endpoint,
            "endpointCandidatesTried": [dict(attempt) for attempt in self.candidates_tried],
            "supported": self.supported,
            "pages": self.pages,
            "count": self.count,
            "orphanedCount": self.orphaned_count,
            "includeOrphaned": dict(self.include_orphaned),
            "canonical": self.canonical.summary() if self.canonical else None,
            "hash": self.hash,
            "errors": [dict(error) for error in self.errors],
        }


@dataclass
class IndexerReport:
    base_url: str
    root: str
    available: bool = False
    stats: Any = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    coverage: Dict[str, CoverageEntry] = field(default_factory=dict)
    id_invariants: Any = None
    tx_signature_checks: Any = None
    missing_assets: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "baseUrl": self.base_url,
            "root": self.root,
            "available": self.available,
            "stats": self.stats,
            "errors": [dict(error) for error in self.errors],
            "coverage": {table: entry.to_dict() for table, entry in self.coverage.items()},
            "idInvariants": self.id_invariants.to_dict() if self.id_invariants else None,
            "txSignatureChecks": self.tx_signature_checks.to_dict() if self.tx_signature_checks else None,
        }
        if self.missing_assets is not None:
            out["missingAssets"] = list(self.missing_assets)
        return out


def live_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [row for row in rows if is_live_row(row)]


def build_coverage_entry(table: str, fetched: Any) -> CoverageEntry:
    """Coverage for one fetched table. Parity covers live rows only."""
    rows = fetched.rows or []
    live = live_rows(rows)
    return CoverageEntry(
        table=table,
        endpoint=fetched.endpoint,
        candidates_tried=list(fetched.candidates_tried),
        supported=fetched.supported,
        pages=fetched.pages,
        count=len(live),
        orphaned_count=len(rows) - len(live),
        include_orphaned=fetched.include_orphaned.to_dict(),
        canonical=build_canonical_index(table, live),
        errors=list(fetched.errors),
    )


def make_empty_coverage_entry(table: str, include_orphaned_requested: bool = False) -> CoverageEntry:
    return CoverageEntry(
        table=table,
        include_orphaned={"requested": include_orphaned_requested, "used": False, "fallbackToPlain": False},
        canonical=build_canonical_index(table, []),
    )
