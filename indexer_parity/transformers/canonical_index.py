import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from indexer_parity.transformers.canonical import canonicalize, is_synthetic_key

SAMPLE_LIMIT = 8


def stable_stringify(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_payload(payload: Dict[str, Any]) -> str:
    return hashlib.sha256(stable_stringify(payload).encode("utf-8")).hexdigest()


def stable_hash(lines: Iterable[str]) -> Optional[str]:
    """SHA-256 over the sorted lines, newline terminated. None for no lines."""
    ordered = sorted(lines)
    if not ordered:
        return None
    digest = hashlib.sha256()
    for line in ordered:
        digest.update(line.encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


@dataclass
class CanonicalIndex:
    entity: str
    digests: Dict[str, str] = field(default_factory=dict)
    key_count: int = 0
    missing_key_count: int = 0
    duplicate_key_count: int = 0
    conflicting_duplicate_key_count: int = 0
    key_hash: Optional[str] = None
    payload_hash: Optional[str] = None
    fields: List[str] = field(default_factory=list)
    sample_keys: List[str] = field(default_factory=list)
    sample_duplicate_keys: List[str] = field(default_factory=list)
    sample_conflict_keys: List[str] = field(default_factory=list)

    @property
    def unique_key_count(self) -> int:
        return len(self.digests)

    def summary(self) -> Dict[str, Any]:
        """Report form. The key -> digest map stays out of the report."""
        return {
            "keyCount": self.key_count,
            "uniqueKeyCount": self.unique_key_count,
            "missingKeyCount": self.missing_key_count,
            "duplicateKeyCount": self.duplicate_key_count,
            "conflictingDuplicateKeyCount": self.conflicting_duplicate_key_count,
            "keyHash": self.key_hash,
            "payloadHash": self.payload_hash,
            "fields": list(self.fields),
            "sampleKeys": list(self.sample_keys),
            "sampleDuplicateKeys": list(self.sample_duplicate_keys),
            "sampleConflictKeys": list(self.sample_conflict_keys),
        }


def build_canonical_index(entity: str, rows: List[Dict[str, Any]]) -> CanonicalIndex:
    """
    Fold all rows of one (replica, table) into a key -> payload digest map.

    A repeated key with the same digest is an idempotent re-delivery and only
    counts as a duplicate. A repeated key with a different digest is a
    conflicting duplicate: the replica holds two different facts under one
    identity. The first digest seen for a key is the one kept.
    """
    index = CanonicalIndex(entity=entity)
    fields = set()

    for ordinal, row in enumerate(rows):
        key, payload = canonicalize(entity, row, ordinal)
        index.key_count += 1
        if is_synthetic_key(key):
            index.missing_key_count += 1

        fields.update(payload.keys())
        digest = hash_payload(payload)

        existing = index.digests.get(key)
        if existing is None:
            index.digests[key] = digest
            if len(index.sample_keys) < SAMPLE_LIMIT:
                index.sample_keys.append(key)
            continue

        index.duplicate_key_count += 1
        if len(index.sample_duplicate_keys) < SAMPLE_LIMIT:
            index.sample_duplicate_keys.append(key)
        if existing != digest:
            index.conflicting_duplicate_key_count += 1
            if len(index.sample_conflict_keys) < SAMPLE_LIMIT:
                index.sample_conflict_keys.append(key)

    index.fields = sorted(fields)
    index.key_hash = stable_hash(index.digests.keys())
    index.payload_hash = stable_hash(f"{key}|{digest}" for key, digest in index.digests.items())
    return index
