"""
Canonicalization of raw indexer rows.

Every replica serves the same logical schema, but storage dialects differ:
integers may arrive as strings, booleans as "t"/"f" or 0/1, hashes as
"\\xABCD" (Postgres bytea) or "0xabcd", optional columns may be absent.
`canonicalize` maps one raw row to a natural key plus a fully typed payload
so two rows for the same fact produce identical payloads on every replica.

All coercions are total: malformed input becomes None, never an exception.
"""

import json
import math
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

MISSING_KEY_PREFIX = "__missing_key__"

ORPHANED = "ORPHANED"

INT_RE = re.compile(r"^-?\d+$")
PREFIXED_HEX_RE = re.compile(r"^(?:\\x|0x)([0-9a-f]+)$", re.IGNORECASE)
BARE_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")

TRUE_STRINGS = {"true", "t", "1"}
FALSE_STRINGS = {"false", "f", "0"}


def string_or_null(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        s = value
    elif isinstance(value, bool):
        s = "true" if value else "false"
    elif isinstance(value, float) and math.isfinite(value) and value.is_integer():
        s = str(int(value))
    elif isinstance(value, (bytes, bytearray)):
        s = f"0x{bytes(value).hex()}"
    elif isinstance(value, (dict, list, tuple)):
        try:
            s = json.dumps(value, sort_keys=True, separators=(",", ":"))
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)
    s = s.strip()
    return s if s else None


def upper_or_null(value: Any) -> Optional[str]:
    s = string_or_null(value)
    return s.upper() if s else None


def as_int(value: Any) -> Optional[int]:
    """Strict integer parse: ints, integral floats and base-10 digit strings."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value.is_integer() else None
    if isinstance(value, str):
        s = value.strip()
        return int(s) if INT_RE.match(s) else None
    return None


def as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    if isinstance(value, str):
        s = value.strip().lower()
        if s in TRUE_STRINGS:
            return True
        if s in FALSE_STRINGS:
            return False
    return None


def normalize_binary_like(value: Any) -> Optional[str]:
    """Lower-case hex without a 0x / \\x prefix; non-hex text passes through."""
    s = string_or_null(value)
    if s is None:
        return None
    match = PREFIXED_HEX_RE.match(s)
    if match:
        return match.group(1).lower()
    if BARE_HEX_RE.match(s):
        return s.lower()
    return s


def normalize_tx_signature(value: Any) -> Optional[str]:
    # base58 is case sensitive
    return string_or_null(value)


def pick(row: Any, aliases: Sequence[str]) -> Any:
    """Value of the first alias that is present and non-null."""
    if not isinstance(row, dict):
        return None
    for field in aliases:
        value = row.get(field)
        if value is not None:
            return value
    return None


def is_live_row(row: Any) -> bool:
    status = upper_or_null(row.get("status")) if isinstance(row, dict) else None
    return status != ORPHANED


Coercer = Callable[[Any], Any]
FieldSpec = Tuple[str, Coercer, Tuple[str, ...]]


def _field(name: str, coercer: Coercer, *aliases: str) -> FieldSpec:
    return (name, coercer, (name,) + aliases)


_PROVENANCE = [
    _field("block_slot", as_int, "slot"),
    _field("tx_index", as_int),
    _field("event_ordinal", as_int),
    _field("tx_signature", normalize_tx_signature),
    _field("status", upper_or_null),
]

ENTITY_FIELDS: Dict[str, List[FieldSpec]] = {
    "agents": [
        _field("asset", string_or_null),
        _field("agent_id", as_int),
        _field("owner", string_or_null),
        _field("creator", string_or_null),
        _field("agent_uri", string_or_null),
        _field("agent_wallet", string_or_null),
        _field("atom_enabled", as_bool),
        _field("collection", string_or_null, "col"),
        _field("canonical_col", string_or_null, "collection_pointer"),
        _field("col_locked", as_bool),
        _field("parent_asset", string_or_null),
        _field("parent_creator", string_or_null),
        _field("parent_locked", as_bool),
    ] + _PROVENANCE,
    "feedbacks": [
        _field("asset", string_or_null),
        _field("client_address", string_or_null),
        _field("feedback_index", as_int),
        _field("feedback_id", as_int),
        _field("value", string_or_null),
        _field("value_decimals", as_int),
        _field("score", as_int),
        _field("tag1", string_or_null),
        _field("tag2", string_or_null),
        _field("endpoint", string_or_null),
        _field("feedback_uri", string_or_null),
        _field("feedback_hash", normalize_binary_like),
        _field("running_digest", normalize_binary_like),
    ] + _PROVENANCE,
    "feedback_responses": [
        _field("asset", string_or_null),
        _field("client_address", string_or_null),
        _field("feedback_index", as_int),
        _field("response_id", as_int),
        _field("responder", string_or_null),
        _field("response_uri", string_or_null),
        _field("response_hash", normalize_binary_like),
        _field("response_count", as_int),
        _field("running_digest", normalize_binary_like),
    ] + _PROVENANCE,
    "revocations": [
        _field("asset", string_or_null),
        _field("client_address", string_or_null),
        _field("feedback_index", as_int),
        _field("revocation_id", as_int),
        _field("feedback_hash", normalize_binary_like),
        _field("original_score", as_int),
        _field("atom_enabled", as_bool),
        _field("had_impact", as_bool),
        _field("revoke_count", as_int),
        _field("running_digest", normalize_binary_like),
        # revocations name the slot column `slot`
        _field("slot", as_int, "block_slot"),
    ] + _PROVENANCE[1:],
    "collections": [
        _field("collection", string_or_null, "col"),
        _field("creator", string_or_null, "authority"),
        _field("first_seen_asset", string_or_null),
        _field("first_seen_slot", as_int),
        _field("first_seen_tx_signature", normalize_tx_signature),
        _field("last_seen_slot", as_int),
        _field("last_seen_tx_signature", normalize_tx_signature),
        _field("asset_count", as_int),
        _field("version", string_or_null),
        _field("name", string_or_null),
        _field("symbol", string_or_null),
        _field("description", string_or_null),
        _field("image", string_or_null),
        _field("banner_image", string_or_null, "bannerImage"),
        _field("social_website", string_or_null, "socialWebsite"),
        _field("social_x", string_or_null, "socialX"),
        _field("social_discord", string_or_null, "socialDiscord"),
        _field("metadata_status", string_or_null, "metadataStatus"),
        _field("metadata_hash", normalize_binary_like, "metadataHash"),
        _field("metadata_bytes", as_int, "metadataBytes"),
        _field("registry_type", string_or_null),
        _field("status", upper_or_null),
    ],
    "metadata": [
        _field("asset", string_or_null),
        _field("key", string_or_null, "metadataKey"),
        _field("value", normalize_binary_like, "metadataValue"),
        _field("immutable", as_bool),
    ] + _PROVENANCE,
}

KEY_FIELDS: Dict[str, List[str]] = {
    "agents": ["asset"],
    "feedbacks": ["asset", "client_address", "feedback_index", "feedback_id", "tx_signature"],
    "feedback_responses": ["asset", "client_address", "feedback_index", "response_id", "tx_signature"],
    "revocations": ["asset", "client_address", "feedback_index", "revocation_id", "tx_signature"],
    "collections": ["collection", "creator"],
    "metadata": ["asset", "key", "block_slot", "tx_index", "event_ordinal", "tx_signature"],
}


def join_key(parts: Sequence[Any]) -> str:
    return "|".join("" if part is None else str(part) for part in parts)


def synthetic_key(entity: str, ordinal: int) -> str:
    return f"{MISSING_KEY_PREFIX}:{entity}:{ordinal}"


def is_synthetic_key(key: str) -> bool:
    return key.startswith(f"{MISSING_KEY_PREFIX}:")


def canonical_payload(entity: str, row: Any) -> Dict[str, Any]:
    specs = ENTITY_FIELDS.get(entity)
    if specs is None:
        raise ValueError(f"Unsupported entity for canonicalization: {entity}")
    return {name: coercer(pick(row, aliases)) for name, coercer, aliases in specs}


def canonicalize(entity: str, row: Any, ordinal: int = 0) -> Tuple[str, Dict[str, Any]]:
    """Map a raw row to (canonical key, canonical payload)."""
    payload = canonical_payload(entity, row)
    parts = [payload[field] for field in KEY_FIELDS[entity]]
    if all(part is None for part in parts):
        return synthetic_key(entity, ordinal), payload
    return join_key(parts), payload
