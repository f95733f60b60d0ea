"""
Entity table registry for the indexer REST schema.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class EntityConfig:
    table: str
    endpoint_candidates: List[str]
    include_orphaned: bool = True
    asset_scoped: bool = False


# Tables in report order
ENTITY_TABLES = [
    "agents",
    "feedbacks",
    "feedback_responses",
    "revocations",
    "collections",
    "metadata",
]

ENTITY_CONFIG: Dict[str, EntityConfig] = {
    "agents": EntityConfig("agents", ["agents"], asset_scoped=True),
    "feedbacks": EntityConfig("feedbacks", ["feedbacks"], asset_scoped=True),
    "feedback_responses": EntityConfig("feedback_responses", ["feedback_responses"], asset_scoped=True),
    "revocations": EntityConfig("revocations", ["revocations"], asset_scoped=True),
    "collections": EntityConfig("collections", ["collections", "collection_pointers"]),
    "metadata": EntityConfig("metadata", ["metadata", "metadata_entries"]),
}

REQUIRED_TABLES = list(ENTITY_TABLES)

# Tables whose rows each come from one on-chain transaction
TX_ENTITY_TABLES = ["feedbacks", "feedback_responses", "revocations"]


def get_entity_config(table: str) -> Optional[EntityConfig]:
    """Get the fetch configuration for a table."""
    return ENTITY_CONFIG.get(table)


def get_all_tables() -> List[str]:
    return list(ENTITY_TABLES)


def get_asset_scoped_tables() -> List[str]:
    """Tables that can be filtered by `asset`."""
    return [table for table in ENTITY_TABLES if ENTITY_CONFIG[table].asset_scoped]
