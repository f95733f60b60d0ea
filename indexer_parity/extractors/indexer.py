"""
Paged table fetcher for indexer REST endpoints.

An entity table may be served under more than one endpoint name, and not
every indexer accepts `includeOrphaned=true`. Both are handled as an ordered
list of fetch strategies. The first page of each strategy is classified as
success (keep paging with it), unsupported (try the next strategy) or
failure (stop).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from indexer_parity.transformers.entity_router import EntityConfig
from indexer_parity.utils.http import HttpClient, HttpResponse

SUCCESS = "success"
UNSUPPORTED = "unsupported"
FAILURE = "failure"

ORPHAN_FLAG_REJECT_STATUSES = {400, 404, 422}
UNSUPPORTED_MARKERS = ("does not exist", "relation", "unknown", "not found")

CONNECTIVITY = "connectivity"
SCHEMA = "schema"


def endpoint_unavailable(status: int, raw: str) -> bool:
    if status == 404:
        return True
    if status != 400:
        return False
    text = (raw or "").lower()
    return any(marker in text for marker in UNSUPPORTED_MARKERS)


def list_to_in_filter(values: Sequence[Any]) -> str:
    escaped = []
    for value in values:
        s = "" if value is None else str(value)
        escaped.append('"' + s.replace("\\", "\\\\").replace('"', '\\"') + '"')
    return f"in.({','.join(escaped)})"


def rows_from_payload(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("items", "data"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


@dataclass(frozen=True)
class FetchStrategy:
    endpoint: str
    include_orphaned: bool = False

    @property
    def name(self) -> str:
        return f"{self.endpoint}+orphaned" if self.include_orphaned else self.endpoint

    def params(self, offset: int, page_size: int, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": page_size, "offset": offset}
        if self.include_orphaned:
            params["includeOrphaned"] = "true"
        for key, value in (extra or {}).items():
            if value is not None and value != "":
                params[key] = value
        return params

    def classify(self, response: HttpResponse) -> str:
        if response.ok:
            return SUCCESS
        if self.include_orphaned and response.status in ORPHAN_FLAG_REJECT_STATUSES:
            return UNSUPPORTED
        if endpoint_unavailable(response.status, response.raw):
            return UNSUPPORTED
        return FAILURE


def build_strategies(endpoint_candidates: Sequence[str], include_orphaned: bool) -> List[FetchStrategy]:
    strategies = []
    for endpoint in endpoint_candidates:
        if include_orphaned:
            strategies.append(FetchStrategy(endpoint, include_orphaned=True))
        strategies.append(FetchStrategy(endpoint, include_orphaned=False))
    return strategies


@dataclass
class OrphanFlag:
    requested: bool = False
    used: bool = False
    fallback_to_plain: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"requested": self.requested, "used": self.used, "fallbackToPlain": self.fallback_to_plain}


@dataclass
class FetchResult:
    entity: str
    endpoint: Optional[str] = None
    supported: bool = False
    rows: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    last_status: Optional[int] = None
    include_orphaned: OrphanFlag = field(default_factory=OrphanFlag)
    candidates_tried: List[Dict[str, Any]] = field(default_factory=list)


def _error(kind: str, endpoint: str, response: HttpResponse) -> Dict[str, Any]:
    return {
        "kind": kind,
        "endpoint": endpoint,
        "status": response.status,
        "message": f"{endpoint}:{response.describe()}",
    }


def fetch_paged_table(
    client: HttpClient,
    config: EntityConfig,
    page_size: int,
    max_pages: int,
    extra_params: Optional[Dict[str, Any]] = None,
) -> FetchResult:
    """
    Fetch every row of one table from one replica.

    Pages are read strictly in order with offset/limit until a short page or
    `max_pages` requests of the answering strategy. Failures are recorded on
    the result; nothing here raises for HTTP or transport errors.
    """
    result = FetchResult(entity=config.table)
    result.include_orphaned.requested = config.include_orphaned
    strategies = build_strategies(config.endpoint_candidates, config.include_orphaned)

    rejected_orphan_flag = set()
    chosen: Optional[FetchStrategy] = None
    first_batch: List[Dict[str, Any]] = []
    last_response: Optional[HttpResponse] = None

    for strategy in strategies:
        response = client.get(strategy.endpoint, params=strategy.params(0, page_size, extra_params))
        result.pages += 1
        result.last_status = response.status
        last_response = response
        outcome = strategy.classify(response)
        result.candidates_tried.append(
            {
                "endpoint": strategy.endpoint,
                "includeOrphaned": strategy.include_orphaned,
                "outcome": outcome,
                "status": response.status,
                "error": None if response.ok else response.describe(),
            }
        )

        if outcome == SUCCESS:
            chosen = strategy
            first_batch = rows_from_payload(response.payload)
            break

        if outcome == FAILURE:
            result.endpoint = strategy.endpoint
            result.errors.append(_error(CONNECTIVITY, strategy.endpoint, response))
            print(f"  ❌ {client.base_url}/{strategy.endpoint}: {response.describe(120)}")
            return result

        if strategy.include_orphaned:
            rejected_orphan_flag.add(strategy.endpoint)
            print(f"  ℹ️ {client.base_url}/{strategy.endpoint}: includeOrphaned rejected ({response.status}), retrying plain")
        else:
            print(f"  ℹ️ {client.base_url}/{strategy.endpoint}: not served ({response.status})")

    if chosen is None:
        result.endpoint = strategies[-1].endpoint if strategies else None
        if last_response is not None:
            result.errors.append(_error(SCHEMA, result.endpoint, last_response))
        else:
            result.errors.append({"kind": SCHEMA, "endpoint": None, "status": None, "message": f"{config.table}:no_endpoint_candidates"})
        return result

    result.endpoint = chosen.endpoint
    result.supported = True
    result.include_orphaned.used = chosen.include_orphaned
    result.include_orphaned.fallback_to_plain = chosen.endpoint in rejected_orphan_flag
    result.rows.extend(first_batch)

    page = 1
    last_batch_size = len(first_batch)
    while last_batch_size == page_size and page < max_pages:
        response = client.get(chosen.endpoint, params=chosen.params(page * page_size, page_size, extra_params))
        result.pages += 1
        result.last_status = response.status
        if not response.ok:
            result.supported = False
            result.errors.append(_error(CONNECTIVITY, chosen.endpoint, response))
            print(f"  ❌ {client.base_url}/{chosen.endpoint} page {page}: {response.describe(120)}")
            return result
        batch = rows_from_payload(response.payload)
        result.rows.extend(batch)
        last_batch_size = len(batch)
        page += 1

    if last_batch_size == page_size and page >= max_pages:
        print(f"  ℹ️ {client.base_url}/{chosen.endpoint}: reached page limit ({max_pages})")
    return result


def fetch_rows_by_assets(
    client: HttpClient,
    config: EntityConfig,
    assets: Sequence[str],
    chunk_size: int,
    page_size: int,
    max_pages: int,
) -> FetchResult:
    """Fetch one table restricted to `assets` through chunked `in.(...)` filters."""
    merged = FetchResult(entity=config.table, supported=True)
    merged.include_orphaned.requested = config.include_orphaned

    for start in range(0, len(assets), chunk_size):
        chunk = list(assets[start:start + chunk_size])
        fetched = fetch_paged_table(
            client, config, page_size, max_pages, extra_params={"asset": list_to_in_filter(chunk)}
        )
        merged.rows.extend(fetched.rows)
        merged.errors.extend(fetched.errors)
        merged.pages += fetched.pages
        merged.last_status = fetched.last_status
        merged.candidates_tried.extend(fetched.candidates_tried)
        merged.endpoint = merged.endpoint or fetched.endpoint
        merged.supported = merged.supported and fetched.supported
        merged.include_orphaned.used = merged.include_orphaned.used or fetched.include_orphaned.used
        merged.include_orphaned.fallback_to_plain = (
            merged.include_orphaned.fallback_to_plain or fetched.include_orphaned.fallback_to_plain
        )
    return merged
