import re
from typing import Any, Dict, List, Optional

from indexer_parity.errors import ConnectivityError, SchemaError
from indexer_parity.extractors.indexer import list_to_in_filter
from indexer_parity.utils.http import HttpClient, HttpResponse

REST_SUFFIX_RE = re.compile(r"/rest/v1/?$", re.IGNORECASE)


def root_from_rest(base_url: str) -> str:
    return REST_SUFFIX_RE.sub("", base_url or "")


class IndexerClient:
    """Read-only client for one indexer's REST API (PostgREST filter syntax)."""

    def __init__(self, base_url: str, timeout: float = 20.0, session=None) -> None:
        self.base_url = base_url.rstrip("/")
        self.root = root_from_rest(self.base_url)
        self.http = HttpClient(self.base_url, timeout=timeout, session=session)

    def _checked(self, response: HttpResponse, endpoint: str) -> Any:
        if response.ok:
            return response.payload
        if response.status == 404:
            raise SchemaError(f"{endpoint} is not served by {self.base_url}")
        raise ConnectivityError(f"{endpoint}: {response.describe()}", status=response.status)

    def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._checked(self.http.get(endpoint, params=params), endpoint)

    def _get_list(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        payload = self._get(endpoint, params)
        return payload if isinstance(payload, list) else []

    def _get_one(self, endpoint: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self._get_list(endpoint, dict(params, limit=1))
        return rows[0] if rows else None

    # Health

    def health(self) -> HttpResponse:
        return self.http.get(f"{self.root}/health")

    def stats(self) -> HttpResponse:
        return self.http.get("stats")

    def is_available(self) -> bool:
        return self.health().ok

    # Agents

    def get_agent(self, asset: str) -> Optional[Dict[str, Any]]:
        return self._get_one("agents", {"asset": f"eq.{asset}"})

    def get_agents(self, limit: int = 100, offset: int = 0, order: str = "created_at.desc") -> List[Dict[str, Any]]:
        return self._get_list("agents", {"limit": limit, "offset": offset, "order": order})

    def get_agents_by_owner(self, owner: str) -> List[Dict[str, Any]]:
        return self._get_list("agents", {"owner": f"eq.{owner}"})

    def get_agents_by_assets(self, assets: List[str]) -> List[Dict[str, Any]]:
        return self._get_list("agents", {"asset": list_to_in_filter(assets)})

    def get_leaderboard(
        self,
        limit: int = 50,
        collection: Optional[str] = None,
        min_tier: Optional[int] = None,
        cursor_sort_key: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"order": "sort_key.desc", "limit": limit}
        if collection:
            params["collection"] = f"eq.{collection}"
        if min_tier is not None:
            params["trust_tier"] = f"gte.{min_tier}"
        # keyset pagination
        if cursor_sort_key:
            params["sort_key"] = f"lt.{cursor_sort_key}"
        return self._get_list("agents", params)

    # Feedback

    def get_feedbacks(self, asset: str, include_revoked: bool = False) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"asset": f"eq.{asset}", "order": "feedback_index.asc"}
        if not include_revoked:
            params["is_revoked"] = "eq.false"
        return self._get_list("feedbacks", params)

    def get_feedback(self, asset: str, client: str, feedback_index: int) -> Optional[Dict[str, Any]]:
        return self._get_one(
            "feedbacks",
            {
                "asset": f"eq.{asset}",
                "client_address": f"eq.{client}",
                "feedback_index": f"eq.{feedback_index}",
            },
        )

    def get_feedback_responses_for(self, asset: str, client: str, feedback_index: int) -> List[Dict[str, Any]]:
        return self._get_list(
            "feedback_responses",
            {
                "asset": f"eq.{asset}",
                "client_address": f"eq.{client}",
                "feedback_index": f"eq.{feedback_index}",
                "order": "response_id.asc",
            },
        )

    # Validations and stats

    def get_pending_validations(self, validator: str) -> List[Dict[str, Any]]:
        return self._get_list(
            "validations",
            {"validator_address": f"eq.{validator}", "status": "eq.PENDING", "order": "created_at.desc"},
        )

    def get_global_stats(self) -> Dict[str, Any]:
        rows = self._get_list("global_stats")
        if rows:
            return rows[0]
        return {
            "total_agents": 0,
            "total_collections": 0,
            "total_feedbacks": 0,
            "total_validations": 0,
            "avg_score": None,
        }

    def close(self) -> None:
        self.http.close()
