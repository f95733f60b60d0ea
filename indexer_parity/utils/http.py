import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests


@dataclass
class HttpResponse:
    ok: bool
    status: int
    payload: Any = None
    raw: str = ""
    error: Optional[str] = None

    def describe(self, limit: int = 220) -> str:
        if self.error:
            return f"ERR:{self.error}"
        return f"HTTP {self.status}:{self.raw[:limit]}"


class HttpClient:
    """GET-only JSON client. Never raises for HTTP or transport failures."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"content-type": "application/json"})

    def url_for(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> HttpResponse:
        url = self.url_for(endpoint)
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            return HttpResponse(ok=False, status=0, error=str(exc) or type(exc).__name__)

        raw = resp.text or ""
        try:
            payload = json.loads(raw) if raw else None
        except ValueError:
            payload = raw
        return HttpResponse(ok=resp.ok, status=resp.status_code, payload=payload, raw=raw)

    def close(self) -> None:
        self.session.close()
