"""
Shared fixtures: an in-memory indexer that speaks the REST subset the
verifier uses (limit/offset paging, `eq.` and `in.(...)` filters, the
includeOrphaned flag) behind a stand-in for requests.Session.
"""

import copy
import json
import re
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import pytest
import requests

SIG_1 = "3z9XAMHajUZX5RdYCD8u95E6HizCr8y4JNTDmq2Yv4iX89yfhq3xCCahfM9VKfN5kYDxURnA3axPdLqV7zZ4YnpF"
SIG_2 = "2MNN8o2j7k7YxH5s6h2c5RvfCM8R7QLmGqJYDbV2Q1RcA1xDZ33S3hnyVJ5LQGH9tVJ4mBfX8aY2egMuM72tWiV4"
SIG_3 = "2dQmLjPG8L6iVT5pu4B5h2B2zY2Zmj2JsD6dz4AETV9WF8rvzow1fvNwQm5J2n1ZjvWVeApMY9H8J2M5d9s4EFrg"
SIG_4 = "4fydkQQj7Yfg1XuJUEvN4RZJWRsYwTQ8QCYQjQk5BcPqX6nYc6zvUzgSq8QxxdWf8MM8uK9pQzP2X3TyqvU8f2N2"
SIG_5 = "2YhU7yW2z4aX8U5f2nM7qFQw7rZZu4JvJzQmxX8xgA1C95kZu8m4rVQ5bLEQ1g4mT9x6EuX6Qne1nUuK3NnQKV6h"

IN_VALUE_RE = re.compile(r'"((?:[^"\\]|\\.)*)"')


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        if text is not None:
            self.text = text
        else:
            self.text = "" if body is None else json.dumps(body)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400


class FakeSession:
    """Records every GET and hands it to `handler(url, params)`."""

    def __init__(self, handler: Callable[[str, Dict[str, Any]], FakeResponse]) -> None:
        self.handler = handler
        self.headers: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.closed = False

    def get(self, url: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> FakeResponse:
        params = dict(params or {})
        self.calls.append((url, params))
        return self.handler(url, params)

    def close(self) -> None:
        self.closed = True


def _parse_in_filter(value: str) -> List[str]:
    inner = value[len("in.("):-1]
    return [re.sub(r"\\(.)", r"\1", match) for match in IN_VALUE_RE.findall(inner)]


def _matches(row: Dict[str, Any], column: str, expr: Any) -> bool:
    expr = str(expr)
    actual = row.get(column) if isinstance(row, dict) else None
    if expr.startswith("eq."):
        return str(actual).lower() == expr[3:].lower() if isinstance(actual, bool) else str(actual) == expr[3:]
    if expr.startswith("in.("):
        return str(actual) in _parse_in_filter(expr)
    return True


class FakeIndexer:
    """
    One replica. `tables` maps endpoint name -> rows. Endpoints missing from
    `tables` answer 404; endpoints in `failing` answer with the mapped status.
    """

    def __init__(
        self,
        tables: Dict[str, List[Dict[str, Any]]],
        orphan_flag: bool = True,
        healthy: bool = True,
        failing: Optional[Dict[str, int]] = None,
        stats: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.tables = copy.deepcopy(tables)
        self.orphan_flag = orphan_flag
        self.healthy = healthy
        self.failing = failing or {}
        self.stats = stats if stats is not None else {"status": "ok"}

    def __call__(self, url: str, params: Dict[str, Any]) -> FakeResponse:
        path = urlparse(url).path.rstrip("/")
        if path.endswith("/health"):
            return FakeResponse(200 if self.healthy else 503, {"status": "ok" if self.healthy else "down"})

        name = path.rsplit("/", 1)[-1]
        if name == "stats":
            return FakeResponse(200, self.stats)
        if name in self.failing:
            return FakeResponse(self.failing[name], text="internal error")
        if name not in self.tables:
            return FakeResponse(404, {"message": f'relation "{name}" does not exist'})
        if "includeOrphaned" in params and not self.orphan_flag:
            return FakeResponse(400, {"message": "failed to parse filter (includeOrphaned)"})

        rows = self.tables[name]
        if "includeOrphaned" not in params:
            rows = [row for row in rows if not isinstance(row, dict) or str(row.get("status") or "").upper() != "ORPHANED"]
        for column, expr in params.items():
            if column in ("limit", "offset", "order", "includeOrphaned"):
                continue
            rows = [row for row in rows if _matches(row, column, expr)]

        offset = int(params.get("offset", 0))
        limit = int(params.get("limit", len(rows) or 1))
        return FakeResponse(200, rows[offset:offset + limit])


class FakeNetwork:
    """Routes each request to the FakeIndexer registered for its host."""

    def __init__(self, indexers: Dict[str, FakeIndexer]) -> None:
        self.indexers = indexers
        self.sessions: List[FakeSession] = []

    def __call__(self, url: str, params: Dict[str, Any]) -> FakeResponse:
        host = urlparse(url).netloc
        indexer = self.indexers.get(host)
        if indexer is None:
            raise requests.exceptions.ConnectionError(f"Connection refused: {host}")
        return indexer(url, params)

    def session_factory(self) -> FakeSession:
        session = FakeSession(self)
        self.sessions.append(session)
        return session


class RaisingSession(FakeSession):
    def __init__(self, exc: Exception) -> None:
        super().__init__(lambda url, params: FakeResponse())
        self.exc = exc

    def get(self, url: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append((url, dict(params or {})))
        raise self.exc


def make_tables() -> Dict[str, List[Dict[str, Any]]]:
    """A small internally consistent dataset covering all six tables."""
    return {
        "agents": [
            {"asset": "asset-a", "agent_id": 0, "owner": "owner-1", "status": "FINALIZED", "block_slot": 10,
             "tx_signature": SIG_1},
            {"asset": "asset-b", "agent_id": 1, "owner": "owner-2", "status": "FINALIZED", "block_slot": 11,
             "tx_signature": SIG_2},
        ],
        "feedbacks": [
            {"asset": "asset-a", "client_address": "client-1", "feedback_index": 0, "feedback_id": 0,
             "score": 90, "tx_signature": SIG_1, "status": "FINALIZED", "feedback_hash": "\\xABCDEF"},
            {"asset": "asset-a", "client_address": "client-2", "feedback_index": 1, "feedback_id": 1,
             "score": 75, "tx_signature": SIG_2, "status": "FINALIZED"},
            {"asset": "asset-b", "client_address": "client-1", "feedback_index": 0, "feedback_id": 0,
             "score": 60, "tx_signature": SIG_3, "status": "FINALIZED"},
        ],
        "feedback_responses": [
            {"asset": "asset-a", "client_address": "client-1", "feedback_index": 0, "response_id": 0,
             "responder": "owner-1", "tx_signature": SIG_4, "status": "FINALIZED"},
        ],
        "revocations": [
            {"asset": "asset-a", "client_address": "client-2", "feedback_index": 1, "revocation_id": 0,
             "slot": 40, "tx_signature": SIG_5, "status": "FINALIZED"},
        ],
        "collections": [
            {"collection": "col-1", "creator": "owner-1", "asset_count": 2, "status": "FINALIZED"},
        ],
        "metadata": [
            {"asset": "asset-a", "key": "name", "value": "0x6167656e74", "immutable": False,
             "block_slot": 12, "tx_index": 0, "event_ordinal": 0, "tx_signature": SIG_1, "status": "FINALIZED"},
        ],
    }


@pytest.fixture
def tables() -> Dict[str, List[Dict[str, Any]]]:
    return make_tables()
