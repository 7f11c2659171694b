"""Elasticsearch engine over the REST API using httpx.

Auth: optional basic auth (username + password). Throttling and availability
errors (429, 502, 503, 504, transport failures) surface as
`TransientEngineError`; every other rejection as `EngineError`.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from pkgsearch.engine.base import AliasAction, BulkResult, SearchEngine
from pkgsearch.exceptions import EngineError, TransientEngineError
from pkgsearch.index.schema import IndexDefinition
from pkgsearch.query.ast import SearchQuery
from pkgsearch.query.dsl import to_dsl

TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})


def _reason(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:500]
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return str(err.get("reason") or err.get("type") or err)
    return str(err or data)[:500]


class ElasticsearchEngine(SearchEngine):
    def __init__(
        self,
        *,
        base_url: str = "http://localhost:9200",
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_ssl: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.verify_ssl = verify_ssl
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        auth = (self.username, self.password or "") if self.username else None
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=auth,
            timeout=self.timeout,
            verify=self.verify_ssl,
            headers={"Accept": "application/json"},
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Optional[Any]:
        try:
            async with self._client() as client:
                resp = await client.request(
                    method, path, json=json_body, content=content, headers=headers, params=params
                )
        except httpx.TransportError as exc:
            raise TransientEngineError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code in TRANSIENT_STATUSES:
            raise TransientEngineError(
                f"{method} {path} returned {resp.status_code}: {_reason(resp)}",
                status=resp.status_code,
            )
        if resp.is_error:
            raise EngineError(
                f"{method} {path} returned {resp.status_code}: {_reason(resp)}",
                status=resp.status_code,
            )
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise EngineError(
                f"{method} {path} returned a non-JSON body", status=resp.status_code
            ) from exc

    async def create_index(self, name: str, definition: IndexDefinition) -> None:
        await self._request("PUT", f"/{name}", json_body=definition.to_body())

    async def bulk_index(self, index: str, documents: Sequence[Dict[str, Any]]) -> BulkResult:
        if not documents:
            return BulkResult(indexed=0)
        lines: List[str] = []
        for doc in documents:
            lines.append(json.dumps({"index": {"_index": index, "_id": doc["id"]}}))
            lines.append(json.dumps(doc, ensure_ascii=False))
        payload = ("\n".join(lines) + "\n").encode("utf-8")
        data = await self._request(
            "POST",
            "/_bulk",
            content=payload,
            headers={"Content-Type": "application/x-ndjson"},
        )
        took = int(data.get("took") or 0)
        if not data.get("errors"):
            return BulkResult(indexed=len(documents), took_ms=took)

        # Item-level failures: rejected executions are retryable, anything else
        # (mapping conflicts, malformed documents) is not.
        failures: List[Dict[str, Any]] = []
        for item in data.get("items") or []:
            result = item.get("index") or item.get("create") or {}
            if result.get("error"):
                failures.append(result)
        if failures and all(f.get("status") == 429 for f in failures):
            raise TransientEngineError(
                f"Bulk request to {index} throttled for {len(failures)} documents", status=429
            )
        first = next((f for f in failures if f.get("status") != 429), failures[0] if failures else {})
        err = first.get("error")
        reason = err.get("reason") if isinstance(err, dict) else err
        raise EngineError(
            f"Bulk request to {index} rejected {len(failures)} documents, e.g. {first.get('_id')}: {reason}",
            status=first.get("status"),
        )

    async def refresh(self, index: str) -> None:
        await self._request("POST", f"/{index}/_refresh")

    async def count(self, index: str) -> int:
        data = await self._request("GET", f"/{index}/_count")
        return int(data.get("count") or 0)

    async def list_indices(self, pattern: str) -> List[str]:
        data = await self._request("GET", f"/{pattern}/_alias", allow_404=True)
        return sorted(data or {})

    async def get_alias(self, alias: str) -> List[str]:
        data = await self._request("GET", f"/_alias/{alias}", allow_404=True)
        return sorted(data or {})

    async def update_aliases(self, actions: Iterable[AliasAction]) -> None:
        body = {"actions": [a.to_dict() for a in actions]}
        if body["actions"]:
            await self._request("POST", "/_aliases", json_body=body)

    async def delete_index(self, name: str) -> None:
        await self._request("DELETE", f"/{name}")

    async def search(self, index: str, query: SearchQuery) -> Dict[str, Any]:
        data = await self._request("POST", f"/{index}/_search", json_body=to_dsl(query))
        return data if isinstance(data, dict) else {}
