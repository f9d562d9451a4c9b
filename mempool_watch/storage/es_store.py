"""
Elasticsearch access for the transactions index (REST API over httpx).

Transport failures (connection refused, timeouts) surface as
StoreUnavailableError; HTTP error statuses and unparsable bodies as
StoreRequestError. Callers decide which of the two is fatal.
"""

from __future__ import annotations

from typing import Any

import httpx

from mempool_watch.core.exceptions import StoreRequestError, StoreUnavailableError
from mempool_watch.mempool_logging import get_logger

logger = get_logger(__name__)

# Hits returned per hash lookup; more than one match means duplicate documents
_SEARCH_SIZE = 100

TRANSACTIONS_MAPPING: dict[str, Any] = {
    "properties": {
        "timeFirstDiscovered": {"type": "date", "format": "epoch_second"},
        "txHash": {"type": "keyword"},
        "from": {"type": "keyword"},
        "to": {"type": "keyword"},
        "txValue": {"type": "double"},
        "data": {"type": "text", "index": False},
        "nonce": {"type": "long"},
        "gasPrice": {"type": "double"},
        "gas": {"type": "double"},
    }
}


def _error_type(body: Any) -> str | None:
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("type")
    return None


class TransactionStore:
    """
    Thin async client for one Elasticsearch index.

    Pass transport to route requests elsewhere (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        index_name: str = "transactions",
        *,
        timeout: float | None = None,
        auth: tuple[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("base_url must be non-empty")
        self.base_url = base_url.rstrip("/")
        self.index_name = index_name
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            auth=auth,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "TransactionStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        params: dict[str, str] | None = None,
    ) -> tuple[int, Any]:
        """Send one request; return (status, parsed body). Raises StoreUnavailableError on transport failure."""
        try:
            resp = await self._client.request(method, path, json=json_body, params=params)
        except httpx.TransportError as e:
            raise StoreUnavailableError(f"{operation}: cannot reach {self.base_url}: {e}") from e
        try:
            body = resp.json()
        except ValueError as e:
            raise StoreRequestError(operation, resp.status_code, f"unparsable response body: {e}") from e
        return resp.status_code, body

    async def ensure_index(self) -> bool:
        """Create the index with its mapping; returns False when it already existed."""
        status, body = await self._request(
            "create_index", "PUT", f"/{self.index_name}", json_body={"mappings": TRANSACTIONS_MAPPING}
        )
        if status < 300:
            logger.info("store_index_created", index=self.index_name)
            return True
        if _error_type(body) == "resource_already_exists_exception":
            return False
        raise StoreRequestError("create_index", status, str(body.get("error") if isinstance(body, dict) else body))

    async def index_document(self, doc_id: str, document: dict[str, Any], *, refresh: bool = True) -> dict[str, Any]:
        """
        Upsert a document under doc_id. refresh=True makes it searchable on return.

        Returns the acknowledgment body (result, _version, ...).
        """
        params = {"refresh": "true"} if refresh else None
        status, body = await self._request(
            "index", "PUT", f"/{self.index_name}/_doc/{doc_id}", json_body=document, params=params
        )
        if status >= 300:
            raise StoreRequestError("index", status, str(_error_type(body) or body))
        if not isinstance(body, dict) or "result" not in body:
            raise StoreRequestError("index", status, "acknowledgment without result")
        return body

    async def find_ids_by_hash(self, tx_hash: str) -> list[str]:
        """Return _ids of every document whose txHash field equals tx_hash."""
        status, body = await self._request(
            "search",
            "POST",
            f"/{self.index_name}/_search",
            json_body={
                "query": {"term": {"txHash": tx_hash}},
                "_source": False,
                "size": _SEARCH_SIZE,
            },
        )
        if status == 404 and _error_type(body) == "index_not_found_exception":
            return []
        if status >= 300:
            raise StoreRequestError("search", status, str(_error_type(body) or body))
        try:
            hits = body["hits"]["hits"]
            return [str(hit["_id"]) for hit in hits]
        except (KeyError, TypeError) as e:
            raise StoreRequestError("search", status, f"malformed search response: {e}") from e

    async def delete_document(self, doc_id: str, *, refresh: bool = True) -> bool:
        """Delete by _id; False when the document was already gone."""
        params = {"refresh": "true"} if refresh else None
        status, body = await self._request(
            "delete", "DELETE", f"/{self.index_name}/_doc/{doc_id}", params=params
        )
        if status == 404:
            return False
        if status >= 300:
            raise StoreRequestError("delete", status, str(_error_type(body) or body))
        return True

    async def flush_index(self, index_name: str | None = None) -> int:
        """Delete every document of an index (match_all delete-by-query); returns the count deleted."""
        name = index_name or self.index_name
        status, body = await self._request(
            "delete_by_query",
            "POST",
            f"/{name}/_delete_by_query",
            json_body={"query": {"match_all": {}}},
            params={"refresh": "true"},
        )
        if status >= 300:
            raise StoreRequestError("delete_by_query", status, str(_error_type(body) or body))
        return int(body.get("deleted", 0))
