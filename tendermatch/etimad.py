# tendermatch/etimad.py
import logging
from typing import Any, Dict, List, Optional

import httpx

from tendermatch.config import settings
from tendermatch.errors import MalformedResponse, classify_exception, classify_response

logger = logging.getLogger(__name__)

SERVICE = "Etimad"
MAX_PAGE_SIZE = 100


class EtimadClient:
    """Client for the Etimad scraper / semantic search API."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.base_url = (base_url or settings.etimad_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.etimad_api_key
        self._client = client
        self.timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Accept": "application/json", "X-API-Key": self.api_key}
        try:
            resp = await self._get_client().get(f"{self.base_url}{path}", params=params, headers=headers)
        except Exception as e:
            raise classify_exception(e, SERVICE) from e
        if resp.status_code < 200 or resp.status_code >= 300:
            raise classify_response(resp, SERVICE)
        try:
            body = resp.json()
        except ValueError:
            raise MalformedResponse(f"{SERVICE} returned non-JSON body", detail=resp.text[:300])
        if not isinstance(body, dict) or not body.get("success"):
            raise MalformedResponse(f"Invalid response format from {SERVICE}", detail=str(body)[:300])
        return body

    async def fetch_page(self, page: int = 1, page_size: int = 50) -> List[Any]:
        page_size = max(1, min(int(page_size), MAX_PAGE_SIZE))
        body = await self._get("/api/scrape-tenders", {"page": page, "page_size": page_size})
        tenders = body.get("tenders") or []
        logger.info("Fetched %s tenders from %s (page=%s)", len(tenders), SERVICE, page)
        return tenders

    async def search(self, query: str, limit: int = 10, active_only: bool = True) -> List[Dict[str, Any]]:
        params = {"q": query, "limit": limit, "active_only": "true" if active_only else "false"}
        body = await self._get("/api/v1/search", params)
        results = body.get("results") or []
        logger.info("Semantic search returned %s results (query=%.80r)", len(results), query)
        return results
