# tendermatch/qdrant_client.py
"""
Qdrant-backed tender index.

Tenders are embedded with DeepInfra and stored one point per tender, keyed by
a uuid5 of "<source>:<bid_number>" so re-indexing the same tender overwrites
its point. The payload uses the same field names as the Etimad search API, so
hits flow through the regular search-result adapter.
"""
import time
import uuid
import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.http import models as rest_models

from tendermatch import deepinfra
from tendermatch.config import settings

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_client = None


def ensure_collection(client: QdrantClient, name: str, vector_size: int, distance: str = "Cosine"):
    try:
        client.get_collection(collection_name=name)
        logger.info("Qdrant collection '%s' already exists.", name)
        return
    except Exception:
        logger.info("Qdrant collection '%s' not found; attempting to create.", name)

    try:
        vec_params = rest_models.VectorParams(size=vector_size, distance=rest_models.Distance[distance.upper()])
        client.create_collection(collection_name=name, vectors_config=vec_params)
        logger.info("Created qdrant collection '%s' with vector size %s", name, vector_size)
    except Exception:
        logger.warning("Unable to create qdrant collection '%s' automatically. "
                       "Please create it manually with vector_size=%s.", name, vector_size)


def get_qdrant_client():
    global _client
    if _client is None:
        with _lock:
            if _client is None:
                _client = QdrantClient(url=settings.qdrant_url, timeout=30)
                ensure_collection(_client, settings.collection, int(settings.vector_size), distance="Cosine")
    return _client


def chunks(items: List, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def upsert_points(client: QdrantClient, collection: str, points: List, attempts: int = 4, delay: float = 1.0,
                  sleep=time.sleep) -> None:
    # runs in a worker thread; the client is synchronous
    for attempt in range(1, attempts + 1):
        try:
            client.upsert(collection_name=collection, points=points)
            return
        except Exception as e:
            if attempt == attempts:
                logger.error("Upsert of %d points into '%s' gave up after %d attempts: %s",
                             len(points), collection, attempts, e)
                raise
            logger.warning("Upsert into '%s' failed (attempt %d/%d), next try in %.1fs: %s",
                           collection, attempt, attempts, delay, e)
            sleep(delay)
            delay *= 2


def point_id(source: str, bid_number: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{source}:{bid_number}"))


def tender_text(tender) -> str:
    parts = [tender.title, tender.agency, tender.category, tender.description, tender.location]
    return " ".join(p for p in parts if p).strip()


def tender_payload(tender) -> Dict[str, Any]:
    return {
        "tender_id": tender.external_id or tender.bid_number,
        "reference_number": tender.bid_number,
        "tender_name": tender.title,
        "agency_name": tender.agency,
        "tender_purpose": tender.description,
        "tender_type": tender.category,
        "location": tender.location,
        "tender_value": tender.value_max,
        "submission_date": tender.deadline.isoformat() if tender.deadline else None,
        "is_active": tender.status == "open",
        "source": tender.source,
    }


class TenderIndexer:
    def __init__(self, client: Optional[QdrantClient] = None, collection: Optional[str] = None, embed=None,
                 upsert_batch: Optional[int] = None):
        self._client = client
        self.collection = collection or settings.collection
        self._embed = embed or deepinfra.embed_batch
        self.upsert_batch = max(1, upsert_batch or settings.upsert_batch)

    @property
    def client(self) -> QdrantClient:
        if self._client is None:
            self._client = get_qdrant_client()
        return self._client

    async def index(self, tenders: List) -> int:
        """Embed and upsert tenders; returns the number of points written."""
        written = 0
        for batch in chunks(list(tenders), self.upsert_batch):
            vectors = await self._embed([tender_text(t) for t in batch])
            points = [
                rest_models.PointStruct(id=point_id(t.source, t.bid_number), vector=vec, payload=tender_payload(t))
                for t, vec in zip(batch, vectors)
            ]
            await asyncio.to_thread(upsert_points, self.client, self.collection, points)
            written += len(points)
            logger.info("Indexed %d/%d tenders into '%s'", written, len(tenders), self.collection)
        return written

    async def search(self, query: str, limit: int = 10, active_only: bool = True) -> List[Dict[str, Any]]:
        """Vector search shaped like the Etimad search API results."""
        vectors = await self._embed([query or " "])
        query_filter = None
        if active_only:
            query_filter = rest_models.Filter(must=[
                rest_models.FieldCondition(key="is_active", match=rest_models.MatchValue(value=True)),
            ])
        resp = await asyncio.to_thread(
            self.client.query_points,
            collection_name=self.collection,
            query=vectors[0],
            query_filter=query_filter,
            limit=limit,
            with_payload=True,
        )
        results = []
        for rank, point in enumerate(resp.points, start=1):
            item = dict(point.payload or {})
            item["similarity_percentage"] = round(float(point.score or 0.0) * 100, 1)
            item["match_rank"] = rank
            results.append(item)
        return results
