# tendermatch/sources.py
"""
Tender source and semantic search strategies.

Sources: ``fetch(page, page_size) -> raw records``.
Search:  ``query(text, limit, active_only) -> ranked candidates``.
Both are picked once from settings by the build_* helpers.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import aiofiles

from tendermatch.config import settings
from tendermatch.errors import ValidationError
from tendermatch.etimad import EtimadClient
from tendermatch.qdrant_client import TenderIndexer

logger = logging.getLogger(__name__)


class LiveTenderSource:
    name = "live"

    def __init__(self, client: Optional[EtimadClient] = None):
        self.client = client or EtimadClient()

    async def fetch(self, page: int = 1, page_size: int = 50) -> List[Any]:
        return await self.client.fetch_page(page=page, page_size=page_size)


class RecordedTenderSource:
    """Replays listings from a JSON file (a list, or an object with "tenders")."""

    name = "recorded"

    def __init__(self, path: Optional[str] = None):
        self.path = path or settings.tender_fixture_path
        if not self.path:
            raise ValidationError("TENDER_FIXTURE_PATH is required for the recorded tender source")
        self._records: Optional[List[Any]] = None

    async def _load(self) -> List[Any]:
        if self._records is None:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                data = json.loads(await f.read())
            if isinstance(data, dict):
                data = data.get("tenders") or []
            self._records = list(data)
            logger.info("Loaded %d recorded tenders from %s", len(self._records), self.path)
        return self._records

    async def fetch(self, page: int = 1, page_size: int = 50) -> List[Any]:
        records = await self._load()
        start = (max(page, 1) - 1) * page_size
        return records[start:start + page_size]


class SyntheticTenderSource:
    """Deterministic generated listings for local development."""

    name = "synthetic"
    AGENCIES = ("Ministry of Testing", "Ministry of Technology", "Ministry of Infrastructure")
    TYPES = ("IT Services", "Construction", "Consulting")
    CITIES = ("Riyadh", "Jeddah", "Dammam")

    def __init__(self, total: int = 150, now: Optional[datetime] = None):
        self.total = total
        self.now = now

    async def fetch(self, page: int = 1, page_size: int = 50) -> List[Any]:
        now = self.now or datetime.now(timezone.utc)
        start = (max(page, 1) - 1) * page_size
        end = min(start + page_size, self.total)
        records = []
        for i in range(start, end):
            records.append({
                "tenderIdString": f"tender_{i + 1}",
                "tenderTitle": f"Test Tender {i + 1}",
                "entityName": self.AGENCIES[i % 3],
                "tenderType": self.TYPES[i % 3],
                "tenderValue": 500000 + (i * 7919) % 1000000,
                "lastOfferDate": (now + timedelta(days=14 + i)).isoformat(),
                "details": {
                    "description": f"Detailed description for tender {i + 1}",
                    "location": self.CITIES[i % 3],
                },
            })
        return records


class HttpSemanticSearch:
    name = "http"

    def __init__(self, client: Optional[EtimadClient] = None):
        self.client = client or EtimadClient()

    async def query(self, text: str, limit: int = 10, active_only: bool = True) -> List[dict]:
        return await self.client.search(text, limit=limit, active_only=active_only)


class QdrantSemanticSearch:
    name = "qdrant"

    def __init__(self, indexer: Optional[TenderIndexer] = None):
        self.indexer = indexer or TenderIndexer()

    async def query(self, text: str, limit: int = 10, active_only: bool = True) -> List[dict]:
        return await self.indexer.search(text, limit=limit, active_only=active_only)


TENDER_SOURCES = {
    "live": LiveTenderSource,
    "recorded": RecordedTenderSource,
    "synthetic": SyntheticTenderSource,
}

SEMANTIC_SEARCH = {
    "http": HttpSemanticSearch,
    "qdrant": QdrantSemanticSearch,
}


def build_tender_source(mode: Optional[str] = None):
    mode = mode or settings.tender_source_mode
    try:
        cls = TENDER_SOURCES[mode]
    except KeyError:
        raise ValidationError(f"Unknown TENDER_SOURCE_MODE '{mode}'")
    logger.info("Using %s tender source", mode)
    return cls()


def build_semantic_search(backend: Optional[str] = None):
    backend = backend or settings.search_backend
    try:
        cls = SEMANTIC_SEARCH[backend]
    except KeyError:
        raise ValidationError(f"Unknown SEARCH_BACKEND '{backend}'")
    logger.info("Using %s semantic search", backend)
    return cls()
