"""
Shared fixtures for tendermatch tests.

Provides:
- an in-memory SQLite database (aiosqlite) per test
- a local file store under tmp_path
- fakes for the OCR service, extraction model, tender source and search
"""
import json
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tendermatch.jobs import JobRegistry
from tendermatch.models import Base
from tendermatch.notifications import PostCommitHooks
from tendermatch.ocr import PROCESSED
from tendermatch.storage import LocalFileStore

PDF_BYTES = b"%PDF-1.4\n% test document\n"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# Service fakes
# =============================================================================

class FakeUpload:
    """Minimal stand-in for fastapi.UploadFile."""

    def __init__(self, data: bytes = PDF_BYTES, filename: str = "profile.pdf",
                 content_type: str = "application/pdf"):
        self.filename = filename
        self.content_type = content_type
        self._data = data
        self._pos = 0

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self._data) - self._pos
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk


class FakeOCR:
    def __init__(self, statuses: Optional[List[str]] = None, text: str = "ACME Corp provides IT consulting services",
                 submit_error: Optional[BaseException] = None):
        self.statuses = list(statuses or [PROCESSED])
        self.text = text
        self.submit_error = submit_error
        self.submitted: List[bytes] = []
        self.polls = 0

    async def submit(self, data: bytes) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(data)
        return "ticket-1"

    async def poll(self, ticket: str) -> str:
        self.polls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def retrieve(self, ticket: str) -> str:
        return self.text


class FakeCompletion:
    """Records prompts and answers with a canned model response."""

    def __init__(self, content: Any = None, error: Optional[BaseException] = None):
        if content is not None and not isinstance(content, str):
            content = json.dumps(content)
        self.content = content
        self.error = error
        self.calls: List[list] = []

    async def __call__(self, messages, json_mode: bool = False, **kwargs) -> str:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.content or "{}"


class ListSource:
    name = "list"

    def __init__(self, records: List[Any]):
        self.records = records
        self.calls = []

    async def fetch(self, page: int = 1, page_size: int = 50) -> List[Any]:
        self.calls.append((page, page_size))
        start = (page - 1) * page_size
        return self.records[start:start + page_size]


class FakeSearch:
    def __init__(self, results: Optional[List[dict]] = None, error: Optional[BaseException] = None):
        self.results = results or []
        self.error = error
        self.queries: List[tuple] = []

    async def query(self, text: str, limit: int = 10, active_only: bool = True) -> List[dict]:
        self.queries.append((text, limit, active_only))
        if self.error is not None:
            raise self.error
        return list(self.results)


async def no_sleep(_seconds):
    return None


def search_hit(i: int, similarity: Optional[float] = None, **overrides) -> dict:
    hit = {
        "tender_id": f"tender_{i}",
        "tender_name": f"Tender {i}",
        "agency_name": "Ministry of Technology",
        "reference_number": f"REF-{i}-2025",
        "tender_purpose": "IT consulting services",
        "submission_date": (datetime.now(timezone.utc) + timedelta(days=10 + i)).isoformat(),
        "tender_value": 500000,
        "tender_type": "Services",
        "is_active": True,
        "similarity_percentage": similarity,
        "match_rank": i,
    }
    hit.update(overrides)
    return hit


def etimad_listing(i: int, **overrides) -> dict:
    record = {
        "tenderIdString": f"tender_{i}",
        "tenderTitle": f"Test Tender {i}",
        "entityName": "Ministry of Testing",
        "tenderType": "IT Services",
        "tenderValue": 750000,
        "lastOfferDate": (datetime.now(timezone.utc) + timedelta(days=14 + i)).isoformat(),
        "details": {"description": f"Detailed description for tender {i}", "location": "Riyadh"},
    }
    record.update(overrides)
    return record


@pytest.fixture
def store(tmp_path):
    return LocalFileStore(str(tmp_path / "uploads"))


@pytest.fixture
def registry():
    return JobRegistry()


@pytest.fixture
def hooks():
    return PostCommitHooks()
