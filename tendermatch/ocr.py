# tendermatch/ocr.py
"""
OCR service clients.

Both clients expose the same three calls used by the document processor:
``submit(data) -> ticket``, ``poll(ticket) -> status`` and
``retrieve(ticket) -> text``. Statuses are normalized to
"processing", "processed" or "error".
"""
import io
import uuid
import asyncio
import logging
from typing import Dict, List, Optional, Tuple

import httpx
from pypdf import PdfReader

from tendermatch.config import settings
from tendermatch.errors import (
    ExternalProcessingError, MalformedResponse, classify_exception, classify_response,
)

logger = logging.getLogger(__name__)

PROCESSING = "processing"
PROCESSED = "processed"
ERROR = "error"

_STATUS_MAP = {
    "processed": PROCESSED,
    "processing": PROCESSING,
    "accepted": PROCESSING,
    "queued": PROCESSING,
    "error": ERROR,
    "failed": ERROR,
}


class WhispererOCRClient:
    """LLMWhisperer v2 API (https://docs.unstract.com/llmwhisperer)."""

    service = "LLMWhisperer"

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.base_url = (base_url or settings.unstract_base).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.unstract_api_key
        self._client = client
        self.timeout = timeout
        if not self.api_key:
            logger.warning("UNSTRACT_API_KEY is not set; OCR submissions will be rejected upstream.")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = kwargs.pop("headers", {})
        headers["unstract-key"] = self.api_key
        try:
            resp = await self._get_client().request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except Exception as e:
            raise classify_exception(e, self.service) from e
        if resp.status_code < 200 or resp.status_code >= 300:
            raise classify_response(resp, self.service)
        try:
            body = resp.json()
        except ValueError:
            raise MalformedResponse(f"{self.service} returned non-JSON body", detail=resp.text[:300])
        if not isinstance(body, dict):
            raise MalformedResponse(f"{self.service} returned unexpected payload")
        return body

    async def submit(self, data: bytes) -> str:
        body = await self._request(
            "POST", "/whisper",
            params={"mode": "form", "output_mode": "layout_preserving"},
            headers={"Content-Type": "application/octet-stream"},
            content=data,
        )
        ticket = body.get("whisper_hash")
        if not ticket:
            raise MalformedResponse(f"{self.service} submission returned no whisper_hash")
        return ticket

    async def poll(self, ticket: str) -> str:
        body = await self._request("GET", "/whisper-status", params={"whisper_hash": ticket})
        raw = str(body.get("status") or "").lower()
        status = _STATUS_MAP.get(raw, PROCESSING)
        if status == ERROR:
            logger.warning("OCR ticket %s failed upstream: %s", ticket, body.get("message"))
        return status

    async def retrieve(self, ticket: str) -> str:
        body = await self._request("GET", "/whisper-retrieve", params={"whisper_hash": ticket})
        text = body.get("result_text")
        if not isinstance(text, str) or not text.strip():
            raise MalformedResponse("No text content returned from OCR service")
        return text


def extract_text_from_pdf(data: bytes) -> List[Tuple[int, str]]:
    """
    Extract text by page from a PDF. Returns list of tuples (page_number (1-based), text).
    Keeps pages empty-string if extraction fails for that page to preserve page numbering.
    """
    reader = PdfReader(io.BytesIO(data))
    pages_text = []
    for i, page in enumerate(reader.pages):
        try:
            text = page.extract_text() or ""
        except Exception as e:
            logger.warning("Failed to extract text from page %s: %s", i + 1, e)
            text = ""
        pages_text.append((i + 1, text))
    return pages_text


class LocalPdfOCRClient:
    """
    Text-layer extraction with pypdf behind the OCR interface. Scanned pages
    yield nothing; meant for development without an OCR key.
    """

    def __init__(self):
        self._results: Dict[str, Optional[str]] = {}

    async def submit(self, data: bytes) -> str:
        ticket = uuid.uuid4().hex
        try:
            pages = await asyncio.to_thread(extract_text_from_pdf, data)
            self._results[ticket] = "\n\n".join(t for _, t in pages if t.strip())
        except Exception as e:
            logger.warning("Local PDF extraction failed: %s", e)
            self._results[ticket] = None
        return ticket

    async def poll(self, ticket: str) -> str:
        if ticket not in self._results:
            raise ExternalProcessingError(f"Unknown OCR ticket {ticket}")
        return ERROR if self._results[ticket] is None else PROCESSED

    async def retrieve(self, ticket: str) -> str:
        text = self._results.pop(ticket, None)
        if not text:
            raise MalformedResponse("No text content recovered from document")
        return text


def build_ocr_client():
    if settings.ocr_backend == "local":
        return LocalPdfOCRClient()
    return WhispererOCRClient()
