# tendermatch/processing.py
"""
Background document processing: OCR -> extraction -> profile merge.

``DocumentProcessor.process`` drives one document to a terminal state and
never raises. External failures are stored on the record as
"<Code>: <detail>" so the status endpoint can tell the caller whether to
retry now or later.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select

from tendermatch import metrics, profiles
from tendermatch.config import settings
from tendermatch.errors import (
    ExternalProcessingError, ExternalServiceError, InternalError, ServiceTimeout, TenderMatchError,
    TransientError, retry_hint_for,
)
from tendermatch.models import CompanyDocument
from tendermatch.notifications import DOCUMENT_PROCESSED
from tendermatch.ocr import ERROR, PROCESSED

logger = logging.getLogger(__name__)

TERMINAL = ("completed", "error")


async def load_document(session, document_id: str) -> Optional[CompanyDocument]:
    res = await session.execute(select(CompanyDocument).where(CompanyDocument.document_id == document_id))
    return res.scalar_one_or_none()


class DocumentProcessor:
    def __init__(self, session_factory, store, ocr, extractor, registry, hooks=None,
                 poll_interval: Optional[float] = None, max_attempts: Optional[int] = None,
                 submit_timeout: Optional[float] = None, sleep=asyncio.sleep):
        self.session_factory = session_factory
        self.store = store
        self.ocr = ocr
        self.extractor = extractor
        self.registry = registry
        self.hooks = hooks
        self.poll_interval = settings.ocr_poll_interval if poll_interval is None else poll_interval
        self.max_attempts = max_attempts or settings.ocr_max_attempts
        self.submit_timeout = submit_timeout or settings.ocr_submit_timeout
        self._sleep = sleep

    async def process(self, document_id: str) -> str:
        """Returns the final status: completed, error, or discarded."""
        metrics.processing_started.inc()
        try:
            return await self._run(document_id)
        except ExternalServiceError as e:
            logger.warning("Processing document %s failed: %s", document_id, e.record())
            err: TenderMatchError = e
        except Exception:
            logger.exception("Unexpected error while processing document %s", document_id)
            err = InternalError("Unexpected error while processing document")

        try:
            return await self._fail(document_id, err)
        except Exception:
            logger.exception("Could not record failure for document %s", document_id)
            self.registry.set(document_id, "error", message=_error_message(err))
            return "error"

    async def _run(self, document_id: str) -> str:
        async with self.session_factory() as session:
            doc = await load_document(session, document_id)
            if doc is None:
                logger.warning("Document %s no longer exists; nothing to process", document_id)
                self.registry.discard(document_id)
                return "discarded"
            if doc.status in TERMINAL:
                return doc.status
            doc.status = "processing"
            await session.commit()
            owner_id = doc.owner_id
            storage_path = doc.storage_path
            profile = await profiles.get_profile(session, owner_id)
            company_name = profile.company_name if profile is not None else None

        self.registry.set(document_id, "processing", message="Submitting document for text recognition")
        data = await self.store.read(storage_path)
        try:
            ticket = await asyncio.wait_for(self.ocr.submit(data), timeout=self.submit_timeout)
        except asyncio.TimeoutError:
            raise TransientError(f"OCR submission timed out after {self.submit_timeout:g}s")
        logger.info("Document %s submitted for OCR (ticket=%s)", document_id, ticket)
        self.registry.set(document_id, "processing", ticket=ticket, message="Waiting for text recognition")

        await self._wait_for_ocr(document_id, ticket)
        text = await self.ocr.retrieve(ticket)

        self.registry.set(document_id, "processing", message="Extracting company profile")
        extracted = await self.extractor.extract(text, owner_id, company_name)

        async with self.session_factory() as session:
            doc = await load_document(session, document_id)
            if doc is None:
                logger.info("Document %s was superseded while processing; discarding results", document_id)
                self.registry.discard(document_id)
                return "discarded"
            doc.extracted_text = text
            doc.extracted_data = extracted.to_dict()
            doc.status = "completed"
            doc.error_message = None
            doc.processed_at = datetime.now(timezone.utc)
            profile = await profiles.merge(session, owner_id, extracted)
            await session.commit()
            completeness = profile.completeness

        self.registry.set(document_id, "completed", message="Document processed")
        metrics.processing_completed.inc()
        logger.info("Document %s processed (owner=%s, completeness=%s)", document_id, owner_id, completeness)
        await self._run_hooks({
            "document_id": document_id,
            "owner_id": owner_id,
            "status": "completed",
            "completeness": completeness,
        })
        return "completed"

    async def _wait_for_ocr(self, document_id: str, ticket: str) -> None:
        for attempt in range(1, self.max_attempts + 1):
            await self._sleep(self.poll_interval)
            status = await self.ocr.poll(ticket)
            logger.debug("OCR poll %d/%d for %s: %s", attempt, self.max_attempts, document_id, status)
            if status == PROCESSED:
                return
            if status == ERROR:
                raise ExternalProcessingError("OCR service reported a processing error")
            self.registry.set(document_id, "processing",
                              message=f"Waiting for text recognition ({attempt}/{self.max_attempts})")
        raise ServiceTimeout(f"OCR did not finish after {self.max_attempts} status checks")

    async def _fail(self, document_id: str, err: TenderMatchError) -> str:
        message = _error_message(err)
        async with self.session_factory() as session:
            doc = await load_document(session, document_id)
            if doc is None:
                self.registry.discard(document_id)
                return "discarded"
            if doc.status == "completed":
                return "completed"
            doc.status = "error"
            doc.error_message = message
            await session.commit()
            owner_id = doc.owner_id

        self.registry.set(document_id, "error", message=message)
        metrics.processing_failed.labels(err.code).inc()
        await self._run_hooks({
            "document_id": document_id,
            "owner_id": owner_id,
            "status": "error",
            "error_message": message,
            "retry": retry_hint_for(message),
        })
        return "error"

    async def _run_hooks(self, payload) -> None:
        if self.hooks is not None:
            await self.hooks.run(DOCUMENT_PROCESSED, payload)


def _error_message(err: TenderMatchError) -> str:
    if isinstance(err, ExternalServiceError):
        return err.record()
    return f"{err.code}: {err.message}"
