# tendermatch/intake.py
import asyncio
import logging
import os
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tendermatch import metrics
from tendermatch.config import settings
from tendermatch.errors import (
    InvalidState, NotFoundError, PermissionDenied, RETRY_LATER, UnsupportedType, retry_hint_for,
)
from tendermatch.jobs import TERMINAL
from tendermatch.models import CompanyDocument
from tendermatch.notifications import DOCUMENT_UPLOADED
from tendermatch.storage import safe_name

logger = logging.getLogger(__name__)

PROGRESS = {"completed": 100, "processing": 50, "pending": 25, "error": 0}


@dataclass
class DocumentStatus:
    document_id: str
    file_name: str
    file_size: int
    uploaded_at: Optional[datetime]
    status: str
    stage: str
    progress: int
    message: str
    retry: Optional[str] = None
    processed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "uploadedAt": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "status": self.status,
            "stage": self.stage,
            "progress": self.progress,
            "message": self.message,
            "retry": self.retry,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
        }


def document_to_dict(doc: CompanyDocument) -> Dict[str, Any]:
    return {
        "documentId": doc.document_id,
        "fileName": doc.file_name,
        "fileSize": doc.file_size,
        "documentType": doc.content_type,
        "status": doc.status,
        "errorMessage": doc.error_message,
        "uploadedAt": doc.uploaded_at.isoformat() if doc.uploaded_at else None,
        "processedAt": doc.processed_at.isoformat() if doc.processed_at else None,
    }


def status_message(status: str, job_message: Optional[str], error_message: Optional[str],
                   retry: Optional[str]) -> str:
    if status == "pending":
        return "Document uploaded and waiting to be processed."
    if status == "processing":
        return job_message or "Document is being processed."
    if status == "completed":
        return "Document processed successfully."
    if retry == RETRY_LATER:
        return f"{error_message}. The processing service is busy or out of quota; retry later."
    return f"{error_message or 'Processing failed'}. Processing failed; upload the document again to retry now."


class DocumentIntake:
    def __init__(self, store, registry, hooks=None, allowed_types: Optional[List[str]] = None,
                 allowed_extensions: Optional[List[str]] = None, max_size: Optional[int] = None):
        self.store = store
        self.registry = registry
        self.hooks = hooks
        self.allowed_types = allowed_types or settings.allowed_content_types
        self.allowed_extensions = allowed_extensions or settings.allowed_extensions
        self.max_size = max_size or settings.max_upload_size
        self._owner_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _owner_lock(self, owner_id: str) -> asyncio.Lock:
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._owner_locks[owner_id] = lock
        return lock

    def validate(self, upload) -> None:
        content_type = (upload.content_type or "").split(";", 1)[0].strip().lower()
        if content_type not in self.allowed_types:
            raise UnsupportedType("Only PDF files are allowed", detail=content_type or None)
        ext = os.path.splitext(safe_name(upload.filename))[1].lower()
        if self.allowed_extensions and ext not in self.allowed_extensions:
            raise UnsupportedType("Invalid file extension", detail=ext or None)

    async def submit(self, session: AsyncSession, owner_id: str, upload) -> CompanyDocument:
        """
        Store the upload and make it the owner's only document. The previous
        document (row and bytes) is removed once the new row is committed.
        Nothing is processed yet; see DocumentProcessor.
        """
        self.validate(upload)
        ref, filename, size = await self.store.save(upload, self.max_size)

        try:
            async with self._owner_lock(owner_id):
                res = await session.execute(select(CompanyDocument).where(CompanyDocument.owner_id == owner_id))
                rows = res.scalars().all()
                previous = [(d.document_id, d.storage_path) for d in rows]
                for prev in rows:
                    await session.delete(prev)
                doc = CompanyDocument(
                    document_id=uuid.uuid4().hex,
                    owner_id=owner_id,
                    file_name=filename,
                    storage_path=ref,
                    storage_backend=self.store.backend,
                    file_size=size,
                    content_type=(upload.content_type or "application/pdf").split(";", 1)[0].strip(),
                    status="pending",
                    uploaded_at=datetime.now(timezone.utc),
                )
                session.add(doc)
                await session.commit()
        except Exception:
            await session.rollback()
            await self.store.delete(ref)
            raise

        for document_id, storage_path in previous:
            await self.store.delete(storage_path)
            self.registry.discard(document_id)
            logger.info("Replaced document %s for owner %s", document_id, owner_id)

        metrics.uploads_total.inc()
        logger.info("Stored document %s for owner %s (%s bytes)", doc.document_id, owner_id, size)
        if self.hooks is not None:
            await self.hooks.run(DOCUMENT_UPLOADED, {
                "document_id": doc.document_id,
                "owner_id": owner_id,
                "file_name": filename,
            })
        return doc

    async def _get_owned(self, session: AsyncSession, owner_id: str, document_id: str) -> CompanyDocument:
        res = await session.execute(select(CompanyDocument).where(CompanyDocument.document_id == document_id))
        doc = res.scalar_one_or_none()
        if doc is None:
            raise NotFoundError("Document not found")
        if doc.owner_id != owner_id:
            raise PermissionDenied("Not authorized to access this document")
        return doc

    async def list_documents(self, session: AsyncSession, owner_id: str) -> List[CompanyDocument]:
        res = await session.execute(
            select(CompanyDocument)
            .where(CompanyDocument.owner_id == owner_id)
            .order_by(CompanyDocument.uploaded_at.desc())
        )
        return list(res.scalars().all())

    async def trigger(self, session: AsyncSession, owner_id: str, document_id: str) -> CompanyDocument:
        """Move a pending document to processing; the caller schedules the job."""
        doc = await self._get_owned(session, owner_id, document_id)
        if doc.status != "pending":
            raise InvalidState(f"Document is already {doc.status}")
        doc.status = "processing"
        await session.commit()
        self.registry.set(document_id, "processing", message="Queued for processing")
        return doc

    async def status(self, session: AsyncSession, owner_id: str, document_id: str) -> DocumentStatus:
        doc = await self._get_owned(session, owner_id, document_id)

        if self.registry.reconcile(document_id, doc.status) == "completed":
            if doc.status == "error":
                self.registry.set(document_id, doc.status, message=doc.error_message)
            else:
                logger.info("Healing document %s: job completed but record was %s", document_id, doc.status)
                doc.status = "completed"
                doc.processed_at = doc.processed_at or datetime.now(timezone.utc)
                doc.error_message = None
                await session.commit()

        job = self.registry.get(document_id)
        retry = retry_hint_for(doc.error_message) if doc.status == "error" else None
        status = DocumentStatus(
            document_id=doc.document_id,
            file_name=doc.file_name,
            file_size=doc.file_size or 0,
            uploaded_at=doc.uploaded_at,
            status=doc.status,
            stage=job.status if job is not None else doc.status,
            progress=PROGRESS.get(doc.status, 0),
            message=status_message(doc.status, job.message if job else None, doc.error_message, retry),
            retry=retry,
            processed_at=doc.processed_at,
        )
        if doc.status in TERMINAL:
            # the record now says everything the cached job could
            self.registry.discard(document_id)
        return status
