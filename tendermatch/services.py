# tendermatch/services.py
"""
Wiring for the long-lived service objects.

Strategies (file store, OCR client, tender source, semantic search) are
chosen once from settings when the container is built.
"""
import logging
import threading
from typing import Optional

from tendermatch.config import settings
from tendermatch.db import AsyncSessionLocal
from tendermatch.extraction import ProfileExtractor
from tendermatch.intake import DocumentIntake
from tendermatch.jobs import JobRegistry
from tendermatch.notifications import (
    DOCUMENT_PROCESSED, DOCUMENT_UPLOADED, TENDERS_SYNCED, LoggingSink, PostCommitHooks, RedisPublishSink,
    document_processed_notifier, document_uploaded_notifier, tender_index_hook,
)
from tendermatch.ocr import build_ocr_client
from tendermatch.processing import DocumentProcessor
from tendermatch.qdrant_client import TenderIndexer
from tendermatch.recommendations import RecommendationEngine
from tendermatch.sources import build_semantic_search, build_tender_source
from tendermatch.storage import build_file_store
from tendermatch.tenders import TenderSynchronizer

logger = logging.getLogger(__name__)


def default_hooks(sinks=None, indexer=None) -> PostCommitHooks:
    hooks = PostCommitHooks()
    for sink in sinks if sinks is not None else (LoggingSink(), RedisPublishSink()):
        hooks.register(DOCUMENT_UPLOADED, document_uploaded_notifier(sink))
        hooks.register(DOCUMENT_PROCESSED, document_processed_notifier(sink))
    if indexer is not None:
        hooks.register(TENDERS_SYNCED, tender_index_hook(indexer))
    return hooks


class Services:
    def __init__(self, session_factory=None, store=None, ocr=None, extractor=None, tender_source=None,
                 search=None, registry: Optional[JobRegistry] = None, hooks: Optional[PostCommitHooks] = None):
        self.session_factory = session_factory if session_factory is not None else AsyncSessionLocal
        self.store = store if store is not None else build_file_store()
        self.ocr = ocr if ocr is not None else build_ocr_client()
        self.extractor = extractor if extractor is not None else ProfileExtractor()
        self.tender_source = tender_source if tender_source is not None else build_tender_source()
        self.search = search if search is not None else build_semantic_search()
        self.registry = registry if registry is not None else JobRegistry()
        if hooks is None:
            indexer = TenderIndexer() if settings.search_backend == "qdrant" else None
            hooks = default_hooks(indexer=indexer)
        self.hooks = hooks

        self.intake = DocumentIntake(self.store, self.registry, hooks=self.hooks)
        self.processor = DocumentProcessor(self.session_factory, self.store, self.ocr, self.extractor,
                                           self.registry, hooks=self.hooks)
        self.synchronizer = TenderSynchronizer(self.tender_source, hooks=self.hooks)
        self.recommendations = RecommendationEngine(self.search)

    async def aclose(self):
        for component in (self.ocr, getattr(self.tender_source, "client", None), getattr(self.search, "client", None)):
            close = getattr(component, "aclose", None)
            if close is not None:
                await close()


_lock = threading.Lock()
_services: Optional[Services] = None


def get_services() -> Services:
    """FastAPI dependency; builds the process-wide container on first use."""
    global _services
    if _services is None:
        with _lock:
            if _services is None:
                _services = Services()
                logger.info("Services ready (ocr=%s, source=%s, search=%s, storage=%s)",
                            settings.ocr_backend, settings.tender_source_mode,
                            settings.search_backend, settings.storage_backend)
    return _services


async def close_services():
    global _services
    if _services is not None:
        await _services.aclose()
        _services = None
