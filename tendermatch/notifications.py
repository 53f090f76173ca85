# tendermatch/notifications.py
"""
Notification sinks and the post-commit hook list.

Core operations commit first and then call ``PostCommitHooks.run``. Every
hook runs on its own: a failure is logged and the remaining hooks still run.
"""
import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from tendermatch.redis_client import get_redis

logger = logging.getLogger(__name__)

DOCUMENT_UPLOADED = "document.uploaded"
DOCUMENT_PROCESSED = "document.processed"
TENDERS_SYNCED = "tenders.synced"

Hook = Callable[[Dict[str, Any]], Awaitable[None]]


class LoggingSink:
    async def notify(self, owner_id: str, event: Dict[str, Any]) -> None:
        logger.info("Notify owner %s: %s - %s", owner_id, event.get("title"), event.get("message"))


class RedisPublishSink:
    """Publishes events on `notifications:<owner>` for whoever delivers them."""

    def __init__(self, redis=None, prefix: str = "notifications"):
        self._redis = redis
        self.prefix = prefix

    async def notify(self, owner_id: str, event: Dict[str, Any]) -> None:
        r = self._redis or get_redis()
        await r.publish(f"{self.prefix}:{owner_id}", json.dumps(event, default=str))


def build_event(kind: str, title: str, message: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "type": kind,
        "title": title,
        "message": message,
        "data": data or {},
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


class PostCommitHooks:
    def __init__(self):
        self._hooks: Dict[str, List[Hook]] = defaultdict(list)

    def register(self, event: str, hook: Hook) -> None:
        self._hooks[event].append(hook)

    def hooks_for(self, event: str) -> List[Hook]:
        return list(self._hooks.get(event, []))

    async def run(self, event: str, payload: Dict[str, Any]) -> int:
        """Run every hook for `event`; returns how many failed."""
        failed = 0
        for hook in self.hooks_for(event):
            try:
                await hook(payload)
            except Exception:
                failed += 1
                logger.exception("Post-commit hook %s for %s failed",
                                 getattr(hook, "__name__", repr(hook)), event)
        return failed


def document_processed_notifier(sink) -> Hook:
    async def notify_document_processed(payload: Dict[str, Any]) -> None:
        if payload.get("status") == "completed":
            event = build_event(
                DOCUMENT_PROCESSED,
                "Document Processing Complete",
                "Your company document has been processed successfully. Your profile has been updated.",
                {"documentId": payload.get("document_id"), "completeness": payload.get("completeness")},
            )
        else:
            event = build_event(
                DOCUMENT_PROCESSED,
                "Document Processing Failed",
                payload.get("error_message") or "Document processing failed.",
                {"documentId": payload.get("document_id"), "retry": payload.get("retry")},
            )
        await sink.notify(payload["owner_id"], event)

    return notify_document_processed


def document_uploaded_notifier(sink) -> Hook:
    async def notify_document_uploaded(payload: Dict[str, Any]) -> None:
        event = build_event(
            DOCUMENT_UPLOADED,
            "Document Uploaded",
            f"{payload.get('file_name')} was uploaded and is waiting to be processed.",
            {"documentId": payload.get("document_id")},
        )
        await sink.notify(payload["owner_id"], event)

    return notify_document_uploaded


def tender_index_hook(indexer) -> Hook:
    async def index_synced_tenders(payload: Dict[str, Any]) -> None:
        tenders = payload.get("tenders") or []
        if tenders:
            await indexer.index(tenders)

    return index_synced_tenders
