# tendermatch/jobs.py
"""
In-process registry of document processing jobs.

The registry is a cache for the status endpoint; the persisted
CompanyDocument row is the source of truth. ``reconcile`` is the only place
where the two are compared.
"""
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional


@dataclass
class JobStatus:
    document_id: str
    status: str
    ticket: Optional[str] = None
    message: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


TERMINAL = ("completed", "error")


class JobRegistry:
    def __init__(self, max_entries: int = 10000):
        self._lock = threading.Lock()
        self._jobs: Dict[str, JobStatus] = {}
        self.max_entries = max_entries

    def get(self, document_id: str) -> Optional[JobStatus]:
        with self._lock:
            job = self._jobs.get(document_id)
            return replace(job) if job is not None else None

    def set(self, document_id: str, status: str, *, ticket: Optional[str] = None,
            message: Optional[str] = None) -> JobStatus:
        """Update a job, keeping the previous ticket when none is given."""
        with self._lock:
            prev = self._jobs.get(document_id)
            if ticket is None and prev is not None:
                ticket = prev.ticket
            job = JobStatus(document_id=document_id, status=status, ticket=ticket, message=message)
            self._jobs[document_id] = job
            self._evict_finished()
            return replace(job)

    def reconcile(self, document_id: str, persisted_status: str) -> Optional[str]:
        """
        Compare the cached job with the persisted status.

        Returns "completed" when the cache saw a completion the record missed;
        the caller must then heal the record. Any other divergence is settled
        in favour of the record by overwriting the cache.
        """
        with self._lock:
            job = self._jobs.get(document_id)
            if job is None or job.status == persisted_status:
                return None
            if job.status == "completed":
                return "completed"
            self._jobs[document_id] = replace(job, status=persisted_status,
                                              updated_at=datetime.now(timezone.utc))
            return None

    def discard(self, document_id: str) -> None:
        with self._lock:
            self._jobs.pop(document_id, None)

    def __len__(self):
        with self._lock:
            return len(self._jobs)

    def _evict_finished(self) -> None:
        # oldest terminal jobs go first; running jobs are never evicted
        while len(self._jobs) > self.max_entries:
            finished = [j for j in self._jobs.values() if j.status in TERMINAL]
            if not finished:
                return
            oldest = min(finished, key=lambda j: j.updated_at)
            del self._jobs[oldest.document_id]
