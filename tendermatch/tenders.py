# tendermatch/tenders.py
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tendermatch import metrics
from tendermatch.adapters import DEFAULT_SOURCE, NormalizedTender, normalize
from tendermatch.models import Tender
from tendermatch.notifications import TENDERS_SYNCED

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@dataclass
class SyncResult:
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    tenders: List[NormalizedTender] = field(default_factory=list, repr=False)

    def to_dict(self):
        return {"saved": self.saved, "skipped": self.skipped, "failed": self.failed, "total": self.total}


async def find_existing(session: AsyncSession, tender: NormalizedTender) -> Optional[Tender]:
    """Look a tender up by (external_id, source) or by bid number."""
    clauses = [Tender.bid_number == tender.bid_number]
    if tender.external_id:
        clauses.append(and_(Tender.external_id == tender.external_id, Tender.source == tender.source))
    res = await session.execute(select(Tender).where(or_(*clauses)).limit(1))
    return res.scalars().first()


class TenderSynchronizer:
    def __init__(self, source, hooks=None, adapters=None, source_name: str = DEFAULT_SOURCE):
        self.source = source
        self.hooks = hooks
        self.adapters = adapters
        self.source_name = source_name

    async def sync(self, session: AsyncSession, page: int = 1, page_size: int = 50) -> SyncResult:
        """
        Pull one page from the tender source and insert the listings we have
        not seen yet. Each record commits on its own; a bad record is rolled
        back and counted in `failed` without touching the rest of the batch.
        Source failures propagate to the caller.
        """
        page_size = max(1, min(int(page_size), MAX_PAGE_SIZE))
        raw_records = await self.source.fetch(page=page, page_size=page_size)
        result = SyncResult(total=len(raw_records))

        for raw in raw_records:
            try:
                _, tender = normalize(raw, self.adapters, source=self.source_name)
                if await find_existing(session, tender) is not None:
                    result.skipped += 1
                    continue
                session.add(Tender(**tender.columns()))
                await session.commit()
                result.saved += 1
                result.tenders.append(tender)
            except Exception as e:
                await session.rollback()
                result.failed += 1
                logger.warning("Failed to save tender record: %s", e)

        metrics.tenders_synced.labels("saved").inc(result.saved)
        metrics.tenders_synced.labels("skipped").inc(result.skipped)
        metrics.tenders_synced.labels("failed").inc(result.failed)
        logger.info("Tender sync page=%s: saved=%s skipped=%s failed=%s total=%s",
                    page, result.saved, result.skipped, result.failed, result.total)

        if self.hooks is not None and result.tenders:
            await self.hooks.run(TENDERS_SYNCED, {"tenders": list(result.tenders)})
        return result
