# tendermatch/recommendations.py
"""
Recommendation engine.

``search`` asks the semantic search service for tenders matching the
company profile and stores the scored candidates, one TenderMatch per
owner and tender. ``get_recommendations`` always serves from storage, using
only the requesting owner's scores: scored open tenders first (best score
first), then the unscored ones by nearest deadline. Tenders whose deadline
has passed are never served.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tendermatch import metrics
from tendermatch.adapters import NormalizedTender, clamp_score, normalize
from tendermatch.errors import NotFoundError
from tendermatch.models import CompanyProfile, Tender, TenderMatch
from tendermatch.profiles import get_profile
from tendermatch.tenders import find_existing

logger = logging.getLogger(__name__)

MAX_LIMIT = 50
QUERY_EXCERPT_CHARS = 200

# filled from a search hit only while the stored tender has no value
FILLABLE = ("external_id", "location", "value_min", "value_max", "external_url")


def _join(values) -> str:
    return " ".join(v for v in (values or []) if v)


def build_query(profile: CompanyProfile) -> str:
    if profile.query_data and profile.query_data.strip():
        return profile.query_data.strip()
    parts = [
        profile.company_description or "",
        _join(profile.company_activities),
        _join(profile.main_industries),
        _join(profile.specializations),
        profile.business_type or "",
        _join(profile.keywords),
    ]
    return " ".join(p.strip() for p in parts if p and p.strip()).strip()


def tender_to_dict(tender: Tender, match_score: Optional[float] = None) -> Dict[str, Any]:
    return {
        "id": tender.id,
        "bidNumber": tender.bid_number,
        "externalId": tender.external_id,
        "source": tender.source,
        "title": tender.title,
        "agency": tender.agency,
        "description": tender.description,
        "category": tender.category,
        "location": tender.location,
        "valueMin": tender.value_min,
        "valueMax": tender.value_max,
        "deadline": tender.deadline.isoformat() if tender.deadline else None,
        "status": tender.status,
        "externalUrl": tender.external_url,
        "matchScore": match_score,
    }


@dataclass
class Recommendation:
    """A stored tender with the requesting owner's score, if any."""

    tender: Tender
    match_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return tender_to_dict(self.tender, self.match_score)


@dataclass
class SearchOutcome:
    success: bool
    count: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)
    message: str = ""

    def to_dict(self):
        return {"success": self.success, "count": self.count, "results": self.results, "message": self.message}


class RecommendationEngine:
    def __init__(self, search_service, adapters=None):
        self.search_service = search_service
        self.adapters = adapters

    async def search(self, session: AsyncSession, profile: CompanyProfile, limit: int = 10,
                     active_only: bool = True) -> SearchOutcome:
        """Never raises for service failures; they come back as success=False."""
        limit = max(1, min(int(limit), MAX_LIMIT))
        owner_id = profile.owner_id
        query = build_query(profile)
        try:
            candidates = await self.search_service.query(query, limit=limit, active_only=active_only)
        except Exception as e:
            metrics.search_calls.labels("failure").inc()
            logger.warning("Semantic search failed for owner %s: %s", owner_id, e)
            return SearchOutcome(success=False, message=f"Failed to search tenders: {e}")
        metrics.search_calls.labels("success").inc()

        stored = []
        for rank, candidate in enumerate(candidates or [], start=1):
            try:
                _, tender = normalize(candidate, self.adapters)
                row = await self._upsert_tender(session, tender)
                score = clamp_score(tender.match_score)
                await self._upsert_match(session, row, owner_id, score, rank, query)
                await session.commit()
                stored.append(tender_to_dict(row, score))
            except Exception as e:
                await session.rollback()
                logger.warning("Failed to store search candidate #%s: %s", rank, e)

        logger.info("Search for owner %s returned %d candidates, stored %d",
                    owner_id, len(candidates or []), len(stored))
        return SearchOutcome(success=True, count=len(stored), results=stored,
                             message="Successfully searched for tenders")

    async def _upsert_tender(self, session: AsyncSession, tender: NormalizedTender) -> Tender:
        """
        Insert an unseen hit as a new tender. A hit for a stored tender only
        records its score; listing data from sync is kept, and only columns
        that are still empty are filled in.
        """
        row = await find_existing(session, tender)
        if row is None:
            row = Tender(**tender.columns())
            session.add(row)
        else:
            for column in FILLABLE:
                if getattr(row, column) is None and getattr(tender, column) is not None:
                    setattr(row, column, getattr(tender, column))
            if tender.match_score is not None:
                row.match_score = tender.match_score
            raw = dict(row.raw_data or {})
            raw["search_result"] = tender.raw
            row.raw_data = raw
            row.updated_at = datetime.now(timezone.utc)
        await session.flush()
        return row

    async def _upsert_match(self, session: AsyncSession, row: Tender, owner_id: str, score: Optional[float],
                            rank: int, query: str) -> None:
        if score is None:
            return
        details = {"rank": rank, "query": query[:QUERY_EXCERPT_CHARS]}
        res = await session.execute(
            select(TenderMatch).where(TenderMatch.tender_id == row.id, TenderMatch.owner_id == owner_id)
        )
        match = res.scalar_one_or_none()
        if match is None:
            session.add(TenderMatch(tender_id=row.id, owner_id=owner_id, match_score=score, match_details=details))
        else:
            match.match_score = score
            match.match_details = details

    async def ranked(self, session: AsyncSession, owner_id: str, limit: int = 10,
                     now: Optional[datetime] = None) -> List[Recommendation]:
        limit = max(1, min(int(limit), MAX_LIMIT))
        now = now or datetime.now(timezone.utc)
        score = TenderMatch.match_score
        stmt = (
            select(Tender, score)
            .outerjoin(TenderMatch, and_(TenderMatch.tender_id == Tender.id, TenderMatch.owner_id == owner_id))
            .where(Tender.status == "open", Tender.deadline >= now)
            .order_by(score.is_(None), score.desc(), Tender.deadline.asc())
            .limit(limit)
        )
        res = await session.execute(stmt)
        return [Recommendation(tender, match_score) for tender, match_score in res.all()]

    async def get_recommendations(self, session: AsyncSession, owner_id: str, limit: int = 10,
                                  force_refresh: bool = False) -> List[Recommendation]:
        profile = await get_profile(session, owner_id)
        if profile is None:
            raise NotFoundError("Company profile not found. Please upload a company document first.")

        if force_refresh:
            outcome = await self.search(session, profile, limit)
            if not outcome.success:
                logger.warning("Forced refresh failed for owner %s: %s", owner_id, outcome.message)

        recommendations = await self.ranked(session, owner_id, limit)
        if not any(r.match_score is not None for r in recommendations):
            logger.info("No scored tenders for owner %s; running one more search", owner_id)
            # a failed candidate rolls the session back and expires the profile
            profile = await get_profile(session, owner_id)
            await self.search(session, profile, limit)
            recommendations = await self.ranked(session, owner_id, limit)
        return recommendations

    async def refresh(self, session: AsyncSession, owner_id: str, limit: int = 10) -> SearchOutcome:
        profile = await get_profile(session, owner_id)
        if profile is None:
            raise NotFoundError("Company profile not found. Please upload a company document first.")
        return await self.search(session, profile, limit)

    async def refresh_all(self, session: AsyncSession, limit: int = 10) -> Dict[str, int]:
        """Re-run the search for every profile that has something to search with."""
        res = await session.execute(select(CompanyProfile).where(CompanyProfile.query_data.isnot(None)))
        owner_ids = [p.owner_id for p in res.scalars().all() if (p.query_data or "").strip()]
        summary = {"profiles": len(owner_ids), "succeeded": 0, "failed": 0}
        for owner_id in owner_ids:
            profile = await get_profile(session, owner_id)
            outcome = await self.search(session, profile, limit)
            summary["succeeded" if outcome.success else "failed"] += 1
        return summary
