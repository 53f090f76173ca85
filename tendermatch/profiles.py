# tendermatch/profiles.py
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tendermatch.extraction import ExtractedProfile
from tendermatch.models import CompanyProfile

logger = logging.getLogger(__name__)

# extracted field -> profile column
FIELD_MAP = {
    "companyDescription": "company_description",
    "businessType": "business_type",
    "companyActivities": "company_activities",
    "mainIndustries": "main_industries",
    "specializations": "specializations",
    "keywords": "keywords",
}

DOCUMENT_WEIGHT = 30
WEIGHTS = (
    ("company_description", 15),
    ("business_type", 15),
    ("company_activities", 15),
    ("main_industries", 15),
    ("specializations", 10),
)


def _join(values) -> str:
    return " ".join(v for v in (values or []) if v)


def compute_query_data(profile: CompanyProfile) -> str:
    if profile.query_override and profile.query_override.strip():
        return profile.query_override.strip()
    parts = [
        profile.company_description or "",
        _join(profile.company_activities),
        _join(profile.main_industries),
        _join(profile.specializations),
    ]
    return " ".join(p.strip() for p in parts if p and p.strip()).strip()


def compute_completeness(profile: CompanyProfile, has_document: bool = True) -> int:
    score = DOCUMENT_WEIGHT if has_document else 0
    for column, weight in WEIGHTS:
        if getattr(profile, column):
            score += weight
    return min(score, 100)


async def get_profile(session: AsyncSession, owner_id: str) -> Optional[CompanyProfile]:
    res = await session.execute(select(CompanyProfile).where(CompanyProfile.owner_id == owner_id))
    return res.scalar_one_or_none()


async def merge(session: AsyncSession, owner_id: str, extracted: ExtractedProfile) -> CompanyProfile:
    """
    Fold an extraction into the owner's profile. Non-empty extracted values
    win; empty ones never erase what is already stored. The caller commits.
    """
    profile = await get_profile(session, owner_id)
    if profile is None:
        profile = CompanyProfile(
            owner_id=owner_id,
            company_activities=[],
            main_industries=[],
            specializations=[],
            keywords=[],
            completeness=0,
        )
        session.add(profile)

    changed = []
    for key, column in FIELD_MAP.items():
        value = getattr(extracted, key)
        if value:
            # JSON columns only track reassignment
            setattr(profile, column, list(value) if isinstance(value, list) else value)
            changed.append(column)

    profile.query_data = compute_query_data(profile)
    profile.completeness = max(profile.completeness or 0, compute_completeness(profile))
    logger.info("Merged profile for owner %s (updated=%s, completeness=%s)",
                owner_id, ",".join(changed) or "-", profile.completeness)
    return profile
