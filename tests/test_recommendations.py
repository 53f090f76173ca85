from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from conftest import FakeSearch, ListSource, etimad_listing, search_hit
from tendermatch.errors import NotFoundError, TransientError
from tendermatch.models import CompanyProfile, Tender, TenderMatch
from tendermatch.recommendations import RecommendationEngine, build_query
from tendermatch.tenders import TenderSynchronizer


def make_profile(**fields):
    values = dict(owner_id="owner-1", company_activities=[], main_industries=[], specializations=[],
                  keywords=[], completeness=30)
    values.update(fields)
    return CompanyProfile(**values)


async def add_tender(session, bid, score=None, days=10, status="open", owner_id="owner-1"):
    tender = Tender(bid_number=bid, external_id=bid, title=bid, agency="Agency",
                    deadline=datetime.now(timezone.utc) + timedelta(days=days), match_score=score, status=status)
    session.add(tender)
    await session.flush()
    if score is not None:
        session.add(TenderMatch(tender_id=tender.id, owner_id=owner_id, match_score=score))
    await session.commit()
    return tender


def test_build_query_prefers_query_data():
    assert build_query(make_profile(query_data=" stored query ", company_description="desc")) == "stored query"


def test_build_query_from_fields():
    profile = make_profile(company_description="desc", company_activities=["act"], main_industries=["ind"],
                           specializations=["cloud"], business_type="LLC", keywords=["k1", "k2"])
    assert build_query(profile) == "desc act ind cloud LLC k1 k2"


@pytest.mark.asyncio
async def test_search_with_empty_query_still_calls_service(session):
    search = FakeSearch()
    profile = make_profile()
    session.add(profile)
    await session.commit()

    outcome = await RecommendationEngine(search).search(session, profile)

    assert search.queries == [("", 10, True)]
    assert outcome.success is True
    assert outcome.count == 0


@pytest.mark.asyncio
async def test_search_failure_returns_unsuccessful_outcome(session):
    profile = make_profile(query_data="IT consulting")
    session.add(profile)
    await session.commit()

    outcome = await RecommendationEngine(FakeSearch(error=TransientError("down"))).search(session, profile)

    assert outcome.success is False
    assert "down" in outcome.message


@pytest.mark.asyncio
async def test_search_limit_is_capped(session):
    search = FakeSearch()
    profile = make_profile()
    session.add(profile)
    await session.commit()

    await RecommendationEngine(search).search(session, profile, limit=500)
    assert search.queries[0][1] == 50


@pytest.mark.asyncio
async def test_search_stores_scores_and_matches(session):
    profile = make_profile(query_data="IT consulting")
    session.add(profile)
    await add_tender(session, "REF-1-2025", score=None)
    search = FakeSearch([search_hit(1, similarity=87.5), search_hit(2, similarity=-3), {"junk": True}])

    outcome = await RecommendationEngine(search).search(session, profile)

    assert outcome.count == 2
    assert [r["matchScore"] for r in outcome.results] == [87.5, 0.0]
    tenders = {t.bid_number: t for t in (await session.execute(select(Tender))).scalars().all()}
    assert len(tenders) == 2
    assert tenders["REF-1-2025"].match_score == 87.5
    assert tenders["REF-2-2025"].title == "Tender 2"
    assert tenders["REF-2-2025"].match_score == 0.0

    matches = (await session.execute(select(TenderMatch))).scalars().all()
    assert sorted(m.match_score for m in matches) == [0.0, 87.5]
    assert all(m.owner_id == "owner-1" for m in matches)


@pytest.mark.asyncio
async def test_search_hit_keeps_synced_listing_data(session):
    await TenderSynchronizer(ListSource([etimad_listing(1)])).sync(session)
    session.expire_all()
    before = (await session.execute(select(Tender))).scalar_one()
    deadline = before.deadline
    profile = make_profile(query_data="IT consulting")
    session.add(profile)
    await session.commit()
    sparse_hit = {"tender_id": "tender_1", "tender_name": "Test Tender 1", "similarity_percentage": 80}

    await RecommendationEngine(FakeSearch([sparse_hit])).search(session, profile)

    session.expire_all()
    tender = (await session.execute(select(Tender))).scalar_one()
    assert tender.description == "Detailed description for tender 1"
    assert tender.location == "Riyadh"
    assert tender.agency == "Ministry of Testing"
    assert tender.deadline == deadline
    assert tender.match_score == 80
    assert tender.raw_data["tenderTitle"] == "Test Tender 1"
    assert tender.raw_data["search_result"]["similarity_percentage"] == 80


@pytest.mark.asyncio
async def test_search_hit_fills_missing_columns(session):
    await add_tender(session, "REF-1-2025")
    profile = make_profile(query_data="IT")
    session.add(profile)
    await session.commit()

    await RecommendationEngine(FakeSearch([search_hit(1, similarity=50, location="Jeddah")])).search(session, profile)

    session.expire_all()
    tender = (await session.execute(select(Tender))).scalar_one()
    assert tender.location == "Jeddah"
    assert tender.value_max == 500000
    assert tender.title == "REF-1-2025"


@pytest.mark.asyncio
async def test_repeated_search_updates_match_in_place(session):
    profile = make_profile(query_data="IT consulting")
    session.add(profile)
    await session.commit()

    await RecommendationEngine(FakeSearch([search_hit(1, similarity=40)])).search(session, profile)
    await RecommendationEngine(FakeSearch([search_hit(1, similarity=90)])).search(session, profile)

    matches = (await session.execute(select(TenderMatch))).scalars().all()
    assert len(matches) == 1
    assert matches[0].match_score == 90


@pytest.mark.asyncio
async def test_missing_profile_is_not_found(session):
    with pytest.raises(NotFoundError):
        await RecommendationEngine(FakeSearch()).get_recommendations(session, "nobody")


@pytest.mark.asyncio
async def test_scored_tenders_come_first(session):
    session.add(make_profile(query_data="IT"))
    await add_tender(session, "unscored-late", days=20)
    await add_tender(session, "low", score=10)
    await add_tender(session, "unscored-soon", days=2)
    await add_tender(session, "high", score=95)
    await add_tender(session, "closed", score=99, status="closed")
    search = FakeSearch()

    recommendations = await RecommendationEngine(search).get_recommendations(session, "owner-1")

    assert [r.tender.bid_number for r in recommendations] == ["high", "low", "unscored-soon", "unscored-late"]
    assert [r.match_score for r in recommendations] == [95, 10, None, None]
    assert search.queries == []


@pytest.mark.asyncio
async def test_past_deadlines_are_not_served(session):
    session.add(make_profile(query_data="IT"))
    await add_tender(session, "expired", days=-90)
    await add_tender(session, "expired-scored", score=99, days=-1)
    await add_tender(session, "upcoming", days=3)
    await add_tender(session, "scored", score=40, days=30)

    recommendations = await RecommendationEngine(FakeSearch()).get_recommendations(session, "owner-1")

    assert [r.tender.bid_number for r in recommendations] == ["scored", "upcoming"]


@pytest.mark.asyncio
async def test_scores_are_not_shared_between_owners(session):
    session.add(make_profile(owner_id="owner-a", query_data="IT"))
    session.add(make_profile(owner_id="owner-b", query_data="Construction"))
    await session.commit()
    await RecommendationEngine(FakeSearch([search_hit(1, similarity=97)])).refresh(session, "owner-a")
    search_b = FakeSearch([search_hit(2, similarity=60)])

    recommendations = await RecommendationEngine(search_b).get_recommendations(session, "owner-b")

    assert search_b.queries == [("Construction", 10, True)]
    scores = {r.tender.bid_number: r.match_score for r in recommendations}
    assert scores == {"REF-2-2025": 60, "REF-1-2025": None}
    assert recommendations[0].to_dict()["matchScore"] == 60


@pytest.mark.asyncio
async def test_one_extra_search_when_nothing_is_scored(session):
    session.add(make_profile(query_data="IT"))
    await add_tender(session, "unscored", days=5)
    search = FakeSearch()

    recommendations = await RecommendationEngine(search).get_recommendations(session, "owner-1")

    assert len(search.queries) == 1
    assert [r.tender.bid_number for r in recommendations] == ["unscored"]


@pytest.mark.asyncio
async def test_forced_refresh_then_at_most_one_retry(session):
    session.add(make_profile(query_data="IT"))
    await session.commit()
    search = FakeSearch(error=TransientError("down"))

    recommendations = await RecommendationEngine(search).get_recommendations(session, "owner-1",
                                                                             force_refresh=True)

    assert recommendations == []
    assert len(search.queries) == 2


@pytest.mark.asyncio
async def test_forced_refresh_serves_new_scores(session):
    session.add(make_profile(query_data="IT"))
    await session.commit()
    search = FakeSearch([search_hit(1, similarity=55), search_hit(2, similarity=75)])

    recommendations = await RecommendationEngine(search).get_recommendations(session, "owner-1",
                                                                             force_refresh=True)

    assert [r.match_score for r in recommendations] == [75, 55]
    assert len(search.queries) == 1


@pytest.mark.asyncio
async def test_refresh_all_skips_profiles_without_query(session):
    session.add(make_profile(owner_id="a", query_data="IT"))
    session.add(make_profile(owner_id="b", query_data="  "))
    session.add(make_profile(owner_id="c"))
    await session.commit()
    search = FakeSearch()

    summary = await RecommendationEngine(search).refresh_all(session)

    assert summary == {"profiles": 1, "succeeded": 1, "failed": 0}
    assert search.queries == [("IT", 10, True)]
