import asyncio

import pytest
from sqlalchemy import select

from conftest import FakeCompletion, FakeOCR, FakeUpload, no_sleep
from tendermatch.errors import RateLimited, TransientError
from tendermatch.extraction import ProfileExtractor
from tendermatch.intake import DocumentIntake
from tendermatch.models import CompanyDocument, CompanyProfile
from tendermatch.notifications import DOCUMENT_PROCESSED
from tendermatch.ocr import ERROR, PROCESSING
from tendermatch.processing import DocumentProcessor

ACME_EXTRACTION = {
    "companyDescription": "ACME Corp provides IT consulting services",
    "companyActivities": ["IT consulting"],
}


def make_processor(session_factory, store, registry, hooks, ocr=None, completion=None, max_attempts=5,
                   submit_timeout=5.0):
    return DocumentProcessor(
        session_factory, store,
        ocr or FakeOCR(),
        ProfileExtractor(completion=completion or FakeCompletion(ACME_EXTRACTION)),
        registry,
        hooks=hooks,
        poll_interval=0,
        max_attempts=max_attempts,
        submit_timeout=submit_timeout,
        sleep=no_sleep,
    )


async def upload_and_trigger(session_factory, store, registry, owner_id="owner-1"):
    intake = DocumentIntake(store, registry)
    async with session_factory() as session:
        doc = await intake.submit(session, owner_id, FakeUpload())
        await intake.trigger(session, owner_id, doc.document_id)
    return intake, doc.document_id


async def load(session_factory, document_id):
    async with session_factory() as session:
        res = await session.execute(select(CompanyDocument).where(CompanyDocument.document_id == document_id))
        return res.scalar_one_or_none()


async def load_profile(session_factory, owner_id="owner-1"):
    async with session_factory() as session:
        res = await session.execute(select(CompanyProfile).where(CompanyProfile.owner_id == owner_id))
        return res.scalar_one_or_none()


@pytest.mark.asyncio
async def test_acme_document_completes_and_fills_profile(session_factory, store, registry, hooks):
    events = []

    async def record(payload):
        events.append(payload)

    hooks.register(DOCUMENT_PROCESSED, record)
    ocr = FakeOCR(statuses=[PROCESSING, PROCESSING, "processed"])
    intake, document_id = await upload_and_trigger(session_factory, store, registry)
    processor = make_processor(session_factory, store, registry, hooks, ocr=ocr)

    assert await processor.process(document_id) == "completed"

    doc = await load(session_factory, document_id)
    assert doc.status == "completed"
    assert doc.extracted_text == "ACME Corp provides IT consulting services"
    assert doc.extracted_data["companyActivities"] == ["IT consulting"]
    assert doc.processed_at is not None
    assert ocr.polls == 3

    profile = await load_profile(session_factory)
    assert profile.completeness >= 60
    assert profile.query_data == "ACME Corp provides IT consulting services IT consulting"

    async with session_factory() as session:
        status = await intake.status(session, "owner-1", document_id)
    assert status.status == "completed"
    assert status.progress == 100
    assert events[0]["status"] == "completed"


@pytest.mark.asyncio
async def test_poll_cap_yields_timeout(session_factory, store, registry, hooks):
    ocr = FakeOCR(statuses=[PROCESSING])
    _, document_id = await upload_and_trigger(session_factory, store, registry)
    processor = make_processor(session_factory, store, registry, hooks, ocr=ocr, max_attempts=4)

    assert await processor.process(document_id) == "error"

    assert ocr.polls == 4
    doc = await load(session_factory, document_id)
    assert doc.status == "error"
    assert doc.error_message.startswith("Timeout:")
    assert registry.get(document_id).status == "error"


@pytest.mark.asyncio
async def test_ocr_error_status(session_factory, store, registry, hooks):
    _, document_id = await upload_and_trigger(session_factory, store, registry)
    processor = make_processor(session_factory, store, registry, hooks, ocr=FakeOCR(statuses=[ERROR]))

    assert await processor.process(document_id) == "error"
    doc = await load(session_factory, document_id)
    assert doc.error_message.startswith("ExternalProcessingError:")


@pytest.mark.asyncio
async def test_rate_limited_submission_is_retry_later(session_factory, store, registry, hooks):
    ocr = FakeOCR(submit_error=RateLimited("LLMWhisperer returned HTTP 429"))
    intake, document_id = await upload_and_trigger(session_factory, store, registry)
    processor = make_processor(session_factory, store, registry, hooks, ocr=ocr)

    await processor.process(document_id)

    doc = await load(session_factory, document_id)
    assert doc.error_message == "RateLimited: LLMWhisperer returned HTTP 429"
    async with session_factory() as session:
        status = await intake.status(session, "owner-1", document_id)
    assert status.retry == "later"


@pytest.mark.asyncio
async def test_submission_wall_clock_timeout(session_factory, store, registry, hooks):
    class SlowOCR(FakeOCR):
        async def submit(self, data):
            await asyncio.sleep(10)

    _, document_id = await upload_and_trigger(session_factory, store, registry)
    processor = make_processor(session_factory, store, registry, hooks, ocr=SlowOCR(), submit_timeout=0.01)

    assert await processor.process(document_id) == "error"
    doc = await load(session_factory, document_id)
    assert doc.error_message.startswith("Transient:")


@pytest.mark.asyncio
async def test_extraction_transport_failure_fails_document(session_factory, store, registry, hooks):
    completion = FakeCompletion(error=TransientError("DeepInfra unreachable"))
    _, document_id = await upload_and_trigger(session_factory, store, registry)
    processor = make_processor(session_factory, store, registry, hooks, completion=completion)

    assert await processor.process(document_id) == "error"
    doc = await load(session_factory, document_id)
    assert doc.error_message == "Transient: DeepInfra unreachable"
    assert await load_profile(session_factory) is None


@pytest.mark.asyncio
async def test_malformed_extraction_still_completes(session_factory, store, registry, hooks):
    _, document_id = await upload_and_trigger(session_factory, store, registry)
    processor = make_processor(session_factory, store, registry, hooks, completion=FakeCompletion("not json"))

    assert await processor.process(document_id) == "completed"
    profile = await load_profile(session_factory)
    assert profile.completeness == 30


@pytest.mark.asyncio
async def test_unexpected_error_becomes_internal_error(session_factory, store, registry, hooks):
    class BrokenOCR(FakeOCR):
        async def retrieve(self, ticket):
            raise KeyError("result_text")

    _, document_id = await upload_and_trigger(session_factory, store, registry)
    processor = make_processor(session_factory, store, registry, hooks, ocr=BrokenOCR())

    assert await processor.process(document_id) == "error"
    doc = await load(session_factory, document_id)
    assert doc.error_message == "InternalError: Unexpected error while processing document"


@pytest.mark.asyncio
async def test_superseded_document_results_are_discarded(session_factory, store, registry, hooks):
    intake, document_id = await upload_and_trigger(session_factory, store, registry)

    class SupersedingOCR(FakeOCR):
        async def retrieve(self, ticket):
            async with session_factory() as session:
                await intake.submit(session, "owner-1", FakeUpload(filename="newer.pdf"))
            return self.text

    processor = make_processor(session_factory, store, registry, hooks, ocr=SupersedingOCR())

    assert await processor.process(document_id) == "discarded"
    assert await load(session_factory, document_id) is None
    assert await load_profile(session_factory) is None
    assert registry.get(document_id) is None


@pytest.mark.asyncio
async def test_failing_hook_does_not_change_outcome(session_factory, store, registry, hooks):
    async def broken(payload):
        raise RuntimeError("sink down")

    hooks.register(DOCUMENT_PROCESSED, broken)
    _, document_id = await upload_and_trigger(session_factory, store, registry)
    processor = make_processor(session_factory, store, registry, hooks)

    assert await processor.process(document_id) == "completed"
    assert (await load(session_factory, document_id)).status == "completed"
