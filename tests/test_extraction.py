import httpx
import pytest

from conftest import FakeCompletion
from tendermatch import deepinfra
from tendermatch.errors import TransientError
from tendermatch.extraction import ExtractedProfile, ProfileExtractor, normalize_extraction, parse_model_output


def test_normalize_valid_response():
    profile = normalize_extraction({
        "companyDescription": "  ACME builds software ",
        "businessType": "LLC",
        "companyActivities": ["consulting", " ", "support"],
        "mainIndustries": ["IT"],
        "specializations": [],
        "keywords": ["cloud", "Unknown"],
    })
    assert profile.companyDescription == "ACME builds software"
    assert profile.businessType == "LLC"
    assert profile.companyActivities == ["consulting", "support"]
    assert profile.keywords == ["cloud"]


def test_each_field_falls_back_independently():
    profile = normalize_extraction({
        "companyDescription": 42,
        "businessType": "unknown",
        "companyActivities": "consulting",
        "mainIndustries": ["IT", 3],
        "specializations": ["networks"],
    })
    assert profile.companyDescription is None
    assert profile.businessType is None
    assert profile.companyActivities == []
    assert profile.mainIndustries == []
    assert profile.specializations == ["networks"]
    assert profile.keywords == []


def test_legacy_keys_are_accepted():
    profile = normalize_extraction({"description": "Old style", "activities": ["a"], "industries": ["b"]})
    assert profile.companyDescription == "Old style"
    assert profile.companyActivities == ["a"]
    assert profile.mainIndustries == ["b"]


@pytest.mark.parametrize("content", ["not json", "[1, 2]", "", "null", None])
def test_malformed_output_yields_defaults(content):
    assert parse_model_output(content) == ExtractedProfile()


@pytest.mark.asyncio
async def test_extractor_truncates_input_and_parses():
    completion = FakeCompletion({"companyDescription": "ACME", "companyActivities": ["IT consulting"]})
    extractor = ProfileExtractor(completion=completion, max_chars=10)

    profile = await extractor.extract("x" * 50, "owner-1", company_name="ACME")

    assert profile.companyDescription == "ACME"
    prompt = completion.calls[0][1]["content"]
    assert "x" * 10 + "..." in prompt
    assert "x" * 11 not in prompt
    assert '"ACME"' in prompt


@pytest.mark.asyncio
async def test_extractor_never_raises_on_garbage():
    extractor = ProfileExtractor(completion=FakeCompletion("I cannot help with that"))
    profile = await extractor.extract("text", "owner-1")
    assert profile.is_empty()


@pytest.mark.asyncio
async def test_extractor_propagates_transport_failures():
    extractor = ProfileExtractor(completion=FakeCompletion(error=TransientError("DeepInfra unreachable")))
    with pytest.raises(TransientError):
        await extractor.extract("text", "owner-1")


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(200, json={"choices": []}),
    httpx.Response(200, text="<html>bad gateway page</html>"),
    httpx.Response(200, json={"choices": [{"message": None}]}),
])
async def test_unusable_model_reply_yields_defaults(response):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response))

    async def completion(messages, json_mode=False):
        return await deepinfra.chat_completion(messages, json_mode=json_mode, client=client)

    profile = await ProfileExtractor(completion=completion).extract("text", "owner-1")

    assert profile == ExtractedProfile()
    await client.aclose()


def test_market_and_certification_lists_are_kept():
    profile = normalize_extraction({
        "targetMarkets": ["Government", " "],
        "certifications": ["ISO 9001"],
    })
    assert profile.targetMarkets == ["Government"]
    assert profile.certifications == ["ISO 9001"]
    assert profile.to_dict()["certifications"] == ["ISO 9001"]
