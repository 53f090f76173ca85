# tendermatch/extraction.py
"""
Structured company-profile extraction from OCR text.

The model is asked for a strict JSON object, but its answer is never trusted:
every field is checked on its own and falls back to None / [] when it has the
wrong shape. A response that cannot be parsed at all yields the all-default
profile instead of an error.
"""
import json
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from tendermatch import deepinfra
from tendermatch.config import settings
from tendermatch.errors import MalformedResponse

logger = logging.getLogger(__name__)

STRING_FIELDS = ("companyDescription", "businessType")
LIST_FIELDS = ("companyActivities", "mainIndustries", "specializations", "targetMarkets", "certifications",
               "keywords")

# keys the older prompt used, accepted when the primary key is absent
LEGACY_KEYS = {
    "companyDescription": "description",
    "companyActivities": "activities",
    "mainIndustries": "industries",
}

BLANK_MARKERS = {"", "unknown", "n/a", "none", "null"}

SYSTEM_PROMPT = "You are a business analyst expert who extracts structured information from company documents."

USER_PROMPT = """You are an expert business analyst tasked with extracting structured information from a company profile document.

The document has been processed using OCR and describes the company "{company}".

Return ONLY a JSON object with these keys:
- companyDescription: a concise description of the company (max 300 words)
- businessType: the type of business (e.g. "Corporation", "LLC", "Sole Proprietorship")
- companyActivities: array of the company's main business activities and services (max 10 items)
- mainIndustries: array of industries the company operates in (max 5 items)
- specializations: array of the company's special expertise areas (max 8 items)
- targetMarkets: array of the company's target markets or customer segments (max 5 items)
- certifications: array of certifications or qualifications the company holds (max 10 items)
- keywords: array of relevant keywords for the company's business (max 15 items)

If any information is not available, use null for string fields or [] for array fields.

Document text:
{text}"""


@dataclass
class ExtractedProfile:
    companyDescription: Optional[str] = None
    businessType: Optional[str] = None
    companyActivities: List[str] = field(default_factory=list)
    mainIndustries: List[str] = field(default_factory=list)
    specializations: List[str] = field(default_factory=list)
    targetMarkets: List[str] = field(default_factory=list)
    certifications: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in STRING_FIELDS + LIST_FIELDS)


def _clean_string(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if value.lower() in BLANK_MARKERS:
        return None
    return value


def _clean_list(value) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return []
    return [v.strip() for v in value if v.strip() and v.strip().lower() not in BLANK_MARKERS]


def normalize_extraction(raw: Any) -> ExtractedProfile:
    """Validate each field of a decoded model response independently."""
    if not isinstance(raw, dict):
        return ExtractedProfile()

    def pick(name):
        if name in raw:
            return raw[name]
        legacy = LEGACY_KEYS.get(name)
        return raw.get(legacy) if legacy else None

    values = {name: _clean_string(pick(name)) for name in STRING_FIELDS}
    values.update({name: _clean_list(pick(name)) for name in LIST_FIELDS})
    return ExtractedProfile(**values)


def parse_model_output(content: str) -> ExtractedProfile:
    try:
        raw = json.loads(content)
    except (TypeError, ValueError):
        logger.warning("Extraction response is not valid JSON; using empty profile")
        return ExtractedProfile()
    return normalize_extraction(raw)


def truncate(text: str, limit: int) -> str:
    text = text or ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class ProfileExtractor:
    def __init__(self, completion=None, max_chars: Optional[int] = None):
        self._completion = completion or deepinfra.chat_completion
        self.max_chars = max_chars or settings.extraction_max_chars

    async def extract(self, text: str, owner_id: str, company_name: Optional[str] = None) -> ExtractedProfile:
        """
        Raises ExternalServiceError when the model cannot be reached; any
        malformed answer degrades to defaults.
        """
        prompt = USER_PROMPT.format(company=company_name or "Unknown", text=truncate(text, self.max_chars))
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        try:
            content = await self._completion(messages, json_mode=True)
        except MalformedResponse as e:
            logger.warning("Extraction response for owner %s was unusable: %s", owner_id, e.record())
            return ExtractedProfile()
        profile = parse_model_output(content)
        if profile.is_empty():
            logger.warning("Extraction for owner %s produced no usable fields", owner_id)
        return profile
