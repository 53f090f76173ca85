# tendermatch/adapters.py
"""
Shape adapters for third-party tender payloads.

Each adapter takes one raw record and returns a NormalizedTender, or None when
the record is not in the shape it understands. ``normalize`` walks the ordered
chain and the first match wins.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "etimad"
DEFAULT_DEADLINE_DAYS = 30
ETIMAD_DETAILS_URL = "https://tenders.etimad.sa/Tender/Details/{}"


class UnrecognizedRecord(ValueError):
    pass


@dataclass
class NormalizedTender:
    bid_number: str
    title: str
    agency: str
    deadline: datetime
    external_id: Optional[str] = None
    source: str = DEFAULT_SOURCE
    description: str = ""
    category: str = "General"
    location: Optional[str] = None
    value_min: Optional[float] = None
    value_max: Optional[float] = None
    status: str = "open"
    external_url: Optional[str] = None
    match_score: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def columns(self) -> Dict[str, Any]:
        """Keyword arguments for the Tender model."""
        return {
            "external_id": self.external_id,
            "bid_number": self.bid_number,
            "source": self.source,
            "title": self.title,
            "agency": self.agency,
            "description": self.description,
            "category": self.category,
            "location": self.location,
            "value_min": self.value_min,
            "value_max": self.value_max,
            "deadline": self.deadline,
            "status": self.status,
            "external_url": self.external_url,
            "match_score": self.match_score,
            "raw_data": self.raw,
        }


# ---------- value helpers ----------

def default_deadline(now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) + timedelta(days=DEFAULT_DEADLINE_DAYS)


def parse_deadline(value) -> datetime:
    """Parse a deadline, falling back to now + 30 days for missing or bad values."""
    parsed = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.info("Invalid deadline %r, using now + %s days", value, DEFAULT_DEADLINE_DAYS)
    if parsed is None:
        return default_deadline()
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_float(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def clamp_score(value) -> Optional[float]:
    score = to_float(value)
    if score is None:
        return None
    return max(0.0, min(100.0, score))


def _text(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _first(record: Dict[str, Any], *keys) -> Optional[str]:
    for key in keys:
        value = _text(record.get(key))
        if value:
            return value
    return None


# ---------- adapters ----------

def adapt_etimad_listing(record) -> Optional[NormalizedTender]:
    """Scraper API listing: tenderIdString / tenderTitle / entityName ..."""
    if not isinstance(record, dict) or not record.get("tenderIdString") or not record.get("tenderTitle"):
        return None
    details = record.get("details") if isinstance(record.get("details"), dict) else {}
    external_id = _text(record["tenderIdString"])
    value = to_float(record.get("tenderValue"))
    return NormalizedTender(
        external_id=external_id,
        bid_number=_first(record, "referenceNumber") or external_id,
        title=_text(record["tenderTitle"]),
        agency=_first(record, "entityName") or "Unknown agency",
        description=_text(details.get("description")) or "",
        category=_first(record, "tenderType") or "General",
        location=_text(details.get("location")),
        value_min=value,
        value_max=value,
        deadline=parse_deadline(record.get("lastOfferDate")),
        external_url=ETIMAD_DETAILS_URL.format(external_id),
        raw=record,
    )


def adapt_portal_listing(record) -> Optional[NormalizedTender]:
    """Visitor portal listing: referenceNumber / tenderName / agencyName ..."""
    if not isinstance(record, dict) or not record.get("tenderName"):
        return None
    external_id = _first(record, "tenderIdString")
    bid_number = _first(record, "referenceNumber", "tenderNumber") or external_id
    if not bid_number:
        return None
    title = _text(record["tenderName"])
    return NormalizedTender(
        external_id=external_id,
        bid_number=bid_number,
        title=title,
        agency=_first(record, "agencyName") or "Unknown agency",
        description=_first(record, "tenderDescription") or title,
        category=_first(record, "tenderTypeName", "tenderActivityName") or "General",
        location=_first(record, "branchName"),
        value_min=to_float(record.get("condetionalBookletPrice", record.get("invitationCost"))),
        value_max=to_float(record.get("financialFees", record.get("buyingCost"))),
        deadline=parse_deadline(record.get("lastOfferPresentationDate")),
        external_url=ETIMAD_DETAILS_URL.format(external_id) if external_id else None,
        raw=record,
    )


def adapt_search_result(record) -> Optional[NormalizedTender]:
    """Semantic search hit: tender_id / reference_number / tender_name ..."""
    if not isinstance(record, dict) or not record.get("tender_name"):
        return None
    external_id = _first(record, "tender_id")
    bid_number = _first(record, "reference_number") or external_id
    if not bid_number:
        return None
    value = to_float(record.get("tender_value"))
    active = record.get("is_active")
    return NormalizedTender(
        external_id=external_id,
        bid_number=bid_number,
        title=_text(record["tender_name"]),
        agency=_first(record, "agency_name") or "Unknown agency",
        description=_first(record, "tender_purpose") or "",
        category=_first(record, "tender_type") or "General",
        location=_first(record, "location"),
        value_min=value,
        value_max=value,
        deadline=parse_deadline(record.get("submission_date")),
        status="closed" if active is False else "open",
        external_url=ETIMAD_DETAILS_URL.format(external_id) if external_id else None,
        match_score=clamp_score(record.get("similarity_percentage")),
        raw=record,
    )


def adapt_stored_tender(record) -> Optional[NormalizedTender]:
    """Our own exported shape: bidNumber / title / agency ..."""
    if not isinstance(record, dict) or not record.get("bidNumber") or not record.get("title"):
        return None
    return NormalizedTender(
        external_id=_first(record, "externalId"),
        bid_number=_text(record["bidNumber"]),
        title=_text(record["title"]),
        agency=_first(record, "agency") or "Unknown agency",
        description=_first(record, "description") or "",
        category=_first(record, "category") or "General",
        location=_first(record, "location"),
        value_min=to_float(record.get("valueMin")),
        value_max=to_float(record.get("valueMax")),
        deadline=parse_deadline(record.get("deadline")),
        status=_first(record, "status") or "open",
        external_url=_first(record, "externalUrl"),
        match_score=clamp_score(record.get("matchScore")),
        raw=record,
    )


class ShapeAdapter(NamedTuple):
    name: str
    adapt: Callable[[Any], Optional[NormalizedTender]]


def _adapt_json_string(record) -> Optional[NormalizedTender]:
    if not isinstance(record, (str, bytes)):
        return None
    try:
        decoded = json.loads(record)
    except ValueError:
        return None
    if not isinstance(decoded, dict):
        return None
    for adapter in DICT_ADAPTERS:
        result = adapter.adapt(decoded)
        if result is not None:
            return result
    return None


DICT_ADAPTERS: List[ShapeAdapter] = [
    ShapeAdapter("etimad_listing", adapt_etimad_listing),
    ShapeAdapter("portal_listing", adapt_portal_listing),
    ShapeAdapter("search_result", adapt_search_result),
    ShapeAdapter("stored_tender", adapt_stored_tender),
]

DEFAULT_ADAPTERS: List[ShapeAdapter] = DICT_ADAPTERS + [ShapeAdapter("json_string", _adapt_json_string)]


def normalize(record, adapters: Optional[List[ShapeAdapter]] = None,
              source: str = DEFAULT_SOURCE) -> Tuple[str, NormalizedTender]:
    """Return (adapter name, normalized tender) or raise UnrecognizedRecord."""
    for adapter in adapters or DEFAULT_ADAPTERS:
        result = adapter.adapt(record)
        if result is not None:
            result.source = source
            return adapter.name, result
    raise UnrecognizedRecord(f"No adapter matched record: {str(record)[:200]}")
