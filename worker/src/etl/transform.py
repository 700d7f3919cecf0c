"""Utilities for turning raw place page values into Record objects."""

import logging
from typing import Dict, Optional, Tuple

from src.core.models import Candidate, Record

logger = logging.getLogger(__name__)

_PHONE_BOILERPLATE = ("Copy phone number", "Phone: ")
_ADDRESS_BOILERPLATE = ("Address: ",)


def _strip_boilerplate(value: Optional[str], fragments) -> str:
    text = value or ""
    for fragment in fragments:
        text = text.replace(fragment, "")
    return text.strip()


def clean_phone(raw: Optional[str]) -> str:
    return _strip_boilerplate(raw, _PHONE_BOILERPLATE)


def clean_address(raw: Optional[str]) -> str:
    return _strip_boilerplate(raw, _ADDRESS_BOILERPLATE)


def parse_rating(raw: Optional[str]) -> Tuple[str, str]:
    """Split an accessible label such as ``"4.5 stars (128)"`` into rating and review count.

    The rating is the text before the first space; the review count is the
    text between the first ``(`` and the first ``)``. Empty input yields two
    empty strings.
    """
    if not raw:
        return "", ""

    rating = raw.split(" ")[0]
    reviews = ""
    start = raw.find("(")
    end = raw.find(")")
    if start != -1 and end != -1:
        reviews = raw[start + 1 : end]
    return rating, reviews


def to_record(candidate: Candidate, raw: Dict[str, Optional[str]]) -> Record:
    rating, reviews = parse_rating(raw.get("rating"))
    return Record(
        name=candidate.name,
        phone=clean_phone(raw.get("phone")),
        website=(raw.get("website") or "").strip(),
        rating_value=rating,
        review_count=reviews,
        category=(raw.get("category") or "").strip(),
        address=clean_address(raw.get("address")),
        source_link=candidate.link,
    )
