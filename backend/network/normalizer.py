"""
Registry record normalization.

Turns raw registry payloads into the tagged record variants of core.schemas.
Anything that cannot be shaped into its variant raises InvalidRecord, which the
orchestrator records as an unavailable record kind.
"""
import re
import string
from typing import Any, Optional

from pydantic import ValidationError

from core.errors import InvalidRecord
from core.schemas import (
    UNKNOWN,
    AppointmentRecord,
    CompanyListing,
    CompanyRecord,
    FilingRecord,
    OfficerMatch,
    OfficerRecord,
    PSCRecord,
)


_PUNCTUATION = re.compile(f"[{re.escape(string.punctuation)}]")
_WHITESPACE = re.compile(r"\s+")
_OFFICER_LINK = re.compile(r"/officers/([^/]+)/appointments")

ADDRESS_FIELDS = (
    "care_of",
    "po_box",
    "premises",
    "address_line_1",
    "address_line_2",
    "locality",
    "region",
    "postal_code",
    "country",
)

# natures_of_control share bands -> (midpoint percent, band label)
OWNERSHIP_BANDS = {
    "ownership-of-shares-25-to-50-percent": (37.5, "25-50"),
    "ownership-of-shares-50-to-75-percent": (62.5, "50-75"),
    "ownership-of-shares-75-to-100-percent": (87.5, "75-100"),
}


def normalize_key(text: Optional[str]) -> str:
    """Case-insensitive, punctuation-stripped, whitespace-collapsed comparison key."""
    if not text:
        return ""
    stripped = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", stripped).strip()


def normalize_address(address: Optional[str]) -> str:
    return normalize_key(address)


def format_address(address: Any) -> Optional[str]:
    """Flatten a registry address object into one display string."""
    if address is None:
        return None
    if isinstance(address, str):
        return address.strip() or None
    if not isinstance(address, dict):
        return None
    parts = [str(address.get(field, "")).strip() for field in ADDRESS_FIELDS]
    full = ", ".join(part for part in parts if part)
    return full or None


def _validate(model, data: dict, entity_id: str, kind: str):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidRecord(entity_id, kind, str(e.errors()[0].get("msg", e))) from e


def _require_dict(raw: Any, entity_id: str, kind: str) -> dict:
    if not isinstance(raw, dict):
        raise InvalidRecord(entity_id, kind, f"expected an object, got {type(raw).__name__}")
    return raw


def normalize_profile(raw: Any, entity_id: str) -> CompanyRecord:
    raw = _require_dict(raw, entity_id, "profile")
    accounts = raw.get("accounts") or {}
    confirmation = raw.get("confirmation_statement") or {}
    data = {
        "company_number": raw.get("company_number") or entity_id,
        "company_name": raw.get("company_name", ""),
        "company_status": raw.get("company_status") or UNKNOWN,
        "company_type": raw.get("type") or raw.get("company_type"),
        "date_of_creation": raw.get("date_of_creation"),
        "date_of_cessation": raw.get("date_of_cessation"),
        "sic_codes": raw.get("sic_codes") or [],
        "has_been_liquidated": bool(raw.get("has_been_liquidated")),
        "has_insolvency_history": bool(raw.get("has_insolvency_history")),
        "has_charges": bool(raw.get("has_charges")),
        "accounts_next_due": accounts.get("next_due"),
        "accounts_overdue": bool(accounts.get("overdue")),
        "confirmation_statement_next_due": confirmation.get("next_due"),
        "confirmation_statement_overdue": bool(confirmation.get("overdue")),
        "registered_address": format_address(raw.get("registered_office_address")),
    }
    return _validate(CompanyRecord, data, entity_id, "profile")


def officer_id_from_links(raw: dict) -> Optional[str]:
    links = raw.get("links") or {}
    candidates = [
        (links.get("officer") or {}).get("appointments"),
        links.get("self"),
    ]
    for link in candidates:
        if link:
            match = _OFFICER_LINK.search(link)
            if match:
                return match.group(1)
    return None


def normalize_officer(raw: Any, entity_id: str) -> OfficerRecord:
    raw = _require_dict(raw, entity_id, "officers")
    data = {
        "officer_id": raw.get("officer_id") or officer_id_from_links(raw),
        "name": raw.get("name"),
        "officer_role": raw.get("officer_role") or "director",
        "appointed_on": raw.get("appointed_on"),
        "resigned_on": raw.get("resigned_on"),
        "nationality": raw.get("nationality"),
        "occupation": raw.get("occupation"),
        "address": format_address(raw.get("address")),
    }
    return _validate(OfficerRecord, data, entity_id, "officers")


def _psc_kind(kind: str) -> str:
    if "individual" in kind:
        return "individual"
    if "corporate" in kind:
        return "corporate"
    if "legal-person" in kind:
        return "legal-person"
    return "other"


def _ownership_from_natures(natures: list[str]) -> tuple[Any, Optional[str]]:
    """Map share-ownership natures onto a percent; anything vaguer stays unknown."""
    for nature in natures:
        for marker, (percent, band) in OWNERSHIP_BANDS.items():
            if marker in nature:
                return percent, band
    return UNKNOWN, None


def normalize_psc(raw: Any, entity_id: str) -> PSCRecord:
    raw = _require_dict(raw, entity_id, "pscs")
    natures = raw.get("natures_of_control") or []
    percent, band = _ownership_from_natures(natures)

    explicit = raw.get("ownership_percent")
    if isinstance(explicit, (int, float)) and not isinstance(explicit, bool):
        if not 0 <= explicit <= 100:
            raise InvalidRecord(entity_id, "pscs", f"ownership_percent out of range: {explicit}")
        percent = float(explicit)
    elif explicit == UNKNOWN:
        percent = UNKNOWN

    identification = raw.get("identification") or {}
    registration_number = raw.get("registration_number") or identification.get("registration_number")

    data = {
        "name": raw.get("name"),
        "kind": _psc_kind(raw.get("kind", "individual")),
        "natures_of_control": natures,
        "ownership_percent": percent,
        "ownership_band": band,
        "registration_number": registration_number,
        "notified_on": raw.get("notified_on"),
        "ceased_on": raw.get("ceased_on"),
        "nationality": raw.get("nationality"),
        "country_of_residence": raw.get("country_of_residence"),
        "address": format_address(raw.get("address")),
    }
    return _validate(PSCRecord, data, entity_id, "pscs")


def normalize_filing(raw: Any, entity_id: str) -> FilingRecord:
    raw = _require_dict(raw, entity_id, "filing_history")
    data = {
        "transaction_id": raw.get("transaction_id"),
        "date": raw.get("date"),
        "category": raw.get("category"),
        "type": raw.get("type"),
        "description": raw.get("description"),
    }
    return _validate(FilingRecord, data, entity_id, "filing_history")


def normalize_appointment(raw: Any, entity_id: str) -> AppointmentRecord:
    raw = _require_dict(raw, entity_id, "appointments")
    appointed_to = raw.get("appointed_to") or {}
    data = {
        "company_number": appointed_to.get("company_number") or raw.get("company_number"),
        "company_name": appointed_to.get("company_name") or raw.get("company_name", ""),
        "company_status": appointed_to.get("company_status") or raw.get("company_status") or UNKNOWN,
        "officer_role": raw.get("officer_role") or "director",
        "appointed_on": raw.get("appointed_on"),
        "resigned_on": raw.get("resigned_on"),
        "address": format_address(raw.get("address")),
    }
    return _validate(AppointmentRecord, data, entity_id, "appointments")


def normalize_listing(raw: Any, entity_id: str) -> CompanyListing:
    raw = _require_dict(raw, entity_id, "companies_at_address")
    address = format_address(raw.get("registered_office_address")) or raw.get("address_snippet")
    data = {
        "company_number": raw.get("company_number"),
        "company_name": raw.get("company_name") or raw.get("title", ""),
        "company_status": raw.get("company_status") or UNKNOWN,
        "date_of_creation": raw.get("date_of_creation"),
        "address": address,
    }
    return _validate(CompanyListing, data, entity_id, "companies_at_address")


def normalize_officer_match(raw: Any, entity_id: str) -> OfficerMatch:
    raw = _require_dict(raw, entity_id, "officer_search")
    data = {
        "officer_id": raw.get("officer_id") or officer_id_from_links(raw),
        "name": raw.get("title") or raw.get("name"),
        "address": format_address(raw.get("address")) or raw.get("address_snippet"),
        "appointment_count": raw.get("appointment_count") or 0,
    }
    return _validate(OfficerMatch, data, entity_id, "officer_search")
