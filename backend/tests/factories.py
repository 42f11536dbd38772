"""Raw registry payload builders shared by the tests."""
from typing import Optional


SHARE_BANDS = {
    37.5: "ownership-of-shares-25-to-50-percent",
    62.5: "ownership-of-shares-50-to-75-percent",
    87.5: "ownership-of-shares-75-to-100-percent",
}


def officer_item(name: str, officer_id: Optional[str] = None, role: str = "director",
                 appointed_on: str = "2015-01-01", resigned_on: Optional[str] = None,
                 address: Optional[str] = None) -> dict:
    """Raw officer list entry as the registry returns it."""
    item = {"name": name, "officer_role": role, "appointed_on": appointed_on}
    if officer_id:
        item["links"] = {"officer": {"appointments": f"/officers/{officer_id}/appointments"}}
    if resigned_on:
        item["resigned_on"] = resigned_on
    if address:
        item["address"] = {"address_line_1": address}
    return item


def psc_item(name: str, percent=None, corporate_number: Optional[str] = None,
             natures: Optional[list] = None, ceased_on: Optional[str] = None,
             address: Optional[str] = None) -> dict:
    """Raw PSC entry. A float percent is sent as an explicit ownership_percent."""
    item = {
        "name": name,
        "kind": "corporate-entity-person-with-significant-control" if corporate_number
        else "individual-person-with-significant-control",
        "natures_of_control": natures if natures is not None else [],
        "notified_on": "2016-04-06",
    }
    if percent in SHARE_BANDS and natures is None:
        item["natures_of_control"] = [SHARE_BANDS[percent]]
    elif percent is not None:
        item["ownership_percent"] = percent
    if corporate_number:
        item["identification"] = {"registration_number": corporate_number}
    if ceased_on:
        item["ceased_on"] = ceased_on
    if address:
        item["address"] = {"address_line_1": address}
    return item
