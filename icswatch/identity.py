from __future__ import annotations

from icswatch.errors import IdentityError
from icswatch.models import Occurrence


RECURRENCE_ID = "RECURRENCE-ID"
RECURRENCE_ID_SENTINEL = "R"
VENDOR_RECURRING_ID = "X-CO-RECURRINGID"
VENDOR_RECURRING_ID_SENTINEL = "XR"


def _disambiguator(occurrence: Occurrence, name: str, sentinel: str) -> str:
    prop = occurrence.get_property(name)
    if prop is None:
        return ""
    if prop.value is None:
        return sentinel
    return prop.value


def resolve_identity(occurrence: Occurrence) -> str:
    """Return the key naming this occurrence across polling cycles.

    The key is the UID followed by the RECURRENCE-ID and X-CO-RECURRINGID
    values. A disambiguator present without a value contributes its sentinel
    so it stays distinct from an absent one.
    """
    uid = occurrence.get_value("UID")
    if uid is None:
        raise IdentityError("occurrence has no UID")
    return (
        uid
        + _disambiguator(occurrence, RECURRENCE_ID, RECURRENCE_ID_SENTINEL)
        + _disambiguator(occurrence, VENDOR_RECURRING_ID, VENDOR_RECURRING_ID_SENTINEL)
    )
