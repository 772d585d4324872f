"""
Content fingerprints for change detection.

A fingerprint is computed from the raw API item, over a fixed subset of
fields. Fallback values synthesized by the mapper never enter the digest, so
replaying the same item on another day produces the same fingerprint.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

from bdns_sync.core.money import total_financing
from bdns_sync.core.utils import parse_bdns_date, sha256_json


# Fields that define a meaningful change, in digest order
FINGERPRINT_FIELDS = (
    "titulo",
    "desc-organo",
    "fecha-mod",
    "inicio-solicitud",
    "fin-solicitud",
    "abierto",
    "financiacion",
)

COMPUTED_TOTAL_FIELD = "importe-total"


@dataclass(frozen=True)
class Fingerprint:
    digest: str
    modified_on: Optional[date] = None


def fingerprint_fields(item: Dict[str, Any]) -> Dict[str, Any]:
    """Select the fingerprinted subset of an item, plus its computed total."""
    fields = {name: item.get(name) for name in FINGERPRINT_FIELDS}
    fields[COMPUTED_TOTAL_FIELD] = total_financing(item.get("financiacion"))
    return fields


def fingerprint_convocatoria(item: Dict[str, Any]) -> Fingerprint:
    """
    Compute the fingerprint of a raw BDNS item.

    Args:
        item: Raw API item

    Returns:
        Fingerprint with the SHA-256 digest and the parsed "fecha-mod"
    """
    return Fingerprint(
        digest=sha256_json(fingerprint_fields(item)),
        modified_on=parse_bdns_date(item.get("fecha-mod")),
    )


class HashChangeDetector:
    """A stored row changed when its content hash differs."""

    name = "hash"

    def is_changed(
        self,
        stored_hash: Optional[str],
        stored_modified_on: Optional[date],
        incoming: Fingerprint,
    ) -> bool:
        return stored_hash != incoming.digest


class ModificationDateChangeDetector:
    """
    A stored row changed when the incoming "fecha-mod" is newer.

    Missing dates on either side count as changed.
    """

    name = "modification_date"

    def is_changed(
        self,
        stored_hash: Optional[str],
        stored_modified_on: Optional[date],
        incoming: Fingerprint,
    ) -> bool:
        if stored_modified_on is None or incoming.modified_on is None:
            return True
        return incoming.modified_on > stored_modified_on


CHANGE_DETECTORS = {
    HashChangeDetector.name: HashChangeDetector,
    ModificationDateChangeDetector.name: ModificationDateChangeDetector,
}


def get_change_detector(name: str):
    """
    Look up a change detector by configuration name.

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return CHANGE_DETECTORS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown change detection strategy {name!r}, "
            f"expected one of {sorted(CHANGE_DETECTORS)}"
        ) from None
