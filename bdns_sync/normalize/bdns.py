"""
Normalizer for BDNS convocatorias.

Converts one raw BDNS API item → GrantRecord. Missing fields are filled from
documented fallbacks and listed in GrantRecord.degraded_fields; the only
hard failure is an item without a BDNS code.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from bdns_sync.core.domain_models import GrantRecord
from bdns_sync.core.errors import MappingError
from bdns_sync.core.money import total_financing
from bdns_sync.core.time_utils import today_madrid
from bdns_sync.core.utils import clean_text, parse_bdns_date

logger = logging.getLogger(__name__)


TITLE_PLACEHOLDER = "Título no disponible"
ORGAN_PLACEHOLDER = "Organismo no especificado"

# Closing date used when the API gives none
DEFAULT_APPLICATION_DAYS = 30


def map_convocatoria(item: Dict[str, Any], today: Optional[date] = None) -> GrantRecord:
    """
    Map a raw BDNS item to a GrantRecord.

    Args:
        item: One value of the API's "convocatorias" object
        today: Reference date for synthesized dates (defaults to today in Madrid)

    Returns:
        GrantRecord

    Raises:
        MappingError: If the item has no "codigo-BDNS"
    """
    if not isinstance(item, dict):
        raise MappingError(f"Expected a dict, got {type(item).__name__}")

    bdns_code = clean_text(item.get("codigo-BDNS"))
    if not bdns_code:
        raise MappingError("Item has no codigo-BDNS")

    today = today or today_madrid()
    degraded: List[str] = []

    title = clean_text(item.get("titulo"))
    if not title:
        title = TITLE_PLACEHOLDER
        degraded.append("titulo")

    organ = clean_text(item.get("desc-organo"))
    if not organ:
        organ = ORGAN_PLACEHOLDER
        degraded.append("desc-organo")

    registration_date = parse_bdns_date(item.get("fecha-registro"))

    application_start = parse_bdns_date(item.get("inicio-solicitud"))
    if application_start is None:
        application_start = registration_date or today
        degraded.append("inicio-solicitud")

    application_end = parse_bdns_date(item.get("fin-solicitud"))
    if application_end is None:
        application_end = today + timedelta(days=DEFAULT_APPLICATION_DAYS)
        degraded.append("fin-solicitud")

    financing = item.get("financiacion")
    if not isinstance(financing, list):
        if financing is not None:
            degraded.append("financiacion")
        financing = []

    if degraded:
        logger.debug(f"Grant {bdns_code}: fallbacks applied for {', '.join(degraded)}")

    return GrantRecord(
        bdns_code=bdns_code,
        title=title,
        organ_description=organ,
        title_co_official=clean_text(item.get("titulo-cooficial")),
        organ_dir3=clean_text(item.get("dir3-organo")),
        registration_date=registration_date,
        modification_date=parse_bdns_date(item.get("fecha-mod")),
        application_start=application_start,
        application_end=application_end,
        is_open=_parse_bool(item.get("abierto")),
        financing=financing,
        total_amount=total_financing(financing),
        beneficiary_types=item.get("tipo-beneficiario"),
        purpose=item.get("finalidad"),
        instruments=item.get("instrumento"),
        sectors=item.get("sector"),
        regions=item.get("region"),
        regulatory_base_description=clean_text(item.get("descripcionBR")),
        regulatory_base_url=clean_text(item.get("URLespBR")),
        eu_fund=clean_text(item.get("fondoUE")),
        permalink=clean_text(item.get("permalink-convocatoria")),
        permalink_awards=clean_text(item.get("permalink-concesiones")),
        degraded_fields=tuple(degraded),
    )


def _parse_bool(value: Any) -> bool:
    """The API reports "abierto" as a bool, or sometimes "true"/"S"/1."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("true", "1", "s", "si", "sí", "yes")
