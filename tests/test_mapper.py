from datetime import date, timedelta

import pytest

from bdns_sync.core.errors import MappingError
from bdns_sync.normalize.bdns import ORGAN_PLACEHOLDER, TITLE_PLACEHOLDER, map_convocatoria

TODAY = date(2024, 5, 15)


def test_map_complete_item(make_item):
    record = map_convocatoria(make_item("700123"), today=TODAY)

    assert record.bdns_code == "700123"
    assert record.title == "Ayudas a la innovación 700123"
    assert record.organ_description == "Consejería de Economía"
    assert record.organ_dir3 == "A01002820"
    assert record.registration_date == date(2024, 5, 2)
    assert record.modification_date == date(2024, 5, 3)
    assert record.application_start == date(2024, 5, 10)
    assert record.application_end == date(2024, 6, 10)
    assert record.is_open is True
    assert record.total_amount == 150000.5
    assert record.sectors == [{"codigo": "C", "descripcion": "Industria manufacturera"}]
    assert record.regions == ["ES511 - Barcelona"]
    assert record.degraded_fields == ()


def test_map_applies_fallbacks(make_item):
    item = make_item(
        "700124",
        titulo="",
        **{
            "desc-organo": None,
            "inicio-solicitud": None,
            "fin-solicitud": "00/00/0000",
            "financiacion": "sin datos",
        }
    )

    record = map_convocatoria(item, today=TODAY)

    assert record.title == TITLE_PLACEHOLDER
    assert record.organ_description == ORGAN_PLACEHOLDER
    assert record.application_start == date(2024, 5, 2)
    assert record.application_end == TODAY + timedelta(days=30)
    assert record.financing == []
    assert record.total_amount == 0.0
    assert set(record.degraded_fields) == {
        "titulo",
        "desc-organo",
        "inicio-solicitud",
        "fin-solicitud",
        "financiacion",
    }


def test_map_start_falls_back_to_today_without_registration(make_item):
    item = make_item("700125", **{"fecha-registro": None, "inicio-solicitud": None})
    record = map_convocatoria(item, today=TODAY)
    assert record.application_start == TODAY


def test_map_parses_open_flag_variants(make_item):
    assert map_convocatoria(make_item(abierto="S"), today=TODAY).is_open is True
    assert map_convocatoria(make_item(abierto="false"), today=TODAY).is_open is False
    assert map_convocatoria(make_item(abierto=None), today=TODAY).is_open is False


def test_map_without_code_raises(make_item):
    item = make_item()
    del item["codigo-BDNS"]
    with pytest.raises(MappingError):
        map_convocatoria(item, today=TODAY)

    with pytest.raises(MappingError):
        map_convocatoria(make_item(code="  "), today=TODAY)
