from datetime import date, datetime, timezone

from bdns_sync.core.domain_models import SyncType
from bdns_sync.core.time_utils import DateRange, date_range_for, parse_timestamp
from bdns_sync.core.utils import clean_text, format_bdns_date, generate_code, parse_bdns_date, sha256_json


def test_sha256_json_ignores_key_order():
    assert sha256_json({"a": 1, "b": [1, 2]}) == sha256_json({"b": [1, 2], "a": 1})
    assert len(sha256_json({"a": 1})) == 64


def test_parse_bdns_date_formats():
    assert parse_bdns_date("10/05/2024") == date(2024, 5, 10)
    assert parse_bdns_date("2024-05-10") == date(2024, 5, 10)
    assert parse_bdns_date("2024-05-10T12:30:00") == date(2024, 5, 10)
    assert parse_bdns_date(date(2024, 5, 10)) == date(2024, 5, 10)


def test_parse_bdns_date_rejects_placeholders():
    for value in (None, "", "0", "00/00/0000", "0000-00-00", "NaN", "null", "no es fecha"):
        assert parse_bdns_date(value) is None


def test_parse_bdns_date_rejects_out_of_range_years():
    assert parse_bdns_date("01/01/1999") is None
    assert parse_bdns_date("01/01/2200") is None


def test_format_bdns_date():
    assert format_bdns_date(date(2024, 1, 7)) == "07/01/2024"


def test_generate_code():
    assert generate_code("Andalucía") == "andaluc_a"
    assert generate_code("Comunidad Autónoma de Castilla y León") == "comunidad_aut_noma_d"
    assert len(generate_code("x" * 50)) == 20


def test_clean_text():
    assert clean_text("  Ayudas \n a  PYMES ") == "Ayudas a PYMES"
    assert clean_text("   ") is None
    assert clean_text(None) is None


def test_date_ranges_per_sync_type():
    today = date(2024, 5, 15)

    incremental = date_range_for(SyncType.INCREMENTAL, today)
    assert (incremental.start, incremental.end) == (date(2024, 5, 8), date(2024, 5, 14))

    full = date_range_for(SyncType.FULL, today)
    assert (full.desde, full.hasta) == ("01/01/2024", "31/12/2024")

    complete = date_range_for(SyncType.COMPLETE, today)
    assert (complete.desde, complete.hasta) == ("01/01/2008", "31/12/2025")


def test_date_range_rejects_inverted_bounds():
    try:
        DateRange(date(2024, 2, 1), date(2024, 1, 1))
    except ValueError:
        pass
    else:
        assert False, "Expected ValueError for inverted range"


def test_parse_timestamp_assumes_utc():
    assert parse_timestamp("2024-05-01T10:00:00") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp(None) is None
