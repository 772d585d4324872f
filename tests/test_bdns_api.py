import pytest
import requests

from bdns_sync.core.errors import FetchFailed
from bdns_sync.ingest.bdns_api import (
    LISTING_PATH,
    MAX_PAGE_SIZE,
    BdnsApiPager,
    parse_listing,
    unwrap_envelope,
)


def _response(mocker, status_code=200, payload=None, json_error=False):
    response = mocker.Mock()
    response.status_code = status_code
    if json_error:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session(mocker):
    return mocker.Mock()


@pytest.fixture
def pager(session):
    return BdnsApiPager(base_url="https://bdns.test/api/", timeout=5, session=session)


def test_fetch_page_sends_bdns_query(pager, session, mocker, may_range):
    session.get.return_value = _response(
        mocker, payload={"page": 0, "page-size": 50, "total-pages": 3, "convocatorias": {}}
    )

    pager.fetch_page(0, 50, may_range)

    session.get.assert_called_once_with(
        "https://bdns.test/api" + LISTING_PATH,
        params={
            "page": 0,
            "page-size": 50,
            "fecha-desde": "01/05/2024",
            "fecha-hasta": "31/05/2024",
        },
        timeout=5,
    )


def test_fetch_page_unwraps_list_envelope_and_keeps_order(pager, session, mocker, may_range):
    session.get.return_value = _response(
        mocker,
        payload=[
            {
                "page": 1,
                "page-size": 2,
                "total-pages": 4,
                "convocatorias": {
                    "9001": {"codigo-BDNS": "B"},
                    "9000": {"codigo-BDNS": "A"},
                },
            }
        ],
    )

    page = pager.fetch_page(1, 2, may_range)

    assert page.total_pages == 4
    assert page.page_size == 2
    assert [item["codigo-BDNS"] for item in page.items] == ["B", "A"]
    assert not page.is_last


def test_fetch_page_timeout_raises_fetch_failed(pager, session, may_range):
    session.get.side_effect = requests.Timeout("read timed out")

    with pytest.raises(FetchFailed) as exc_info:
        pager.fetch_page(3, 100, may_range)

    assert exc_info.value.page == 3
    assert exc_info.value.retryable
    assert session.get.call_count == 1


def test_fetch_page_connection_error_raises_fetch_failed(pager, session, may_range):
    session.get.side_effect = requests.ConnectionError("refused")

    with pytest.raises(FetchFailed):
        pager.fetch_page(0, 100, may_range)


def test_fetch_page_http_error_raises_fetch_failed(pager, session, mocker, may_range):
    session.get.return_value = _response(mocker, status_code=500)

    with pytest.raises(FetchFailed) as exc_info:
        pager.fetch_page(0, 100, may_range)

    assert exc_info.value.status_code == 500


def test_fetch_page_invalid_json_raises_fetch_failed(pager, session, mocker, may_range):
    session.get.return_value = _response(mocker, json_error=True)

    with pytest.raises(FetchFailed):
        pager.fetch_page(0, 100, may_range)


def test_build_params_rejects_invalid_page_size(pager, may_range):
    with pytest.raises(ValueError):
        pager.build_params(0, 0, may_range)
    with pytest.raises(ValueError):
        pager.build_params(-1, 10, may_range)


def test_build_params_clamps_to_max_page_size(pager, may_range):
    params = pager.build_params(0, MAX_PAGE_SIZE + 500, may_range)
    assert params["page-size"] == MAX_PAGE_SIZE


def test_unwrap_envelope_empty_list():
    assert unwrap_envelope([]) is None


def test_parse_listing_empty_response_has_no_pages():
    page = parse_listing([], page=0, page_size=100)
    assert page.total_pages == 0
    assert page.items == []


def test_parse_listing_malformed_envelope():
    with pytest.raises(FetchFailed):
        parse_listing("<html>", page=0, page_size=100)
    with pytest.raises(FetchFailed):
        parse_listing({"convocatorias": 42}, page=0, page_size=100)


def test_parse_listing_keeps_non_object_values():
    page = parse_listing(
        {"total-pages": 1, "convocatorias": {"1": {"codigo-BDNS": "A"}, "2": "junk"}},
        page=0,
        page_size=2,
    )
    assert page.items == [{"codigo-BDNS": "A"}, "junk"]


def test_page_is_last():
    assert parse_listing({"total-pages": 3, "convocatorias": {}}, page=2, page_size=10).is_last
    assert not parse_listing({"total-pages": 3, "convocatorias": {}}, page=1, page_size=10).is_last
