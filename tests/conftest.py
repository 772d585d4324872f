from datetime import date
from typing import Any, Dict, List

import pytest

from bdns_sync.core.errors import FetchFailed
from bdns_sync.core.time_utils import DateRange
from bdns_sync.ingest.bdns_api import BdnsPage
from bdns_sync.storage.db import Database


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "bdns.db")


@pytest.fixture
def make_item():
    """Factory for raw BDNS items as the API returns them."""

    def _make(code: str = "100001", **overrides) -> Dict[str, Any]:
        item = {
            "codigo-BDNS": code,
            "titulo": f"Ayudas a la innovación {code}",
            "desc-organo": "Consejería de Economía",
            "dir3-organo": "A01002820",
            "fecha-registro": "02/05/2024",
            "fecha-mod": "03/05/2024",
            "inicio-solicitud": "10/05/2024",
            "fin-solicitud": "10/06/2024",
            "abierto": True,
            "financiacion": [
                {"fuente": "Estado", "importe": 100000},
                {"fuente": "FEDER", "importe": "50000.50"},
            ],
            "sector": [{"codigo": "C", "descripcion": "Industria manufacturera"}],
            "instrumento": [{"codigo": "1", "descripcion": "Subvención"}],
            "region": ["ES511 - Barcelona"],
            "tipo-beneficiario": [{"descripcion": "PYME"}],
            "finalidad": {"descripcion": "Innovación"},
            "permalink-convocatoria": f"https://www.infosubvenciones.es/bdnstrans/GE/es/convocatorias/{code}",
        }
        item.update(overrides)
        return item

    return _make


class FakePager:
    """In-memory pager serving pre-built pages and recording every request."""

    def __init__(self, pages: List[List[Dict[str, Any]]], fail_on=None, page_size: int = 2):
        self.pages = pages
        self.fail_on = fail_on
        self.page_size = page_size
        self.calls: List[int] = []

    def fetch_page(self, page: int, page_size: int, date_range: DateRange) -> BdnsPage:
        self.calls.append(page)
        if self.fail_on is not None and page == self.fail_on:
            raise FetchFailed(page, "HTTP 503", status_code=503)
        return BdnsPage(
            page=page,
            page_size=self.page_size,
            total_pages=len(self.pages),
            items=list(self.pages[page]) if page < len(self.pages) else [],
        )


@pytest.fixture
def fake_pager_cls():
    return FakePager


@pytest.fixture
def may_range():
    return DateRange(date(2024, 5, 1), date(2024, 5, 31))
