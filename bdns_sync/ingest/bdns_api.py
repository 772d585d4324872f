"""
Pager for the BDNS (Base de Datos Nacional de Subvenciones) public API.

This module handles:
1. Translating page/date-range parameters into the BDNS query dialect
2. Unwrapping the response envelope (optionally a one-element list)
3. Turning the "convocatorias" object, keyed by internal IDs, into a list

The pager is stateless and never retries; retry policy belongs to callers.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from bdns_sync.config import DEFAULT_API_BASE
from bdns_sync.core.errors import FetchFailed
from bdns_sync.core.time_utils import DateRange

logger = logging.getLogger(__name__)


LISTING_PATH = "/GE/es/api/v2.1/listadoconvocatoria"

# Upstream silently truncates pages larger than this; never request more.
MAX_PAGE_SIZE = 2000

DEFAULT_TIMEOUT = 30.0

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "BDNS-Sync-Service/1.0",
}


@dataclass
class BdnsPage:
    """One unwrapped page of the BDNS listing."""
    page: int
    page_size: int
    total_pages: int
    items: List[Any] = field(default_factory=list)

    @property
    def is_last(self) -> bool:
        return self.page >= self.total_pages - 1


class BdnsApiPager:
    """
    Fetches BDNS listing pages one HTTP GET at a time.

    Usage:
        pager = BdnsApiPager()
        page = pager.fetch_page(0, 100, DateRange.current_year())
        for item in page.items:
            ...
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize pager.

        Args:
            base_url: BDNS API base URL
            timeout: Per-request timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)

    @property
    def url(self) -> str:
        return f"{self.base_url}{LISTING_PATH}"

    def build_params(self, page: int, page_size: int, date_range: DateRange) -> Dict[str, Any]:
        """
        Translate pager arguments into BDNS query parameters.

        Args:
            page: Zero-based page index
            page_size: Records per page (clamped to MAX_PAGE_SIZE)
            date_range: Registration date range

        Returns:
            Query parameter dict

        Raises:
            ValueError: If page or page_size are out of range
        """
        if page < 0:
            raise ValueError(f"Page index must be >= 0, got {page}")
        if not isinstance(page_size, int) or page_size <= 0:
            raise ValueError(f"Page size must be a positive integer, got {page_size!r}")
        if date_range is None:
            raise ValueError("A date range is required")

        if page_size > MAX_PAGE_SIZE:
            logger.warning(
                f"Page size {page_size} exceeds BDNS cap, clamping to {MAX_PAGE_SIZE}"
            )
            page_size = MAX_PAGE_SIZE

        return {
            "page": page,
            "page-size": page_size,
            "fecha-desde": date_range.desde,
            "fecha-hasta": date_range.hasta,
        }

    def fetch_page(self, page: int, page_size: int, date_range: DateRange) -> BdnsPage:
        """
        Fetch and unwrap one listing page.

        Args:
            page: Zero-based page index
            page_size: Records per page
            date_range: Registration date range

        Returns:
            BdnsPage with the page's items in response order

        Raises:
            FetchFailed: On timeout, connection error, non-2xx or bad body
        """
        params = self.build_params(page, page_size, date_range)
        logger.debug(f"Fetching BDNS page {page}: {params}")

        try:
            response = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise FetchFailed(page, f"timeout after {self.timeout}s") from e
        except requests.RequestException as e:
            raise FetchFailed(page, f"request error: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FetchFailed(
                page, f"HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchFailed(page, "response body is not valid JSON") from e

        return parse_listing(payload, page, params["page-size"])


def unwrap_envelope(payload: Any) -> Optional[Dict[str, Any]]:
    """
    Unwrap the listing envelope.

    The API sometimes wraps the envelope in a one-element list. An empty
    list means an empty page.

    Returns:
        Envelope dict, or None for an empty response
    """
    if isinstance(payload, list):
        if not payload:
            return None
        if len(payload) > 1:
            logger.warning(f"Envelope list has {len(payload)} elements, using the first")
        payload = payload[0]

    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected envelope type: {type(payload).__name__}")
    return payload


def extract_items(envelope: Dict[str, Any]) -> List[Any]:
    """
    Convert the "convocatorias" object into an ordered list.

    Values keep the order the API returned them in. Values that are not
    objects are kept so the mapper rejects them and they are counted as
    failed records.
    """
    convocatorias = envelope.get("convocatorias")
    if not convocatorias:
        return []
    if isinstance(convocatorias, dict):
        values = list(convocatorias.values())
    elif isinstance(convocatorias, list):
        values = convocatorias
    else:
        raise ValueError(
            f"Unexpected convocatorias type: {type(convocatorias).__name__}"
        )
    malformed = sum(1 for item in values if not isinstance(item, dict))
    if malformed:
        logger.warning(f"{malformed} convocatoria value(s) are not objects")
    return list(values)


def parse_listing(payload: Any, page: int, page_size: int) -> BdnsPage:
    """
    Build a BdnsPage from a decoded JSON body.

    Raises:
        FetchFailed: If the body has an unexpected shape
    """
    try:
        envelope = unwrap_envelope(payload)
        if envelope is None:
            logger.warning(f"Page {page}: no data received")
            return BdnsPage(page=page, page_size=page_size, total_pages=0)

        items = extract_items(envelope)
        total_pages = int(envelope.get("total-pages") or 1)
        reported_size = int(envelope.get("page-size") or page_size)
    except (ValueError, TypeError) as e:
        raise FetchFailed(page, f"malformed envelope: {e}") from e

    return BdnsPage(
        page=page,
        page_size=reported_size,
        total_pages=total_pages,
        items=items,
    )
