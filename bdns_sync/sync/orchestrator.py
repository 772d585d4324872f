"""
Sync orchestrator: start / stop / status for BDNS sync runs.

A run walks the API page by page. Page N+1 is fetched only after every record
of page N has been reconciled and linked. Run statistics are an immutable
SyncStats value owned by the loop and persisted after each page.

Run lifecycle: idle → running → completed | failed.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from bdns_sync.config import SyncSettings
from bdns_sync.core.domain_models import (
    ReconcileOutcome,
    SyncRun,
    SyncStats,
    SyncStatus,
    SyncType,
)
from bdns_sync.core.errors import ConflictError, FetchFailed, MappingError, WriteFailed
from bdns_sync.core.time_utils import DateRange, date_range_for
from bdns_sync.ingest.bdns_api import BdnsApiPager, BdnsPage
from bdns_sync.normalize.bdns import map_convocatoria
from bdns_sync.normalize.fingerprint import fingerprint_convocatoria, get_change_detector
from bdns_sync.storage.classification_store import JunctionNormalizer
from bdns_sync.storage.db import Database
from bdns_sync.storage.grant_store import GrantStore
from bdns_sync.storage.sync_run_store import DEFAULT_STALE_AFTER, SyncRunStore

logger = logging.getLogger(__name__)


CANCELLED_MESSAGE = "Cancelled by request"

ProgressCallback = Callable[[SyncStats, int], None]


class SyncCancelled(Exception):
    """Raised inside the loop when stop() was requested."""


class RunOvertaken(Exception):
    """Raised inside the loop when the run row is no longer running."""


@dataclass(frozen=True)
class SyncHandle:
    """Returned by start(): identifies the claimed run."""
    run_id: int
    sync_type: SyncType
    date_range: DateRange
    background: bool


def parse_sync_type(value: Any) -> SyncType:
    """
    Validate a sync type.

    Raises:
        ValueError: If value is not incremental, full or complete
    """
    try:
        return SyncType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in SyncType)
        raise ValueError(f"Invalid sync type {value!r}, expected one of: {allowed}") from None


class SyncOrchestrator:
    """
    Runs BDNS syncs, inline or in a supervised background thread.

    Usage:
        orchestrator = SyncOrchestrator.from_settings(SyncSettings.from_env())
        handle = orchestrator.start("incremental")
        orchestrator.wait()
        print(orchestrator.status())
    """

    def __init__(
        self,
        db: Database,
        pager: BdnsApiPager,
        page_size: int = 100,
        change_detector=None,
        stale_after=DEFAULT_STALE_AFTER,
        record_workers: int = 1,
        progress_every_pages: int = 1,
        request_delay: float = 0.0,
        on_progress: Optional[ProgressCallback] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            db: Shared Database
            pager: BDNS API pager
            page_size: Records requested per page
            change_detector: Strategy deciding update vs touch
            stale_after: Age after which a running run is presumed dead
            record_workers: Threads reconciling records within one page
            progress_every_pages: Persist counters every N pages
            request_delay: Seconds to wait between page requests
            on_progress: Called with (stats, total_pages) after each page
        """
        self.db = db
        self.pager = pager
        self.page_size = page_size
        self.record_workers = max(1, record_workers)
        self.progress_every_pages = max(1, progress_every_pages)
        self.request_delay = request_delay
        self.on_progress = on_progress

        self.grants = GrantStore(db, change_detector=change_detector)
        self.normalizer = JunctionNormalizer(db)
        self.runs = SyncRunStore(db, stale_after=stale_after)

        self._thread: Optional[threading.Thread] = None
        self._thread_run_id: Optional[int] = None
        self.last_run_id: Optional[int] = None
        self._cancel = threading.Event()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: SyncSettings, **kwargs) -> "SyncOrchestrator":
        db = Database(settings.db_path)
        pager = BdnsApiPager(base_url=settings.api_base, timeout=settings.request_timeout)
        return cls(
            db,
            pager,
            page_size=settings.page_size,
            change_detector=get_change_detector(settings.change_detection),
            stale_after=settings.stale_after,
            record_workers=settings.record_workers,
            progress_every_pages=settings.progress_every_pages,
            request_delay=settings.request_delay,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def start(
        self,
        sync_type: Any = SyncType.INCREMENTAL,
        background: bool = True,
        date_range: Optional[DateRange] = None,
        today: Optional[date] = None,
    ) -> SyncHandle:
        """
        Start a sync run.

        The run is claimed before this returns, so a conflict is reported
        to the caller directly.

        Args:
            sync_type: incremental, full or complete
            background: Run in a background thread (True) or inline
            date_range: Override the sync type's date range
            today: Reference date for the default range

        Returns:
            SyncHandle

        Raises:
            ValueError: Invalid sync type
            ConflictError: Another run is running
        """
        sync_type = parse_sync_type(sync_type)
        date_range = date_range or date_range_for(sync_type, today)

        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                raise ConflictError(self._thread_run_id)

            run = self.runs.begin_run(
                sync_type, parameters=self._run_parameters(sync_type, date_range)
            )
            self.last_run_id = run.id
            self._cancel.clear()
            handle = SyncHandle(run.id, sync_type, date_range, background)

            if background:
                self._thread_run_id = run.id
                self._thread = threading.Thread(
                    target=self._execute,
                    args=(run, date_range),
                    name=f"bdns-sync-{run.id}",
                    daemon=True,
                )
                self._thread.start()

        if not background:
            self._execute(run, date_range, reraise=True)
        return handle

    def run(self, sync_type: Any = SyncType.INCREMENTAL, **kwargs) -> SyncRun:
        """Run a sync inline and return its final state."""
        handle = self.start(sync_type, background=False, **kwargs)
        return self.runs.get_run(handle.run_id)

    def stop(self) -> bool:
        """
        Request cancellation of the background run.

        The loop stops before fetching the next page and the run is marked
        failed. Returns False when no background run is alive.
        """
        thread = self._thread
        if thread is None or not thread.is_alive():
            return False
        logger.info("Stop requested for background sync")
        self._cancel.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the background run; True when it has finished."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def status(self) -> Optional[SyncRun]:
        """Latest run (running or terminal), or None if none ever ran."""
        return self.runs.latest_run()

    def active_runs(self) -> List[SyncRun]:
        return self.runs.active_runs()

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def _run_parameters(self, sync_type: SyncType, date_range: DateRange) -> Dict[str, Any]:
        return {
            "sync_type": sync_type.value,
            "page_size": self.page_size,
            "fecha_desde": date_range.desde,
            "fecha_hasta": date_range.hasta,
            "change_detection": getattr(self.grants.change_detector, "name", "custom"),
            "record_workers": self.record_workers,
        }

    def _execute(self, run: SyncRun, date_range: DateRange, reraise: bool = False) -> SyncStats:
        """Drive one claimed run to a terminal status."""
        stats = SyncStats()
        started = time.monotonic()
        logger.info(
            f"Sync run {run.id} ({run.sync_type.value}): "
            f"{date_range.desde} to {date_range.hasta}"
        )

        try:
            first = self.pager.fetch_page(0, self.page_size, date_range)
            total_pages = first.total_pages
            if not self.runs.set_totals(run.id, total_pages, total_pages * first.page_size):
                raise RunOvertaken()
            logger.info(
                f"Sync run {run.id}: {total_pages} pages to process "
                f"(~{total_pages * first.page_size} records)"
            )

            for page_index in range(total_pages):
                if self._cancel.is_set():
                    raise SyncCancelled()

                if page_index == 0:
                    page = first
                else:
                    if self.request_delay:
                        time.sleep(self.request_delay)
                    page = self.pager.fetch_page(page_index, self.page_size, date_range)

                stats = self._process_page(page, stats).with_page()

                if page.is_last or stats.processed_pages % self.progress_every_pages == 0:
                    if not self.runs.update_progress(run.id, stats):
                        raise RunOvertaken()
                if self.on_progress:
                    self.on_progress(stats, total_pages)

        except RunOvertaken:
            # Row finished elsewhere, e.g. by stale recovery
            logger.error(
                f"Sync run {run.id} is no longer running in the database, "
                f"stopping after {stats.processed_pages} pages"
            )
            return stats
        except SyncCancelled:
            logger.warning(f"Sync run {run.id} cancelled after {stats.processed_pages} pages")
            self.runs.finish(run.id, SyncStatus.FAILED, stats, CANCELLED_MESSAGE)
            return stats
        except FetchFailed as e:
            logger.error(f"Sync run {run.id} failed: {e}")
            self.runs.finish(run.id, SyncStatus.FAILED, stats, e.public_message)
            return stats
        except Exception as e:
            logger.exception(f"Sync run {run.id} failed with an unexpected error")
            self.runs.finish(run.id, SyncStatus.FAILED, stats, f"Unexpected error ({type(e).__name__})")
            if reraise:
                raise
            return stats

        self.runs.finish(run.id, SyncStatus.COMPLETED, stats)
        elapsed = time.monotonic() - started
        logger.info(
            f"Sync run {run.id} completed in {elapsed:.1f}s: "
            f"{stats.processed_records} records, {stats.new_records} new, "
            f"{stats.updated_records} updated, {stats.touched_records} unchanged, "
            f"{stats.failed_records} failed"
        )
        return stats

    def _process_page(self, page: BdnsPage, stats: SyncStats) -> SyncStats:
        """Reconcile and link every record of a page."""
        if self.record_workers > 1 and len(page.items) > 1:
            with ThreadPoolExecutor(max_workers=self.record_workers) as executor:
                outcomes = list(executor.map(self._process_item, page.items))
        else:
            outcomes = [self._process_item(item) for item in page.items]

        for outcome in outcomes:
            stats = stats.with_outcome(outcome)
        logger.debug(f"Page {page.page}: {len(page.items)} records processed")
        return stats

    def _process_item(self, item: Dict[str, Any]) -> Optional[ReconcileOutcome]:
        """
        Map, reconcile and link one API item.

        Returns:
            The reconcile outcome, or None when the record was rejected
        """
        code = item.get("codigo-BDNS") if isinstance(item, dict) else None
        try:
            record = map_convocatoria(item)
            fingerprint = fingerprint_convocatoria(item)
            result = self.grants.reconcile(record, fingerprint)
        except MappingError as e:
            logger.warning(f"Skipping unmappable item {code}: {e}")
            return None
        except WriteFailed as e:
            logger.warning(f"Skipping grant {e.bdns_code}: {e.reason}")
            return None

        self.normalizer.link_record(result.grant_id, record)
        return result.outcome
