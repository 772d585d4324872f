"""
Junction normalization for sectors, instruments and regions.

Turns a grant's legacy classification payloads into classification rows
(created lazily) and grant_* junction rows.
"""

import logging
import sqlite3
from typing import Dict, List, Optional

from tqdm import tqdm

from bdns_sync.core.domain_models import (
    ClassificationKind,
    ClassificationRef,
    GrantRecord,
    LinkSummary,
)
from bdns_sync.core.errors import ClassificationError
from bdns_sync.core.time_utils import now_utc
from bdns_sync.normalize.classifications import extract_refs, load_stored_payload
from .db import Database
from .grant_store import GrantStore


logger = logging.getLogger(__name__)


# kind → (classification table, junction table, junction foreign key)
TABLES = {
    ClassificationKind.SECTOR: ("sectors", "grant_sectors", "sector_id"),
    ClassificationKind.INSTRUMENT: ("instruments", "grant_instruments", "instrument_id"),
    ClassificationKind.REGION: ("regions", "grant_regions", "region_id"),
}


def record_payloads(record: GrantRecord) -> Dict[ClassificationKind, object]:
    """Legacy payloads of a record, keyed by the table they feed."""
    return {
        ClassificationKind.SECTOR: record.sectors,
        ClassificationKind.INSTRUMENT: record.instruments,
        ClassificationKind.REGION: record.regions,
    }


class JunctionNormalizer:
    """
    Derives classification links for grants.

    Usage:
        normalizer = JunctionNormalizer(db)
        summary = normalizer.link_record(grant_id, record)
    """

    def __init__(self, db: Database):
        self.db = db

    def link_record(self, grant_id: int, record: GrantRecord) -> LinkSummary:
        """
        Link one grant to its sectors, instruments and regions.

        All links for the grant are written in one transaction. A malformed
        payload or constraint failure rolls the whole grant back to zero
        links; the error is logged and never raised.

        Args:
            grant_id: Row id of the grant
            record: Record carrying the legacy payloads

        Returns:
            LinkSummary (all zeros when linking failed)
        """
        return self.link_payloads(grant_id, record.bdns_code, record_payloads(record))

    def link_payloads(
        self,
        grant_id: int,
        bdns_code: str,
        payloads: Dict[ClassificationKind, object],
    ) -> LinkSummary:
        try:
            refs = {kind: extract_refs(payload, kind) for kind, payload in payloads.items()}

            counts = {}
            with self.db.get_connection(immediate=True) as conn:
                for kind, kind_refs in refs.items():
                    for ref in kind_refs:
                        classification_id = self._get_or_create(conn, kind, ref)
                        self._link(conn, kind, grant_id, classification_id)
                    counts[kind] = len(kind_refs)

        except (ClassificationError, sqlite3.IntegrityError) as e:
            logger.warning(f"Grant {bdns_code}: classification links skipped ({e})")
            return LinkSummary()

        return LinkSummary(
            sectors=counts.get(ClassificationKind.SECTOR, 0),
            instruments=counts.get(ClassificationKind.INSTRUMENT, 0),
            regions=counts.get(ClassificationKind.REGION, 0),
        )

    def _find(self, conn, table: str, ref: ClassificationRef) -> Optional[int]:
        row = conn.execute(
            f"""
            SELECT id FROM {table}
            WHERE (code = ? AND code <> '') OR name = ?
            ORDER BY id
            LIMIT 1
            """,
            (ref.code, ref.name),
        ).fetchone()
        return row["id"] if row else None

    def _get_or_create(self, conn, kind: ClassificationKind, ref: ClassificationRef) -> int:
        """
        Find a classification by code (when non-empty) or name, creating it
        when absent.

        A duplicate-key error on insert means another writer created it
        first; the row is read again.
        """
        table = TABLES[kind][0]

        existing = self._find(conn, table, ref)
        if existing is not None:
            return existing

        try:
            cursor = conn.execute(
                f"""
                INSERT INTO {table} (code, name, description, is_active, created_at)
                VALUES (?, ?, ?, 1, ?)
                """,
                (ref.code, ref.name, ref.name, now_utc().isoformat()),
            )
            logger.debug(f"Created {kind.value}: {ref.code or '-'} {ref.name}")
            return cursor.lastrowid
        except sqlite3.IntegrityError:
            existing = self._find(conn, table, ref)
            if existing is None:
                raise
            return existing

    def _link(self, conn, kind: ClassificationKind, grant_id: int, classification_id: int):
        _, junction, column = TABLES[kind]
        conn.execute(
            f"INSERT OR IGNORE INTO {junction} (grant_id, {column}) VALUES (?, ?)",
            (grant_id, classification_id),
        )

    def link(self, kind: ClassificationKind, grant_id: int, classification_id: int):
        """Insert one junction row; an existing pair is left untouched."""
        with self.db.get_connection() as conn:
            self._link(conn, kind, grant_id, classification_id)

    def get_or_create(self, kind: ClassificationKind, ref: ClassificationRef) -> int:
        with self.db.get_connection(immediate=True) as conn:
            return self._get_or_create(conn, kind, ref)

    def classifications_for(self, grant_id: int) -> Dict[ClassificationKind, List[ClassificationRef]]:
        """
        Classifications linked to a grant.

        Returns:
            {kind: [ClassificationRef, ...]} ordered by name
        """
        result = {}
        with self.db.get_connection() as conn:
            for kind, (table, junction, column) in TABLES.items():
                rows = conn.execute(
                    f"""
                    SELECT c.code, c.name
                    FROM {junction} j
                    JOIN {table} c ON c.id = j.{column}
                    WHERE j.grant_id = ?
                    ORDER BY c.name
                    """,
                    (grant_id,),
                ).fetchall()
                result[kind] = [ClassificationRef(code=r["code"], name=r["name"]) for r in rows]
        return result

    def backfill(self, grant_store: GrantStore, batch_size: int = 500, progress: bool = False) -> Dict[str, int]:
        """
        Re-derive links for every stored grant from its legacy payloads.

        Args:
            grant_store: Store to read legacy payloads from
            batch_size: Grants read per query
            progress: Show a tqdm progress bar

        Returns:
            dict with processed/failed grant counts and link totals
        """
        stats = {"grants": 0, "failed": 0, "sectors": 0, "instruments": 0, "regions": 0}

        rows = grant_store.iter_legacy_payloads(batch_size=batch_size)
        if progress:
            rows = tqdm(rows, total=grant_store.count(), desc="Linking grants", unit="grant")

        for grant_id, bdns_code, stored in rows:
            try:
                payloads = {kind: load_stored_payload(text) for kind, text in stored.items()}
            except ClassificationError as e:
                logger.warning(f"Grant {bdns_code}: classification links skipped ({e})")
                stats["failed"] += 1
                continue

            summary = self.link_payloads(grant_id, bdns_code, payloads)
            stats["grants"] += 1
            stats["sectors"] += summary.sectors
            stats["instruments"] += summary.instruments
            stats["regions"] += summary.regions

        logger.info(
            f"Backfill complete: {stats['grants']} grants, "
            f"{stats['sectors']} sector / {stats['instruments']} instrument / "
            f"{stats['regions']} region links"
        )
        return stats
