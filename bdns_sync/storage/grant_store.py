"""
Storage layer for GrantRecord objects.

Handles:
- Reconciling fetched records (insert / update / touch)
- Retrieving grants by BDNS code
- Listing grants and registry statistics for readers
"""

import json
import logging
import sqlite3
from datetime import date
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bdns_sync.core.domain_models import (
    ClassificationKind,
    GrantRecord,
    ReconcileOutcome,
    ReconcileResult,
)
from bdns_sync.core.errors import WriteFailed
from bdns_sync.core.time_utils import now_utc
from bdns_sync.normalize.fingerprint import Fingerprint, HashChangeDetector
from .db import Database


logger = logging.getLogger(__name__)


# Columns rewritten on insert and update (everything but identity/timestamps)
MUTABLE_COLUMNS = (
    "title",
    "title_co_official",
    "organ_description",
    "organ_dir3",
    "registration_date",
    "modification_date",
    "application_start",
    "application_end",
    "is_open",
    "total_amount",
    "financing_json",
    "purpose_json",
    "instruments_json",
    "sectors_json",
    "regions_json",
    "beneficiary_types_json",
    "regulatory_base_description",
    "regulatory_base_url",
    "eu_fund",
    "permalink",
    "permalink_awards",
    "content_hash",
)

LEGACY_PAYLOAD_COLUMNS = {
    ClassificationKind.SECTOR: "sectors_json",
    ClassificationKind.INSTRUMENT: "instruments_json",
    ClassificationKind.REGION: "regions_json",
}


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _json_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


class GrantStore:
    """
    Persistent storage for GrantRecord objects.

    Usage:
        store = GrantStore(Database("bdns.db"))
        result = store.reconcile(record, fingerprint)
        record = store.get_grant(record.bdns_code)
    """

    def __init__(self, db: Database, change_detector=None):
        """
        Initialize grant store.

        Args:
            db: Shared Database
            change_detector: Strategy deciding update vs touch
                (defaults to content hash comparison)
        """
        self.db = db
        self.change_detector = change_detector or HashChangeDetector()

    def reconcile(self, record: GrantRecord, fingerprint: Fingerprint) -> ReconcileResult:
        """
        Insert, update or touch one grant.

        - no row for bdns_code: insert everything → INSERTED
        - row exists and differs: rewrite mutable columns → UPDATED
        - row exists and matches: refresh last_synced_at only → TOUCHED

        Runs in a single immediate transaction, so concurrent reconciles of
        the same code serialize instead of racing.

        Args:
            record: Mapped record
            fingerprint: Fingerprint of the raw item

        Returns:
            ReconcileResult with the outcome and the grant's row id

        Raises:
            WriteFailed: On constraint or binding errors for this record
        """
        now = now_utc().isoformat()

        try:
            with self.db.get_connection(immediate=True) as conn:
                existing = conn.execute(
                    """
                    SELECT id, content_hash, modification_date
                    FROM grants WHERE bdns_code = ?
                    """,
                    (record.bdns_code,),
                ).fetchone()

                if existing is None:
                    grant_id = self._insert(conn, record, fingerprint, now)
                    return ReconcileResult(ReconcileOutcome.INSERTED, grant_id)

                grant_id = existing["id"]
                stored_modified = (
                    date.fromisoformat(existing["modification_date"])
                    if existing["modification_date"]
                    else None
                )

                if self.change_detector.is_changed(
                    existing["content_hash"], stored_modified, fingerprint
                ):
                    self._update(conn, grant_id, record, fingerprint, now)
                    return ReconcileResult(ReconcileOutcome.UPDATED, grant_id)

                conn.execute(
                    "UPDATE grants SET last_synced_at = ? WHERE id = ?",
                    (now, grant_id),
                )
                return ReconcileResult(ReconcileOutcome.TOUCHED, grant_id)

        except (sqlite3.IntegrityError, sqlite3.InterfaceError, TypeError, ValueError) as e:
            raise WriteFailed(record.bdns_code, str(e)) from e

    def _column_values(self, record: GrantRecord, fingerprint: Fingerprint) -> Dict[str, Any]:
        return {
            "title": record.title,
            "title_co_official": record.title_co_official,
            "organ_description": record.organ_description,
            "organ_dir3": record.organ_dir3,
            "registration_date": _iso(record.registration_date),
            "modification_date": _iso(record.modification_date),
            "application_start": _iso(record.application_start),
            "application_end": _iso(record.application_end),
            "is_open": 1 if record.is_open else 0,
            "total_amount": record.total_amount,
            "financing_json": json.dumps(record.financing or [], ensure_ascii=False),
            "purpose_json": _json_or_none(record.purpose),
            "instruments_json": _json_or_none(record.instruments),
            "sectors_json": _json_or_none(record.sectors),
            "regions_json": _json_or_none(record.regions),
            "beneficiary_types_json": _json_or_none(record.beneficiary_types),
            "regulatory_base_description": record.regulatory_base_description,
            "regulatory_base_url": record.regulatory_base_url,
            "eu_fund": record.eu_fund,
            "permalink": record.permalink,
            "permalink_awards": record.permalink_awards,
            "content_hash": fingerprint.digest,
        }

    def _insert(self, conn, record: GrantRecord, fingerprint: Fingerprint, now: str) -> int:
        values = self._column_values(record, fingerprint)
        values.update(
            bdns_code=record.bdns_code, created_at=now, updated_at=now, last_synced_at=now
        )
        columns = ", ".join(values)
        placeholders = ", ".join(f":{name}" for name in values)

        cursor = conn.execute(
            f"INSERT INTO grants ({columns}) VALUES ({placeholders})", values
        )
        logger.debug(f"Inserted grant: {record.bdns_code}")
        return cursor.lastrowid

    def _update(self, conn, grant_id: int, record: GrantRecord, fingerprint: Fingerprint, now: str):
        values = self._column_values(record, fingerprint)
        assignments = ", ".join(f"{name} = :{name}" for name in MUTABLE_COLUMNS)
        values.update(id=grant_id, now=now)

        conn.execute(
            f"""
            UPDATE grants SET {assignments},
                updated_at = :now,
                last_synced_at = :now
            WHERE id = :id
            """,
            values,
        )
        logger.debug(f"Updated grant: {record.bdns_code}")

    def exists(self, bdns_code: str) -> bool:
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM grants WHERE bdns_code = ? LIMIT 1", (bdns_code,)
            ).fetchone()
            return row is not None

    def count(self) -> int:
        with self.db.get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM grants").fetchone()[0]

    def get_grant(self, bdns_code: str) -> Optional[GrantRecord]:
        """
        Retrieve grant by BDNS code.

        Returns:
            GrantRecord or None if not found
        """
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM grants WHERE bdns_code = ? LIMIT 1", (bdns_code,)
            ).fetchone()
            if not row:
                return None
            return self._row_to_record(row)

    def get_sync_metadata(self, bdns_code: str) -> Optional[Dict[str, Any]]:
        """Row id, content hash and timestamps for one grant."""
        with self.db.get_connection() as conn:
            row = conn.execute(
                """
                SELECT id, content_hash, created_at, updated_at, last_synced_at
                FROM grants WHERE bdns_code = ?
                """,
                (bdns_code,),
            ).fetchone()
            return dict(row) if row else None

    def list_grants(
        self,
        limit: int = 100,
        offset: int = 0,
        open_only: bool = False
    ) -> List[GrantRecord]:
        """
        List grants with pagination, most recently registered first.

        Args:
            limit: Maximum number of grants to return
            offset: Number of grants to skip
            open_only: If True, only return grants open for applications

        Returns:
            List of GrantRecord objects
        """
        with self.db.get_connection() as conn:
            query = "SELECT * FROM grants"
            params: List[Any] = []

            if open_only:
                query += " WHERE is_open = 1"

            query += " ORDER BY registration_date DESC, id DESC LIMIT ? OFFSET ?"
            params.extend([limit, offset])

            rows = conn.execute(query, params).fetchall()
            return [self._row_to_record(row) for row in rows]

    def iter_legacy_payloads(
        self, batch_size: int = 500
    ) -> Iterator[Tuple[int, str, Dict[ClassificationKind, Optional[str]]]]:
        """
        Iterate stored legacy classification payloads, in id order.

        Reads in keyset batches so no connection stays open between batches.

        Yields:
            (grant_id, bdns_code, {kind: stored JSON text})
        """
        last_id = 0
        while True:
            with self.db.get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT id, bdns_code, sectors_json, instruments_json, regions_json
                    FROM grants
                    WHERE id > ?
                      AND (sectors_json IS NOT NULL
                           OR instruments_json IS NOT NULL
                           OR regions_json IS NOT NULL)
                    ORDER BY id
                    LIMIT ?
                    """,
                    (last_id, batch_size),
                ).fetchall()

            if not rows:
                return

            for row in rows:
                payloads = {
                    kind: row[column] for kind, column in LEGACY_PAYLOAD_COLUMNS.items()
                }
                yield row["id"], row["bdns_code"], payloads
            last_id = rows[-1]["id"]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Registry-wide statistics for dashboards.

        Returns:
            dict with totals, open count, date bounds, issuing bodies,
            average/total amount and the latest sync timestamp
        """
        with self.db.get_connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_grants,
                    COALESCE(SUM(is_open), 0) AS open_grants,
                    MIN(registration_date) AS oldest_registration,
                    MAX(registration_date) AS newest_registration,
                    COUNT(DISTINCT organ_description) AS total_organs,
                    COALESCE(AVG(total_amount), 0) AS average_amount,
                    COALESCE(SUM(total_amount), 0) AS total_amount,
                    MAX(last_synced_at) AS last_synced_at
                FROM grants
                """
            ).fetchone()
            return dict(row)

    def _row_to_record(self, row) -> GrantRecord:
        """
        Convert database row to GrantRecord.

        Args:
            row: SQLite row

        Returns:
            GrantRecord
        """
        def parse_date(s: Optional[str]) -> Optional[date]:
            return date.fromisoformat(s) if s else None

        def parse_json(s: Optional[str]) -> Any:
            return json.loads(s) if s else None

        return GrantRecord(
            bdns_code=row["bdns_code"],
            title=row["title"],
            organ_description=row["organ_description"],
            title_co_official=row["title_co_official"],
            organ_dir3=row["organ_dir3"],
            registration_date=parse_date(row["registration_date"]),
            modification_date=parse_date(row["modification_date"]),
            application_start=parse_date(row["application_start"]),
            application_end=parse_date(row["application_end"]),
            is_open=bool(row["is_open"]),
            financing=parse_json(row["financing_json"]) or [],
            total_amount=row["total_amount"],
            beneficiary_types=parse_json(row["beneficiary_types_json"]),
            purpose=parse_json(row["purpose_json"]),
            instruments=parse_json(row["instruments_json"]),
            sectors=parse_json(row["sectors_json"]),
            regions=parse_json(row["regions_json"]),
            regulatory_base_description=row["regulatory_base_description"],
            regulatory_base_url=row["regulatory_base_url"],
            eu_fund=row["eu_fund"],
            permalink=row["permalink"],
            permalink_awards=row["permalink_awards"],
        )
