"""
Canonical domain models for the BDNS sync pipeline.

These models represent the normalized data structures shared by the mapper,
the storage layer and the orchestrator.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple


class SyncType(str, Enum):
    """
    Kind of sync run.

    INCREMENTAL: last week of registrations
    FULL: current calendar year
    COMPLETE: whole registry history
    """
    INCREMENTAL = "incremental"
    FULL = "full"
    COMPLETE = "complete"


class SyncStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ReconcileOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    TOUCHED = "touched"


class ClassificationKind(str, Enum):
    """Classification tables derived from legacy payloads."""
    SECTOR = "sector"
    INSTRUMENT = "instrument"
    REGION = "region"


@dataclass
class GrantRecord:
    """
    Canonical grant announcement (convocatoria).

    Produced by the record mapper from one BDNS API item. Legacy
    classification payloads are kept verbatim for the junction normalizer.
    """
    # Required fields
    bdns_code: str
    title: str
    organ_description: str

    # Optional descriptive fields
    title_co_official: Optional[str] = None
    organ_dir3: Optional[str] = None

    # Dates
    registration_date: Optional[date] = None
    modification_date: Optional[date] = None
    application_start: Optional[date] = None
    application_end: Optional[date] = None
    is_open: bool = False

    # Funding
    financing: List[Dict[str, Any]] = field(default_factory=list)
    total_amount: float = 0.0

    # Legacy classification payloads (array, object or string)
    beneficiary_types: Any = None
    purpose: Any = None
    instruments: Any = None
    sectors: Any = None
    regions: Any = None

    # Regulatory base and links
    regulatory_base_description: Optional[str] = None
    regulatory_base_url: Optional[str] = None
    eu_fund: Optional[str] = None
    permalink: Optional[str] = None
    permalink_awards: Optional[str] = None

    # Fields filled from documented fallbacks
    degraded_fields: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ReconcileResult:
    """Result of reconciling one record against the grants table."""
    outcome: ReconcileOutcome
    grant_id: int


@dataclass(frozen=True)
class ClassificationRef:
    """A (code, name) candidate extracted from a legacy payload."""
    code: str
    name: str


@dataclass(frozen=True)
class LinkSummary:
    """Links created (or confirmed) for one grant."""
    sectors: int = 0
    instruments: int = 0
    regions: int = 0

    @property
    def total(self) -> int:
        return self.sectors + self.instruments + self.regions


@dataclass(frozen=True)
class SyncStats:
    """
    Run statistics.

    Immutable: every update returns a new value, so the orchestrator owns
    the only copy and persists it through the run tracker.
    """
    processed_pages: int = 0
    processed_records: int = 0
    new_records: int = 0
    updated_records: int = 0
    touched_records: int = 0
    failed_records: int = 0

    def with_outcome(self, outcome: Optional[ReconcileOutcome]) -> "SyncStats":
        """
        Count one processed record.

        Args:
            outcome: Reconcile outcome, or None when the record failed

        Returns:
            New SyncStats
        """
        if outcome is None:
            return replace(self, failed_records=self.failed_records + 1)

        stats = replace(self, processed_records=self.processed_records + 1)
        if outcome == ReconcileOutcome.INSERTED:
            return replace(stats, new_records=stats.new_records + 1)
        if outcome == ReconcileOutcome.UPDATED:
            return replace(stats, updated_records=stats.updated_records + 1)
        return replace(stats, touched_records=stats.touched_records + 1)

    def with_page(self) -> "SyncStats":
        return replace(self, processed_pages=self.processed_pages + 1)

    def as_dict(self) -> Dict[str, int]:
        return {
            "processed_pages": self.processed_pages,
            "processed_records": self.processed_records,
            "new_records": self.new_records,
            "updated_records": self.updated_records,
            "touched_records": self.touched_records,
            "failed_records": self.failed_records,
        }


@dataclass
class SyncRun:
    """One execution of the ingestion pipeline, as persisted."""
    id: int
    sync_type: SyncType
    status: SyncStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    heartbeat_at: Optional[datetime] = None
    total_pages: Optional[int] = None
    total_records: Optional[int] = None
    stats: SyncStats = field(default_factory=SyncStats)
    parameters: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status == SyncStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "sync_type": self.sync_type.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "heartbeat_at": self.heartbeat_at.isoformat() if self.heartbeat_at else None,
            "total_pages": self.total_pages,
            "total_records": self.total_records,
            "parameters": self.parameters,
            "error_message": self.error_message,
        }
        data.update(self.stats.as_dict())
        return data
