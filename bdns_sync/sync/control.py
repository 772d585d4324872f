"""
Control surface for sync runs.

Thin wrappers around SyncOrchestrator that never raise: every call returns a
ControlResponse with a human-readable message. Internal error text stays in
the logs.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict

from bdns_sync.core.domain_models import SyncStatus
from bdns_sync.core.errors import ConflictError
from .orchestrator import SyncOrchestrator


logger = logging.getLogger(__name__)


@dataclass
class ControlResponse:
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message, "data": self.data}


def start_sync(orchestrator: SyncOrchestrator, sync_type: Any = "incremental", background: bool = True) -> ControlResponse:
    """
    Start a sync run.

    Args:
        orchestrator: Orchestrator owning the run
        sync_type: incremental, full or complete
        background: Return immediately (True) or run inline

    Returns:
        ControlResponse; data carries run_id, sync_type and the date range
    """
    previous_run_id = orchestrator.last_run_id
    try:
        handle = orchestrator.start(sync_type, background=background)
    except ConflictError as e:
        data = {"active_run_id": e.active_run_id} if e.active_run_id is not None else {}
        return ControlResponse(False, "A sync is already running", data)
    except ValueError:
        return ControlResponse(False, f"Invalid sync type: {sync_type}")
    except Exception:
        logger.exception("Failed to start sync")
        run_id = orchestrator.last_run_id
        if run_id is None or run_id == previous_run_id:
            return ControlResponse(False, "Failed to start sync")

        # The run was claimed and then failed inline
        run = orchestrator.runs.get_run(run_id)
        data = {"run_id": run.id, "sync_type": run.sync_type.value, "status": run.status.value}
        return ControlResponse(False, f"Sync {run.id} failed", data)

    data = {
        "run_id": handle.run_id,
        "sync_type": handle.sync_type.value,
        "fecha_desde": handle.date_range.desde,
        "fecha_hasta": handle.date_range.hasta,
    }
    if background:
        return ControlResponse(True, f"Sync {handle.run_id} started ({handle.sync_type.value})", data)

    run = orchestrator.runs.get_run(handle.run_id)
    data["status"] = run.status.value
    if run.status == SyncStatus.COMPLETED:
        return ControlResponse(True, f"Sync {handle.run_id} completed", data)
    return ControlResponse(False, f"Sync {handle.run_id} failed", data)


def stop_sync(orchestrator: SyncOrchestrator) -> ControlResponse:
    """Request cancellation of the background run."""
    try:
        stopped = orchestrator.stop()
    except Exception:
        logger.exception("Failed to stop sync")
        return ControlResponse(False, "Failed to stop sync")

    if not stopped:
        return ControlResponse(False, "No sync is running")
    return ControlResponse(True, "Stop requested")


def sync_status(orchestrator: SyncOrchestrator) -> ControlResponse:
    """Latest run, running or terminal, plus registry statistics."""
    try:
        run = orchestrator.status()
        statistics = orchestrator.grants.get_statistics()
    except Exception:
        logger.exception("Failed to read sync status")
        return ControlResponse(False, "Failed to read sync status")

    if run is None:
        return ControlResponse(True, "No sync has run yet", {"run": None, "statistics": statistics})

    return ControlResponse(
        True,
        f"Sync {run.id} is {run.status.value}",
        {"run": run.to_dict(), "statistics": statistics},
    )


def list_active_syncs(orchestrator: SyncOrchestrator) -> ControlResponse:
    try:
        runs = orchestrator.active_runs()
    except Exception:
        logger.exception("Failed to list active syncs")
        return ControlResponse(False, "Failed to list active syncs")

    return ControlResponse(
        True,
        f"{len(runs)} active sync(s)",
        {"runs": [run.to_dict() for run in runs]},
    )
