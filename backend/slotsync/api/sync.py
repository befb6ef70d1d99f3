from fastapi import APIRouter, Depends

from ..usecases.sync_scheduler import SyncScheduler
from ..usecases.sync_connection import SyncResult
from .deps import get_sync_scheduler, require_cron_secret

router = APIRouter(prefix="/sync", tags=["sync"])


def _result_out(result: SyncResult) -> dict:
    return {
        "connectionId": result.connection_id,
        "success": result.success,
        "createdCount": result.created,
        "updatedCount": result.updated,
        "deletedCount": result.deleted,
        "skippedCount": result.skipped,
        "fullSync": result.full_sync,
        "state": result.state.value,
        "reason": result.failure_reason.value if result.failure_reason else None,
        "error": result.error,
    }


@router.post("/connections/{connection_id}")
def sync_connection(connection_id: str, scheduler: SyncScheduler = Depends(get_sync_scheduler)):
    """Manual trigger for one connection. Failures are reported in the body, not as HTTP errors."""
    return _result_out(scheduler.trigger(connection_id))


@router.post("/run", dependencies=[Depends(require_cron_secret)])
def run_sync_pass(scheduler: SyncScheduler = Depends(get_sync_scheduler)):
    summary = scheduler.run_pass()
    return {
        "attempted": summary.attempted,
        "succeeded": summary.succeeded,
        "failed": summary.failed,
        "createdCount": summary.created,
        "updatedCount": summary.updated,
        "deletedCount": summary.deleted,
        "errors": summary.errors,
        "startedAt": summary.started_at,
        "finishedAt": summary.finished_at,
    }
