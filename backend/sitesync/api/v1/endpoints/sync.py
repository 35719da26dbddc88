from fastapi import APIRouter, Depends, Query

from sitesync.core.deps import get_job_context, require_control_token
from sitesync.jobs.context import JobContext
from sitesync.schemas.sync import SyncFailureOut, SyncStatusOut
from sitesync.services.sync_failures import recent_failures
from sitesync.services.sync_jobs import sync_status

router = APIRouter()


@router.get('/status', response_model=SyncStatusOut)
def get_sync_status(
    _auth=Depends(require_control_token),
    ctx: JobContext = Depends(get_job_context),
):
    return sync_status(ctx)


@router.get('/failures', response_model=list[SyncFailureOut])
def list_sync_failures(
    limit: int = Query(default=50, ge=1, le=500),
    _auth=Depends(require_control_token),
    ctx: JobContext = Depends(get_job_context),
):
    """Most recent failure records first."""
    return recent_failures(ctx.session_factory, limit=limit)
