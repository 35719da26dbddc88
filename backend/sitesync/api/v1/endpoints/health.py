from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text

from sitesync.core.deps import get_job_context
from sitesync.jobs.context import JobContext

router = APIRouter()


@router.get('/health')
def health(ctx: JobContext = Depends(get_job_context)):
    """
    Health check. Returns 200 with db_ok true when the local DB is reachable,
    503 otherwise. source_ok is True/False, or None when the source is not configured.
    """
    db_ok = False
    db = ctx.session_factory()
    try:
        db.execute(text('SELECT 1'))
        db_ok = True
    except Exception:
        pass
    finally:
        db.close()
    if not db_ok:
        return JSONResponse(
            status_code=503,
            content={
                'ok': False,
                'service': 'sitesync-api-v1',
                'db_ok': False,
                'source_ok': None,
                'message': 'Database unreachable',
            },
        )
    source_ok = ctx.source.ping() if ctx.source_configured else None
    return {
        'ok': True,
        'service': 'sitesync-api-v1',
        'db_ok': True,
        'source_ok': source_ok,
    }
