import secrets
from threading import Lock

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from sitesync.core.config import settings
from sitesync.jobs.context import JobContext
from sitesync.jobs.scheduler import JobScheduler

bearer_scheme = HTTPBearer(auto_error=False)
_state_lock = Lock()


def require_control_token(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> None:
    expected = str(settings.scheduler_control_token or '').strip()
    if not expected:
        return
    provided = credentials.credentials if credentials is not None else ''
    if not secrets.compare_digest(provided.encode('utf-8'), expected.encode('utf-8')):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={'error_code': 'UNAUTHORIZED', 'message': 'Missing or invalid control token', 'details': None},
        )


def get_scheduler(request: Request) -> JobScheduler:
    scheduler = getattr(request.app.state, 'scheduler', None)
    if scheduler is None:
        from sitesync.jobs.runtime import build_scheduler

        with _state_lock:
            scheduler = getattr(request.app.state, 'scheduler', None)
            if scheduler is None:
                scheduler = build_scheduler()
                request.app.state.scheduler = scheduler
    return scheduler


def get_job_context(scheduler: JobScheduler = Depends(get_scheduler)) -> JobContext:
    return scheduler.ctx
