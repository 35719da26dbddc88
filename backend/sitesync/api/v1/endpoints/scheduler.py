import json

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from sitesync.core.deps import get_scheduler, require_control_token
from sitesync.core.errors import UnknownJobError
from sitesync.jobs.scheduler import JobScheduler
from sitesync.schemas.common import ErrorBody
from sitesync.schemas.scheduler import (
    DisableRequest,
    EnableRequest,
    ListRequest,
    StatusRequest,
    TriggerRequest,
    scheduler_request_adapter,
)

router = APIRouter()


def _bad_request(message: str, details=None) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={'error_code': 'INVALID_REQUEST', 'message': message, 'details': details},
    )


def _job_not_found(exc: UnknownJobError) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={'error_code': exc.code, 'message': 'Job not found', 'details': {'jobName': exc.job_name}},
    )


@router.post(
    '',
    responses={400: {'model': ErrorBody}, 401: {'model': ErrorBody}, 404: {'model': ErrorBody}},
)
async def scheduler_control(
    request: Request,
    _auth=Depends(require_control_token),
    scheduler: JobScheduler = Depends(get_scheduler),
):
    raw = await request.body()
    try:
        payload = json.loads(raw or b'null')
    except ValueError:
        raise _bad_request('Body is not valid JSON')
    if not isinstance(payload, dict):
        raise _bad_request('Body must be a JSON object')
    try:
        command = scheduler_request_adapter.validate_python(payload)
    except ValidationError as exc:
        errors = [
            {'loc': [str(p) for p in err.get('loc', ())], 'msg': err.get('msg'), 'type': err.get('type')}
            for err in exc.errors()
        ]
        raise _bad_request('Invalid scheduler action', {'errors': errors})

    if isinstance(command, StatusRequest):
        return {'jobs': scheduler.status()}
    if isinstance(command, ListRequest):
        return {'jobs': scheduler.list_jobs()}
    if isinstance(command, (TriggerRequest, EnableRequest, DisableRequest)):
        try:
            scheduler.require(command.job_name)
        except UnknownJobError as exc:
            raise _job_not_found(exc)
    if isinstance(command, TriggerRequest):
        # Handlers block; run off the event loop.
        return await run_in_threadpool(scheduler.trigger, command.job_name)
    if isinstance(command, (EnableRequest, DisableRequest)):
        return scheduler.set_enabled(command.job_name, isinstance(command, EnableRequest))
    raise _bad_request('Unsupported action')
