from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class _JobAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_name: str = Field(alias='jobName', min_length=1, max_length=64)

    @field_validator('job_name')
    @classmethod
    def validate_job_name(cls, value: str) -> str:
        normalized = str(value or '').strip()
        if not normalized:
            raise ValueError('jobName is required')
        return normalized


class StatusRequest(BaseModel):
    action: Literal['status']


class ListRequest(BaseModel):
    action: Literal['list']


class TriggerRequest(_JobAction):
    action: Literal['trigger']


class EnableRequest(_JobAction):
    action: Literal['enable']


class DisableRequest(_JobAction):
    action: Literal['disable']


SchedulerRequest = Annotated[
    Union[StatusRequest, ListRequest, TriggerRequest, EnableRequest, DisableRequest],
    Field(discriminator='action'),
]
scheduler_request_adapter = TypeAdapter(SchedulerRequest)


class JobsOut(BaseModel):
    jobs: list[dict[str, Any]]


class TriggerOut(BaseModel):
    ok: bool
    error: str | None = None


class EnableOut(BaseModel):
    ok: bool
    jobName: str | None = None
    enabled: bool | None = None
