from __future__ import annotations

from typing import Any


class SyncError(Exception):
    code = 'SYNC_ERROR'

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class SourceUnavailableError(SyncError):
    """The external source of record did not answer a bounded ping."""

    code = 'SOURCE_UNREACHABLE'


class AllChunksFailedError(SyncError):
    code = 'ALL_CHUNKS_FAILED'

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class UnknownJobError(SyncError):
    code = 'UNKNOWN_JOB'

    def __init__(self, job_name: str) -> None:
        super().__init__(f'Job not found: {job_name}')
        self.job_name = job_name


def error_code_of(exc: BaseException, default: str = 'UNKNOWN') -> str:
    code = getattr(exc, 'code', None)
    if isinstance(code, str) and code.strip():
        return code
    return default
