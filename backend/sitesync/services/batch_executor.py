"""
Chunked atomic writes. Each chunk of operations runs in its own session and is committed
once; a failing chunk is rolled back and reported without stopping the remaining chunks.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from sqlalchemy.orm import Session

from sitesync.core.errors import AllChunksFailedError

DEFAULT_CHUNK_SIZE = 100

WriteOp = Callable[[Session], None]

logger = logging.getLogger(__name__)


@dataclass
class ChunkError:
    chunk_index: int
    error: str
    op_count: int = 0


@dataclass
class BatchResult:
    total_ops: int = 0
    completed_ops: int = 0
    failed_chunks: int = 0
    errors: list[ChunkError] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.failed_chunks > 0


def chunk_list(items: Sequence, size: int) -> list[list]:
    if size <= 0:
        raise ValueError('chunk size must be positive')
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def execute_chunked(
    session_factory: Callable[[], Session],
    operations: Sequence[WriteOp],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> BatchResult:
    chunks = chunk_list(operations, chunk_size)
    result = BatchResult(total_ops=len(operations))
    if not chunks:
        return result

    for index, chunk in enumerate(chunks):
        db = session_factory()
        try:
            for op in chunk:
                op(db)
            db.commit()
            result.completed_ops += len(chunk)
        except Exception as exc:
            db.rollback()
            result.failed_chunks += 1
            result.errors.append(ChunkError(chunk_index=index, error=str(exc), op_count=len(chunk)))
            logger.error('batch chunk %s/%s failed (%s ops): %s', index + 1, len(chunks), len(chunk), exc)
        finally:
            db.close()

    if result.failed_chunks == len(chunks):
        raise AllChunksFailedError(f'all {len(chunks)} batch chunks failed', result=result)
    return result
