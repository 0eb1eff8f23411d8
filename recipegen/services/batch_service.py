"""Batch submission and chunk scheduling."""
import logging
from dataclasses import dataclass

from flask import current_app
from recipegen import extensions
from recipegen.extensions import db
from recipegen.models.audit_log import AuditLog
from recipegen.models.batch import GenerationBatch
from recipegen.schemas import GenerationRequest
from recipegen.services import progress_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkSpec:
    """One bounded sub-batch, dispatched as a unit through the pipeline."""

    batch_id: str
    index: int  # 0-based
    start: int  # number of recipes requested by earlier chunks
    count: int
    total_chunks: int
    options: GenerationRequest

    @property
    def number(self):
        return self.index + 1


def schedule(batch_id, requested_count, chunk_size=5, options=None):
    """Split a batch into ordered chunks of at most ``chunk_size`` recipes."""
    if requested_count <= 0:
        raise ValueError("requested_count must be positive")
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if options is None:
        options = GenerationRequest(count=requested_count)

    total_chunks = -(-requested_count // chunk_size)
    chunks = []
    start = 0
    for index in range(total_chunks):
        count = min(chunk_size, requested_count - start)
        chunks.append(
            ChunkSpec(
                batch_id=batch_id,
                index=index,
                start=start,
                count=count,
                total_chunks=total_chunks,
                options=options,
            )
        )
        start += count
    return chunks


def effective_chunk_size(request):
    limit = current_app.config["CHUNK_SIZE"]
    if request.chunk_size:
        return min(request.chunk_size, limit)
    return limit


def create_batch(request, submitted_by=None):
    """Persist a new running batch and open its progress state."""
    if not isinstance(request, GenerationRequest):
        request = GenerationRequest.model_validate(request)

    max_count = current_app.config["MAX_BATCH_COUNT"]
    if request.count > max_count:
        raise ValueError(f"Maximum {max_count} recipes per batch")

    chunk_size = effective_chunk_size(request)
    batch = GenerationBatch(
        requested_count=request.count,
        chunk_size=chunk_size,
        status="running",
        options=request.model_dump(),
        submitted_by=submitted_by,
    )
    db.session.add(batch)
    db.session.flush()

    if submitted_by:
        db.session.add(
            AuditLog(
                admin_id=submitted_by,
                action="SUBMIT_BATCH",
                batch_id=batch.id,
                payload={"count": request.count, "chunk_size": chunk_size},
            )
        )
    db.session.commit()

    total_chunks = len(schedule(batch.id, request.count, chunk_size, request))
    progress_service.broadcaster().start(batch.id, request.count, total_chunks)
    logger.info(
        "Batch %s created: %d recipes in %d chunks",
        batch.id,
        request.count,
        total_chunks,
    )
    return batch


def submit_batch(request, submitted_by=None):
    """Create a batch and hand it to a background worker.

    Returns the batch immediately; progress is observed on the stream.
    """
    batch = create_batch(request, submitted_by=submitted_by)
    extensions.task_queue.enqueue(
        "recipegen.workers.batch_generation.run_batch",
        batch_id=batch.id,
        job_id=f"batch_{batch.id}",
        job_timeout=60 * 60,
    )
    return batch


def get_batch(batch_id):
    return db.session.get(GenerationBatch, batch_id)


def request_for(batch):
    """Rebuild the submitted request from the stored batch options."""
    return GenerationRequest.model_validate(batch.options or {"count": batch.requested_count})
