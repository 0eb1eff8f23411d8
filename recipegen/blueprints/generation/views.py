import json
import logging
from flask import Response, current_app, g, request
from pydantic import ValidationError

from recipegen.blueprints.generation import generation_bp
from recipegen.schemas import GenerationRequest
from recipegen.services import batch_service, progress_service

logger = logging.getLogger(__name__)


def _sse(event_type, payload):
    """Format one server-sent event. The sequence number becomes the SSE id."""
    data = dict(payload)
    seq = data.pop("seq", None)
    lines = []
    if seq is not None:
        lines.append(f"id: {seq}")
    lines.append(f"event: {event_type}")
    lines.append(f"data: {json.dumps(data, default=str)}")
    return "\n".join(lines) + "\n\n"


@generation_bp.route("/batches", methods=["POST"])
def submit():
    """Accept a generation request and start the batch in the background."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return {"error": "Expected a JSON object"}, 400

    try:
        generation_request = GenerationRequest.model_validate(body)
        batch = batch_service.submit_batch(
            generation_request, submitted_by=g.admin_id
        )
    except ValidationError as e:
        return {
            "error": "Invalid generation request",
            "details": e.errors(include_url=False, include_context=False),
        }, 400
    except ValueError as e:
        return {"error": str(e)}, 400

    logger.info("Batch %s submitted by %s", batch.id, g.admin_id)
    return {"batchId": batch.id}, 202


@generation_bp.route("/batches/<batch_id>")
def get_batch(batch_id):
    batch = batch_service.get_batch(batch_id)
    if not batch:
        return {"error": "Batch not found"}, 404

    state = progress_service.broadcaster().snapshot(batch_id)
    return {
        "batch": batch.to_dict(),
        "progress": state.progress_event() if state else None,
    }


def _events_from_record(batch):
    """Progress rebuilt from the batch row once the live state is gone."""
    progress = {
        "type": "progress",
        "batchId": batch.id,
        "phase": batch.status if batch.is_terminal else "unknown",
        "status": batch.status,
        "totalRequested": batch.requested_count,
        "recipesCompleted": batch.recipes_completed,
        "errors": batch.error_log or [],
    }
    yield _sse("progress", progress)
    if batch.is_terminal:
        yield _sse(
            batch.status,
            {
                "type": batch.status,
                "batchId": batch.id,
                "recipesCompleted": batch.recipes_completed,
                "totalRequested": batch.requested_count,
                "message": batch.message or "",
                "errors": batch.error_log or [],
            },
        )


@generation_bp.route("/batches/<batch_id>/stream")
def stream(batch_id):
    """Server-Sent Events stream of batch progress.

    A client that reconnects gets the full current state first, then live
    events, so no reconnect ever rewinds the counters.
    """
    batch = batch_service.get_batch(batch_id)
    if not batch:
        return {"error": "Batch not found"}, 404

    broadcaster = progress_service.broadcaster()
    live = broadcaster.snapshot(batch_id) is not None
    record_events = None if live else list(_events_from_record(batch))
    poll_interval = current_app.config["STREAM_POLL_INTERVAL"]
    keepalive = current_app.config["STREAM_KEEPALIVE_INTERVAL"]

    def generate():
        yield _sse("connected", {"type": "connected", "batchId": batch_id})
        if record_events is not None:
            yield from record_events
            return

        for event in broadcaster.subscribe(
            batch_id, poll_interval=poll_interval, keepalive=keepalive
        ):
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield _sse(event["type"], event)

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
