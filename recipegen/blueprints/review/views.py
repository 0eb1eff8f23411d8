import logging
from flask import g, request
from rq import Retry

from recipegen import extensions
from recipegen.blueprints.review import review_bp
from recipegen.errors import InvalidTransitionError
from recipegen.extensions import db
from recipegen.models.audit_log import AuditLog
from recipegen.services import batch_service, review_service

logger = logging.getLogger(__name__)


@review_bp.errorhandler(InvalidTransitionError)
def invalid_transition(e):
    return {"error": str(e)}, 409


def _int_arg(name, default, maximum=None):
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        value = default
    value = max(value, 0)
    if maximum is not None:
        value = min(value, maximum)
    return value


@review_bp.route("/entries")
def list_entries():
    try:
        entries = review_service.list_entries(
            batch_id=request.args.get("batch_id"),
            status=request.args.get("status"),
            image_status=request.args.get("image_status"),
            limit=_int_arg("limit", 100, maximum=500),
            offset=_int_arg("offset", 0),
        )
    except ValueError as e:
        return {"error": str(e)}, 400
    return {"entries": [entry.to_dict() for entry in entries]}


@review_bp.route("/entries/<int:entry_id>")
def get_entry(entry_id):
    entry = review_service.get_entry(entry_id)
    if not entry:
        return {"error": "Review entry not found"}, 404
    data = entry.to_dict()
    data["recipe"] = entry.recipe.to_dict() if entry.recipe else None
    return data


@review_bp.route("/batches/<batch_id>/progress")
def batch_progress(batch_id):
    if not batch_service.get_batch(batch_id):
        return {"error": "Batch not found"}, 404
    return review_service.get_batch_progress(batch_id)


@review_bp.route("/entries/<int:entry_id>/approve", methods=["POST"])
def approve(entry_id):
    entry = review_service.approve(entry_id, g.admin_id)
    if not entry:
        return {"error": "Review entry not found"}, 404
    logger.info("Entry %d approved by %s", entry_id, g.admin_id)
    return entry.to_dict()


@review_bp.route("/entries/<int:entry_id>/reject", methods=["POST"])
def reject(entry_id):
    body = request.get_json(silent=True) or {}
    try:
        entry = review_service.reject(entry_id, g.admin_id, body.get("reason"))
    except ValueError as e:
        return {"error": str(e)}, 400
    if not entry:
        return {"error": "Review entry not found"}, 404
    logger.info("Entry %d rejected by %s", entry_id, g.admin_id)
    return entry.to_dict()


@review_bp.route("/entries/<int:entry_id>/override", methods=["POST"])
def override(entry_id):
    """Let a recipe whose image never arrived proceed to review."""
    entry = review_service.override_without_image(entry_id, g.admin_id)
    if not entry:
        return {"error": "Review entry not found"}, 404
    return entry.to_dict()


@review_bp.route("/batches/<batch_id>/approve-all-ready", methods=["POST"])
def approve_all_ready(batch_id):
    if not batch_service.get_batch(batch_id):
        return {"error": "Batch not found"}, 404
    return review_service.approve_all_ready(batch_id, g.admin_id)


@review_bp.route("/entries/<int:entry_id>/regenerate-image", methods=["POST"])
def regenerate_image(entry_id):
    """Queue a fresh image attempt for a recipe that has none."""
    entry = review_service.get_entry(entry_id)
    if not entry:
        return {"error": "Review entry not found"}, 404
    if entry.image_generation_status == "completed" or review_service.image_work_active(
        entry
    ):
        return {
            "error": f"Image is already {entry.image_generation_status}"
        }, 409
    if entry.image_generation_status == "in_progress":
        logger.warning("Entry %d image stuck in progress, requeueing", entry_id)

    extensions.task_queue.enqueue(
        "recipegen.workers.batch_generation.regenerate_recipe_image",
        recipe_id=entry.recipe_id,
        job_id=f"image_repair_{entry.recipe_id}",
        retry=Retry(max=3, interval=[30, 120, 300]),
        job_timeout=600,
    )
    db.session.add(
        AuditLog(
            admin_id=g.admin_id,
            action="REGENERATE_IMAGE",
            recipe_id=entry.recipe_id,
            batch_id=entry.batch_id,
        )
    )
    db.session.commit()
    return {"entryId": entry.id, "recipeId": entry.recipe_id, "queued": True}, 202
