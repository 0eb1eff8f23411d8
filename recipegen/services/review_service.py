"""Review queue state machine for large batches.

    pending_images -> ready_for_review -> approved | rejected

Every transition is a single conditional UPDATE on one row (``WHERE id = ?
AND status = ?``), so concurrent reviewers never lock the table and a
terminal entry can never be moved again.
"""
import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from recipegen import extensions
from recipegen.errors import InvalidTransitionError
from recipegen.extensions import db
from recipegen.models.audit_log import AuditLog
from recipegen.models.batch import GenerationBatch
from recipegen.models.recipe import Recipe
from recipegen.models.review_queue import ReviewQueueEntry

logger = logging.getLogger(__name__)

POLICIES = {"manual", "accept_without_image"}


def _now():
    return datetime.now(timezone.utc)


def _transition(entry, to_status, **values):
    """Compare-and-set ``entry`` from its allowed predecessors to ``to_status``."""
    sources = [
        status
        for status, targets in ReviewQueueEntry.TRANSITIONS.items()
        if to_status in targets
    ]
    result = db.session.execute(
        db.update(ReviewQueueEntry)
        .where(
            ReviewQueueEntry.id == entry.id,
            ReviewQueueEntry.status.in_(sources),
        )
        .values(status=to_status, **values)
    )
    if result.rowcount != 1:
        db.session.refresh(entry)
        raise InvalidTransitionError(
            f"Review entry {entry.id} is {entry.status}; cannot move to {to_status}"
        )


def _set_recipe_status(recipe_id, review_status):
    if review_status not in Recipe.REVIEW_STATUSES:
        raise ValueError(f"Unknown recipe review status {review_status!r}")
    db.session.execute(
        db.update(Recipe)
        .where(Recipe.id == recipe_id)
        .values(review_status=review_status, updated_at=_now())
    )


def get_entry(entry_id):
    return db.session.get(ReviewQueueEntry, entry_id)


def entry_for_recipe(recipe_id):
    return ReviewQueueEntry.query.filter_by(recipe_id=recipe_id).first()


def image_repair_lock_key(recipe_id):
    return f"image_repair:{recipe_id}"


def image_work_active(entry):
    """Whether something may still be producing this entry's image.

    An ``in_progress`` image is live while its batch is still running or a
    repair job holds the recipe's lock. Otherwise the worker died mid-image
    and the entry can be repaired again.
    """
    if entry.image_generation_status != "in_progress":
        return False
    batch = db.session.get(GenerationBatch, entry.batch_id)
    if batch is not None and not batch.is_terminal:
        return True
    if extensions.redis_client is not None:
        return bool(extensions.redis_client.exists(image_repair_lock_key(entry.recipe_id)))
    return False


def list_entries(batch_id=None, status=None, image_status=None, limit=100, offset=0):
    """Queue entries, oldest first, optionally filtered."""
    if status and status not in ReviewQueueEntry.STATUSES:
        raise ValueError(f"Unknown review status: {status}")
    query = ReviewQueueEntry.query
    if batch_id:
        query = query.filter_by(batch_id=batch_id)
    if status:
        query = query.filter_by(status=status)
    if image_status:
        query = query.filter_by(image_generation_status=image_status)
    return (
        query.order_by(ReviewQueueEntry.created_at, ReviewQueueEntry.id)
        .limit(limit)
        .offset(offset)
        .all()
    )


def get_batch_progress(batch_id):
    """Aggregate review and image counts for one batch."""
    E = ReviewQueueEntry

    def count_where(condition):
        return db.func.coalesce(db.func.sum(db.case((condition, 1), else_=0)), 0)

    row = (
        db.session.query(
            db.func.count(E.id),
            count_where(E.image_generation_status == "completed"),
            count_where(E.image_generation_status.in_(("pending", "in_progress"))),
            count_where(E.image_generation_status == "failed"),
            count_where(E.status == "pending_images"),
            count_where(E.status == "ready_for_review"),
            count_where(E.status == "approved"),
            count_where(E.status == "rejected"),
        )
        .filter(E.batch_id == batch_id)
        .one()
    )
    total, generated, in_progress, failed, pending, ready, approved, rejected = (
        int(v or 0) for v in row
    )
    past_images = ready + approved + rejected
    return {
        "batchId": batch_id,
        "total": total,
        "imagesGenerated": generated,
        "imagesInProgress": in_progress,
        "imagesFailed": failed,
        "pendingImages": pending,
        "readyForReview": ready,
        "approved": approved,
        "rejected": rejected,
        "percentComplete": round(100.0 * past_images / total, 1) if total else 0.0,
    }


def create_entry(recipe):
    """Queue a freshly written in_review recipe. Caller commits."""
    entry = ReviewQueueEntry(
        recipe_id=recipe.id,
        batch_id=recipe.batch_id,
        status="pending_images",
        image_generation_status="pending",
    )
    db.session.add(entry)
    return entry


# ---------------------------------------------------------------------------
# Admin transitions
# ---------------------------------------------------------------------------

def approve(entry_id, admin_id):
    """ready_for_review → approved. Returns None if the entry does not exist."""
    entry = get_entry(entry_id)
    if not entry:
        return None

    _transition(entry, "approved", reviewed_at=_now(), reviewed_by=admin_id)
    _set_recipe_status(entry.recipe_id, "approved")
    db.session.add(
        AuditLog(
            admin_id=admin_id,
            action="APPROVE",
            recipe_id=entry.recipe_id,
            batch_id=entry.batch_id,
        )
    )
    db.session.commit()
    return entry


def reject(entry_id, admin_id, reason):
    """ready_for_review → rejected, with a mandatory reason."""
    reason = (reason or "").strip()
    if not reason:
        raise ValueError("A rejection reason is required")

    entry = get_entry(entry_id)
    if not entry:
        return None

    _transition(
        entry,
        "rejected",
        reviewed_at=_now(),
        reviewed_by=admin_id,
        rejection_reason=reason,
    )
    _set_recipe_status(entry.recipe_id, "rejected")
    db.session.add(
        AuditLog(
            admin_id=admin_id,
            action="REJECT",
            recipe_id=entry.recipe_id,
            batch_id=entry.batch_id,
            payload={"reason": reason},
        )
    )
    db.session.commit()
    return entry


def override_without_image(entry_id, admin_id):
    """pending_images → ready_for_review without a generated image."""
    entry = get_entry(entry_id)
    if not entry:
        return None

    _transition(entry, "ready_for_review", accepted_without_image=True)
    db.session.add(
        AuditLog(
            admin_id=admin_id,
            action="OVERRIDE_NO_IMAGE",
            recipe_id=entry.recipe_id,
            batch_id=entry.batch_id,
            payload={"image_status": entry.image_generation_status},
        )
    )
    db.session.commit()
    return entry


def approve_all_ready(batch_id, admin_id):
    """Approve every ready_for_review entry of a batch, one row at a time.

    A failure on one entry is recorded and does not stop the others.
    """
    ids = [
        entry_id
        for (entry_id,) in db.session.query(ReviewQueueEntry.id)
        .filter_by(batch_id=batch_id, status="ready_for_review")
        .order_by(ReviewQueueEntry.id)
        .all()
    ]

    approved, failed = [], []
    for entry_id in ids:
        try:
            approve(entry_id, admin_id)
            approved.append(entry_id)
        except InvalidTransitionError as e:
            db.session.rollback()
            logger.info("Skipped entry %d during approve-all: %s", entry_id, e)
            failed.append({"id": entry_id, "error": str(e)})
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception("Approve-all failed for entry %d", entry_id)
            failed.append({"id": entry_id, "error": type(e).__name__})

    db.session.add(
        AuditLog(
            admin_id=admin_id,
            action="APPROVE_ALL_READY",
            batch_id=batch_id,
            payload={"approved": len(approved), "failed": len(failed)},
        )
    )
    db.session.commit()
    return {"batchId": batch_id, "approved": approved, "failed": failed}


# ---------------------------------------------------------------------------
# Pipeline hooks (image stage). Callers commit.
# ---------------------------------------------------------------------------

def mark_images_in_progress(recipe_ids):
    if not recipe_ids:
        return
    db.session.execute(
        db.update(ReviewQueueEntry)
        .where(
            ReviewQueueEntry.recipe_id.in_(list(recipe_ids)),
            ReviewQueueEntry.image_generation_status.in_(("pending", "failed")),
        )
        .values(image_generation_status="in_progress")
    )


def mark_image_completed(recipe_id):
    """Record a stored image and move a waiting entry to ready_for_review."""
    entry = entry_for_recipe(recipe_id)
    if not entry:
        return None

    db.session.execute(
        db.update(ReviewQueueEntry)
        .where(ReviewQueueEntry.id == entry.id)
        .values(image_generation_status="completed")
    )
    if entry.status == "pending_images":
        _transition(entry, "ready_for_review")
    return entry


def mark_image_failed(recipe_id):
    """Record a missing image and apply UNRESOLVED_IMAGE_POLICY."""
    entry = entry_for_recipe(recipe_id)
    if not entry:
        return None

    db.session.execute(
        db.update(ReviewQueueEntry)
        .where(
            ReviewQueueEntry.id == entry.id,
            ReviewQueueEntry.image_generation_status != "completed",
        )
        .values(image_generation_status="failed")
    )
    resolve_missing_image(entry)
    return entry


def resolve_missing_image(entry):
    """Apply the configured policy to an entry that will get no image.

    "manual" leaves it in pending_images until an admin overrides it;
    "accept_without_image" moves it to ready_for_review. Neither approves.
    """
    policy = current_app.config["UNRESOLVED_IMAGE_POLICY"]
    if policy not in POLICIES:
        raise ValueError(f"Unknown UNRESOLVED_IMAGE_POLICY: {policy}")
    if policy == "accept_without_image" and entry.status == "pending_images":
        _transition(entry, "ready_for_review", accepted_without_image=True)
        logger.info("Entry %d accepted without image by policy", entry.id)


def get_stats():
    """Recipe counts by review status for the stats command."""
    rows = (
        db.session.query(Recipe.review_status, db.func.count(Recipe.id))
        .group_by(Recipe.review_status)
        .all()
    )
    return dict(rows)
