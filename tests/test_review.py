"""Tests for the review queue state machine."""
import pytest

from recipegen.errors import InvalidTransitionError
from recipegen.extensions import db as _db
from recipegen.models.audit_log import AuditLog
from recipegen.models.recipe import Recipe
from recipegen.models.review_queue import ReviewQueueEntry
from recipegen.schemas import GenerationRequest
from recipegen.services import batch_service, persistence_service, review_service


@pytest.fixture
def queued(app, db, make_concept):
    """A batch of 8 with three recipes written and queued for review."""
    batch = batch_service.create_batch(GenerationRequest(count=8))
    recipes = persistence_service.persist(
        [make_concept(recipe_id=i) for i in (1, 2, 3)], batch
    )
    entries = [r.review_entry for r in recipes]
    return batch, recipes, entries


def _ready(entry):
    review_service.mark_image_completed(entry.recipe_id)
    _db.session.commit()
    return entry


def test_image_completion_makes_entry_reviewable(queued):
    _, _, entries = queued
    entry = _ready(entries[0])
    assert entry.status == "ready_for_review"
    assert entry.image_generation_status == "completed"


def test_approve_publishes_recipe(queued, db):
    _, recipes, entries = queued
    _ready(entries[0])

    entry = review_service.approve(entries[0].id, "reviewer-1")

    assert entry.status == "approved"
    assert entry.reviewed_by == "reviewer-1"
    assert entry.reviewed_at is not None
    assert db.session.get(Recipe, recipes[0].id).review_status == "approved"
    assert AuditLog.query.filter_by(action="APPROVE", recipe_id=recipes[0].id).count() == 1


def test_cannot_approve_before_images(queued):
    _, _, entries = queued
    with pytest.raises(InvalidTransitionError):
        review_service.approve(entries[0].id, "reviewer-1")
    assert entries[0].status == "pending_images"


def test_terminal_states_never_move(queued):
    _, _, entries = queued
    _ready(entries[0])
    review_service.reject(entries[0].id, "reviewer-1", "Too salty")

    with pytest.raises(InvalidTransitionError):
        review_service.approve(entries[0].id, "reviewer-2")
    with pytest.raises(InvalidTransitionError):
        review_service.reject(entries[0].id, "reviewer-2", "again")
    with pytest.raises(InvalidTransitionError):
        review_service.override_without_image(entries[0].id, "reviewer-2")

    assert entries[0].status == "rejected"
    assert entries[0].rejection_reason == "Too salty"


def test_reject_requires_reason(queued):
    _, _, entries = queued
    _ready(entries[0])
    with pytest.raises(ValueError):
        review_service.reject(entries[0].id, "reviewer-1", "  ")
    assert entries[0].status == "ready_for_review"


def test_late_image_does_not_reopen_approved_entry(queued):
    _, _, entries = queued
    review_service.override_without_image(entries[0].id, "reviewer-1")
    review_service.approve(entries[0].id, "reviewer-1")

    review_service.mark_image_completed(entries[0].recipe_id)
    _db.session.commit()

    assert entries[0].status == "approved"


def test_failed_image_waits_for_admin_under_manual_policy(queued):
    _, _, entries = queued
    review_service.mark_image_failed(entries[1].recipe_id)
    _db.session.commit()

    assert entries[1].image_generation_status == "failed"
    assert entries[1].status == "pending_images"

    review_service.override_without_image(entries[1].id, "reviewer-1")
    assert entries[1].status == "ready_for_review"
    assert entries[1].accepted_without_image is True


def test_accept_without_image_policy(queued, app, monkeypatch):
    monkeypatch.setitem(app.config, "UNRESOLVED_IMAGE_POLICY", "accept_without_image")
    _, recipes, entries = queued

    review_service.mark_image_failed(entries[1].recipe_id)
    _db.session.commit()

    assert entries[1].status == "ready_for_review"
    assert entries[1].accepted_without_image is True
    # The policy never publishes by itself
    assert recipes[1].review_status == "in_review"


def test_approve_all_ready(queued, db):
    batch, recipes, entries = queued
    _ready(entries[0])
    _ready(entries[2])

    result = review_service.approve_all_ready(batch.id, "reviewer-1")

    assert sorted(result["approved"]) == sorted([entries[0].id, entries[2].id])
    assert result["failed"] == []
    assert entries[1].status == "pending_images"
    assert AuditLog.query.filter_by(action="APPROVE_ALL_READY").one().payload == {
        "approved": 2,
        "failed": 0,
    }


def test_batch_progress_counts(queued):
    batch, _, entries = queued
    _ready(entries[0])
    review_service.approve(entries[0].id, "reviewer-1")
    review_service.mark_image_failed(entries[1].recipe_id)
    review_service.mark_images_in_progress([entries[2].recipe_id])
    _db.session.commit()

    progress = review_service.get_batch_progress(batch.id)

    assert progress["total"] == 3
    assert progress["imagesGenerated"] == 1
    assert progress["imagesInProgress"] == 1
    assert progress["imagesFailed"] == 1
    assert progress["pendingImages"] == 2
    assert progress["approved"] == 1
    assert progress["percentComplete"] == pytest.approx(33.3)


def test_batch_progress_for_unqueued_batch(app, db):
    progress = review_service.get_batch_progress("no-such-batch")
    assert progress["total"] == 0
    assert progress["percentComplete"] == 0.0


def test_list_entries_filters(queued):
    batch, _, entries = queued
    _ready(entries[0])

    ready = review_service.list_entries(batch_id=batch.id, status="ready_for_review")
    assert [e.id for e in ready] == [entries[0].id]
    assert len(review_service.list_entries(batch_id=batch.id)) == 3
    with pytest.raises(ValueError):
        review_service.list_entries(status="published")


def test_entry_status_values_are_known(queued):
    for entry in ReviewQueueEntry.query.all():
        assert entry.status in ReviewQueueEntry.STATUSES
        assert entry.image_generation_status in ReviewQueueEntry.IMAGE_STATUSES


def test_recipe_review_status_must_be_known(queued):
    _, recipes, _ = queued
    with pytest.raises(ValueError):
        review_service._set_recipe_status(recipes[0].id, "published")
    for recipe in recipes:
        assert recipe.review_status in Recipe.REVIEW_STATUSES


def test_queued_recipe_cannot_be_deleted_from_under_its_entry():
    (fk,) = ReviewQueueEntry.__table__.c.recipe_id.foreign_keys
    assert fk.column.table.name == "recipes"
    assert fk.ondelete == "RESTRICT"
