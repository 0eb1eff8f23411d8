"""Tests for batch submission and chunk scheduling."""
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from recipegen import extensions
from recipegen.models.audit_log import AuditLog
from recipegen.schemas import GenerationRequest
from recipegen.services import batch_service, progress_service


def test_schedule_covers_every_recipe_once():
    chunks = batch_service.schedule("b1", 23, 5)
    assert [c.count for c in chunks] == [5, 5, 5, 5, 3]
    assert [c.start for c in chunks] == [0, 5, 10, 15, 20]
    assert [c.number for c in chunks] == [1, 2, 3, 4, 5]
    assert all(c.total_chunks == 5 for c in chunks)
    assert sum(c.count for c in chunks) == 23


def test_schedule_small_batch_is_one_chunk():
    chunks = batch_service.schedule("b1", 3, 5)
    assert len(chunks) == 1
    assert chunks[0].count == 3


def test_schedule_exact_multiple():
    chunks = batch_service.schedule("b1", 10, 5)
    assert [c.count for c in chunks] == [5, 5]


@pytest.mark.parametrize("count,size", [(0, 5), (-3, 5), (5, 0)])
def test_schedule_rejects_non_positive(count, size):
    with pytest.raises(ValueError):
        batch_service.schedule("b1", count, size)


@pytest.mark.parametrize("count", [0, -1, "5", 2.5, None, True])
def test_request_count_must_be_positive_integer(count):
    with pytest.raises(ValidationError):
        GenerationRequest.model_validate({"count": count})


def test_request_accepts_camel_case_and_csv():
    request = GenerationRequest.model_validate(
        {
            "count": 4,
            "mealTypes": "Breakfast, lunch",
            "dietaryConstraints": ["vegan"],
            "generateImages": False,
            "maxPrepTime": 20,
        }
    )
    assert request.meal_types == ["breakfast", "lunch"]
    assert request.dietary_constraints == ["vegan"]
    assert request.generate_images is False
    assert request.max_prep_time == 20


def test_request_rejects_inverted_macro_range():
    with pytest.raises(ValidationError):
        GenerationRequest(count=3, min_protein=40, max_protein=20)


def test_chunk_size_is_capped_by_config(app):
    assert batch_service.effective_chunk_size(GenerationRequest(count=9)) == 5
    assert batch_service.effective_chunk_size(GenerationRequest(count=9, chunk_size=50)) == 5
    assert batch_service.effective_chunk_size(GenerationRequest(count=9, chunk_size=2)) == 2


def test_create_batch_opens_progress(app, db):
    batch = batch_service.create_batch(
        GenerationRequest(count=12), submitted_by="reviewer-1"
    )
    assert batch.status == "running"
    assert batch.chunk_size == 5

    state = progress_service.broadcaster().snapshot(batch.id)
    assert state.total_requested == 12
    assert state.total_chunks == 3
    assert state.recipes_completed == 0
    assert state.seq == 1

    audit = AuditLog.query.filter_by(batch_id=batch.id).one()
    assert audit.action == "SUBMIT_BATCH"
    assert audit.admin_id == "reviewer-1"


def test_create_batch_enforces_maximum(app, db):
    with pytest.raises(ValueError, match="Maximum 100"):
        batch_service.create_batch(GenerationRequest(count=101))


def test_submit_batch_enqueues_run(app, db, monkeypatch):
    queue = MagicMock()
    monkeypatch.setattr(extensions, "task_queue", queue)

    batch = batch_service.submit_batch(GenerationRequest(count=3))

    queue.enqueue.assert_called_once()
    args, kwargs = queue.enqueue.call_args
    assert args[0] == "recipegen.workers.batch_generation.run_batch"
    assert kwargs["batch_id"] == batch.id
    assert kwargs["job_id"] == f"batch_{batch.id}"


def test_request_for_round_trips_options(app, db):
    batch = batch_service.create_batch(
        GenerationRequest(count=6, meal_types=["dinner"], max_calories=700)
    )
    request = batch_service.request_for(batch)
    assert request.count == 6
    assert request.meal_types == ["dinner"]
    assert request.max_calories == 700
