"""Tests for the batch worker (Gemini and S3 faked)."""
from recipegen.errors import MalformedOutputError, QuotaExceededError
from recipegen.models.batch import GenerationBatch
from recipegen.models.recipe import Recipe
from recipegen.models.review_queue import ReviewQueueEntry
from recipegen.schemas import GenerationRequest
from recipegen.services import batch_service, progress_service
from recipegen.workers.batch_generation import regenerate_recipe_image, run_batch


def _run(db, count, **options):
    batch = batch_service.create_batch(GenerationRequest(count=count, **options))
    status = run_batch(batch.id)
    db.session.expire_all()
    return db.session.get(GenerationBatch, batch.id), status


def _recipes(batch):
    return Recipe.query.filter_by(batch_id=batch.id).order_by(Recipe.name).all()


def test_small_batch_completes_and_publishes(app, db, fake_model):
    batch, status = _run(db, 3)

    assert status == "complete"
    assert batch.status == "complete"
    assert batch.recipes_completed == 3
    assert batch.error_log == []

    recipes = _recipes(batch)
    assert [r.review_status for r in recipes] == ["approved"] * 3
    assert ReviewQueueEntry.query.filter_by(batch_id=batch.id).count() == 0

    state = progress_service.broadcaster().snapshot(batch.id)
    assert state.status == "complete"
    assert state.recipes_completed == 3
    assert state.images_generated == 3
    assert state.images_failed == 0


def test_each_image_lands_on_its_own_recipe(app, db, fake_model):
    batch, status = _run(db, 7)

    assert status == "complete"
    recipes = _recipes(batch)
    assert len(recipes) == 7
    assert len(fake_model.uploads) == 7

    for recipe in recipes:
        key = recipe.image_url.removeprefix("https://cdn.test/")
        assert key.startswith(f"recipes/{recipe.id}/")
        assert key in fake_model.uploads
        assert recipe.review_entry.status == "ready_for_review"
        assert recipe.review_entry.image_generation_status == "completed"
        assert recipe.review_status == "in_review"

    assert sorted(fake_model.image_calls) == [r.name for r in recipes]


def test_quota_stops_dispatching_later_chunks(app, db, fake_model):
    fake_model.concept_side_effects[2] = QuotaExceededError("daily quota exhausted")

    batch, status = _run(db, 20)

    assert status == "complete_with_errors"
    assert [c.number for c in fake_model.concept_calls] == [1, 2]
    assert [r.name for r in _recipes(batch)] == [f"Recipe {i}" for i in range(1, 6)]
    assert batch.recipes_completed == 5

    (error,) = batch.error_log
    assert error["kind"] == "quota"
    assert error["chunkIndex"] == 1

    state = progress_service.broadcaster().snapshot(batch.id)
    assert state.status == "complete_with_errors"
    assert state.chunks_finished == 1
    assert "quota" in state.message


def test_quota_on_first_chunk_fails_batch(app, db, fake_model):
    fake_model.concept_side_effects[1] = QuotaExceededError("daily quota exhausted")

    batch, status = _run(db, 10)

    assert status == "failed"
    assert batch.recipes_completed == 0
    assert batch.error_log
    assert len(fake_model.concept_calls) == 1


def test_every_chunk_failing_is_failed_not_complete(app, db, fake_model):
    fake_model.concept_side_effects[1] = MalformedOutputError("not JSON")
    fake_model.concept_side_effects[2] = MalformedOutputError("not JSON")

    batch, status = _run(db, 10)

    assert status == "failed"
    assert len(batch.error_log) == 2
    assert {e["kind"] for e in batch.error_log} == {"malformed"}
    state = progress_service.broadcaster().snapshot(batch.id)
    assert state.terminal_event()["type"] == "failed"


def test_failed_chunk_does_not_stop_later_chunks(app, db, fake_model):
    fake_model.concept_side_effects[1] = MalformedOutputError("not JSON")

    batch, status = _run(db, 10)

    assert status == "complete_with_errors"
    assert [r.name for r in _recipes(batch)] == [f"Recipe {i}" for i in range(6, 11)]


def test_validation_failure_drops_one_recipe(app, db, fake_model, make_payload, monkeypatch):
    def concepts(chunk):
        payload = [make_payload(name=f"Recipe {i}") for i in (1, 2, 3)]
        payload[1]["nutrition"] = {"calories": 5000, "protein": 10, "carbs": 10, "fat": 10}
        return payload

    monkeypatch.setattr("recipegen.services.ai_service.generate_concepts", concepts)

    batch, status = _run(db, 3)

    assert status == "complete_with_errors"
    assert [r.name for r in _recipes(batch)] == ["Recipe 1", "Recipe 3"]
    (error,) = batch.error_log
    assert error["kind"] == "validation"
    assert error["recipeId"] == 2


def test_short_chunk_is_recorded_with_reasons(app, db, fake_model, make_payload, monkeypatch):
    def concepts(chunk):
        payload = [make_payload(name=f"Recipe {i}") for i in (1, 2, 3, 4)]
        payload.append({"name": "Broken Stew"})
        return payload

    monkeypatch.setattr("recipegen.services.ai_service.generate_concepts", concepts)

    batch, status = _run(db, 5)

    assert status == "complete_with_errors"
    assert batch.recipes_completed == 4
    assert batch.message == "4 of 5 recipes generated"
    assert batch.to_dict()["message"] == batch.message
    (error,) = batch.error_log
    assert error["kind"] == "malformed"
    assert error["phase"] == "concept"
    assert "4 of 5" in error["error"]
    assert "Broken Stew" in error["error"]

    state = progress_service.broadcaster().snapshot(batch.id)
    assert state.errors
    assert state.terminal_event()["type"] == "complete_with_errors"


def test_model_returning_too_few_items_is_recorded(app, db, fake_model, make_payload, monkeypatch):
    def concepts(chunk):
        return [make_payload(name=f"Recipe {i}") for i in (1, 2, 3)]

    monkeypatch.setattr("recipegen.services.ai_service.generate_concepts", concepts)

    batch, status = _run(db, 5)

    assert status == "complete_with_errors"
    (error,) = batch.error_log
    assert "model returned only 3 items" in error["error"]


def test_validation_can_be_switched_off(app, db, fake_model, make_payload, monkeypatch):
    def concepts(chunk):
        return [make_payload(nutrition={"calories": 5000, "protein": 1, "carbs": 1, "fat": 1})]

    monkeypatch.setattr("recipegen.services.ai_service.generate_concepts", concepts)

    batch, status = _run(db, 1, enable_nutrition_validation=False)

    assert status == "complete"


def test_image_failure_keeps_recipe_with_placeholder(app, db, fake_model):
    fake_model.image_failures.add("Recipe 2")

    batch, status = _run(db, 6)

    assert status == "complete"
    broken = Recipe.query.filter_by(batch_id=batch.id, name="Recipe 2").one()
    assert broken.needs_image_repair is True
    assert broken.image_url == app.config["PLACEHOLDER_IMAGE_URL"]
    assert broken.review_entry.image_generation_status == "failed"
    assert broken.review_entry.status == "pending_images"
    # initial attempt plus retries
    assert fake_model.image_calls.count("Recipe 2") == app.config["IMAGE_MAX_RETRIES"] + 1

    state = progress_service.broadcaster().snapshot(batch.id)
    assert state.images_generated == 5
    assert state.images_failed == 1


def test_image_quota_turns_off_images_for_later_chunks(app, db, fake_model, monkeypatch):
    def no_quota(concept):
        fake_model.image_calls.append(concept.name)
        raise QuotaExceededError("image quota exhausted")

    monkeypatch.setattr("recipegen.services.ai_service.generate_image", no_quota)

    batch, status = _run(db, 10)

    assert status == "complete"
    assert batch.recipes_completed == 10
    assert len(fake_model.image_calls) == 5
    assert [e["phase"] for e in batch.error_log] == ["images"]
    assert all(r.needs_image_repair for r in _recipes(batch))
    state = progress_service.broadcaster().snapshot(batch.id)
    assert state.images_failed == 10


def test_images_disabled(app, db, fake_model):
    batch, status = _run(db, 3, generate_images=False)

    assert status == "complete"
    assert fake_model.image_calls == []
    assert all(r.image_url is None for r in _recipes(batch))


def test_finished_batch_is_not_rerun(app, db, fake_model):
    batch, _ = _run(db, 2)
    calls = len(fake_model.concept_calls)

    assert run_batch(batch.id) == "complete"
    assert len(fake_model.concept_calls) == calls


def test_regenerate_image_repairs_recipe(app, db, fake_model):
    fake_model.image_failures.add("Recipe 4")
    batch, _ = _run(db, 6)
    broken = Recipe.query.filter_by(batch_id=batch.id, name="Recipe 4").one()

    fake_model.image_failures.clear()
    url = regenerate_recipe_image(broken.id)
    db.session.expire_all()

    repaired = db.session.get(Recipe, broken.id)
    assert repaired.image_url == url
    assert url.startswith(f"https://cdn.test/recipes/{broken.id}/")
    assert repaired.needs_image_repair is False
    assert repaired.review_entry.status == "ready_for_review"


def test_unknown_batch_is_ignored(app, db):
    assert run_batch("does-not-exist") is None
