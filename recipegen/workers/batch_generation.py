"""RQ worker jobs: run a generation batch, repair one recipe image."""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from recipegen import create_app, extensions
from recipegen.errors import (
    ImageError,
    MalformedInputError,
    MalformedOutputError,
    PipelineError,
    QuotaExceededError,
    StorageError,
    UpstreamError,
)
from recipegen.extensions import db
from recipegen.models.batch import GenerationBatch
from recipegen.models.recipe import Recipe
from recipegen.services import (
    batch_service,
    concept_service,
    image_service,
    image_storage_service,
    nutrition_service,
    persistence_service,
    progress_service,
    review_service,
)

logger = logging.getLogger(__name__)

_worker_app = None


def _get_app():
    """Return an app instance for worker execution.

    Reuse the current app when already inside an app context (tests/CLI,
    in-process queue), otherwise lazily create the worker app once.
    """
    global _worker_app
    if has_app_context():
        return current_app._get_current_object()
    if _worker_app is None:
        _worker_app = create_app()
    return _worker_app


def _acquire_lock(key, timeout):
    """Distributed lock when Redis is available.

    Returns the lock, None when running without Redis, or False when the
    lock is held elsewhere.
    """
    if extensions.redis_client is None:
        return None
    lock = extensions.redis_client.lock(key, timeout=timeout)
    if not lock.acquire(blocking=False):
        return False
    return lock


def _release(lock):
    if not lock:
        return
    try:
        lock.release()
    except Exception:
        logger.warning("Lock already expired on release")


@dataclass
class ImageOutcome:
    concept: object
    recipe_id: str  # durable
    url: str = None
    generated: bool = False
    error: PipelineError = None


def _produce_image(app, concept, recipe_id):
    """Generate and upload one image. Runs on an image worker thread."""
    with app.app_context():
        outcome = ImageOutcome(concept=concept, recipe_id=recipe_id)
        try:
            blob = image_service.request_image(concept)
            outcome.generated = True
            outcome.url = image_storage_service.store(recipe_id, blob)
        except (ImageError, StorageError) as e:
            outcome.error = e
        return outcome


class ChunkRunner:
    """Runs one chunk: concept → validate → persist → images.

    All database writes and progress updates happen on the calling thread;
    only image generation and upload fan out to worker threads.
    """

    def __init__(self, batch, chunk, images_enabled=True):
        self.batch = batch
        self.chunk = chunk
        self.options = chunk.options
        self.images_enabled = images_enabled
        self.id_map = persistence_service.RecipeIdMap()
        self.progress = progress_service.broadcaster()
        self.phase = "queued"
        self.saved = 0
        self.image_quota_hit = False

    def _enter(self, phase, **agents):
        self.phase = phase
        self.progress.advance(
            self.batch.id, phase=phase, chunk=self.chunk.number, agents=agents
        )

    def record_error(self, error, phase=None):
        record_batch_error(self.batch, error, phase or self.phase, self.chunk.index)

    def run(self):
        self._enter("concept", concept="working", coordinator="working")
        dropped = []
        concepts = concept_service.generate_concepts(self.chunk, dropped)
        if len(concepts) < self.chunk.count:
            self.record_error(
                MalformedOutputError(
                    f"Chunk {self.chunk.number}: model returned {len(concepts)} of "
                    f"{self.chunk.count} usable recipes ({'; '.join(dropped)})"
                )
            )

        self._enter("validation", concept="complete", validator="working")
        if self.options.enable_nutrition_validation:
            validated, failures = nutrition_service.validate_all(concepts, self.options)
            for failure in failures:
                self.record_error(failure)
        else:
            validated = list(concepts)
        if not validated:
            logger.warning(
                "Chunk %d of batch %s: every concept failed validation",
                self.chunk.number,
                self.batch.id,
            )
            return self

        self._enter("persist", validator="complete")
        recipes = persistence_service.persist(validated, self.batch, self.id_map)
        self.saved = len(self.id_map)
        self.progress.advance(self.batch.id, recipes=len(recipes))

        if self.images_enabled:
            self.generate_images(validated)
        elif self.options.generate_images:
            self.skip_images(validated)
        return self

    def _concepts(self, validated):
        return [getattr(item, "concept", item) for item in validated]

    def generate_images(self, validated):
        self._enter("images", artist="working", storage="working")
        jobs = [
            (concept, self.id_map.resolve(concept.recipe_id))
            for concept in self._concepts(validated)
        ]
        review_service.mark_images_in_progress([recipe_id for _, recipe_id in jobs])
        db.session.commit()

        app = current_app._get_current_object()
        workers = max(1, min(current_app.config["IMAGE_WORKERS"], len(jobs)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="image") as pool:
            futures = [
                pool.submit(_produce_image, app, concept, recipe_id)
                for concept, recipe_id in jobs
            ]
            for future in as_completed(futures):
                self.apply_image(future.result())

        self.progress.advance(
            self.batch.id,
            agents={"artist": "complete", "storage": "complete"},
        )

    def apply_image(self, outcome):
        error = outcome.error
        if outcome.url:
            try:
                image_storage_service.apply(outcome.recipe_id, outcome.url)
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.exception("Saving image URL failed for recipe %s", outcome.recipe_id)
                error = StorageError(f"Saving image URL failed: {type(e).__name__}")

        if error is None:
            self.progress.advance(self.batch.id, images=1)
            return

        logger.warning(
            "Image for recipe %s (%s) failed: %s",
            outcome.recipe_id,
            outcome.concept.name,
            error,
        )
        image_storage_service.record_failure(outcome.recipe_id)
        db.session.commit()
        self.progress.advance(
            self.batch.id,
            images=1 if outcome.generated else 0,
            images_failed=1,
        )
        if isinstance(error, ImageError) and error.kind == "quota" and not self.image_quota_hit:
            self.image_quota_hit = True
            self.record_error(
                "Image quota exceeded; remaining recipes keep placeholder images",
                phase="images",
            )

    def skip_images(self, validated):
        """Image generation was switched off mid-batch (image quota)."""
        recipe_ids = [
            self.id_map.resolve(concept.recipe_id)
            for concept in self._concepts(validated)
        ]
        for recipe_id in recipe_ids:
            image_storage_service.record_failure(recipe_id)
        db.session.commit()
        self.progress.advance(self.batch.id, images_failed=len(recipe_ids))


def record_batch_error(batch, error, phase, chunk_index=None):
    """Append a non-fatal error to the batch record and the progress stream."""
    if isinstance(error, PipelineError):
        payload = error.to_dict()
    else:
        payload = {"error": str(error)}
    payload.update({"phase": phase, "chunkIndex": chunk_index})
    batch.add_error(payload)
    db.session.commit()
    progress_service.broadcaster().error(batch.id, payload["error"], phase, chunk_index)


def terminal_status(batch, saved, halted_by=None):
    """Pick the batch's terminal status and a human-readable cause."""
    requested = batch.requested_count
    if saved == 0:
        if halted_by is not None:
            return "failed", f"Quota exceeded before any recipe was saved: {halted_by}"
        return "failed", "No recipes were generated"
    if saved >= requested and halted_by is None:
        return "complete", ""
    message = f"{saved} of {requested} recipes generated"
    if halted_by is not None:
        message += "; stopped early because the model quota was exceeded"
    return "complete_with_errors", message


def execute_batch(batch):
    """Run every chunk of ``batch`` in order and record the terminal status."""
    progress = progress_service.broadcaster()
    request = batch_service.request_for(batch)
    chunks = batch_service.schedule(
        batch.id, batch.requested_count, batch.chunk_size, request
    )
    images_enabled = request.generate_images
    halted_by = None

    for chunk in chunks:
        runner = ChunkRunner(batch, chunk, images_enabled=images_enabled)
        logger.info(
            "Batch %s: chunk %d/%d (%d recipes)",
            batch.id,
            chunk.number,
            chunk.total_chunks,
            chunk.count,
        )
        try:
            runner.run()
        except QuotaExceededError as e:
            db.session.rollback()
            logger.error(
                "Batch %s halted at chunk %d: %s", batch.id, chunk.number, e
            )
            runner.record_error(e)
            halted_by = e
            break
        except (UpstreamError, MalformedInputError) as e:
            db.session.rollback()
            logger.warning(
                "Batch %s chunk %d failed in %s: %s",
                batch.id,
                chunk.number,
                runner.phase,
                e,
            )
            runner.record_error(e)
        else:
            logger.info(
                "Batch %s chunk %d saved %d recipes",
                batch.id,
                chunk.number,
                runner.saved,
            )
        if runner.image_quota_hit:
            images_enabled = False
        progress.chunk_finished(batch.id)

    saved = batch.recipes.count()
    status, message = terminal_status(batch, saved, halted_by)
    if status == "failed" and not batch.error_log:
        batch.add_error({"error": message, "phase": "coordinator", "chunkIndex": None})
    batch.finish(status, saved, message)
    db.session.commit()
    progress.finish(batch.id, status, recipes_completed=saved, message=message)
    logger.info("Batch %s finished: %s (%d/%d)", batch.id, status, saved, batch.requested_count)
    return status


def _fail_batch(batch_id, error):
    batch = db.session.get(GenerationBatch, batch_id)
    if batch is None or batch.is_terminal:
        return
    message = f"Internal error: {type(error).__name__}"
    batch.add_error({"error": message, "phase": "coordinator", "chunkIndex": None})
    saved = batch.recipes.count()
    batch.finish("failed" if saved == 0 else "complete_with_errors", saved, message)
    db.session.commit()
    try:
        progress_service.broadcaster().finish(
            batch.id, batch.status, recipes_completed=saved, message=message
        )
    except (KeyError, PipelineError):
        logger.warning("No live progress to close for batch %s", batch.id)


def run_batch(batch_id):
    """Run a submitted batch to completion.

    This job is enqueued by the submission endpoint.

    Idempotency: a batch already in a terminal status is skipped.
    Distributed lock: prevents two workers running the same batch.
    """
    app = _get_app()
    with app.app_context():
        batch = db.session.get(GenerationBatch, batch_id)
        if not batch:
            logger.error("Batch %s not found", batch_id)
            return None

        if batch.is_terminal:
            logger.info("Batch %s already %s, skipping", batch_id, batch.status)
            return batch.status

        lock = _acquire_lock(f"batch_gen:{batch_id}", timeout=3600)
        if lock is False:
            logger.info("Lock held for batch %s, skipping", batch_id)
            return None

        try:
            return execute_batch(batch)
        except Exception as e:
            logger.exception("Batch %s crashed", batch_id)
            db.session.rollback()
            _fail_batch(batch_id, e)
            raise  # let RQ record the failure
        finally:
            _release(lock)


def regenerate_recipe_image(recipe_id):
    """Generate and store a fresh image for one recipe.

    Enqueued by the review API for recipes flagged for image repair.
    Idempotency: skipped when the image is already completed.
    """
    app = _get_app()
    with app.app_context():
        recipe = db.session.get(Recipe, recipe_id)
        if not recipe:
            logger.error("Recipe %s not found", recipe_id)
            return None

        entry = review_service.entry_for_recipe(recipe_id)
        if entry and entry.image_generation_status == "completed":
            logger.info("Image for recipe %s already completed, skipping", recipe_id)
            return recipe.image_url
        if not entry and not recipe.needs_image_repair:
            logger.info("Recipe %s does not need an image, skipping", recipe_id)
            return recipe.image_url

        lock = _acquire_lock(review_service.image_repair_lock_key(recipe_id), timeout=600)
        if lock is False:
            logger.info("Lock held for recipe %s image, skipping", recipe_id)
            return None

        try:
            review_service.mark_images_in_progress([recipe_id])
            db.session.commit()

            concept = persistence_service.concept_from_recipe(recipe)
            blob = image_service.request_image(concept)
            url = image_storage_service.store(recipe.id, blob)
            image_storage_service.apply(recipe.id, url)
            db.session.commit()
            logger.info("Image repaired for recipe %s", recipe_id)
            return url
        except (ImageError, StorageError):
            logger.exception("Image repair failed for recipe %s", recipe_id)
            db.session.rollback()
            image_storage_service.record_failure(recipe_id)
            db.session.commit()
            raise  # let RQ handle retry
        finally:
            _release(lock)
