"""Image storage agent: upload a generated image under the recipe's durable id."""
import logging
import uuid

from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from recipegen.errors import MalformedInputError, RecipeIdentifierError, StorageError
from recipegen.extensions import db
from recipegen.models.recipe import Recipe
from recipegen.services import review_service, storage_service
from recipegen.services.image_service import ImageBlob

logger = logging.getLogger(__name__)


def require_durable_id(recipe_id):
    """Reject anything that is not a persisted recipe's UUID.

    The transient in-batch ids are small integers; passing one here means the
    caller skipped the id mapping.
    """
    if not isinstance(recipe_id, str):
        raise RecipeIdentifierError(
            f"Expected a durable recipe id (UUID string), got "
            f"{type(recipe_id).__name__} {recipe_id!r}"
        )
    try:
        uuid.UUID(recipe_id)
    except ValueError:
        raise RecipeIdentifierError(f"Not a durable recipe id: {recipe_id!r}")
    return recipe_id


def storage_key_for(recipe_id):
    return f"recipes/{recipe_id}/{uuid.uuid4().hex[:12]}.jpg"


def store(recipe_id, blob):
    """Upload ``blob`` for the recipe and return its permanent URL.

    Safe to call from a worker thread: touches S3 only, never the database.
    """
    require_durable_id(recipe_id)
    if not isinstance(blob, ImageBlob):
        raise MalformedInputError("image storage", "ImageBlob", blob)

    key = storage_key_for(recipe_id)
    try:
        storage_service.upload(key, blob.data, content_type=blob.content_type)
    except (BotoCoreError, ClientError) as e:
        raise StorageError(f"Upload of {key} failed: {e}") from e
    return storage_service.get_public_url(key)


def apply(recipe_id, url):
    """Replace the placeholder image and advance the review entry.

    Raises RecipeIdentifierError if no recipe has this durable id. Caller
    commits.
    """
    require_durable_id(recipe_id)
    recipe = db.session.get(Recipe, recipe_id)
    if recipe is None:
        raise RecipeIdentifierError(f"No recipe with id {recipe_id}")

    recipe.image_url = url
    recipe.needs_image_repair = False
    review_service.mark_image_completed(recipe_id)
    return recipe


def record_failure(recipe_id):
    """Keep the placeholder, flag the recipe for repair. Caller commits."""
    require_durable_id(recipe_id)
    recipe = db.session.get(Recipe, recipe_id)
    if recipe is None:
        raise RecipeIdentifierError(f"No recipe with id {recipe_id}")

    recipe.needs_image_repair = True
    if not recipe.image_url:
        recipe.image_url = current_app.config["PLACEHOLDER_IMAGE_URL"]
    review_service.mark_image_failed(recipe_id)
    return recipe
