"""Persistence orchestrator: write validated concepts as recipes."""
import logging

from flask import current_app

from recipegen.errors import MalformedInputError, RecipeIdentifierError
from recipegen.extensions import db
from recipegen.models.batch import GenerationBatch
from recipegen.models.recipe import Recipe
from recipegen.schemas import RecipeConcept
from recipegen.services import review_service
from recipegen.services.nutrition_service import ValidatedConcept

logger = logging.getLogger(__name__)


class RecipeIdMap:
    """Transient concept id → durable recipe id, for one chunk.

    Every reference to a recipe after it is written goes through here,
    never through list positions.
    """

    def __init__(self):
        self._durable = {}

    def bind(self, transient_id, durable_id):
        existing = self._durable.get(transient_id)
        if existing is not None and existing != durable_id:
            raise RecipeIdentifierError(
                f"Recipe {transient_id} already mapped to {existing}"
            )
        self._durable[transient_id] = durable_id

    def resolve(self, transient_id):
        try:
            return self._durable[transient_id]
        except KeyError:
            raise RecipeIdentifierError(
                f"Recipe {transient_id} has no durable id in this chunk"
            ) from None

    def __contains__(self, transient_id):
        return transient_id in self._durable

    def __len__(self):
        return len(self._durable)


def needs_review(batch):
    return batch.requested_count > current_app.config["REVIEW_THRESHOLD"]


def _unwrap(concepts):
    if not isinstance(concepts, (list, tuple)):
        raise MalformedInputError(
            "persistence", "list of RecipeConcept or ValidatedConcept", concepts
        )
    unwrapped = []
    for item in concepts:
        if isinstance(item, ValidatedConcept):
            unwrapped.append(item.concept)
        elif isinstance(item, RecipeConcept):
            unwrapped.append(item)
        else:
            raise MalformedInputError(
                "persistence", "RecipeConcept or ValidatedConcept", item
            )
    return unwrapped


def build_recipe(concept, batch, review_status, image_url=None):
    nutrition = concept.nutrition
    return Recipe(
        batch_id=batch.id,
        name=concept.name,
        description=concept.description,
        meal_types=list(concept.meal_types or (batch.options or {}).get("meal_types", [])),
        dietary_tags=list(concept.dietary_tags),
        main_ingredient_tags=list(concept.main_ingredient_tags),
        ingredients_json=[i.model_dump(exclude_none=True) for i in concept.ingredients],
        instructions_text=concept.instructions,
        prep_time_minutes=concept.prep_time_minutes,
        cook_time_minutes=concept.cook_time_minutes,
        servings=concept.servings,
        calories_kcal=round(nutrition.calories),
        protein_grams=round(nutrition.protein, 2),
        carbs_grams=round(nutrition.carbs, 2),
        fat_grams=round(nutrition.fat, 2),
        image_url=image_url,
        review_status=review_status,
    )


def persist(concepts, batch, id_map=None):
    """Write concepts for ``batch`` and bind their durable ids in ``id_map``.

    Batches above REVIEW_THRESHOLD are written in_review with one
    pending_images queue entry per recipe; smaller batches are approved
    directly.

    Returns:
        list of Recipe, in input order
    """
    if not isinstance(batch, GenerationBatch):
        raise MalformedInputError("persistence", "GenerationBatch", batch)
    concepts = _unwrap(concepts)
    if id_map is None:
        id_map = RecipeIdMap()
    if not concepts:
        return []

    review = needs_review(batch)
    status = "in_review" if review else "approved"
    placeholder = None
    if (batch.options or {}).get("generate_images", True):
        placeholder = current_app.config["PLACEHOLDER_IMAGE_URL"]

    recipes = []
    for concept in concepts:
        if concept.recipe_id in id_map:
            raise RecipeIdentifierError(f"Recipe {concept.recipe_id} already persisted")
        recipe = build_recipe(concept, batch, status, image_url=placeholder)
        db.session.add(recipe)
        recipes.append(recipe)
    db.session.flush()  # assign durable ids

    for concept, recipe in zip(concepts, recipes):
        id_map.bind(concept.recipe_id, recipe.id)
        if review:
            entry = review_service.create_entry(recipe)
            if placeholder is None:
                entry.image_generation_status = "failed"
                db.session.flush()
                review_service.resolve_missing_image(entry)

    db.session.commit()
    logger.info(
        "Persisted %d recipes for batch %s (%s)", len(recipes), batch.id, status
    )
    return recipes


def concept_from_recipe(recipe):
    """Rebuild a concept from a stored recipe, for image regeneration."""
    return RecipeConcept.model_validate(
        {
            "recipe_id": 0,
            "sequence": 0,
            "name": recipe.name,
            "description": recipe.description or "",
            "meal_types": recipe.meal_types or [],
            "dietary_tags": recipe.dietary_tags or [],
            "main_ingredient_tags": recipe.main_ingredient_tags or [],
            "ingredients": recipe.ingredients_json or [],
            "instructions": recipe.instructions_text or "",
            "prep_time_minutes": recipe.prep_time_minutes,
            "cook_time_minutes": recipe.cook_time_minutes,
            "servings": recipe.servings,
            "nutrition": {
                "calories": recipe.calories_kcal,
                "protein": float(recipe.protein_grams),
                "carbs": float(recipe.carbs_grams),
                "fat": float(recipe.fat_grams),
            },
        }
    )
