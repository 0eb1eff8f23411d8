"""Nutrition validator: range and consistency checks per concept."""
import logging
import math
from dataclasses import dataclass

from recipegen.errors import MalformedInputError, ValidationFailure
from recipegen.schemas import RecipeConcept

logger = logging.getLogger(__name__)

# Per-serving bounds
CALORIE_RANGE = (50, 2000)
MACRO_RANGES = {
    "protein": (0, 200),
    "carbs": (0, 300),
    "fat": (0, 200),
}
# Declared calories may differ from 4/4/9 macro energy by this fraction
ENERGY_TOLERANCE = 0.35
ENERGY_SLACK_KCAL = 60


@dataclass(frozen=True)
class ValidatedConcept:
    """A concept whose nutrition passed validation."""

    concept: RecipeConcept

    @property
    def recipe_id(self):
        return self.concept.recipe_id


def macro_energy(nutrition):
    return 4 * nutrition.protein + 4 * nutrition.carbs + 9 * nutrition.fat


def validate(concept, options=None):
    """Check one concept's declared nutrition.

    Args:
        concept: the RecipeConcept to check; values are read off its own
            ``nutrition`` object
        options: the batch's GenerationRequest, for user-set bounds

    Returns:
        ValidatedConcept

    Raises:
        ValidationFailure with a human-readable reason
        MalformedInputError if ``concept`` is not a RecipeConcept
    """
    if not isinstance(concept, RecipeConcept):
        raise MalformedInputError("nutrition validation", "RecipeConcept", concept)

    nutrition = concept.nutrition
    rid = concept.recipe_id

    def fail(reason):
        raise ValidationFailure(f"{concept.name}: {reason}", recipe_id=rid)

    for name in ("calories", "protein", "carbs", "fat"):
        value = getattr(nutrition, name)
        if not math.isfinite(value) or value < 0:
            fail(f"{name} must be a non-negative number, got {value}")

    low, high = CALORIE_RANGE
    if not low <= nutrition.calories <= high:
        fail(f"calories {nutrition.calories:.0f} outside {low}-{high} per serving")

    for name, (low, high) in MACRO_RANGES.items():
        value = getattr(nutrition, name)
        if not low <= value <= high:
            fail(f"{name} {value:.1f}g outside {low}-{high}g per serving")

    energy = macro_energy(nutrition)
    allowed = max(nutrition.calories * ENERGY_TOLERANCE, ENERGY_SLACK_KCAL)
    if abs(energy - nutrition.calories) > allowed:
        fail(
            f"declared {nutrition.calories:.0f} kcal does not match "
            f"{energy:.0f} kcal from macros"
        )

    if concept.servings < 1:
        fail(f"servings must be at least 1, got {concept.servings}")

    if options is not None:
        _check_requested_bounds(concept, options, fail)

    return ValidatedConcept(concept=concept)


def _check_requested_bounds(concept, options, fail):
    nutrition = concept.nutrition
    if options.max_calories and nutrition.calories > options.max_calories:
        fail(f"{nutrition.calories:.0f} kcal exceeds requested max {options.max_calories}")
    if options.max_prep_time and concept.prep_time_minutes > options.max_prep_time:
        fail(
            f"prep time {concept.prep_time_minutes} min exceeds requested "
            f"max {options.max_prep_time}"
        )
    for name in ("protein", "carbs", "fat"):
        value = getattr(nutrition, name)
        low = getattr(options, f"min_{name}")
        high = getattr(options, f"max_{name}")
        if low is not None and value < low:
            fail(f"{name} {value:.1f}g below requested min {low}")
        if high is not None and value > high:
            fail(f"{name} {value:.1f}g above requested max {high}")


def validate_all(concepts, options=None):
    """Validate a chunk; failures drop only the offending recipe.

    Returns:
        (validated, failures) where failures is a list of ValidationFailure
    """
    validated, failures = [], []
    for concept in concepts:
        try:
            validated.append(validate(concept, options))
        except ValidationFailure as e:
            logger.info("Validation dropped recipe %s: %s", e.recipe_id, e.reason)
            failures.append(e)
    return validated, failures
