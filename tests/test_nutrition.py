"""Tests for the nutrition validator."""
import pytest

from recipegen.errors import MalformedInputError, ValidationFailure
from recipegen.schemas import GenerationRequest
from recipegen.services import nutrition_service


def _nutrition(calories=520, protein=35, carbs=50, fat=18):
    return {"calories": calories, "protein": protein, "carbs": carbs, "fat": fat}


def test_valid_concept_passes(make_concept):
    concept = make_concept(recipe_id=3)
    result = nutrition_service.validate(concept)
    assert isinstance(result, nutrition_service.ValidatedConcept)
    assert result.concept is concept
    assert result.recipe_id == 3


@pytest.mark.parametrize(
    "nutrition,reason",
    [
        (_nutrition(calories=20, protein=2, carbs=2, fat=0), "calories"),
        (_nutrition(calories=2600, protein=150, carbs=280, fat=100), "calories"),
        (_nutrition(calories=1300, protein=250, carbs=50, fat=10), "protein"),
        (_nutrition(calories=500, protein=-5, carbs=60, fat=20), "protein"),
        (_nutrition(calories=900, protein=10, carbs=20, fat=5), "does not match"),
    ],
)
def test_out_of_range_nutrition_fails(make_concept, nutrition, reason):
    concept = make_concept(recipe_id=7, nutrition=nutrition)
    with pytest.raises(ValidationFailure, match=reason) as exc:
        nutrition_service.validate(concept)
    assert exc.value.recipe_id == 7
    assert exc.value.to_dict()["kind"] == "validation"


def test_non_finite_values_fail(make_concept):
    concept = make_concept(nutrition=_nutrition(calories=float("nan")))
    with pytest.raises(ValidationFailure, match="non-negative"):
        nutrition_service.validate(concept)


def test_requested_bounds_apply(make_concept):
    concept = make_concept()
    options = GenerationRequest(count=5, max_calories=400)
    with pytest.raises(ValidationFailure, match="requested max 400"):
        nutrition_service.validate(concept, options)

    options = GenerationRequest(count=5, min_protein=40)
    with pytest.raises(ValidationFailure, match="below requested min"):
        nutrition_service.validate(concept, options)

    options = GenerationRequest(count=5, max_prep_time=5)
    with pytest.raises(ValidationFailure, match="prep time"):
        nutrition_service.validate(concept, options)


def test_validate_all_drops_only_failures(make_concept):
    good = [make_concept(recipe_id=1), make_concept(recipe_id=3)]
    bad = make_concept(recipe_id=2, nutrition=_nutrition(calories=5000))

    validated, failures = nutrition_service.validate_all([good[0], bad, good[1]])

    assert [v.recipe_id for v in validated] == [1, 3]
    assert [f.recipe_id for f in failures] == [2]


def test_rejects_wrong_input():
    with pytest.raises(MalformedInputError):
        nutrition_service.validate({"name": "dict, not a concept"})
