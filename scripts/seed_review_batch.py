#!/usr/bin/env python3
"""Seed a finished batch with queued recipes for local review-UI work.

No model calls: recipes come from the fixed list below and images use
placehold.co URLs.
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from recipegen import create_app
from recipegen.extensions import db
from recipegen.schemas import GenerationRequest, RecipeConcept
from recipegen.services import (
    batch_service,
    persistence_service,
    progress_service,
    review_service,
)

app = create_app()

SAMPLE_RECIPES = [
    ("Greek Chicken Bowl", "lunch", (540, 42, 48, 18)),
    ("Overnight Protein Oats", "breakfast", (410, 28, 52, 10)),
    ("Salmon Teriyaki with Rice", "dinner", (620, 38, 64, 20)),
    ("Turkey Lettuce Wraps", "lunch", (380, 32, 18, 19)),
    ("Lentil Spinach Curry", "dinner", (460, 22, 62, 12)),
    ("Cottage Cheese Pancakes", "breakfast", (350, 26, 34, 11)),
    ("Beef and Broccoli Stir-fry", "dinner", (570, 40, 38, 26)),
    ("Tuna White Bean Salad", "lunch", (430, 35, 30, 16)),
]

COLORS = ["e76f51", "2a9d8f", "264653", "f4a261", "8ab17d"]


def _concept(index, name, meal_type, nutrition):
    calories, protein, carbs, fat = nutrition
    return RecipeConcept(
        recipe_id=index + 1,
        sequence=index,
        name=name,
        meal_types=[meal_type],
        ingredients=[{"name": name.split()[0].lower(), "amount": "1", "unit": "portion"}],
        instructions="Prepare the ingredients.\nCook and serve.",
        prep_time_minutes=10,
        cook_time_minutes=15,
        servings=1,
        nutrition={"calories": calories, "protein": protein, "carbs": carbs, "fat": fat},
    )


def seed():
    with app.app_context():
        batch = batch_service.create_batch(
            GenerationRequest(count=len(SAMPLE_RECIPES)), submitted_by="seed"
        )
        concepts = [
            _concept(i, name, meal_type, nutrition)
            for i, (name, meal_type, nutrition) in enumerate(SAMPLE_RECIPES)
        ]
        recipes = persistence_service.persist(concepts, batch)

        # Leave the last two waiting on images
        for i, recipe in enumerate(recipes[:-2]):
            color = COLORS[i % len(COLORS)]
            recipe.image_url = f"https://placehold.co/800x600/{color}/fff?text=Recipe"
            review_service.mark_image_completed(recipe.id)
            print(f"  Ready for review: {recipe.name}")

        batch.finish("complete", len(recipes))
        db.session.commit()
        progress_service.broadcaster().finish(
            batch.id, "complete", recipes_completed=len(recipes)
        )
        print(f"\nSeeded batch {batch.id} with {len(recipes)} recipes.")


if __name__ == "__main__":
    seed()
