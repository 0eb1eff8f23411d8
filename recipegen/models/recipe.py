import uuid
from datetime import datetime, timezone
from recipegen.extensions import db


def _new_recipe_id():
    return str(uuid.uuid4())


class Recipe(db.Model):
    __tablename__ = "recipes"

    id = db.Column(db.String(36), primary_key=True, default=_new_recipe_id)
    batch_id = db.Column(
        db.String(32),
        db.ForeignKey("generation_batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    meal_types = db.Column(db.JSON, default=list)  # ["breakfast", "lunch"]
    dietary_tags = db.Column(db.JSON, default=list)  # ["vegan", "keto"]
    main_ingredient_tags = db.Column(db.JSON, default=list)
    ingredients_json = db.Column(db.JSON, nullable=False, default=list)
    instructions_text = db.Column(db.Text, nullable=False, default="")
    prep_time_minutes = db.Column(db.Integer, nullable=False, default=0)
    cook_time_minutes = db.Column(db.Integer, nullable=False, default=0)
    servings = db.Column(db.Integer, nullable=False, default=1)
    calories_kcal = db.Column(db.Integer, nullable=False)
    protein_grams = db.Column(db.Numeric(5, 2), nullable=False)
    carbs_grams = db.Column(db.Numeric(5, 2), nullable=False)
    fat_grams = db.Column(db.Numeric(5, 2), nullable=False)
    image_url = db.Column(db.String(1024))
    needs_image_repair = db.Column(db.Boolean, nullable=False, default=False)
    review_status = db.Column(
        db.String(20),
        nullable=False,
        default="approved",
        server_default="approved",
        index=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    review_entry = db.relationship(
        "ReviewQueueEntry", backref="recipe", uselist=False
    )

    REVIEW_STATUSES = {"draft", "in_review", "approved", "rejected"}

    def to_dict(self):
        return {
            "id": self.id,
            "batchId": self.batch_id,
            "name": self.name,
            "description": self.description,
            "mealTypes": self.meal_types or [],
            "dietaryTags": self.dietary_tags or [],
            "ingredients": self.ingredients_json or [],
            "servings": self.servings,
            "caloriesKcal": self.calories_kcal,
            "proteinGrams": float(self.protein_grams),
            "carbsGrams": float(self.carbs_grams),
            "fatGrams": float(self.fat_grams),
            "imageUrl": self.image_url,
            "needsImageRepair": self.needs_image_repair,
            "reviewStatus": self.review_status,
        }

    def __repr__(self):
        return f"<Recipe {self.id}: {self.name}>"
