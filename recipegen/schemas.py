"""Pydantic schemas for the payloads that cross stage boundaries.

Submission bodies and model output are both untrusted, so each is parsed
into one of these models before any stage touches it.
"""
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class GenerationRequest(_CamelModel):
    """Body of a batch submission."""

    count: Annotated[int, Field(strict=True, gt=0)]
    meal_types: List[str] = Field(default_factory=list)
    dietary_constraints: List[str] = Field(default_factory=list)
    generate_images: bool = True

    fitness_goal: Optional[str] = None
    focus_ingredient: Optional[str] = None
    difficulty: Optional[str] = None
    max_prep_time: Optional[int] = Field(None, gt=0)
    max_calories: Optional[int] = Field(None, gt=0)
    min_protein: Optional[float] = Field(None, ge=0)
    max_protein: Optional[float] = Field(None, ge=0)
    min_carbs: Optional[float] = Field(None, ge=0)
    max_carbs: Optional[float] = Field(None, ge=0)
    min_fat: Optional[float] = Field(None, ge=0)
    max_fat: Optional[float] = Field(None, ge=0)
    enable_nutrition_validation: bool = True
    chunk_size: Optional[int] = Field(None, gt=0)

    @field_validator("meal_types", "dietary_constraints", mode="before")
    @classmethod
    def split_csv(cls, value):
        """Accept "lunch, dinner" as well as ["lunch", "dinner"]."""
        if value is None:
            return []
        if isinstance(value, str):
            return [v.strip().lower() for v in value.split(",") if v.strip()]
        return value

    @model_validator(mode="after")
    def check_ranges(self) -> "GenerationRequest":
        for nutrient in ("protein", "carbs", "fat"):
            low = getattr(self, f"min_{nutrient}")
            high = getattr(self, f"max_{nutrient}")
            if low is not None and high is not None and low > high:
                raise ValueError(f"min_{nutrient} must not exceed max_{nutrient}")
        return self


class Ingredient(_CamelModel):
    name: str = Field(min_length=1)
    amount: str = ""
    unit: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def amount_to_text(cls, value):
        return "" if value is None else str(value)


class Nutrition(_CamelModel):
    """Per-serving values as declared by the model."""

    calories: float
    protein: float
    carbs: float
    fat: float


class RecipeConcept(_CamelModel):
    """One candidate recipe inside a chunk.

    ``recipe_id`` is the batch-wide ordinal handed out at concept generation;
    it is transient and never used as a database key.
    """

    model_config = ConfigDict(frozen=True)

    recipe_id: int
    sequence: int
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    meal_types: List[str] = Field(default_factory=list)
    dietary_tags: List[str] = Field(default_factory=list)
    main_ingredient_tags: List[str] = Field(default_factory=list)
    ingredients: List[Ingredient] = Field(min_length=1)
    instructions: str = ""
    prep_time_minutes: int = Field(0, ge=0)
    cook_time_minutes: int = Field(0, ge=0)
    servings: int = 1
    nutrition: Nutrition
    image_prompt: Optional[str] = None

    @field_validator("instructions", mode="before")
    @classmethod
    def join_steps(cls, value):
        if isinstance(value, list):
            return "\n".join(str(step).strip() for step in value if str(step).strip())
        return value or ""
