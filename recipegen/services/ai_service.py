"""Thin wrapper over the Gemini SDK.

Every call maps SDK failures onto the pipeline's upstream error classes so
the agents above can decide what to retry.
"""
import json
import logging
import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from flask import current_app

from recipegen.errors import (
    MalformedOutputError,
    QuotaExceededError,
    TransientUpstreamError,
    UpstreamError,
)

logger = logging.getLogger(__name__)


CONCEPT_PROMPT = """You are a nutrition-focused recipe developer. Create {count} \
distinct recipes.

Requirements:
- Meal types: {meal_types}
- Dietary constraints: {dietary}
{extra}
Respond with a JSON array only. Each element must have:
  "name", "description", "mealTypes" (list), "dietaryTags" (list),
  "mainIngredientTags" (list),
  "ingredients" (list of {{"name", "amount", "unit"}}),
  "instructions" (string, one step per line),
  "prepTimeMinutes", "cookTimeMinutes", "servings",
  "nutrition": {{"calories", "protein", "carbs", "fat"}} per serving,
  "imagePrompt" (one sentence describing the plated dish)."""


IMAGE_PROMPT = """Professional overhead food photograph of {name}. {description}
Natural daylight, neutral table, shallow depth of field, appetising and \
realistic. No text, no watermarks, no hands, no people."""

_TRANSIENT = (
    google_exceptions.DeadlineExceeded,
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
    google_exceptions.GatewayTimeout,
    TimeoutError,
    ConnectionError,
)


def configure():
    """Configure Gemini with API key."""
    genai.configure(api_key=current_app.config["GEMINI_API_KEY"])


def classify_error(exc):
    """Translate an SDK exception into an UpstreamError subclass."""
    if isinstance(exc, UpstreamError):
        return exc
    if isinstance(exc, google_exceptions.ResourceExhausted):
        message = str(exc).lower()
        # Per-minute throttling clears by itself; an exhausted allowance does not
        if "per minute" in message or "rate limit" in message:
            return TransientUpstreamError(f"Rate limited: {exc}")
        return QuotaExceededError(f"Quota exceeded: {exc}")
    if isinstance(exc, _TRANSIENT):
        return TransientUpstreamError(f"Upstream unavailable: {exc}")
    return UpstreamError(f"Upstream call failed: {exc}", kind="fatal")


def build_concept_prompt(chunk):
    options = chunk.options
    extra = []
    if options.fitness_goal:
        extra.append(f"- Fitness goal: {options.fitness_goal}")
    if options.focus_ingredient:
        extra.append(f"- Feature this ingredient: {options.focus_ingredient}")
    if options.difficulty:
        extra.append(f"- Difficulty: {options.difficulty}")
    if options.max_prep_time:
        extra.append(f"- Prep time at most {options.max_prep_time} minutes")
    if options.max_calories:
        extra.append(f"- At most {options.max_calories} kcal per serving")
    return CONCEPT_PROMPT.format(
        count=chunk.count,
        meal_types=", ".join(options.meal_types) or "any",
        dietary=", ".join(options.dietary_constraints) or "none",
        extra="\n".join(extra) + ("\n" if extra else ""),
    )


def generate_concepts(chunk):
    """Ask the text model for ``chunk.count`` recipes.

    Returns:
        the decoded JSON payload (expected to be a list of dicts)

    Raises:
        TransientUpstreamError, QuotaExceededError, MalformedOutputError,
        UpstreamError
    """
    configure()
    model = genai.GenerativeModel(current_app.config["GEMINI_TEXT_MODEL"])

    try:
        response = model.generate_content(
            build_concept_prompt(chunk),
            generation_config=genai.GenerationConfig(
                response_mime_type="application/json",
            ),
        )
        text = response.text
    except ValueError as e:
        # response.text raises ValueError when the candidate was blocked
        raise MalformedOutputError(f"Gemini returned no text: {e}")
    except Exception as e:
        raise classify_error(e) from e

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedOutputError(f"Concept response is not valid JSON: {e}")


def generate_image(concept):
    """Generate a plated-dish photo for one concept.

    Returns:
        raw image bytes as returned by the model

    Raises:
        TransientUpstreamError, QuotaExceededError, UpstreamError
    """
    configure()
    model = genai.GenerativeModel(current_app.config["GEMINI_IMAGE_MODEL"])
    prompt = concept.image_prompt or IMAGE_PROMPT.format(
        name=concept.name, description=concept.description
    )

    try:
        response = model.generate_content(
            prompt,
            generation_config=genai.GenerationConfig(
                response_mime_type="image/jpeg",
            ),
        )
    except Exception as e:
        raise classify_error(e) from e

    if not response.candidates:
        raise TransientUpstreamError("Gemini returned no candidates")

    candidate = response.candidates[0]

    # Handle inline image data
    for part in candidate.content.parts:
        if hasattr(part, "inline_data") and part.inline_data:
            return part.inline_data.data

    raise TransientUpstreamError("Gemini response did not contain an image")
