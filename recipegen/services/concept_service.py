"""Concept agent: turn one chunk into structured recipe concepts."""
import logging
import time

from flask import current_app
from pydantic import ValidationError

from recipegen.errors import MalformedInputError, MalformedOutputError, TransientUpstreamError
from recipegen.schemas import RecipeConcept
from recipegen.services import ai_service
from recipegen.services.batch_service import ChunkSpec

logger = logging.getLogger(__name__)


def backoff_delay(attempt):
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return current_app.config["RETRY_BASE_DELAY"] * (2 ** (attempt - 1))


def generate_concepts(chunk, dropped=None):
    """Generate and structurally validate the concepts for ``chunk``.

    Reasons for items that could not be used are appended to ``dropped``.

    Transient upstream errors are retried up to CONCEPT_MAX_RETRIES times.
    Quota and malformed-output errors propagate immediately.
    """
    if not isinstance(chunk, ChunkSpec):
        raise MalformedInputError("concept generation", "ChunkSpec", chunk)

    max_retries = current_app.config["CONCEPT_MAX_RETRIES"]
    attempt = 0
    while True:
        try:
            payload = ai_service.generate_concepts(chunk)
            break
        except TransientUpstreamError as e:
            attempt += 1
            if attempt > max_retries:
                logger.error(
                    "Chunk %d of batch %s: giving up after %d retries",
                    chunk.number,
                    chunk.batch_id,
                    max_retries,
                )
                raise
            delay = backoff_delay(attempt)
            logger.warning(
                "Chunk %d of batch %s: %s (attempt %d/%d), retrying in %.1fs",
                chunk.number,
                chunk.batch_id,
                e,
                attempt,
                max_retries,
                delay,
            )
            time.sleep(delay)

    return parse_concepts(payload, chunk, dropped)


def parse_concepts(payload, chunk, dropped=None):
    """Validate raw model output into RecipeConcepts.

    Items that fail the schema are dropped and their reasons appended to
    ``dropped``; a payload that yields nothing usable raises
    MalformedOutputError.
    """
    if dropped is None:
        dropped = []
    if isinstance(payload, dict):
        payload = payload.get("recipes", payload.get("concepts"))
    if not isinstance(payload, list):
        raise MalformedOutputError(
            f"Expected a list of recipes, got {type(payload).__name__}"
        )

    concepts = []
    for item in payload[: chunk.count]:
        sequence = len(concepts)
        if not isinstance(item, dict):
            logger.warning("Dropping non-object concept in chunk %d", chunk.number)
            dropped.append(f"item is a {type(item).__name__}, not an object")
            continue
        data = dict(item)
        data["recipeId"] = chunk.start + sequence + 1
        data["sequence"] = sequence
        try:
            concepts.append(RecipeConcept.model_validate(data))
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else None
            reason = (
                f"{'.'.join(str(p) for p in first['loc'])}: {first['msg']}"
                if first
                else str(e)
            )
            logger.warning(
                "Dropping malformed concept %r in chunk %d: %s",
                item.get("name"),
                chunk.number,
                reason,
            )
            dropped.append(f"{item.get('name') or 'unnamed'}: {reason}")

    if not concepts:
        raise MalformedOutputError(
            f"Chunk {chunk.number} produced no usable recipe concepts"
        )
    if len(payload) < chunk.count:
        dropped.append(f"model returned only {len(payload)} items")
    if len(concepts) < chunk.count:
        logger.warning(
            "Chunk %d of batch %s: %d of %d concepts usable",
            chunk.number,
            chunk.batch_id,
            len(concepts),
            chunk.count,
        )
    return concepts
