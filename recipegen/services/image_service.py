"""Image agent: one generated photo per recipe."""
import io
import logging
import time
from dataclasses import dataclass

from flask import current_app
from PIL import Image as PILImage

from recipegen.errors import (
    ImageError,
    MalformedInputError,
    QuotaExceededError,
    TransientUpstreamError,
    UpstreamError,
)
from recipegen.schemas import RecipeConcept
from recipegen.services import ai_service

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB


@dataclass(frozen=True)
class ImageBlob:
    recipe_id: int  # transient id of the concept the image belongs to
    data: bytes
    content_type: str = "image/jpeg"


def validate_image(image_bytes):
    """Validate and normalise a generated image.

    - Checks file size
    - Verifies it's a real image via Pillow
    - Strips metadata by re-encoding
    - Converts to JPEG

    Returns:
        Sanitized JPEG bytes

    Raises:
        ValueError on invalid input
    """
    if len(image_bytes) > MAX_FILE_SIZE:
        raise ValueError(f"Image too large: {len(image_bytes)} bytes (max {MAX_FILE_SIZE})")

    try:
        img = PILImage.open(io.BytesIO(image_bytes))
        img.verify()  # verify it's a real image
    except Exception:
        raise ValueError("Invalid image file")

    # Re-open (verify() closes the file) and re-encode
    img = PILImage.open(io.BytesIO(image_bytes))
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


def request_image(concept):
    """Generate the image for one concept, retrying transient failures.

    Returns:
        ImageBlob

    Raises:
        ImageError(kind="quota") when the allowance is exhausted
        ImageError(kind="transient") when retries run out or output is unusable
    """
    if not isinstance(concept, RecipeConcept):
        raise MalformedInputError("image generation", "RecipeConcept", concept)

    max_retries = current_app.config["IMAGE_MAX_RETRIES"]
    base_delay = current_app.config["RETRY_BASE_DELAY"]
    attempt = 0
    while True:
        try:
            raw = ai_service.generate_image(concept)
            return ImageBlob(recipe_id=concept.recipe_id, data=validate_image(raw))
        except QuotaExceededError as e:
            raise ImageError(str(e), kind="quota") from e
        except (TransientUpstreamError, ValueError) as e:
            attempt += 1
            if attempt > max_retries:
                raise ImageError(
                    f"Image for {concept.name!r} failed after {attempt} attempts: {e}"
                ) from e
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "Image for recipe %d failed (%s), retry %d/%d in %.1fs",
                concept.recipe_id,
                e,
                attempt,
                max_retries,
                delay,
            )
            time.sleep(delay)
        except UpstreamError as e:
            raise ImageError(str(e)) from e
