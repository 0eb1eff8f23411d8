"""Error taxonomy for the batch generation pipeline.

Per-recipe errors (ValidationFailure, ImageError, StorageError) are recovered
by the chunk that raised them. QuotaExceededError stops the whole batch.
"""


class PipelineError(Exception):
    """Base class for every error the pipeline raises on purpose."""

    def to_dict(self):
        return {"error": str(self), "kind": type(self).__name__}


class UpstreamError(PipelineError):
    """The generative model call failed."""

    kind = "upstream"

    def __init__(self, message, kind=None):
        super().__init__(message)
        if kind:
            self.kind = kind

    def to_dict(self):
        return {"error": str(self), "kind": self.kind}


class TransientUpstreamError(UpstreamError):
    """Timeout, 5xx or rate limit. Safe to retry."""

    kind = "transient"


class QuotaExceededError(UpstreamError):
    """Usage allowance exhausted. Fatal for the rest of the batch."""

    kind = "quota"


class MalformedOutputError(UpstreamError):
    """The model answered, but not in the expected recipe shape."""

    kind = "malformed"


class ImageError(PipelineError):
    """Image generation failed for a single recipe."""

    def __init__(self, message, kind="transient"):
        super().__init__(message)
        self.kind = kind

    def to_dict(self):
        return {"error": str(self), "kind": f"image_{self.kind}"}


class ValidationFailure(PipelineError):
    """A concept's nutrition data is missing or out of range."""

    def __init__(self, reason, recipe_id=None):
        super().__init__(reason)
        self.reason = reason
        self.recipe_id = recipe_id

    def to_dict(self):
        return {"error": self.reason, "kind": "validation", "recipeId": self.recipe_id}


class StorageError(PipelineError):
    """Uploading an image or writing it back to the recipe failed."""


class MalformedInputError(PipelineError):
    """A stage was handed data that does not match its declared input."""

    def __init__(self, stage, expected, received):
        super().__init__(
            f"{stage} expected {expected}, got {type(received).__name__}"
        )
        self.stage = stage
        self.expected = expected
        self.received_type = type(received).__name__

    def to_dict(self):
        return {
            "error": str(self),
            "kind": "malformed_input",
            "stage": self.stage,
        }


class RecipeIdentifierError(PipelineError):
    """A recipe was addressed by an id that is unknown or of the wrong kind."""


class InvalidTransitionError(PipelineError):
    """A review queue entry cannot move to the requested status."""


class BatchClosedError(PipelineError):
    """The batch already reached a terminal status."""
