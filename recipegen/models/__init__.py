from recipegen.models.batch import GenerationBatch
from recipegen.models.recipe import Recipe
from recipegen.models.review_queue import ReviewQueueEntry
from recipegen.models.audit_log import AuditLog

__all__ = ["GenerationBatch", "Recipe", "ReviewQueueEntry", "AuditLog"]
