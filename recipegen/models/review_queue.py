from datetime import datetime, timezone
from recipegen.extensions import db


class ReviewQueueEntry(db.Model):
    __tablename__ = "recipe_review_queue"

    id = db.Column(db.Integer, primary_key=True)
    recipe_id = db.Column(
        db.String(36),
        db.ForeignKey("recipes.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    batch_id = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(
        db.String(20), nullable=False, default="pending_images", index=True
    )
    image_generation_status = db.Column(
        db.String(20), nullable=False, default="pending"
    )
    accepted_without_image = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    reviewed_at = db.Column(db.DateTime(timezone=True))
    reviewed_by = db.Column(db.String(100))
    rejection_reason = db.Column(db.Text)

    __table_args__ = (
        db.Index("ix_review_queue_batch_status", "batch_id", "status"),
    )

    STATUSES = {"pending_images", "ready_for_review", "approved", "rejected"}
    TERMINAL_STATUSES = {"approved", "rejected"}
    IMAGE_STATUSES = {"pending", "in_progress", "completed", "failed"}

    # Allowed moves; terminal states have none
    TRANSITIONS = {
        "pending_images": {"ready_for_review"},
        "ready_for_review": {"approved", "rejected"},
        "approved": set(),
        "rejected": set(),
    }

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "recipeId": self.recipe_id,
            "batchId": self.batch_id,
            "status": self.status,
            "imageGenerationStatus": self.image_generation_status,
            "acceptedWithoutImage": self.accepted_without_image,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewedBy": self.reviewed_by,
            "rejectionReason": self.rejection_reason,
        }

    def __repr__(self):
        return f"<ReviewQueueEntry {self.id} {self.recipe_id} [{self.status}]>"
