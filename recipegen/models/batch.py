import uuid
from datetime import datetime, timezone
from recipegen.extensions import db
from recipegen.errors import BatchClosedError


def _new_batch_id():
    return uuid.uuid4().hex


class GenerationBatch(db.Model):
    __tablename__ = "generation_batches"

    id = db.Column(db.String(32), primary_key=True, default=_new_batch_id)
    requested_count = db.Column(db.Integer, nullable=False)
    chunk_size = db.Column(db.Integer, nullable=False, default=5)
    status = db.Column(
        db.String(30), nullable=False, default="running", index=True
    )
    options = db.Column(db.JSON, default=dict)
    recipes_completed = db.Column(db.Integer, nullable=False, default=0)
    error_log = db.Column(db.JSON, default=list)
    # Cause shown for complete_with_errors and failed
    message = db.Column(db.Text)
    submitted_by = db.Column(db.String(100))
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at = db.Column(db.DateTime(timezone=True))

    recipes = db.relationship("Recipe", backref="batch", lazy="dynamic")

    STATUSES = {"running", "complete", "complete_with_errors", "failed"}
    TERMINAL_STATUSES = {"complete", "complete_with_errors", "failed"}

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def add_error(self, payload):
        if self.is_terminal:
            raise BatchClosedError(f"Batch {self.id} is already {self.status}")
        # Reassign so the JSON column registers the change
        self.error_log = list(self.error_log or []) + [payload]

    def finish(self, status, recipes_completed, message=None):
        """Move to a terminal status. Allowed exactly once."""
        if status not in self.TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal batch status: {status}")
        if self.is_terminal:
            raise BatchClosedError(f"Batch {self.id} is already {self.status}")
        self.status = status
        self.recipes_completed = recipes_completed
        self.message = message or None
        self.completed_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "batchId": self.id,
            "status": self.status,
            "requestedCount": self.requested_count,
            "chunkSize": self.chunk_size,
            "recipesCompleted": self.recipes_completed,
            "message": self.message,
            "errors": self.error_log or [],
            "options": self.options or {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "completedAt": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }

    def __repr__(self):
        return f"<GenerationBatch {self.id} [{self.status}]>"
