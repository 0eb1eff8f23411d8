from datetime import datetime, timezone
from recipegen.extensions import db


class AuditLog(db.Model):
    __tablename__ = "audit_log"

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.String(100), nullable=False, index=True)
    action = db.Column(db.String(50), nullable=False)
    recipe_id = db.Column(
        db.String(36),
        db.ForeignKey("recipes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    batch_id = db.Column(db.String(32), index=True)
    payload = db.Column(db.JSON)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    ACTIONS = {
        "SUBMIT_BATCH",
        "APPROVE",
        "REJECT",
        "APPROVE_ALL_READY",
        "OVERRIDE_NO_IMAGE",
        "REGENERATE_IMAGE",
    }

    def __repr__(self):
        return f"<AuditLog {self.action} by {self.admin_id}>"
