from datetime import datetime, timezone

from prode import db


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    CALCULATE_MATCH_POINTS = "CALCULATE_MATCH_POINTS"
    UPDATE_MATCH_RESULT = "UPDATE_MATCH_RESULT"

    id = db.Column(db.Integer, primary_key=True)

    # Acting user; null for system-initiated actions (scheduler, CLI)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    action = db.Column(db.String(50), nullable=False)
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.String(50), nullable=False)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User", backref="audit_logs")

    __table_args__ = (
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_created", "created_at"),
    )

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id}>"

    @staticmethod
    def log_action(
        action,
        entity_type,
        entity_id,
        user_id=None,
        old_values=None,
        new_values=None,
    ):
        """Add an audit row to the session; the caller commits"""
        entry = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            old_values=old_values,
            new_values=new_values or {},
        )
        db.session.add(entry)
        return entry

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
