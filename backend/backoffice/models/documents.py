from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class DocumentSequence(db.Model):
    """
    Per-day counter behind human-readable document numbers.

    One row per (document_type, date_code); next_number is bumped with an
    atomic UPDATE so concurrent allocators never hand out the same value.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "date_code", name="uq_document_sequences_type_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(16), nullable=False)
    date_code = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)


class AuditLog(db.Model):
    """
    Append-only audit trail written by the post-commit event bus.

    Rows are written in their own session after the business transaction has
    committed; a failed audit write never undoes a stock movement.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_logs_tenant_created", "tenant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(64), nullable=False)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    tenant_id = db.Column(db.Integer, nullable=True)
    branch_id = db.Column(db.Integer, nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    ip = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "metadata": self.metadata_json,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "user_id": self.user_id,
            "ip": self.ip,
            "created_at": to_utc_z(self.created_at),
        }
