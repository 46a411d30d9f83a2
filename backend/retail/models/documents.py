from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class DocumentSequence(db.Model):
    """
    Atomic per-tenant document sequences.

    WHY: Prevent race conditions when generating document numbers (sales).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "document_type", name="uq_doc_sequences_tenant_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class AuditEvent(db.Model):
    """
    Best-effort audit trail of business operations.

    Written after the business transaction commits, in its own transaction.
    A failed audit write never undoes or fails the business operation.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_tenant_created", "tenant_id", "created_at"),
        db.Index("ix_audit_events_tenant_resource", "tenant_id", "resource", "resource_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)

    # What happened, e.g. "stock.adjust", "sale.complete"
    action = db.Column(db.String(64), nullable=False, index=True)
    # What it refers to (generic pointer)
    resource = db.Column(db.String(64), nullable=False)
    resource_id = db.Column(db.String(64), nullable=True)

    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    success = db.Column(db.Boolean, nullable=False, default=True)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "success": self.success,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
