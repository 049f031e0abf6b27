from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class StockRecord(db.Model):
    """
    Current quantity of one variant at one branch.

    WHY: The single source of truth for "how many can we sell here right now".
    Every sale, transfer, return and manual correction moves this number, and
    each move happens inside one database transaction.

    CONCURRENCY:
    - Rows are read with SELECT ... FOR UPDATE before being changed
    - version_id gives optimistic detection of lost updates (StaleDataError)
    - CHECK (quantity >= 0) is the last line of defence against overselling

    MULTI-TENANT: scoped through branch_id -> branches.tenant_id.
    """
    __tablename__ = "stock_records"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "branch_id", name="uq_stock_records_variant_branch"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_non_negative"),
        db.Index("ix_stock_records_branch", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    variant = db.relationship("ProductVariant")
    branch = db.relationship("Branch")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<StockRecord variant_id={self.variant_id} branch_id={self.branch_id} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "branch_id": self.branch_id,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockAdjustment(db.Model):
    """
    Immutable audit row for a stock change outside the sale/transfer flows.

    INSERT-ONLY: nothing in the application updates or deletes these rows.
    reason is an AdjustmentReason value, or NULL for neutral additions
    (restock, found, ...).
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.Index("ix_stock_adjustments_variant_branch", "variant_id", "branch_id"),
        db.Index("ix_stock_adjustments_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_id = db.Column(db.Integer, db.ForeignKey("stock_records.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    previous_qty = db.Column(db.Integer, nullable=False)
    new_qty = db.Column(db.Integer, nullable=False)
    difference = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    adjusted_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    variant = db.relationship("ProductVariant")
    branch = db.relationship("Branch")
    adjusted_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_id": self.stock_id,
            "variant_id": self.variant_id,
            "branch_id": self.branch_id,
            "previous_qty": self.previous_qty,
            "new_qty": self.new_qty,
            "difference": self.difference,
            "reason": self.reason,
            "notes": self.notes,
            "adjusted_by_id": self.adjusted_by_id,
            "adjusted_by": self.adjusted_by.name if self.adjusted_by else None,
            "created_at": to_utc_z(self.created_at),
        }


class StockAlert(db.Model):
    """Low-stock threshold for a (variant, branch) pair."""
    __tablename__ = "stock_alerts"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "branch_id", name="uq_stock_alerts_variant_branch"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    min_stock = db.Column(db.Integer, nullable=False, default=5)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "branch_id": self.branch_id,
            "min_stock": self.min_stock,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockTransfer(db.Model):
    """
    Movement of one variant's quantity between two branches of a tenant.

    LIFECYCLE:
    1. PENDING: requested by an ADMIN, no stock has moved
    2. COMPLETED: source debited and destination credited atomically
    3. CANCELLED: rejected while PENDING, no stock has moved

    COMPLETED and CANCELLED are terminal.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.UniqueConstraint("transfer_no", name="uq_stock_transfers_transfer_no"),
        db.CheckConstraint("quantity > 0", name="ck_stock_transfers_quantity_positive"),
        db.CheckConstraint("from_branch_id <> to_branch_id", name="ck_stock_transfers_distinct_branches"),
        db.Index("ix_stock_transfers_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_no = db.Column(db.String(32), nullable=False)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    from_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    notes = db.Column(db.Text, nullable=True)

    requested_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    processed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    variant = db.relationship("ProductVariant")
    from_branch = db.relationship("Branch", foreign_keys=[from_branch_id])
    to_branch = db.relationship("Branch", foreign_keys=[to_branch_id])
    requested_by = db.relationship("User", foreign_keys=[requested_by_id])
    processed_by = db.relationship("User", foreign_keys=[processed_by_id])

    def __repr__(self) -> str:
        return f"<StockTransfer {self.transfer_no} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_no": self.transfer_no,
            "variant_id": self.variant_id,
            "from_branch_id": self.from_branch_id,
            "to_branch_id": self.to_branch_id,
            "quantity": self.quantity,
            "status": self.status,
            "notes": self.notes,
            "requested_by_id": self.requested_by_id,
            "processed_by_id": self.processed_by_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
