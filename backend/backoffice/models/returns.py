from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Return(db.Model):
    """
    Customer return or exchange against a sales transaction.

    LIFECYCLE:
    1. PENDING: awaiting manager approval, no stock has moved
    2. COMPLETED: stock effects applied (restock, write-off or exchange)
    3. REJECTED: declined, no stock has moved

    REFUND returns give money back. EXCHANGE returns hand out replacement
    items; price_difference_cents = exchange subtotal - returned subtotal
    (positive means the customer pays more).
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("return_no", name="uq_returns_return_no"),
        db.Index("ix_returns_branch_status", "branch_id", "status"),
        db.Index("ix_returns_transaction", "transaction_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_no = db.Column(db.String(32), nullable=False)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    transaction_id = db.Column(db.String(36), db.ForeignKey("transactions.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    processed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    reason = db.Column(db.String(32), nullable=False)
    reason_detail = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    condition_note = db.Column(db.String(255), nullable=True)

    return_type = db.Column(db.String(16), nullable=False, default="REFUND")
    status = db.Column(db.String(16), nullable=False, default="PENDING")

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    price_difference_cents = db.Column(db.Integer, nullable=True)
    refund_method = db.Column(db.String(16), nullable=True)

    is_overdue = db.Column(db.Boolean, nullable=False, default=False)
    manager_override = db.Column(db.Boolean, nullable=False, default=False)

    approved_by = db.Column(db.String(128), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.String(128), nullable=True)
    rejection_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    transaction = db.relationship("Transaction")
    items = db.relationship("ReturnItem", back_populates="return_doc", lazy=True, order_by="ReturnItem.id")
    exchange_items = db.relationship("ExchangeItem", back_populates="return_doc", lazy=True, order_by="ExchangeItem.id")

    def __repr__(self) -> str:
        return f"<Return {self.return_no} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "return_no": self.return_no,
            "transaction_id": self.transaction_id,
            "branch_id": self.branch_id,
            "processed_by_id": self.processed_by_id,
            "reason": self.reason,
            "reason_detail": self.reason_detail,
            "notes": self.notes,
            "condition_note": self.condition_note,
            "return_type": self.return_type,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "refund_amount_cents": self.refund_amount_cents,
            "price_difference_cents": self.price_difference_cents,
            "refund_method": self.refund_method,
            "is_overdue": self.is_overdue,
            "manager_override": self.manager_override,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_by": self.rejected_by,
            "rejection_notes": self.rejection_notes,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["exchange_items"] = [item.to_dict() for item in self.exchange_items]
        return data


class ReturnItem(db.Model):
    """Returned quantity of one original sold line, priced at the sold unit price."""
    __tablename__ = "return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    transaction_item_id = db.Column(db.Integer, db.ForeignKey("transaction_items.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    return_doc = db.relationship("Return", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_item_id": self.transaction_item_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class ExchangeItem(db.Model):
    """Replacement item handed out for an EXCHANGE return."""
    __tablename__ = "exchange_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_exchange_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    product_name = db.Column(db.String(255), nullable=False)
    variant_info = db.Column(db.String(128), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    return_doc = db.relationship("Return", back_populates="exchange_items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "variant_info": self.variant_info,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class CashMovement(db.Model):
    """
    Money in or out of the drawer caused by a completed return.

    amount_cents < 0 means money paid to the customer.
    One movement per return at most (unique return_id).
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.UniqueConstraint("return_id", name="uq_cash_movements_return"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True)
    recorded_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "branch_id": self.branch_id,
            "return_id": self.return_id,
            "recorded_by_id": self.recorded_by_id,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }
