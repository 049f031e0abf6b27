from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


def new_transaction_id() -> str:
    return str(uuid.uuid4())


class Transaction(db.Model):
    """
    Sales transaction (header).

    WHY string id: offline terminals generate the id before the sale reaches
    the server; replaying the same batch twice must hit the same row.

    LIFECYCLE:
    - COMPLETED: stock debited when the row was created
    - CANCELLED: stock restored, record kept for audit

    Money is stored in cents. total = subtotal - discount + tax.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_no", name="uq_transactions_transaction_no"),
        db.Index("ix_transactions_branch_created", "branch_id", "created_at"),
        db.Index("ix_transactions_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_transaction_id)
    transaction_no = db.Column(db.String(32), nullable=False)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(128), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False)
    bank_name = db.Column(db.String(64), nullable=True)
    reference_no = db.Column(db.String(64), nullable=True)

    is_split_payment = db.Column(db.Boolean, nullable=False, default=False)
    payment_amount1_cents = db.Column(db.Integer, nullable=True)
    payment_method2 = db.Column(db.String(16), nullable=True)
    payment_amount2_cents = db.Column(db.Integer, nullable=True)
    bank_name2 = db.Column(db.String(64), nullable=True)
    reference_no2 = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED")
    device_source = db.Column(db.String(16), nullable=False, default="POS")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        lazy=True,
        order_by="TransactionItem.id",
    )
    branch = db.relationship("Branch")
    cashier = db.relationship("User", foreign_keys=[cashier_id])

    def __repr__(self) -> str:
        return f"<Transaction {self.transaction_no} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "transaction_no": self.transaction_no,
            "branch_id": self.branch_id,
            "cashier_id": self.cashier_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "bank_name": self.bank_name,
            "reference_no": self.reference_no,
            "is_split_payment": self.is_split_payment,
            "payment_amount1_cents": self.payment_amount1_cents,
            "payment_method2": self.payment_method2,
            "payment_amount2_cents": self.payment_amount2_cents,
            "bank_name2": self.bank_name2,
            "reference_no2": self.reference_no2,
            "notes": self.notes,
            "status": self.status,
            "device_source": self.device_source,
            "created_at": to_utc_z(self.created_at),
            "synced_at": to_utc_z(self.synced_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_id": self.cancelled_by_id,
            "cancel_reason": self.cancel_reason,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """
    One sold line. product_name / variant_info / sku are snapshots so later
    catalog edits do not rewrite history.
    """
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_transaction_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(36), db.ForeignKey("transactions.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    variant_info = db.Column(db.String(128), nullable=True)
    sku = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    transaction = db.relationship("Transaction", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "variant_info": self.variant_info,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }
