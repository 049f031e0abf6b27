# Overview: Typed request models validated at the boundary before reaching services.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import ValidationError
from .validation import (
    require_object,
    to_bool,
    to_cents,
    to_datetime,
    to_enum,
    to_int,
    to_list,
    to_quantity,
    to_text,
)


class AdjustmentType(str, Enum):
    ADD = "ADD"
    SUBTRACT = "SUBTRACT"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    DEBIT = "DEBIT"
    TRANSFER = "TRANSFER"
    QRIS = "QRIS"


class ReturnReason(str, Enum):
    CUSTOMER_REQUEST = "CUSTOMER_REQUEST"
    OTHER = "OTHER"
    WRONG_SIZE = "WRONG_SIZE"
    WRONG_ITEM = "WRONG_ITEM"
    DEFECTIVE = "DEFECTIVE"
    EXPIRED = "EXPIRED"
    DAMAGED = "DAMAGED"


class ReturnType(str, Enum):
    REFUND = "REFUND"
    EXCHANGE = "EXCHANGE"


# Stock
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class AdjustStockRequest:
    variant_id: int
    branch_id: int
    type: AdjustmentType
    quantity: int
    reason: str | None = None
    notes: str | None = None

    @property
    def difference(self) -> int:
        return self.quantity if self.type == AdjustmentType.ADD else -self.quantity

    @classmethod
    def from_payload(cls, payload: Any) -> "AdjustStockRequest":
        data = require_object(payload)
        reason = to_text(data.get("reason"), "reason", max_length=32)
        return cls(
            variant_id=to_int(data.get("variant_id"), "variant_id", minimum=1),
            branch_id=to_int(data.get("branch_id"), "branch_id", minimum=1),
            type=to_enum(data.get("type"), AdjustmentType, "type"),
            quantity=to_quantity(data.get("quantity")),
            reason=reason.lower() if reason else None,
            notes=to_text(data.get("notes"), "notes", max_length=500),
        )


@dataclass(frozen=True)
class StockAlertRequest:
    variant_id: int
    branch_id: int
    min_stock: int

    @classmethod
    def from_payload(cls, payload: Any) -> "StockAlertRequest":
        data = require_object(payload)
        return cls(
            variant_id=to_int(data.get("variant_id"), "variant_id", minimum=1),
            branch_id=to_int(data.get("branch_id"), "branch_id", minimum=1),
            min_stock=to_int(data.get("min_stock"), "min_stock", minimum=0),
        )


# Transfers
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TransferRequest:
    variant_id: int
    from_branch_id: int
    to_branch_id: int
    quantity: int
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "TransferRequest":
        data = require_object(payload)
        request = cls(
            variant_id=to_int(data.get("variant_id"), "variant_id", minimum=1),
            from_branch_id=to_int(data.get("from_branch_id"), "from_branch_id", minimum=1),
            to_branch_id=to_int(data.get("to_branch_id"), "to_branch_id", minimum=1),
            quantity=to_quantity(data.get("quantity")),
            notes=to_text(data.get("notes"), "notes", max_length=500),
        )
        if request.from_branch_id == request.to_branch_id:
            raise ValidationError("Source and destination branch must differ", field="to_branch_id")
        return request


# Sales
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class SaleItemRequest:
    variant_id: int
    quantity: int
    unit_price_cents: int

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    @classmethod
    def from_payload(cls, payload: Any, index: int) -> "SaleItemRequest":
        data = require_object(payload)
        prefix = f"items[{index}]"
        return cls(
            variant_id=to_int(data.get("variant_id"), f"{prefix}.variant_id", minimum=1),
            quantity=to_quantity(data.get("quantity"), f"{prefix}.quantity"),
            unit_price_cents=to_cents(data.get("price_cents"), f"{prefix}.price_cents"),
        )


@dataclass(frozen=True)
class PaymentRequest:
    """
    Single or split payment.

    A split needs a second method different from the first and both
    amounts; whether they add up to the total is checked by the sales
    service once the total is known.
    """
    method: PaymentMethod
    bank_name: str | None = None
    reference_no: str | None = None
    is_split: bool = False
    amount1_cents: int | None = None
    method2: PaymentMethod | None = None
    amount2_cents: int | None = None
    bank_name2: str | None = None
    reference_no2: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> "PaymentRequest":
        is_split = to_bool(data.get("is_split_payment"), "is_split_payment")
        payment = cls(
            method=to_enum(data.get("payment_method"), PaymentMethod, "payment_method"),
            bank_name=to_text(data.get("bank_name"), "bank_name", max_length=64),
            reference_no=to_text(data.get("reference_no"), "reference_no", max_length=64),
            is_split=is_split,
            amount1_cents=to_cents(data.get("payment_amount1_cents"), "payment_amount1_cents", required=is_split),
            method2=to_enum(data.get("payment_method2"), PaymentMethod, "payment_method2", required=is_split),
            amount2_cents=to_cents(data.get("payment_amount2_cents"), "payment_amount2_cents", required=is_split),
            bank_name2=to_text(data.get("bank_name2"), "bank_name2", max_length=64),
            reference_no2=to_text(data.get("reference_no2"), "reference_no2", max_length=64),
        )
        if is_split and payment.method2 == payment.method:
            raise ValidationError("Split payment methods must be different", field="payment_method2")
        return payment


@dataclass(frozen=True)
class SaleRequest:
    items: tuple[SaleItemRequest, ...]
    payment: PaymentRequest
    branch_id: int | None = None
    discount_cents: int = 0
    tax_cents: int = 0
    customer_name: str | None = None
    customer_phone: str | None = None
    notes: str | None = None
    # Offline replay only
    transaction_id: str | None = None
    transaction_no: str | None = None
    created_at: datetime | None = None
    cashier_id: int | None = None

    @property
    def subtotal_cents(self) -> int:
        return sum(item.subtotal_cents for item in self.items)

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents - self.discount_cents + self.tax_cents

    @classmethod
    def from_payload(cls, payload: Any) -> "SaleRequest":
        data = require_object(payload)
        raw_items = to_list(data.get("items"), "items")
        items = tuple(SaleItemRequest.from_payload(raw, index) for index, raw in enumerate(raw_items))
        return cls(
            items=items,
            payment=PaymentRequest.from_payload(data),
            branch_id=to_int(data.get("branch_id"), "branch_id", required=False, minimum=1),
            discount_cents=to_cents(data.get("discount_cents"), "discount_cents", required=False, default=0),
            tax_cents=to_cents(data.get("tax_cents"), "tax_cents", required=False, default=0),
            customer_name=to_text(data.get("customer_name"), "customer_name", max_length=128),
            customer_phone=to_text(data.get("customer_phone"), "customer_phone", max_length=32),
            notes=to_text(data.get("notes"), "notes", max_length=500),
        )


@dataclass(frozen=True)
class OfflineSaleRequest:
    """A sale recorded on a disconnected terminal, replayed later."""
    local_id: str
    sale: SaleRequest

    @classmethod
    def from_payload(cls, payload: Any) -> "OfflineSaleRequest":
        data = require_object(payload)
        local_id = to_text(data.get("id"), "id", required=True, max_length=36)
        base = SaleRequest.from_payload(data)
        sale = SaleRequest(
            items=base.items,
            payment=base.payment,
            branch_id=base.branch_id,
            discount_cents=base.discount_cents,
            tax_cents=base.tax_cents,
            customer_name=base.customer_name,
            customer_phone=base.customer_phone,
            notes=base.notes,
            transaction_id=local_id,
            transaction_no=to_text(data.get("transaction_no"), "transaction_no", max_length=32),
            created_at=to_datetime(data.get("created_at"), "created_at"),
            cashier_id=to_int(data.get("cashier_id"), "cashier_id", required=False, minimum=1),
        )
        return cls(local_id=local_id, sale=sale)


# Returns
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class ReturnItemRequest:
    transaction_item_id: int
    quantity: int


@dataclass(frozen=True)
class ExchangeItemRequest:
    variant_id: int
    quantity: int


@dataclass(frozen=True)
class ReturnRequest:
    transaction_id: str
    items: tuple[ReturnItemRequest, ...]
    reason: ReturnReason
    return_type: ReturnType = ReturnType.REFUND
    exchange_items: tuple[ExchangeItemRequest, ...] = field(default_factory=tuple)
    reason_detail: str | None = None
    notes: str | None = None
    condition_note: str | None = None
    refund_method: PaymentMethod | None = None
    manager_override: bool = False
    approved_by: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ReturnRequest":
        data = require_object(payload)
        items = tuple(
            ReturnItemRequest(
                transaction_item_id=to_int(
                    require_object(raw).get("transaction_item_id"),
                    f"items[{index}].transaction_item_id",
                    minimum=1,
                ),
                quantity=to_quantity(require_object(raw).get("quantity"), f"items[{index}].quantity"),
            )
            for index, raw in enumerate(to_list(data.get("items"), "items"))
        )
        exchange_items = tuple(
            ExchangeItemRequest(
                variant_id=to_int(require_object(raw).get("variant_id"), f"exchange_items[{index}].variant_id", minimum=1),
                quantity=to_quantity(require_object(raw).get("quantity"), f"exchange_items[{index}].quantity"),
            )
            for index, raw in enumerate(to_list(data.get("exchange_items"), "exchange_items", required=False))
        )
        return_type = to_enum(data.get("return_type"), ReturnType, "return_type", required=False) or (
            ReturnType.EXCHANGE if exchange_items else ReturnType.REFUND
        )
        if return_type == ReturnType.EXCHANGE and not exchange_items:
            raise ValidationError("Exchange returns need at least one exchange item", field="exchange_items")
        if return_type == ReturnType.REFUND and exchange_items:
            raise ValidationError("Refund returns cannot carry exchange items", field="exchange_items")

        return cls(
            transaction_id=to_text(data.get("transaction_id"), "transaction_id", required=True, max_length=36),
            items=items,
            reason=to_enum(data.get("reason"), ReturnReason, "reason"),
            return_type=return_type,
            exchange_items=exchange_items,
            reason_detail=to_text(data.get("reason_detail"), "reason_detail", max_length=255),
            notes=to_text(data.get("notes"), "notes", max_length=500),
            condition_note=to_text(data.get("condition_note"), "condition_note", max_length=255),
            refund_method=to_enum(data.get("refund_method"), PaymentMethod, "refund_method", required=False),
            manager_override=to_bool(data.get("manager_override"), "manager_override"),
            approved_by=to_text(data.get("approved_by"), "approved_by", max_length=128),
        )
