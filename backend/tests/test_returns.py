# Overview: Pytest coverage for returns, exchanges and their stock and cash effects.

"""
Return/Exchange Engine Tests

Covers:
- Returnable remainder per sold line (PENDING and COMPLETED both count)
- Write-off reasons vs restocking reasons
- Exchange price difference in both directions
- Return window and manager override
- Approval and rejection lifecycle, including a sale cancelled while a return waits
"""

from datetime import timedelta

import pytest

from backoffice.errors import (
    AlreadyProcessed,
    ExceedsReturnable,
    Forbidden,
    InsufficientStock,
    NotFound,
    ReturnWindowExpired,
    ValidationError,
)
from backoffice.events import EVENT_STOCK_UPDATED
from backoffice.extensions import events
from backoffice.models import CashMovement, Return, StockAdjustment, Transaction
from backoffice.schemas import ReturnRequest
from backoffice.services import return_service, sales_service
from backoffice.time_utils import utcnow

from conftest import actor_for, put_stock, sale_request, stock_qty


def _sell(db_session, kasir, variant, branch, quantity, price, stock=None):
    put_stock(db_session, variant, branch, stock if stock is not None else quantity + 5, price_cents=price)
    return sales_service.create_sale(actor_for(kasir), sale_request([(variant, quantity, price)]))


def _return_request(sale, quantity, reason="CUSTOMER_REQUEST", exchange=None, **extra):
    payload = {
        "transaction_id": sale.id,
        "items": [{"transaction_item_id": sale.items[0].id, "quantity": quantity}],
        "reason": reason,
    }
    if exchange:
        payload["exchange_items"] = [{"variant_id": variant.id, "quantity": qty} for variant, qty in exchange]
    payload.update(extra)
    return ReturnRequest.from_payload(payload)


class TestReturnableQuantity:

    def test_remainder_is_enforced(self, db_session, kasir, owner, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 10, 100_000)
        actor = actor_for(owner)

        first = return_service.create_return(actor, _return_request(sale, 4))
        assert first.status == "COMPLETED"

        with pytest.raises(ExceedsReturnable) as exc:
            return_service.create_return(actor, _return_request(sale, 7))
        assert exc.value.details["returnable"] == 6
        assert exc.value.details["requested"] == 7

        second = return_service.create_return(actor, _return_request(sale, 6))
        assert second.status == "COMPLETED"

        with pytest.raises(ExceedsReturnable):
            return_service.create_return(actor, _return_request(sale, 1))

    def test_pending_returns_count(self, db_session, kasir, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 3, 100_000)
        actor = actor_for(kasir)

        pending = return_service.create_return(actor, _return_request(sale, 2))
        assert pending.status == "PENDING"

        with pytest.raises(ExceedsReturnable):
            return_service.create_return(actor, _return_request(sale, 2))

    def test_rejected_returns_free_the_quantity(self, db_session, kasir, manager, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 3, 100_000)
        pending = return_service.create_return(actor_for(kasir), _return_request(sale, 3))

        return_service.reject_return(actor_for(manager), pending.id, rejection_notes="Tag removed")

        again = return_service.create_return(actor_for(kasir), _return_request(sale, 3))
        assert again.status == "PENDING"

    def test_item_from_another_sale_rejected(self, db_session, kasir, owner, shirt, jacket, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 2, 100_000)
        other = _sell(db_session, kasir, jacket, branch_a1, 1, 300_000)

        request = ReturnRequest.from_payload({
            "transaction_id": sale.id,
            "items": [{"transaction_item_id": other.items[0].id, "quantity": 1}],
            "reason": "CUSTOMER_REQUEST",
        })
        with pytest.raises(ValidationError):
            return_service.create_return(actor_for(owner), request)

    def test_cancelled_sale_cannot_be_returned(self, db_session, kasir, owner, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 2, 100_000)
        sales_service.cancel_sale(actor_for(owner), sale.id)

        with pytest.raises(ValidationError):
            return_service.create_return(actor_for(owner), _return_request(sale, 1))

    def test_unknown_sale(self, db_session, owner):
        request = ReturnRequest.from_payload({
            "transaction_id": "missing",
            "items": [{"transaction_item_id": 1, "quantity": 1}],
            "reason": "CUSTOMER_REQUEST",
        })
        with pytest.raises(NotFound):
            return_service.create_return(actor_for(owner), request)


class TestStockEffects:

    def test_customer_request_restocks(self, db_session, kasir, owner, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 4, 100_000, stock=10)
        assert stock_qty(db_session, shirt, branch_a1) == 6

        ret = return_service.create_return(actor_for(owner), _return_request(sale, 3))

        assert ret.refund_amount_cents == 300_000
        assert stock_qty(db_session, shirt, branch_a1) == 9
        assert db_session.query(StockAdjustment).count() == 0

        movement = db_session.query(CashMovement).filter_by(return_id=ret.id).one()
        assert movement.kind == "RETURN_REFUND"
        assert movement.amount_cents == -300_000

    def test_damaged_is_written_off(self, db_session, kasir, owner, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 4, 100_000, stock=10)

        ret = return_service.create_return(actor_for(owner), _return_request(sale, 2, reason="DAMAGED"))

        assert ret.status == "COMPLETED"
        assert stock_qty(db_session, shirt, branch_a1) == 6
        adjustment = db_session.query(StockAdjustment).one()
        assert adjustment.reason == "DAMAGED"
        assert adjustment.difference == -2
        assert adjustment.previous_qty == 8
        assert adjustment.new_qty == 6

    def test_write_off_sends_no_stock_update(self, app, db_session, kasir, owner, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 4, 100_000, stock=10)
        received = []
        events.subscribe(EVENT_STOCK_UPDATED, received.append, app=app)
        try:
            return_service.create_return(actor_for(owner), _return_request(sale, 2, reason="EXPIRED"))
        finally:
            events.unsubscribe(EVENT_STOCK_UPDATED, received.append, app=app)

        assert received == []
        assert stock_qty(db_session, shirt, branch_a1) == 6
        assert db_session.query(StockAdjustment).count() == 1

    def test_pending_return_moves_nothing(self, db_session, kasir, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 4, 100_000, stock=10)

        ret = return_service.create_return(actor_for(kasir), _return_request(sale, 2))

        assert ret.status == "PENDING"
        assert stock_qty(db_session, shirt, branch_a1) == 6
        assert db_session.query(CashMovement).count() == 0

    def test_approved_by_name_completes(self, db_session, kasir, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 4, 100_000, stock=10)

        ret = return_service.create_return(actor_for(kasir), _return_request(sale, 1, approved_by="Bu Sari"))

        assert ret.status == "COMPLETED"
        assert ret.approved_by == "Bu Sari"
        assert stock_qty(db_session, shirt, branch_a1) == 7

    def test_approval_without_requirement(self, app, db_session, kasir, shirt, branch_a1, monkeypatch):
        monkeypatch.setitem(app.config, "RETURN_REQUIRES_APPROVAL", False)
        sale = _sell(db_session, kasir, shirt, branch_a1, 2, 100_000)

        ret = return_service.create_return(actor_for(kasir), _return_request(sale, 1))

        assert ret.status == "COMPLETED"
        assert ret.approved_by == "Kasir"


class TestExchange:

    def test_upgrade_customer_pays_difference(self, db_session, kasir, owner, shirt, jacket, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 1, 100_000, stock=5)
        put_stock(db_session, jacket, branch_a1, 3, price_cents=2_100_000)

        ret = return_service.create_return(
            actor_for(owner),
            _return_request(sale, 1, reason="WRONG_SIZE", exchange=[(jacket, 1)]),
        )

        assert ret.return_type == "EXCHANGE"
        assert ret.price_difference_cents == 2_000_000
        assert ret.refund_amount_cents == 0
        assert stock_qty(db_session, shirt, branch_a1) == 5
        assert stock_qty(db_session, jacket, branch_a1) == 2
        movement = db_session.query(CashMovement).filter_by(return_id=ret.id).one()
        assert movement.kind == "EXCHANGE_DIFFERENCE"
        assert movement.amount_cents == 2_000_000

    def test_downgrade_refunds_difference(self, db_session, kasir, owner, shirt, jacket, branch_a1):
        sale = _sell(db_session, kasir, jacket, branch_a1, 1, 2_100_000, stock=2)
        put_stock(db_session, shirt, branch_a1, 4, price_cents=100_000)

        ret = return_service.create_return(
            actor_for(owner),
            _return_request(sale, 1, reason="WRONG_ITEM", exchange=[(shirt, 1)]),
        )

        assert ret.price_difference_cents == -2_000_000
        assert ret.refund_amount_cents == 2_000_000
        assert ret.exchange_items[0].unit_price_cents == 100_000
        assert stock_qty(db_session, jacket, branch_a1) == 2
        assert stock_qty(db_session, shirt, branch_a1) == 3

    def test_exchange_needs_exchange_reason(self, db_session, kasir, owner, shirt, jacket, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 1, 100_000)
        put_stock(db_session, jacket, branch_a1, 3, price_cents=300_000)

        with pytest.raises(ValidationError):
            return_service.create_return(
                actor_for(owner),
                _return_request(sale, 1, reason="CUSTOMER_REQUEST", exchange=[(jacket, 1)]),
            )

    def test_exchange_disabled(self, app, db_session, kasir, owner, shirt, jacket, branch_a1, monkeypatch):
        monkeypatch.setitem(app.config, "EXCHANGE_ENABLED", False)
        sale = _sell(db_session, kasir, shirt, branch_a1, 1, 100_000)
        put_stock(db_session, jacket, branch_a1, 3, price_cents=300_000)

        with pytest.raises(ValidationError):
            return_service.create_return(
                actor_for(owner),
                _return_request(sale, 1, reason="WRONG_SIZE", exchange=[(jacket, 1)]),
            )

    def test_exchange_without_replacement_stock(self, db_session, kasir, owner, shirt, jacket, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 1, 100_000, stock=5)
        put_stock(db_session, jacket, branch_a1, 0, price_cents=300_000)

        with pytest.raises(InsufficientStock):
            return_service.create_return(
                actor_for(owner),
                _return_request(sale, 1, reason="WRONG_SIZE", exchange=[(jacket, 1)]),
            )

        assert stock_qty(db_session, shirt, branch_a1) == 4
        assert db_session.query(CashMovement).count() == 0

    def test_exchange_item_without_stock_record(self, db_session, kasir, owner, shirt, jacket, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 1, 100_000)

        with pytest.raises(NotFound):
            return_service.create_return(
                actor_for(owner),
                _return_request(sale, 1, reason="WRONG_SIZE", exchange=[(jacket, 1)]),
            )


class TestReturnWindow:

    def _age_sale(self, db_session, sale, days):
        record = db_session.get(Transaction, sale.id)
        record.created_at = utcnow() - timedelta(days=days)
        db_session.commit()

    def test_expired_window(self, db_session, kasir, owner, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 2, 100_000)
        self._age_sale(db_session, sale, 10)

        with pytest.raises(ReturnWindowExpired) as exc:
            return_service.create_return(actor_for(owner), _return_request(sale, 1))
        assert exc.value.details["deadline_days"] == 7

    def test_manager_override(self, db_session, kasir, manager, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 2, 100_000)
        self._age_sale(db_session, sale, 10)

        ret = return_service.create_return(actor_for(manager), _return_request(sale, 1, manager_override=True))

        assert ret.is_overdue is True
        assert ret.manager_override is True

    def test_kasir_cannot_override(self, db_session, kasir, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 2, 100_000)

        with pytest.raises(Forbidden):
            return_service.create_return(actor_for(kasir), _return_request(sale, 1, manager_override=True))

    def test_window_disabled(self, app, db_session, kasir, owner, shirt, branch_a1, monkeypatch):
        monkeypatch.setitem(app.config, "RETURN_DEADLINE_DAYS", 0)
        sale = _sell(db_session, kasir, shirt, branch_a1, 2, 100_000)
        self._age_sale(db_session, sale, 400)

        ret = return_service.create_return(actor_for(owner), _return_request(sale, 1))
        assert ret.is_overdue is False


class TestApprovalLifecycle:

    def test_approve_applies_effects(self, db_session, kasir, admin, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 4, 100_000, stock=10)
        pending = return_service.create_return(actor_for(kasir), _return_request(sale, 2))

        approved = return_service.approve_return(actor_for(admin), pending.id, approved_by="Pak Budi")

        assert approved.status == "COMPLETED"
        assert approved.approved_by == "Pak Budi"
        assert approved.approved_at is not None
        assert stock_qty(db_session, shirt, branch_a1) == 8

    def test_double_approval(self, db_session, kasir, admin, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 4, 100_000, stock=10)
        pending = return_service.create_return(actor_for(kasir), _return_request(sale, 2))
        return_service.approve_return(actor_for(admin), pending.id)

        with pytest.raises(AlreadyProcessed):
            return_service.approve_return(actor_for(admin), pending.id)
        assert stock_qty(db_session, shirt, branch_a1) == 8

    def test_reject_moves_nothing(self, db_session, kasir, admin, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 4, 100_000, stock=10)
        pending = return_service.create_return(actor_for(kasir), _return_request(sale, 2))

        rejected = return_service.reject_return(actor_for(admin), pending.id, rejected_by="Pak Budi", rejection_notes="Used")

        assert rejected.status == "REJECTED"
        assert rejected.rejected_by == "Pak Budi"
        assert stock_qty(db_session, shirt, branch_a1) == 6

        with pytest.raises(AlreadyProcessed):
            return_service.approve_return(actor_for(admin), pending.id)

    def test_approval_after_sale_cancelled(self, db_session, kasir, admin, manager, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 10, 100_000, stock=10)
        pending = return_service.create_return(actor_for(kasir), _return_request(sale, 4))
        assert pending.status == "PENDING"

        sales_service.cancel_sale(actor_for(manager), sale.id)
        assert stock_qty(db_session, shirt, branch_a1) == 10

        with pytest.raises(ValidationError):
            return_service.approve_return(actor_for(admin), pending.id)

        assert stock_qty(db_session, shirt, branch_a1) == 10
        assert db_session.get(Return, pending.id).status == "PENDING"
        assert db_session.query(CashMovement).count() == 0

        rejected = return_service.reject_return(actor_for(admin), pending.id, rejection_notes="Sale voided")
        assert rejected.status == "REJECTED"

    def test_kasir_cannot_approve(self, db_session, kasir, shirt, branch_a1):
        sale = _sell(db_session, kasir, shirt, branch_a1, 4, 100_000)
        pending = return_service.create_return(actor_for(kasir), _return_request(sale, 2))

        with pytest.raises(Forbidden):
            return_service.approve_return(actor_for(kasir), pending.id)


def test_return_stats(db_session, kasir, owner, shirt, branch_a1):
    sale = _sell(db_session, kasir, shirt, branch_a1, 5, 100_000)
    return_service.create_return(actor_for(owner), _return_request(sale, 2))
    return_service.create_return(actor_for(kasir), _return_request(sale, 1))

    stats = return_service.return_stats(actor_for(owner))

    assert stats["total"] == 2
    assert stats["completed"] == 1
    assert stats["pending"] == 1
    assert stats["total_refund_amount_cents"] == 200_000
