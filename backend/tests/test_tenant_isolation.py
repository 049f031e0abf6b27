# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for core resources.

These tests create two tenants with separate branches and users, then
verify that:
1. A user of Tenant A cannot read/write data in Tenant B
2. Passing a foreign branch_id or variant_id is rejected as "not found"
3. Cross-tenant listings return only the caller's data
4. Cross-tenant attempts are logged as warnings

Test Coverage:
- Tenant service helpers
- Stock: cross-tenant read/adjust blocked
- Sales: cross-tenant read/cancel blocked
- Transfers and returns: cross-tenant access blocked
"""

import logging

import pytest

from backoffice.errors import Forbidden, NotFound, ValidationError
from backoffice.schemas import AdjustStockRequest, ReturnRequest, TransferRequest
from backoffice.services import return_service, sales_service, stock_service, transfer_service
from backoffice.services.tenant_service import (
    actor_for_user,
    require_branch_in_tenant,
    require_variant_in_tenant,
    resolve_branch,
    tenant_branch_ids,
)

from conftest import actor_for, put_stock, sale_request


class TestTenantServiceHelpers:
    """Test tenant_service helper functions."""

    def test_require_branch_in_tenant_valid(self, db_session, tenant_a, branch_a1):
        """Branch in its own tenant passes validation."""
        result = require_branch_in_tenant(branch_a1.id, tenant_a.id)
        assert result.id == branch_a1.id

    def test_require_branch_in_tenant_cross_tenant(self, db_session, tenant_a, branch_b1):
        """Branch from different tenant is reported as not found."""
        with pytest.raises(NotFound):
            require_branch_in_tenant(branch_b1.id, tenant_a.id)

    def test_require_branch_in_tenant_nonexistent(self, db_session, tenant_a):
        with pytest.raises(NotFound):
            require_branch_in_tenant(99999, tenant_a.id)

    def test_require_variant_cross_tenant(self, db_session, tenant_a, foreign_variant):
        with pytest.raises(NotFound):
            require_variant_in_tenant(foreign_variant.id, tenant_a.id)

    def test_tenant_branch_ids(self, db_session, tenant_a, tenant_b, branch_a1, branch_a2, branch_b1):
        """tenant_branch_ids returns only branches for that tenant."""
        assert sorted(tenant_branch_ids(tenant_a.id)) == sorted([branch_a1.id, branch_a2.id])
        assert tenant_branch_ids(tenant_b.id) == [branch_b1.id]

    def test_cross_tenant_access_is_logged(self, db_session, tenant_a, branch_b1, caplog):
        """Cross-tenant access attempt is logged."""
        with caplog.at_level(logging.WARNING):
            with pytest.raises(NotFound):
                require_branch_in_tenant(branch_b1.id, tenant_a.id)

        assert "Cross-tenant access denied" in caplog.text

    def test_actor_for_inactive_user(self, db_session, admin):
        admin.is_active = False
        db_session.commit()

        with pytest.raises(NotFound):
            actor_for_user(admin.id)


class TestResolveBranch:

    def test_kasir_defaults_to_own_branch(self, db_session, kasir, branch_a1):
        assert resolve_branch(actor_for(kasir)).id == branch_a1.id

    def test_kasir_cannot_name_other_branch(self, db_session, kasir, branch_a2):
        with pytest.raises(Forbidden):
            resolve_branch(actor_for(kasir), branch_a2.id)

    def test_tenant_wide_user_must_name_branch(self, db_session, owner):
        with pytest.raises(ValidationError):
            resolve_branch(actor_for(owner))

    def test_foreign_branch_not_found(self, db_session, owner, branch_b1):
        with pytest.raises(NotFound):
            resolve_branch(actor_for(owner), branch_b1.id)


class TestStockIsolation:

    def test_cannot_read_foreign_stock(self, db_session, owner, foreign_variant, branch_b1):
        put_stock(db_session, foreign_variant, branch_b1, 10)

        with pytest.raises(NotFound):
            stock_service.get_stock_for_actor(actor_for(owner), foreign_variant.id, branch_b1.id)

    def test_cannot_adjust_foreign_stock(self, db_session, owner, foreign_variant, branch_b1):
        put_stock(db_session, foreign_variant, branch_b1, 10)
        request = AdjustStockRequest.from_payload({
            "variant_id": foreign_variant.id,
            "branch_id": branch_b1.id,
            "type": "subtract",
            "quantity": 5,
        })

        with pytest.raises(NotFound):
            stock_service.adjust_stock(actor_for(owner), request)

    def test_cannot_sell_foreign_variant(self, db_session, owner, foreign_variant, branch_a1):
        with pytest.raises(NotFound):
            sales_service.create_sale(
                actor_for(owner), sale_request([(foreign_variant, 1, 10_000)], branch=branch_a1)
            )


class TestDocumentIsolation:

    def test_foreign_sale_not_visible(self, db_session, kasir, owner_b, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 5)
        sale = sales_service.create_sale(actor_for(kasir), sale_request([(shirt, 1, 50_000)]))

        with pytest.raises(NotFound):
            sales_service.get_sale(actor_for(owner_b), sale.id)
        with pytest.raises(NotFound):
            sales_service.cancel_sale(actor_for(owner_b), sale.id)

        rows, total = sales_service.list_sales(actor_for(owner_b))
        assert total == 0

    def test_foreign_sale_cannot_be_returned(self, db_session, kasir, owner_b, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 5)
        sale = sales_service.create_sale(actor_for(kasir), sale_request([(shirt, 1, 50_000)]))
        request = ReturnRequest.from_payload({
            "transaction_id": sale.id,
            "items": [{"transaction_item_id": sale.items[0].id, "quantity": 1}],
            "reason": "CUSTOMER_REQUEST",
        })

        with pytest.raises(NotFound):
            return_service.create_return(actor_for(owner_b), request)

    def test_foreign_transfer_not_visible(self, db_session, owner, owner_b, shirt, branch_a1, branch_a2):
        put_stock(db_session, shirt, branch_a1, 5)
        transfer = transfer_service.create_transfer(actor_for(owner), TransferRequest.from_payload({
            "variant_id": shirt.id,
            "from_branch_id": branch_a1.id,
            "to_branch_id": branch_a2.id,
            "quantity": 1,
        }))

        with pytest.raises(NotFound):
            transfer_service.get_transfer(actor_for(owner_b), transfer.id)

        rows, total = transfer_service.list_transfers(actor_for(owner_b))
        assert total == 0
