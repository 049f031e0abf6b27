# Overview: Pytest coverage for the HTTP surface: status codes and JSON error bodies.

from backoffice.models import StockAdjustment

from conftest import auth_headers, put_stock, stock_qty


def _sale_payload(variant, quantity, price=75_000, **extra):
    payload = {
        "items": [{"variant_id": variant.id, "quantity": quantity, "price_cents": price}],
        "payment_method": "CASH",
    }
    payload.update(extra)
    return payload


class TestAuthentication:

    def test_missing_header(self, client, db_session):
        response = client.get('/api/transactions/')
        assert response.status_code == 401
        assert response.json["error"] == "Authentication required"

    def test_unknown_user(self, client, db_session):
        response = client.get('/api/transactions/', headers={'X-User-Id': '9999'})
        assert response.status_code == 401

    def test_malformed_header(self, client, db_session):
        response = client.get('/api/transactions/', headers={'X-User-Id': 'abc'})
        assert response.status_code == 401


def test_health(client, db_session):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.json["status"] == "ok"
    assert response.json["database"]["status"] == "healthy"


class TestStockRoutes:

    def test_read_stock(self, client, db_session, kasir, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 7)

        response = client.get(f'/api/stock/{shirt.id}/{branch_a1.id}', headers=auth_headers(kasir))

        assert response.status_code == 200
        assert response.json["stock"]["quantity"] == 7

    def test_adjustment_created(self, client, db_session, admin, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 7)

        response = client.post('/api/stock/adjustment', headers=auth_headers(admin), json={
            "variant_id": shirt.id,
            "branch_id": branch_a1.id,
            "type": "subtract",
            "quantity": 2,
            "reason": "damaged",
        })

        assert response.status_code == 201
        assert response.json["new_stock"] == 5
        assert response.json["adjustment"]["reason"] == "DAMAGED"
        assert db_session.query(StockAdjustment).count() == 1

    def test_adjustment_validation_error(self, client, db_session, admin, shirt, branch_a1):
        response = client.post('/api/stock/adjustment', headers=auth_headers(admin), json={
            "variant_id": shirt.id,
            "branch_id": branch_a1.id,
            "type": "subtract",
            "quantity": 1.5,
        })

        assert response.status_code == 400
        assert response.json["code"] == "VALIDATION_ERROR"
        assert response.json["details"]["field"] == "quantity"

    def test_adjustment_forbidden_for_kasir(self, client, db_session, kasir, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 7)

        response = client.post('/api/stock/adjustment', headers=auth_headers(kasir), json={
            "variant_id": shirt.id,
            "branch_id": branch_a1.id,
            "type": "add",
            "quantity": 1,
        })

        assert response.status_code == 403
        assert response.json["code"] == "FORBIDDEN"

    def test_low_stock_alerts(self, client, db_session, owner, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 1)
        headers = auth_headers(owner)

        response = client.post('/api/stock/alert', headers=headers, json={
            "variant_id": shirt.id, "branch_id": branch_a1.id, "min_stock": 3,
        })
        assert response.status_code == 200

        response = client.get(f'/api/stock/alerts/low?branch_id={branch_a1.id}', headers=headers)
        assert response.json["count"] == 1


class TestTransactionRoutes:

    def test_create_sale(self, client, db_session, kasir, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 5)

        response = client.post('/api/transactions/', headers=auth_headers(kasir), json=_sale_payload(shirt, 2))

        assert response.status_code == 201
        body = response.json["transaction"]
        assert body["status"] == "COMPLETED"
        assert body["total_cents"] == 150_000
        assert len(body["items"]) == 1
        assert stock_qty(db_session, shirt, branch_a1) == 3

    def test_insufficient_stock_body(self, client, db_session, kasir, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 1)

        response = client.post('/api/transactions/', headers=auth_headers(kasir), json=_sale_payload(shirt, 2))

        assert response.status_code == 409
        assert response.json["code"] == "INSUFFICIENT_STOCK"
        item = response.json["details"]["items"][0]
        assert item["available"] == 1
        assert item["requested"] == 2
        assert "retryable" not in response.json

    def test_cancel_sale(self, client, db_session, kasir, manager, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 5)
        created = client.post('/api/transactions/', headers=auth_headers(kasir), json=_sale_payload(shirt, 2))
        sale_id = created.json["transaction"]["id"]

        response = client.put(
            f'/api/transactions/{sale_id}/cancel', headers=auth_headers(manager), json={"reason": "Void"}
        )
        assert response.status_code == 200
        assert response.json["transaction"]["status"] == "CANCELLED"

        response = client.put(f'/api/transactions/{sale_id}/cancel', headers=auth_headers(manager), json={})
        assert response.status_code == 409
        assert response.json["code"] == "ALREADY_CANCELLED"
        assert stock_qty(db_session, shirt, branch_a1) == 5

    def test_list_sales(self, client, db_session, kasir, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 5)
        client.post('/api/transactions/', headers=auth_headers(kasir), json=_sale_payload(shirt, 1))

        response = client.get('/api/transactions/', headers=auth_headers(kasir))

        assert response.status_code == 200
        assert response.json["pagination"]["total"] == 1
        assert "items" not in response.json["transactions"][0]

    def test_unknown_sale(self, client, db_session, kasir):
        response = client.get('/api/transactions/nope', headers=auth_headers(kasir))
        assert response.status_code == 404
        assert response.json["code"] == "NOT_FOUND"


class TestTransferRoutes:

    def test_request_and_approve(self, client, db_session, admin, manager, shirt, branch_a1, branch_a2):
        put_stock(db_session, shirt, branch_a1, 10)

        response = client.post('/api/stock-transfers/', headers=auth_headers(admin), json={
            "variant_id": shirt.id,
            "from_branch_id": branch_a1.id,
            "to_branch_id": branch_a2.id,
            "quantity": 3,
        })
        assert response.status_code == 201
        transfer_id = response.json["transfer"]["id"]
        assert response.json["transfer"]["status"] == "PENDING"

        response = client.patch(f'/api/stock-transfers/{transfer_id}/approve', headers=auth_headers(manager))
        assert response.status_code == 200
        assert response.json["transfer"]["status"] == "COMPLETED"

        response = client.patch(f'/api/stock-transfers/{transfer_id}/approve', headers=auth_headers(manager))
        assert response.status_code == 409
        assert response.json["code"] == "ALREADY_PROCESSED"

        response = client.get('/api/stock-transfers/stats/summary', headers=auth_headers(manager))
        assert response.json["total_quantity"] == 3


class TestReturnRoutes:

    def test_return_flow(self, client, db_session, kasir, admin, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 10)
        created = client.post('/api/transactions/', headers=auth_headers(kasir), json=_sale_payload(shirt, 4))
        sale = created.json["transaction"]

        response = client.post('/api/returns/', headers=auth_headers(kasir), json={
            "transaction_id": sale["id"],
            "items": [{"transaction_item_id": sale["items"][0]["id"], "quantity": 5}],
            "reason": "CUSTOMER_REQUEST",
        })
        assert response.status_code == 409
        assert response.json["code"] == "EXCEEDS_RETURNABLE"

        response = client.post('/api/returns/', headers=auth_headers(kasir), json={
            "transaction_id": sale["id"],
            "items": [{"transaction_item_id": sale["items"][0]["id"], "quantity": 2}],
            "reason": "CUSTOMER_REQUEST",
        })
        assert response.status_code == 201
        return_id = response.json["return"]["id"]
        assert response.json["return"]["status"] == "PENDING"

        response = client.patch(
            f'/api/returns/{return_id}/approve', headers=auth_headers(admin), json={"approved_by": "Pak Budi"}
        )
        assert response.status_code == 200
        assert response.json["return"]["status"] == "COMPLETED"
        assert stock_qty(db_session, shirt, branch_a1) == 8

        response = client.get('/api/returns/stats', headers=auth_headers(admin))
        assert response.json["completed"] == 1


class TestSyncRoute:

    def test_batch_twice(self, client, db_session, kasir, shirt, branch_a1):
        put_stock(db_session, shirt, branch_a1, 5)
        batch = {"transactions": [dict(_sale_payload(shirt, 1), id="local-0001")]}

        first = client.post('/api/sync/transactions/batch', headers=auth_headers(kasir), json=batch)
        second = client.post('/api/sync/transactions/batch', headers=auth_headers(kasir), json=batch)

        assert first.status_code == 200
        assert first.json["results"][0]["status"] == "synced"
        assert second.json["results"][0]["status"] == "duplicate"
        assert stock_qty(db_session, shirt, branch_a1) == 4

    def test_empty_batch(self, client, db_session, kasir):
        response = client.post('/api/sync/transactions/batch', headers=auth_headers(kasir), json={})
        assert response.status_code == 400
