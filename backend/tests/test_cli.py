# Overview: Pytest coverage for the Flask CLI seeding and replay commands.

import json

from backoffice.models import Branch, StockAdjustment, Tenant, Transaction, User

from conftest import stock_qty


def test_bootstrap_commands(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["tenants", "create", "--name", "Toko Baru", "--code", "BARU"])
    assert result.exit_code == 0
    assert "PASS Created tenant" in result.output
    tenant = db_session.query(Tenant).filter_by(code="BARU").one()

    result = runner.invoke(args=["branches", "create", "--tenant-id", str(tenant.id), "--name", "Pusat"])
    assert result.exit_code == 0
    branch = db_session.query(Branch).filter_by(tenant_id=tenant.id).one()

    result = runner.invoke(args=[
        "users", "create", "--tenant-id", str(tenant.id), "--username", "kasir1",
        "--name", "Kasir Satu", "--role", "kasir", "--branch-id", str(branch.id),
    ])
    assert result.exit_code == 0
    assert db_session.query(User).filter_by(username="kasir1").one().role == "KASIR"


def test_duplicate_tenant_code_fails(app, db_session, tenant_a):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["tenants", "create", "--name", "Again", "--code", tenant_a.code])

    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_kasir_needs_branch(app, db_session, tenant_a):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "users", "create", "--tenant-id", str(tenant_a.id), "--username", "k", "--name", "K", "--role", "KASIR",
    ])

    assert result.exit_code == 1


def test_stock_set_and_replay(app, db_session, owner, kasir, shirt, branch_a1, tmp_path):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "stock", "set", "--user-id", str(owner.id), "--variant-id", str(shirt.id),
        "--branch-id", str(branch_a1.id), "--quantity", "12", "--price-cents", "75000",
    ])
    assert result.exit_code == 0, result.output
    assert stock_qty(db_session, shirt, branch_a1) == 12
    assert db_session.query(StockAdjustment).count() == 1

    batch_file = tmp_path / "batch.json"
    batch_file.write_text(json.dumps({"transactions": [{
        "id": "cli-0001",
        "items": [{"variant_id": shirt.id, "quantity": 2, "price_cents": 75000}],
        "payment_method": "CASH",
    }]}))

    result = runner.invoke(args=["sync", "replay", str(batch_file), "--user-id", str(kasir.id)])
    assert result.exit_code == 0, result.output
    assert "1 synced, 0 failed" in result.output
    assert db_session.get(Transaction, "cli-0001") is not None
    assert stock_qty(db_session, shirt, branch_a1) == 10
