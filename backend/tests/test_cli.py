"""CLI maintenance command tests."""

from branchstock.models import BranchStock, Order, OrderItem, User


def test_migrate_legacy_moves_available_quantity(app, db_session, branch, product):
    db_session.add(BranchStock(branch_id=branch.id, product_id=product.id, quantity=None,
                               available_quantity=9, reserved_quantity=1))
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["stock", "migrate-legacy"])

    assert result.exit_code == 0
    db_session.expire_all()
    entry = db_session.query(BranchStock).one()
    assert entry.quantity == 9
    assert entry.available_quantity is None
    assert entry.reserved_quantity == 1


def test_migrate_legacy_dry_run_writes_nothing(app, db_session, branch, product):
    db_session.add(BranchStock(branch_id=branch.id, product_id=product.id, quantity=None,
                               available_quantity=9, reserved_quantity=0))
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["stock", "migrate-legacy", "--dry-run"])

    assert "DRY RUN" in result.output
    db_session.expire_all()
    assert db_session.query(BranchStock).one().quantity is None


def test_backfill_base_price(app, db_session, branch, product):
    order = Order(branch_id=branch.id, status="approved", payment_method="efectivo", delivery_method="pickup",
                  total_cents=1500, items=[OrderItem(product_id=product.id, quantity=1, unit_price_cents=1500)])
    db_session.add(order)
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["orders", "backfill-base-price"])

    assert result.exit_code == 0
    db_session.expire_all()
    assert db_session.query(OrderItem).one().base_price_at_sale_cents == product.price_cents


def test_create_branch_admin_and_token(app, db_session, branch):
    runner = app.test_cli_runner()

    created = runner.invoke(args=["users", "create", "--username", "lucia", "--role", "admin_sucursal",
                                  "--branch-id", str(branch.id)])
    assert created.exit_code == 0

    db_session.expire_all()
    user = db_session.query(User).filter_by(username="lucia").one()
    assert db_session.get(type(branch), branch.id).admin_user_id == user.id

    token = runner.invoke(args=["users", "token", "lucia"])
    assert token.exit_code == 0
    assert len(token.output.strip().splitlines()[-1]) == 64
