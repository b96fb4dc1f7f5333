"""Flask CLI commands."""

from sqlalchemy import update

from stockpos.models import Product


def test_seed_then_verify(app, db_session):
    runner = app.test_cli_runner()

    seeded = runner.invoke(args=["ledger", "seed"])
    assert seeded.exit_code == 0
    assert "DONE 4 product(s) created" in seeded.output

    reseeded = runner.invoke(args=["ledger", "seed"])
    assert "DONE 0 product(s) created" in reseeded.output

    verified = runner.invoke(args=["ledger", "verify"])
    assert verified.exit_code == 0
    assert "4/4 product(s) consistent" in verified.output


def test_verify_fails_on_drift(app, db_session, make_product):
    product = make_product(stock=5)
    db_session.execute(update(Product.__table__).where(Product.id == product.id).values(stock_quantity=1))
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["ledger", "verify", "--product-id", str(product.id)])

    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_caisse_sessions_listing(app, db_session, open_session):
    session = open_session(opening="12.00")

    result = app.test_cli_runner().invoke(args=["caisse", "sessions"])

    assert result.exit_code == 0
    assert session.id in result.output
