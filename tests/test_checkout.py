from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from types import SimpleNamespace
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from backoffice import checkout, models, schemas
from backoffice.database import Base
from conftest import make_customer, make_product, stock_of


def order_for(*lines, **kwargs):
    kwargs.setdefault("total", Decimal("0"))
    return schemas.OrderCreate(
        items=[schemas.OrderLineIn(product_id=p.id, quantity=q) for p, q in lines],
        **kwargs
    )


def stale_catalog(products, **stock_overrides):
    """A priced view of the catalog as another till saw it a moment ago."""
    view = {}
    for p in products:
        view[p.id] = SimpleNamespace(
            id=p.id,
            name=p.name,
            price=p.price,
            stock=stock_overrides.get(p.id, p.stock)
        )
    return lambda db, ids: view


@pytest.fixture(params=[True, False], ids=["transaction", "compensating"])
def atomic(request):
    return request.param


def test_quote_recomputes_tax_and_total(products):
    cola, water = products["cola"], products["water"]
    lines = [schemas.OrderLineIn(product_id=cola.id, quantity=2), schemas.OrderLineIn(product_id=water.id, quantity=3)]
    quote = checkout.quote_order({cola.id: cola, water.id: water}, lines, Decimal("5"))

    assert quote.subtotal == Decimal("27.50")
    assert quote.discount == Decimal("5.00")
    assert quote.tax == Decimal("5.50")
    assert quote.total == Decimal("28.00")


def test_quote_caps_discount_at_subtotal(products):
    water = products["water"]
    lines = [schemas.OrderLineIn(product_id=water.id, quantity=2)]
    quote = checkout.quote_order({water.id: water}, lines, Decimal("100"))

    assert quote.discount == Decimal("5.00")
    assert quote.total == Decimal("1.00")


def test_tax_is_rounded_to_cents(db, category):
    gum = make_product(db, category, "Gum", "0.07", 10)
    lines = [schemas.OrderLineIn(product_id=gum.id, quantity=1)]
    quote = checkout.quote_order({gum.id: gum}, lines, Decimal("0"))

    assert quote.tax == Decimal("0.01")
    assert quote.total == Decimal("0.08")


def test_place_order_takes_stock_and_stores_server_prices(db, products, staff, atomic):
    cola, water = products["cola"], products["water"]
    order = checkout.place_order(
        db,
        order_for((cola, 2), (water, 4), total=Decimal("1.00"), payment_method="cash"),
        user_id=staff.id,
        atomic=atomic
    )

    assert order.status == "PAID"
    assert order.payment_method == "cash"
    assert order.total == Decimal("36.00")
    assert order.tax == Decimal("6.00")
    assert {(i.product_id, i.quantity, i.price) for i in order.items} == {
        (cola.id, 2, Decimal("10.00")),
        (water.id, 4, Decimal("2.50")),
    }
    assert stock_of(db, cola.id) == 3
    assert stock_of(db, water.id) == 16


def test_place_order_records_movements_and_created_event(db, products, staff, atomic):
    cola = products["cola"]
    order = checkout.place_order(db, order_for((cola, 2)), user_id=staff.id, atomic=atomic)

    movement = db.query(models.StockMovement).filter_by(product_id=cola.id).one()
    assert (movement.type, movement.quantity, movement.previous_stock, movement.new_stock) == ("sale", 2, 5, 3)
    assert movement.reference == order.id

    event = db.query(models.OrderEvent).filter_by(order_id=order.id).one()
    assert event.event_type == "created"
    assert event.new_value == "PAID"


def test_item_price_is_a_snapshot(db, products, staff):
    cola = products["cola"]
    order = checkout.place_order(db, order_for((cola, 1)), user_id=staff.id)

    cola.price = Decimal("99.00")
    db.commit()
    db.expire_all()

    item = db.query(models.OrderItem).filter_by(order_id=order.id).one()
    assert item.price == Decimal("10.00")


def test_unknown_product_is_404_and_changes_nothing(db, products, staff, atomic):
    cola = products["cola"]
    request = schemas.OrderCreate(
        items=[schemas.OrderLineIn(product_id=cola.id, quantity=1), schemas.OrderLineIn(product_id="prod_missing", quantity=1)],
        total=Decimal("0")
    )
    with pytest.raises(checkout.ProductNotFound) as exc:
        checkout.place_order(db, request, user_id=staff.id, atomic=atomic)

    assert exc.value.status_code == 404
    assert stock_of(db, cola.id) == 5
    assert db.query(models.Order).count() == 0


def test_precheck_shortage_is_400(db, products, staff, atomic):
    juice = products["juice"]
    with pytest.raises(checkout.InsufficientStock) as exc:
        checkout.place_order(db, order_for((juice, 2)), user_id=staff.id, atomic=atomic)

    assert exc.value.status_code == 400
    assert stock_of(db, juice.id) == 1
    assert db.query(models.Order).count() == 0


def test_unknown_customer_is_404(db, products, staff):
    with pytest.raises(checkout.CustomerNotFound):
        checkout.place_order(db, order_for((products["cola"], 1), customer_id="cust_missing"), user_id=staff.id)


def test_order_is_linked_to_customer(db, products, staff):
    customer = make_customer(db)
    order = checkout.place_order(db, order_for((products["cola"], 1), customer_id=customer.id), user_id=staff.id)
    assert order.customer_id == customer.id


def test_duplicate_lines_are_rejected(db, products, staff):
    cola = products["cola"]
    with pytest.raises(checkout.InvalidOrder):
        checkout.place_order(db, order_for((cola, 1), (cola, 1)), user_id=staff.id)


def test_lost_race_restores_earlier_lines(db, products, staff, monkeypatch, atomic):
    cola, water, juice = products["cola"], products["water"], products["juice"]
    # another till sold the last juice after this cart was priced
    juice.stock = 0
    db.commit()
    monkeypatch.setattr(checkout, "load_products", stale_catalog([cola, water, juice], **{juice.id: 1}))

    with pytest.raises(checkout.StockConflict) as exc:
        checkout.place_order(db, order_for((cola, 2), (water, 3), (juice, 1)), user_id=staff.id, atomic=atomic)

    assert exc.value.status_code == 409
    assert stock_of(db, cola.id) == 5
    assert stock_of(db, water.id) == 20
    assert stock_of(db, juice.id) == 0
    assert db.query(models.Order).count() == 0


def test_item_insert_failure_restores_stock_and_removes_order(db, products, staff, monkeypatch, atomic):
    cola, water = products["cola"], products["water"]

    def broken_items(order_id, quote):
        raise SQLAlchemyError("order_items unavailable")

    monkeypatch.setattr(checkout, "_new_items", broken_items)

    with pytest.raises(checkout.OrderPersistenceError) as exc:
        checkout.place_order(db, order_for((cola, 1), (water, 2)), user_id=staff.id, atomic=atomic)

    assert exc.value.status_code == 500
    assert stock_of(db, cola.id) == 5
    assert stock_of(db, water.id) == 20
    assert db.query(models.Order).count() == 0


def test_failed_compensation_is_logged_not_raised(db, products, staff, monkeypatch, caplog):
    cola, juice = products["cola"], products["juice"]
    juice.stock = 0
    db.commit()
    monkeypatch.setattr(checkout, "load_products", stale_catalog([cola, juice], **{juice.id: 1}))

    def broken_restore(db, product_id, quantity):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(checkout, "restore_stock", broken_restore)

    with pytest.raises(checkout.StockConflict):
        checkout.place_order(db, order_for((cola, 2), (juice, 1)), user_id=staff.id, atomic=False)

    assert "Rollback failed" in caplog.text
    # best-effort: the decrement that could not be undone stays applied
    assert stock_of(db, cola.id) == 3


def test_client_total_mismatch_is_only_logged(db, products, staff, caplog):
    order = checkout.place_order(db, order_for((products["cola"], 1), total=Decimal("5.00")), user_id=staff.id)

    assert order.total == Decimal("12.00")
    assert "Order total mismatch" in caplog.text


def test_concurrent_checkouts_never_oversell(db, products, staff, monkeypatch):
    juice = products["juice"]
    monkeypatch.setattr(checkout, "load_products", stale_catalog([juice]))

    checkout.place_order(db, order_for((juice, 1)), user_id=staff.id)
    with pytest.raises(checkout.StockConflict):
        checkout.place_order(db, order_for((juice, 1)), user_id=staff.id)

    assert stock_of(db, juice.id) == 0
    assert db.query(models.Order).count() == 1


def test_parallel_checkouts_sell_the_last_unit_once(tmp_path, atomic):
    # each till gets its own connection to a shared on-disk database
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tills.db'}",
        connect_args={"check_same_thread": False, "timeout": 30}
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine)

    with Session() as setup:
        drinks = models.Category(name="Drinks", slug="drinks", level=0, sort_order=1)
        setup.add(drinks)
        setup.commit()
        juice_id = make_product(setup, drinks, "Juice", "4.00", 1).id

    tills = 8
    barrier = threading.Barrier(tills)

    def ring_up(_):
        request = schemas.OrderCreate(items=[schemas.OrderLineIn(product_id=juice_id, quantity=1)], total=Decimal("4.40"))
        with Session() as session:
            barrier.wait()
            try:
                checkout.place_order(session, request, user_id=None, atomic=atomic)
            except checkout.CheckoutError as e:
                return type(e).__name__
            return "sold"

    with ThreadPoolExecutor(max_workers=tills) as pool:
        outcomes = list(pool.map(ring_up, range(tills)))

    assert outcomes.count("sold") == 1
    assert set(outcomes) - {"sold"} <= {"InsufficientStock", "StockConflict"}
    with Session() as check:
        assert check.get(models.Product, juice_id).stock == 0
        assert check.query(models.Order).count() == 1
        assert check.query(models.StockMovement).filter_by(type="sale").count() == 1
    engine.dispose()


def test_write_mode_follows_config(db, products, staff, monkeypatch):
    calls = []
    monkeypatch.setattr(checkout.config, "ORDER_WRITE_MODE", "compensating")
    original = checkout._place_with_compensation

    def spy(*args, **kwargs):
        calls.append("compensating")
        return original(*args, **kwargs)

    monkeypatch.setattr(checkout, "_place_with_compensation", spy)
    checkout.place_order(db, order_for((products["cola"], 1)), user_id=staff.id)

    assert calls == ["compensating"]
