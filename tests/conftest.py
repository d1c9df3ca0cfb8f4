import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["WEBHOOK_URLS"] = ""

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from backoffice import auth, models
from backoffice.database import Base, SessionLocal, engine
from backoffice.main import app


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


def make_user(db, role, email=None, name="Test User"):
    user = models.User(
        name=name,
        email=email or f"{role.lower()}@example.com",
        password_hash="not-a-real-hash",
        role=role,
        is_active=True
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def bearer(user):
    return {"Authorization": f"Bearer {auth.token_for(user)}"}


@pytest.fixture
def admin(db):
    return make_user(db, "ADMIN")


@pytest.fixture
def staff(db):
    return make_user(db, "STAFF")


@pytest.fixture
def customer_user(db):
    return make_user(db, "CUSTOMER")


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
def staff_headers(staff):
    return bearer(staff)


@pytest.fixture
def customer_headers(customer_user):
    return bearer(customer_user)


@pytest.fixture
def category(db):
    cat = models.Category(name="Drinks", slug="drinks", level=0, sort_order=1)
    db.add(cat)
    db.commit()
    db.refresh(cat)
    return cat


def make_product(db, category, name, price, stock, barcode=None):
    product = models.Product(
        name=name,
        price=Decimal(price),
        stock=stock,
        barcode=barcode,
        images=["https://img.test/p.png"],
        category_id=category.id
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def products(db, category):
    return {
        "cola": make_product(db, category, "Cola", "10.00", 5, barcode="111"),
        "water": make_product(db, category, "Water", "2.50", 20, barcode="222"),
        "juice": make_product(db, category, "Juice", "7.99", 1, barcode="333"),
    }


def make_customer(db, name="Ada", phone="555-0100", created_at=None):
    customer = models.Customer(name=name, phone=phone)
    if created_at is not None:
        customer.created_at = created_at
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return customer


def make_order(db, total, status="PAID", created_at=None, customer=None, lines=(), payment_method="card", tax="0", discount="0"):
    """Insert an order directly, bypassing checkout. ``lines`` is (product, quantity, price)."""
    order = models.Order(
        id=models.new_id("order"),
        total=Decimal(total),
        tax=Decimal(tax),
        discount=Decimal(discount),
        status=status,
        payment_method=payment_method,
        customer_id=customer.id if customer else None,
        created_at=created_at or datetime.utcnow()
    )
    db.add(order)
    db.flush()
    for product, quantity, price in lines:
        db.add(models.OrderItem(
            id=models.new_id("item"),
            order_id=order.id,
            product_id=product.id,
            quantity=quantity,
            price=Decimal(price)
        ))
    db.commit()
    db.refresh(order)
    return order


def stock_of(db, product_id):
    db.expire_all()
    return db.query(models.Product.stock).filter(models.Product.id == product_id).scalar()
