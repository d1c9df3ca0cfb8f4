"""
SQLAlchemy ORM models for the back-office API.

Defines the database schema for the catalog, customer, order, stock-movement
and user tables.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Text, Boolean, JSON
from sqlalchemy.orm import relationship
from .database import Base

ORDER_STATUSES = ("PENDING", "PAID", "SHIPPED", "DELIVERED", "CANCELLED")
PAYMENT_METHODS = ("cash", "card", "transfer")
USER_ROLES = ("ADMIN", "STAFF", "CUSTOMER")


def new_id(prefix: str) -> str:
    """Return a fresh primary key such as ``prod_<uuid4>``."""
    return f"{prefix}_{uuid.uuid4()}"


class User(Base):
    """
    Back-office account (admin, staff member or customer).

    Attributes:
        id (int): Primary key, auto-incremented user ID
        name (str): User's full name
        email (str): User's email address (unique)
        password_hash (str): Hashed password
        role (str): ADMIN, STAFF or CUSTOMER
        is_active (bool): Whether the user account is active
        created_at (datetime): Timestamp when the user was created
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, default="CUSTOMER", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Category(Base):
    """
    Product category. Categories form a tree through ``parent_id``.

    Attributes:
        id (str): Primary key (e.g. "cat_<uuid>")
        name (str): Display name
        slug (str): URL-safe unique name
        parent_id (str): Parent category, None for root categories
        level (int): Depth in the tree, 0 for roots
        sort_order (int): Position among siblings
    """
    __tablename__ = "categories"

    id = Column(String, primary_key=True, index=True, default=lambda: new_id("cat"))
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)
    parent_id = Column(String, ForeignKey("categories.id"), nullable=True, index=True)
    level = Column(Integer, default=0, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    image = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Product(Base):
    """
    Product sold at the point of sale.

    ``stock`` must never drop below zero. There is no CHECK constraint for
    it; every write that lowers stock carries a ``stock >= n`` predicate.

    Attributes:
        id (str): Primary key (e.g. "prod_<uuid>")
        name (str): Product name
        price (Decimal): Current unit price
        stock (int): Units on hand
        barcode (str): Optional unique barcode
        images (list): Image URLs
        category_id (str): Owning category
    """
    __tablename__ = "products"

    id = Column(String, primary_key=True, index=True, default=lambda: new_id("prod"))
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    barcode = Column(String(255), unique=True, nullable=True)
    images = Column(JSON, nullable=False, default=list)
    category_id = Column(String, ForeignKey("categories.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    category = relationship("Category")


class Customer(Base):
    """Walk-in or registered shop customer."""
    __tablename__ = "customers"

    id = Column(String, primary_key=True, index=True, default=lambda: new_id("cust"))
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, unique=True, index=True, nullable=False)
    address = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Order(Base):
    """
    Checkout result. Only ``status`` changes after creation.

    Attributes:
        id (str): Primary key (e.g. "order_<uuid>")
        total (Decimal): subtotal - discount + tax, computed server-side
        tax (Decimal): Tax on the subtotal
        discount (Decimal): Discount, never larger than the subtotal
        status (str): One of ORDER_STATUSES
        payment_method (str): One of PAYMENT_METHODS
        customer_id (str): Optional customer
        user_id (int): Cashier who rang up the sale
        created_at (datetime): Timestamp when the order was created
    """
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True, default=lambda: new_id("order"))
    total = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String, nullable=False, default="PAID")
    payment_method = Column(String, nullable=False, default="card")
    customer_id = Column(String, ForeignKey("customers.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    customer = relationship("Customer")


class OrderItem(Base):
    """
    Order line. ``price`` is the unit price at sale time and does not follow
    later changes to ``Product.price``.
    """
    __tablename__ = "order_items"

    id = Column(String, primary_key=True, index=True, default=lambda: new_id("item"))
    order_id = Column(String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    @property
    def product_name(self):
        return self.product.name if self.product is not None else None


class OrderEvent(Base):
    """
    OrderEvent model representing historical events in an order's lifecycle.

    Attributes:
        id (int): Primary key, auto-incrementing event ID
        order_id (str): Foreign key to the order
        event_type (str): "created" or "status_changed"
        description (str): Human-readable description of the event
        old_value (str): Previous value (for changes, optional)
        new_value (str): New value (for changes, optional)
        user_id (int): ID of the user who triggered the event (optional)
        created_at (datetime): Timestamp when the event occurred
    """
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=True)
    user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class StockMovement(Base):
    """
    Audit row written for every change to ``Product.stock``.

    ``type`` is one of: sale, restore, increase, decrease, set, adjustment.
    ``quantity`` is always the absolute size of the change.
    """
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    product_id = Column(String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    reason = Column(String, nullable=True)
    reference = Column(String, nullable=True)
    cost = Column(Numeric(10, 2), nullable=True)
    user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
