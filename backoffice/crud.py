"""
CRUD (Create, Read, Update, Delete) operations for the back-office API.

This module contains the database operations for users, products, customers
and orders. Order creation lives in ``checkout``; category trees and manual
stock changes live in ``categories`` and ``stock``.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
import logging
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from . import models, schemas

logger = logging.getLogger(__name__)

LOW_STOCK_LIMIT = 10
FREQUENT_BUYER_ORDERS = 5
REVENUE_STATUSES = ("PAID", "SHIPPED", "DELIVERED")

PRODUCT_SORT_COLUMNS = {
    "name": models.Product.name,
    "price": models.Product.price,
    "stock": models.Product.stock,
    "createdAt": models.Product.created_at,
}


# --- Users -----------------------------------------------------------------

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    """
    Retrieve a single user by ID.

    Args:
        db: Database session
        user_id: ID of the user to retrieve

    Returns:
        User object or None if not found
    """
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email).first()


def get_users(db: Session, skip: int = 0, limit: int = 500) -> List[models.User]:
    return db.query(models.User).order_by(models.User.created_at.desc()).offset(skip).limit(limit).all()


def create_user(db: Session, user: schemas.UserRegister, password_hash: str) -> models.User:
    """
    Create a user account.

    The very first account becomes ADMIN so a fresh installation can be
    bootstrapped; every later self-registration is a CUSTOMER.
    """
    role = "ADMIN" if db.query(func.count(models.User.id)).scalar() == 0 else "CUSTOMER"
    db_user = models.User(
        name=user.name,
        email=user.email,
        password_hash=password_hash,
        role=role,
        is_active=True
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info(f"User '{db_user.email}' registered with role {role}")
    return db_user


def update_user(db: Session, user_id: int, user: schemas.UserUpdate) -> Optional[models.User]:
    """
    Update an existing user.

    Args:
        db: Database session
        user_id: ID of the user to update
        user: Updated user data (only provided fields will be updated)

    Returns:
        Updated User object or None if not found
    """
    db_user = get_user(db, user_id)
    if db_user is None:
        return None

    update_data = user.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        setattr(db_user, key, value)

    db.commit()
    db.refresh(db_user)
    return db_user


def delete_user(db: Session, user_id: int) -> bool:
    """
    Delete a user from the database.

    Orders rung up by the user are kept; their ``user_id`` is cleared.

    Returns:
        True if user was deleted, False if not found
    """
    db_user = get_user(db, user_id)
    if db_user is None:
        return False

    db.query(models.Order).filter(models.Order.user_id == user_id).update(
        {models.Order.user_id: None}, synchronize_session=False
    )
    db.delete(db_user)
    db.commit()
    return True


# --- Products --------------------------------------------------------------

def get_product(db: Session, product_id: str) -> Optional[models.Product]:
    """
    Retrieve a single product by ID.

    Args:
        db: Database session
        product_id: ID of the product to retrieve

    Returns:
        Product object or None if not found
    """
    return db.query(models.Product).filter(models.Product.id == product_id).first()


def get_product_by_barcode(db: Session, barcode: str) -> Optional[models.Product]:
    return db.query(models.Product).filter(models.Product.barcode == barcode).first()


def search_products(
    db: Session,
    query: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    stock: Optional[str] = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20
) -> Tuple[List[models.Product], int]:
    """
    Filter, sort and paginate the catalog.

    Args:
        db: Database session
        query: Substring matched against product name, barcode and category name
        category: Category ID
        min_price: Lowest price included
        max_price: Highest price included
        stock: "inStock", "outOfStock" or "lowStock"
        sort_by: "name", "price", "stock" or "createdAt"
        sort_order: "asc" or "desc"
        page: 1-based page number
        limit: Page size

    Returns:
        Tuple of (products on the page, total matching products)
    """
    q = db.query(models.Product).outerjoin(models.Category, models.Product.category_id == models.Category.id)

    if query:
        pattern = f"%{query}%"
        q = q.filter(or_(
            models.Product.name.ilike(pattern),
            models.Product.barcode.ilike(pattern),
            models.Category.name.ilike(pattern),
        ))
    if category:
        q = q.filter(models.Product.category_id == category)
    if min_price is not None:
        q = q.filter(models.Product.price >= min_price)
    if max_price is not None:
        q = q.filter(models.Product.price <= max_price)

    if stock == "inStock":
        q = q.filter(models.Product.stock >= 1)
    elif stock == "outOfStock":
        q = q.filter(models.Product.stock == 0)
    elif stock == "lowStock":
        q = q.filter(models.Product.stock >= 1, models.Product.stock <= LOW_STOCK_LIMIT)

    total = q.count()

    column = PRODUCT_SORT_COLUMNS.get(sort_by, models.Product.created_at)
    q = q.order_by(column.asc() if sort_order == "asc" else column.desc(), models.Product.id)

    products = q.offset((page - 1) * limit).limit(limit).all()
    return products, total


def create_product(db: Session, product: schemas.ProductCreate) -> models.Product:
    db_product = models.Product(**product.model_dump())
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    return db_product


def update_product(db: Session, db_product: models.Product, product: schemas.ProductUpdate, user_id: Optional[int] = None) -> models.Product:
    """
    Apply a partial update to a product.

    A changed ``stock`` value is recorded as a ``set`` movement.
    """
    update_data = product.model_dump(exclude_unset=True)
    previous_stock = db_product.stock
    for key, value in update_data.items():
        setattr(db_product, key, value)

    if "stock" in update_data and update_data["stock"] != previous_stock:
        db.add(models.StockMovement(
            product_id=db_product.id,
            type="set",
            quantity=abs(update_data["stock"] - previous_stock),
            previous_stock=previous_stock,
            new_stock=update_data["stock"],
            reason="Product update",
            user_id=user_id
        ))

    db.commit()
    db.refresh(db_product)
    return db_product


def product_has_sales(db: Session, product_id: str) -> bool:
    return db.query(models.OrderItem.id).filter(models.OrderItem.product_id == product_id).first() is not None


def delete_product(db: Session, product_id: str) -> bool:
    """
    Delete a product from the database.

    Returns:
        True if product was deleted, False if not found
    """
    db_product = get_product(db, product_id)
    if db_product is None:
        return False

    db.delete(db_product)
    db.commit()
    return True


def bulk_delete_products(db: Session, product_ids: List[str]) -> Tuple[int, List[str]]:
    """
    Delete every listed product that has never been sold.

    Returns:
        Tuple of (deleted count, ids skipped because order lines reference them)
    """
    sold = {
        row[0] for row in db.query(models.OrderItem.product_id)
        .filter(models.OrderItem.product_id.in_(product_ids))
        .distinct()
        .all()
    }
    deletable = [pid for pid in product_ids if pid not in sold]
    deleted = 0
    if deletable:
        deleted = db.query(models.Product).filter(models.Product.id.in_(deletable)).delete(synchronize_session=False)
    db.commit()
    return deleted, sorted(sold)


def bulk_update_products(db: Session, data: schemas.BulkUpdate, user_id: Optional[int] = None) -> int:
    """
    Set price, stock and/or category on several products at once.

    Returns:
        Number of products updated
    """
    products = db.query(models.Product).filter(models.Product.id.in_(data.product_ids)).all()
    now = datetime.utcnow()
    for product in products:
        if data.price is not None:
            product.price = data.price
        if data.category_id is not None:
            product.category_id = data.category_id
        if data.stock is not None and data.stock != product.stock:
            db.add(models.StockMovement(
                product_id=product.id,
                type="set",
                quantity=abs(data.stock - product.stock),
                previous_stock=product.stock,
                new_stock=data.stock,
                reason="Bulk update",
                user_id=user_id
            ))
            product.stock = data.stock
        product.updated_at = now
    db.commit()
    return len(products)


# --- Customers -------------------------------------------------------------

def get_customer(db: Session, customer_id: str) -> Optional[models.Customer]:
    return db.query(models.Customer).filter(models.Customer.id == customer_id).first()


def get_customer_by_phone(db: Session, phone: str) -> Optional[models.Customer]:
    return db.query(models.Customer).filter(models.Customer.phone == phone).first()


def create_customer(db: Session, customer: schemas.CustomerCreate) -> models.Customer:
    db_customer = models.Customer(**customer.model_dump())
    db.add(db_customer)
    db.commit()
    db.refresh(db_customer)
    return db_customer


def customer_order_stats(db: Session, customer_ids: List[str]) -> dict:
    """
    Count orders and sum spend per customer.

    Returns:
        Mapping of customer id to (order count, total spent)
    """
    if not customer_ids:
        return {}
    rows = (
        db.query(
            models.Order.customer_id,
            func.count(models.Order.id),
            func.coalesce(func.sum(models.Order.total), 0)
        )
        .filter(models.Order.customer_id.in_(customer_ids))
        .group_by(models.Order.customer_id)
        .all()
    )
    return {cid: (int(count), Decimal(str(spent))) for cid, count, spent in rows}


def with_stats(customer: models.Customer, stats: dict, include_average: bool = False) -> schemas.CustomerWithStats:
    orders, spent = stats.get(customer.id, (0, Decimal("0")))
    result = schemas.CustomerWithStats.model_validate(customer)
    result.total_orders = orders
    result.total_spent = spent
    result.frequent_buyer = orders >= FREQUENT_BUYER_ORDERS
    if include_average:
        result.average_order_value = (spent / orders).quantize(Decimal("0.01")) if orders else Decimal("0")
    return result


def search_customers(db: Session, q: Optional[str] = None, limit: int = 50) -> List[schemas.CustomerWithStats]:
    """
    List customers, newest first, with their order statistics.

    ``q`` filters on name or phone once it is at least two characters long.
    """
    query = db.query(models.Customer)
    if q and len(q.strip()) >= 2:
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(models.Customer.name.ilike(pattern), models.Customer.phone.ilike(pattern)))
    customers = query.order_by(models.Customer.created_at.desc()).limit(limit).all()
    stats = customer_order_stats(db, [c.id for c in customers])
    return [with_stats(c, stats) for c in customers]


def update_customer(db: Session, db_customer: models.Customer, customer: schemas.CustomerUpdate) -> models.Customer:
    for key, value in customer.model_dump(exclude_unset=True).items():
        setattr(db_customer, key, value)
    db.commit()
    db.refresh(db_customer)
    return db_customer


def customer_has_orders(db: Session, customer_id: str) -> bool:
    return db.query(models.Order.id).filter(models.Order.customer_id == customer_id).first() is not None


def delete_customer(db: Session, db_customer: models.Customer) -> None:
    db.delete(db_customer)
    db.commit()


# --- Orders ----------------------------------------------------------------

def get_order(db: Session, order_id: str) -> Optional[models.Order]:
    """
    Retrieve a single order by ID, with its items and their products.

    Args:
        db: Database session
        order_id: ID of the order to retrieve

    Returns:
        Order object or None if not found
    """
    return (
        db.query(models.Order)
        .options(selectinload(models.Order.items).selectinload(models.OrderItem.product))
        .filter(models.Order.id == order_id)
        .first()
    )


def get_orders(
    db: Session,
    customer_id: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100
) -> List[models.Order]:
    """
    Retrieve orders, newest first.

    Args:
        db: Database session
        customer_id: Only orders of this customer
        status: Only orders in this status
        skip: Number of records to skip (offset)
        limit: Maximum number of records to return

    Returns:
        List of Order objects
    """
    q = db.query(models.Order).options(selectinload(models.Order.items).selectinload(models.OrderItem.product))
    if customer_id:
        q = q.filter(models.Order.customer_id == customer_id)
    if status:
        q = q.filter(models.Order.status == status)
    return q.order_by(models.Order.created_at.desc()).offset(skip).limit(limit).all()


def log_order_event(
    db: Session,
    order_id: str,
    event_type: str,
    description: str,
    old_value: str = None,
    new_value: str = None,
    user_id: int = None
) -> models.OrderEvent:
    """
    Add an event to an order's timeline. The caller commits.

    Args:
        db: Database session
        order_id: Order identifier
        event_type: Type of event (e.g., "created", "status_changed")
        description: Human-readable description
        old_value: Previous value (optional)
        new_value: New value (optional)
        user_id: User who triggered the event (optional)
    """
    event = models.OrderEvent(
        order_id=order_id,
        event_type=event_type,
        description=description,
        old_value=old_value,
        new_value=new_value,
        user_id=user_id
    )
    db.add(event)
    return event


def update_order_status(db: Session, db_order: models.Order, new_status: str, user_id: Optional[int] = None) -> str:
    """
    Change an order's status and record the change on its timeline.

    Stock is left untouched whatever the transition.

    Returns:
        The previous status
    """
    old_status = db_order.status
    db_order.status = new_status
    if old_status != new_status:
        log_order_event(
            db,
            order_id=db_order.id,
            event_type="status_changed",
            description=f"Status changed from '{old_status}' to '{new_status}'",
            old_value=old_status,
            new_value=new_status,
            user_id=user_id
        )
    db.commit()
    db.refresh(db_order)
    return old_status


def get_order_events(db: Session, order_id: str) -> List[models.OrderEvent]:
    return (
        db.query(models.OrderEvent)
        .filter(models.OrderEvent.order_id == order_id)
        .order_by(models.OrderEvent.created_at.asc(), models.OrderEvent.id.asc())
        .all()
    )
