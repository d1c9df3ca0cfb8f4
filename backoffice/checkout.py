"""
Checkout: turns a cart into a persisted order without overselling.

The flow is:

1. validate the requested lines,
2. load the products and recompute prices, discount, tax and total from the
   database (client figures are only compared and logged),
3. for every line run ``UPDATE product SET stock = stock - n
   WHERE id = :id AND stock >= n``; a row count of zero means a concurrent
   sale took the stock after step 2,
4. insert the order header, then its lines, sale movements and the
   ``created`` timeline event.

Two write modes exist. ``transaction`` (the default) wraps steps 3-4 in one
database transaction and rolls back on any failure. ``compensating`` commits
each step separately, for drivers that cannot hold a multi-statement
transaction, and undoes earlier stock decrements by adding the quantities
back. Compensating writes are best-effort: their failures are logged and
never raised, so a crash half-way through can leave stock under-counted.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config, models, schemas, validators

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class CheckoutError(Exception):
    """Base class for checkout failures. ``status_code`` is the HTTP status."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidOrder(CheckoutError):
    status_code = 400


class ProductNotFound(CheckoutError):
    status_code = 404


class CustomerNotFound(CheckoutError):
    status_code = 404


class InsufficientStock(CheckoutError):
    """Stock was already too low when the cart was priced."""
    status_code = 400


class StockConflict(CheckoutError):
    """Stock ran out between pricing and the conditional decrement."""
    status_code = 409


class OrderPersistenceError(CheckoutError):
    status_code = 500


@dataclass
class QuotedLine:
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal


@dataclass
class Quote:
    lines: List[QuotedLine]
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


@dataclass
class Reservation:
    """A stock decrement that has been applied and may need undoing."""
    product_id: str
    quantity: int
    previous_stock: int
    new_stock: int


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def load_products(db: Session, product_ids: List[str]) -> Dict[str, models.Product]:
    """Fetch the products referenced by a cart, keyed by id."""
    rows = db.query(models.Product).filter(models.Product.id.in_(product_ids)).all()
    return {product.id: product for product in rows}


def quote_order(
    products: Dict[str, models.Product],
    items: List[schemas.OrderLineIn],
    discount: Decimal,
    tax_rate: Optional[Decimal] = None
) -> Quote:
    """
    Price a cart from current product records.

    Tax is charged on the subtotal before discount; the discount is capped
    at the subtotal.

    Raises:
        ProductNotFound: an item references an unknown product
        InsufficientStock: a product has less stock than requested
    """
    tax_rate = config.TAX_RATE if tax_rate is None else tax_rate
    lines = []
    subtotal = Decimal("0")
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            raise ProductNotFound(f"Product not found: {item.product_id}")
        if product.stock < item.quantity:
            raise InsufficientStock(f"Insufficient stock: {product.name}")
        unit_price = money(product.price)
        subtotal += unit_price * item.quantity
        lines.append(QuotedLine(
            product_id=product.id,
            product_name=product.name,
            quantity=item.quantity,
            unit_price=unit_price
        ))

    discount = min(money(discount), subtotal)
    tax = money(subtotal * tax_rate)
    total = money(subtotal - discount + tax)
    return Quote(lines=lines, subtotal=subtotal, discount=discount, tax=tax, total=total)


def decrement_stock(db: Session, product_id: str, quantity: int) -> Optional[int]:
    """
    Conditionally take ``quantity`` units of a product.

    Returns:
        The new stock level, or None when the row no longer had enough stock
    """
    stmt = (
        update(models.Product)
        .where(models.Product.id == product_id, models.Product.stock >= quantity)
        .values(stock=models.Product.stock - quantity)
        .returning(models.Product.stock)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(stmt).first()
    return None if row is None else row[0]


def restore_stock(db: Session, product_id: str, quantity: int) -> Optional[int]:
    """Add ``quantity`` units back to a product. Returns the new stock level."""
    stmt = (
        update(models.Product)
        .where(models.Product.id == product_id)
        .values(stock=models.Product.stock + quantity)
        .returning(models.Product.stock)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(stmt).first()
    return None if row is None else row[0]


def release_reservations(db: Session, reservations: List[Reservation]) -> None:
    """
    Undo committed decrements, newest first.

    Each restore is committed on its own. Failures are logged and skipped.
    """
    for reservation in reversed(reservations):
        try:
            new_stock = restore_stock(db, reservation.product_id, reservation.quantity)
            db.commit()
            logger.info(f"Rollback: restored {reservation.quantity} units of '{reservation.product_id}' (stock now {new_stock})")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Rollback failed for product '{reservation.product_id}': {e}")


def _new_order(order_in: schemas.OrderCreate, quote: Quote, user_id: Optional[int]) -> models.Order:
    return models.Order(
        id=models.new_id("order"),
        customer_id=order_in.customer_id or None,
        payment_method=order_in.payment_method,
        discount=quote.discount,
        tax=quote.tax,
        total=quote.total,
        status="PAID",
        user_id=user_id
    )


def _new_items(order_id: str, quote: Quote) -> List[models.OrderItem]:
    return [
        models.OrderItem(
            id=models.new_id("item"),
            order_id=order_id,
            product_id=line.product_id,
            quantity=line.quantity,
            price=line.unit_price
        )
        for line in quote.lines
    ]


def _history(order: models.Order, reservations: List[Reservation], user_id: Optional[int]) -> list:
    rows = [
        models.StockMovement(
            product_id=r.product_id,
            type="sale",
            quantity=r.quantity,
            previous_stock=r.previous_stock,
            new_stock=r.new_stock,
            reason="Sale",
            reference=order.id,
            user_id=user_id
        )
        for r in reservations
    ]
    rows.append(models.OrderEvent(
        order_id=order.id,
        event_type="created",
        description=f"Order created with status '{order.status}'",
        new_value=order.status,
        user_id=user_id
    ))
    return rows


def _discard_order(db: Session, order_id: str) -> None:
    try:
        db.query(models.Order).filter(models.Order.id == order_id).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not remove order header '{order_id}': {e}")


def _place_in_transaction(db: Session, order_in: schemas.OrderCreate, quote: Quote, user_id: Optional[int]) -> models.Order:
    reservations = []
    try:
        for line in quote.lines:
            new_stock = decrement_stock(db, line.product_id, line.quantity)
            if new_stock is None:
                db.rollback()
                logger.error(f"Stock race lost for product '{line.product_id}', transaction rolled back")
                raise StockConflict(f"Insufficient stock (concurrent sale): {line.product_name}")
            reservations.append(Reservation(line.product_id, line.quantity, new_stock + line.quantity, new_stock))

        order = _new_order(order_in, quote, user_id)
        db.add(order)
        db.flush()
        db.add_all(_new_items(order.id, quote))
        db.add_all(_history(order, reservations, user_id))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Order write failed, transaction rolled back: {e}")
        raise OrderPersistenceError("Order could not be created") from e

    db.refresh(order)
    return order


def _place_with_compensation(db: Session, order_in: schemas.OrderCreate, quote: Quote, user_id: Optional[int]) -> models.Order:
    reservations = []
    for line in quote.lines:
        try:
            new_stock = decrement_stock(db, line.product_id, line.quantity)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Stock decrement failed for '{line.product_id}': {e}")
            release_reservations(db, reservations)
            raise OrderPersistenceError("Order could not be created") from e
        if new_stock is None:
            logger.error(f"Stock race lost for product '{line.product_id}', restoring {len(reservations)} items")
            release_reservations(db, reservations)
            raise StockConflict(f"Insufficient stock (concurrent sale): {line.product_name}")
        reservations.append(Reservation(line.product_id, line.quantity, new_stock + line.quantity, new_stock))

    order = _new_order(order_in, quote, user_id)
    order_id = order.id
    try:
        db.add(order)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Order insert failed, restoring stock: {e}")
        release_reservations(db, reservations)
        raise OrderPersistenceError("Order could not be created") from e

    try:
        db.add_all(_new_items(order_id, quote))
        db.add_all(_history(order, reservations, user_id))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Order item insert failed for '{order_id}', removing order and restoring stock: {e}")
        _discard_order(db, order_id)
        release_reservations(db, reservations)
        raise OrderPersistenceError("Order items could not be created") from e

    db.refresh(order)
    return order


def place_order(
    db: Session,
    order_in: schemas.OrderCreate,
    user_id: Optional[int],
    atomic: Optional[bool] = None
) -> models.Order:
    """
    Create an order and take its stock.

    Either every line is decremented and the order is stored, or no net
    stock change remains and a CheckoutError is raised.

    Args:
        db: Database session
        order_in: Checkout request
        user_id: Cashier creating the order
        atomic: Force a write mode; defaults to ``config.ORDER_WRITE_MODE``

    Returns:
        The persisted order with its items

    Raises:
        InvalidOrder, ProductNotFound, CustomerNotFound, InsufficientStock,
        StockConflict, OrderPersistenceError
    """
    valid, message = validators.validate_order_lines(order_in.items)
    if not valid:
        raise InvalidOrder(message)

    if order_in.customer_id:
        exists = db.query(models.Customer.id).filter(models.Customer.id == order_in.customer_id).first()
        if exists is None:
            raise CustomerNotFound(f"Customer not found: {order_in.customer_id}")

    products = load_products(db, [item.product_id for item in order_in.items])
    quote = quote_order(products, order_in.items, order_in.discount)
    logger.info(f"Checkout priced: subtotal={quote.subtotal} discount={quote.discount} tax={quote.tax} total={quote.total}")

    matches, message = validators.validate_claimed_total(quote.total, order_in.total)
    if not matches:
        logger.warning(message)

    if atomic is None:
        atomic = config.ORDER_WRITE_MODE != "compensating"

    if atomic:
        order = _place_in_transaction(db, order_in, quote, user_id)
    else:
        order = _place_with_compensation(db, order_in, quote, user_id)
    logger.info(f"Order '{order.id}' created with {len(quote.lines)} lines")
    return order
