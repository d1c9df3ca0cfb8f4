"""
Order endpoints: checkout, order lookup, status changes and the timeline.

Endpoints:
    POST /api/orders: Ring up a sale (admin and staff)
    GET /api/orders: List orders, optionally by customer or status
    GET /api/orders/{order_id}: Get a single order with its items
    PATCH /api/orders/{order_id}/status: Change an order's status
    GET /api/orders/{order_id}/timeline: Order events, oldest first
"""
from typing import List, Optional
import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import auth, cache, checkout, crud, models, schemas, webhooks
from ..database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
def create_order(
    order: schemas.OrderCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """
    Create an order and take its items out of stock.

    Prices, tax and total are recomputed from the catalog; the client's
    figures are only compared and logged.

    Raises:
        HTTPException: 400 if the order is invalid or stock was already too low
        HTTPException: 404 if a product or the customer does not exist
        HTTPException: 409 if stock ran out while the order was being written
        HTTPException: 500 if the order could not be stored (stock is restored)
    """
    try:
        db_order = checkout.place_order(db, order, user_id=current_user.id)
    except checkout.CheckoutError as e:
        logger.warning(f"Checkout rejected ({e.status_code}): {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    result = schemas.Order.model_validate(db_order)
    cache.invalidate_dashboard()
    webhooks.notify_order_created(background_tasks, result.model_dump(mode="json", by_alias=True))
    return result


@router.get("", response_model=List[schemas.Order])
def list_orders(
    customer_id: Optional[str] = Query(None, alias="customerId"),
    status_filter: Optional[schemas.OrderStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """
    List orders, newest first.

    Args:
        customer_id: Only this customer's orders
        status_filter: Only orders in this status
        skip: Number of records to skip (default: 0)
        limit: Maximum number of records to return (default: 100)
    """
    return crud.get_orders(db, customer_id=customer_id, status=status_filter, skip=skip, limit=limit)


@router.get("/{order_id}", response_model=schemas.Order)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    db_order = crud.get_order(db, order_id)
    if db_order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return db_order


@router.patch("/{order_id}/status", response_model=schemas.Order)
def update_order_status(
    order_id: str,
    update: schemas.OrderStatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """
    Move an order to another status.

    Any status may follow any other; stock is not touched.

    Raises:
        HTTPException: 400 if the status is not a known value
        HTTPException: 404 if order not found
    """
    if update.status not in models.ORDER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {update.status}")

    db_order = crud.get_order(db, order_id)
    if db_order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    old_status = crud.update_order_status(db, db_order, update.status, user_id=current_user.id)
    logger.info(f"Order '{order_id}' status {old_status} -> {update.status}")

    result = schemas.Order.model_validate(db_order)
    if old_status != update.status:
        cache.invalidate_dashboard()
        webhooks.notify_order_status_changed(background_tasks, order_id, old_status, update.status)
    return result


@router.get("/{order_id}/timeline", response_model=List[schemas.OrderEvent])
def get_order_timeline(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """
    Get the timeline of events for an order.

    Raises:
        HTTPException: 404 if order not found
    """
    if crud.get_order(db, order_id) is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return crud.get_order_events(db, order_id)
