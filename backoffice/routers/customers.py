"""
Customer endpoints for the point of sale (admin and staff).
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import auth, crud, models, schemas
from ..database import get_db

router = APIRouter(prefix="/api/customers", tags=["customers"])


def _get_or_404(db: Session, customer_id: str) -> models.Customer:
    db_customer = crud.get_customer(db, customer_id)
    if db_customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return db_customer


@router.get("", response_model=List[schemas.CustomerWithStats])
def list_customers(
    q: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """
    List customers with order counts and spend.

    Args:
        q: Name or phone fragment, ignored when shorter than two characters
        limit: Maximum number of records to return (default: 50)
    """
    return crud.search_customers(db, q=q, limit=limit)


@router.post("", response_model=schemas.Customer, status_code=status.HTTP_201_CREATED)
def create_customer(
    customer: schemas.CustomerCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """
    Register a customer at the till.

    Raises:
        HTTPException: 409 if the phone number is already registered
    """
    if crud.get_customer_by_phone(db, customer.phone):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A customer with this phone number already exists")
    return crud.create_customer(db, customer)


@router.get("/{customer_id}", response_model=schemas.CustomerWithStats)
def get_customer(
    customer_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    db_customer = _get_or_404(db, customer_id)
    stats = crud.customer_order_stats(db, [customer_id])
    return crud.with_stats(db_customer, stats, include_average=True)


@router.patch("/{customer_id}", response_model=schemas.Customer)
def update_customer(
    customer_id: str,
    customer: schemas.CustomerUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """
    Update a customer's details.

    Raises:
        HTTPException: 400 if nothing to update
        HTTPException: 404 if customer not found
        HTTPException: 409 if the new phone number belongs to another customer
    """
    db_customer = _get_or_404(db, customer_id)
    changes = customer.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    if changes.get("phone"):
        owner = crud.get_customer_by_phone(db, changes["phone"])
        if owner is not None and owner.id != customer_id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A customer with this phone number already exists")
    return crud.update_customer(db, db_customer, customer)


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(
    customer_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Delete a customer (admin only).

    Raises:
        HTTPException: 404 if customer not found
        HTTPException: 409 if the customer has orders
    """
    db_customer = _get_or_404(db, customer_id)
    if crud.customer_has_orders(db, customer_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Customer has orders and cannot be deleted")
    crud.delete_customer(db, db_customer)
