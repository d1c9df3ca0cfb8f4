"""
Inventory endpoints: live stock alerts, the movement log and reports.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .. import auth, models, schemas, stock
from ..database import get_db

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


@router.get("/alerts", response_model=schemas.AlertList)
def list_alerts(
    alert_type: Optional[str] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """
    Alerts derived from current stock levels, highest priority first.

    Args:
        alert_type: critical, low, reorder, overstock, high-value or all
    """
    products = db.query(models.Product).all()
    return stock.build_alert_list(products, alert_type)


@router.post("/alerts", response_model=schemas.AlertList)
def product_alerts(
    request: schemas.AlertRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """Alerts for the listed products only. Unknown ids are ignored."""
    products = []
    if request.product_ids:
        products = db.query(models.Product).filter(models.Product.id.in_(request.product_ids)).all()
    return stock.build_alert_list(products)


@router.get("/movements", response_model=List[schemas.StockMovement])
def list_movements(
    product_id: Optional[str] = Query(None, alias="productId"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """Recorded stock movements, newest first."""
    return stock.get_movements(db, product_id=product_id, skip=skip, limit=limit)


@router.get("/reports", response_model=dict)
def get_report(
    report_type: str = Query("summary", alias="type"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """
    Build an inventory report.

    Args:
        report_type: summary, stock-levels, valuation, abc-analysis or movement-summary

    Raises:
        HTTPException: 400 if the report type is unknown
    """
    try:
        return stock.inventory_report(db, report_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
