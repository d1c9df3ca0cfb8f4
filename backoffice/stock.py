"""
Manual stock changes, stock health and inventory reports.

Every write lowers stock through a conditional UPDATE so a manual
adjustment racing a checkout can never push stock below zero. Each change is
recorded as a ``StockMovement`` row.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
import logging
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger(__name__)

AVERAGE_DAILY_USAGE = 2
REORDER_POINT = 20
MINIMUM_STOCK = 10

CRITICAL_LEVEL = 5
LOW_LEVEL = 15
REORDER_LEVEL = 25
OVERSTOCK_LEVEL = 200
HIGH_VALUE_LEVEL = Decimal("50000")

ALERT_PRIORITY = {"critical": 3, "low": 2, "reorder": 1, "overstock": 0, "high-value": 0}

REPORT_TYPES = ("summary", "stock-levels", "valuation", "abc-analysis", "movement-summary")


class StockAdjustmentError(ValueError):
    """Rejected manual stock change."""


def stock_status(stock: int) -> schemas.StockStatus:
    if stock == 0:
        return schemas.StockStatus(level="out-of-stock", color="red", message="Out of stock")
    if stock <= 5:
        return schemas.StockStatus(level="critical", color="red", message="Critical level")
    if stock <= 10:
        return schemas.StockStatus(level="low", color="yellow", message="Low stock")
    if stock <= 20:
        return schemas.StockStatus(level="medium", color="blue", message="Medium level")
    return schemas.StockStatus(level="good", color="green", message="Sufficient stock")


def days_of_stock(stock: int) -> int:
    return stock // max(AVERAGE_DAILY_USAGE, 1)


def stock_metrics(product: models.Product) -> schemas.StockMetrics:
    return schemas.StockMetrics(
        total_value=Decimal(product.price) * product.stock,
        days_of_stock=days_of_stock(product.stock),
        reorder_point=REORDER_POINT,
        minimum_stock=MINIMUM_STOCK,
        average_usage=AVERAGE_DAILY_USAGE
    )


def product_alerts(product: models.Product, now: Optional[datetime] = None) -> List[schemas.StockAlert]:
    """
    Derive the alerts a product currently raises.

    At most one stock-level alert (critical, low, reorder or overstock) plus
    a high-value alert when the stock on hand is worth more than 50 000.
    """
    now = now or datetime.utcnow()
    alerts = []
    stock = product.stock

    def alert(kind, priority, severity, message, threshold, actions, category="stock-level", value=None):
        return schemas.StockAlert(
            id=f"{kind}-{product.id}",
            product_id=product.id,
            product_name=product.name,
            type=kind,
            priority=priority,
            severity=severity,
            message=message,
            threshold=threshold,
            current_stock=stock,
            current_value=value,
            category=category,
            actions=actions,
            timestamp=now
        )

    if stock <= CRITICAL_LEVEL:
        if stock == 0:
            alerts.append(alert("critical", "high", "critical", f"{product.name} is out of stock",
                                CRITICAL_LEVEL, ["Order urgently", "Find an alternative product"]))
        else:
            alerts.append(alert("critical", "high", "high", f"{product.name} is at a critical level ({stock} left)",
                                CRITICAL_LEVEL, ["Order now", "Book incoming stock"]))
    elif stock <= LOW_LEVEL:
        alerts.append(alert("low", "medium", "medium", f"{product.name} is running low ({stock} left)",
                            LOW_LEVEL, ["Plan an order", "Check stock count"]))
    elif stock <= REORDER_LEVEL:
        alerts.append(alert("reorder", "low", "low", f"{product.name} reached its reorder point ({stock} left)",
                            REORDER_LEVEL, ["Prepare an order", "Check suppliers"]))
    elif stock > OVERSTOCK_LEVEL:
        alerts.append(alert("overstock", "low", "info", f"{product.name} is overstocked ({stock} units)",
                            OVERSTOCK_LEVEL, ["Run a promotion", "Review supply plan"]))

    value = Decimal(product.price) * stock
    if value > HIGH_VALUE_LEVEL:
        alerts.append(alert("high-value", "medium", "info", f"{product.name} holds high-value inventory ({value:.2f})",
                            int(HIGH_VALUE_LEVEL), ["Check security measures", "Review insurance"],
                            category="value-based", value=value))
    return alerts


def build_alert_list(products: List[models.Product], alert_type: Optional[str] = None) -> schemas.AlertList:
    """Collect alerts for ``products``, highest priority first, with counts."""
    now = datetime.utcnow()
    alerts = [a for p in products for a in product_alerts(p, now)]
    if alert_type and alert_type != "all":
        alerts = [a for a in alerts if a.type == alert_type]
    alerts.sort(key=lambda a: (-ALERT_PRIORITY.get(a.type, 0), a.current_stock, a.product_name))

    summary = schemas.AlertSummary(
        total=len(alerts),
        critical=sum(1 for a in alerts if a.type == "critical"),
        low=sum(1 for a in alerts if a.type == "low"),
        reorder=sum(1 for a in alerts if a.type == "reorder"),
        overstock=sum(1 for a in alerts if a.type == "overstock"),
        high_value=sum(1 for a in alerts if a.type == "high-value")
    )
    return schemas.AlertList(alerts=alerts, summary=summary, generated_at=now)


def stock_info(product: models.Product) -> schemas.ProductStockInfo:
    base = schemas.Product.model_validate(product).model_dump()
    return schemas.ProductStockInfo(
        **base,
        stock_status=stock_status(product.stock),
        stock_metrics=stock_metrics(product),
        alerts=product_alerts(product),
        last_updated=product.updated_at
    )


def _set_stock(db: Session, product_id: str, value: int) -> Optional[Tuple[int, int]]:
    previous = db.query(models.Product.stock).filter(models.Product.id == product_id).scalar()
    if previous is None:
        return None
    stmt = (
        update(models.Product)
        .where(models.Product.id == product_id, models.Product.stock == previous)
        .values(stock=value, updated_at=datetime.utcnow())
        .returning(models.Product.stock)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(stmt).first()
    if row is None:
        return None
    return previous, row[0]


def _shift_stock(db: Session, product_id: str, delta: int) -> Optional[Tuple[int, int]]:
    stmt = (
        update(models.Product)
        .where(models.Product.id == product_id, models.Product.stock + delta >= 0)
        .values(stock=models.Product.stock + delta, updated_at=datetime.utcnow())
        .returning(models.Product.stock)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(stmt).first()
    if row is None:
        return None
    return row[0] - delta, row[0]


def adjust_stock(
    db: Session,
    product: models.Product,
    change: schemas.StockUpdate,
    user_id: Optional[int] = None
) -> Tuple[models.Product, schemas.StockMovementSummary]:
    """
    Set or shift a product's stock and record the movement.

    Args:
        db: Database session
        product: Product to change
        change: Either an absolute ``stock`` or a signed ``adjustment``
        user_id: User making the change

    Returns:
        Tuple of (refreshed product, movement summary)

    Raises:
        StockAdjustmentError: neither or both values given, a zero
            adjustment, or the result would be negative
    """
    if (change.stock is None) == (change.adjustment is None):
        raise StockAdjustmentError("Either 'stock' or 'adjustment' must be provided")
    if change.adjustment == 0:
        raise StockAdjustmentError("Adjustment must not be zero")

    if change.stock is not None:
        result = _set_stock(db, product.id, change.stock)
        if result is None:
            db.rollback()
            raise StockAdjustmentError("Stock changed concurrently, please retry")
    else:
        result = _shift_stock(db, product.id, change.adjustment)
        if result is None:
            db.rollback()
            raise StockAdjustmentError("Stock cannot go below zero")

    previous, new = result
    movement_type = change.type or ("increase" if new > previous else "decrease")
    reason = change.reason or "Manual adjustment"
    movement = models.StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=abs(new - previous),
        previous_stock=previous,
        new_stock=new,
        reason=reason,
        reference=change.reference,
        cost=change.cost,
        user_id=user_id
    )
    db.add(movement)
    db.commit()
    db.refresh(product)
    db.refresh(movement)
    logger.info(f"Stock of '{product.id}' changed {previous} -> {new} ({movement_type}: {reason})")

    summary = schemas.StockMovementSummary(
        previous_stock=previous,
        new_stock=new,
        change=new - previous,
        type=movement_type,
        reason=reason,
        timestamp=movement.created_at,
        reference=change.reference
    )
    return product, summary


def get_movements(db: Session, product_id: Optional[str] = None, skip: int = 0, limit: int = 50) -> List[models.StockMovement]:
    q = db.query(models.StockMovement)
    if product_id:
        q = q.filter(models.StockMovement.product_id == product_id)
    return q.order_by(models.StockMovement.created_at.desc(), models.StockMovement.id.desc()).offset(skip).limit(limit).all()


# --- Reports ---------------------------------------------------------------

def _value(product: models.Product) -> float:
    return float(Decimal(product.price) * product.stock)


def _reorder_recommendation(stock: int) -> str:
    if stock == 0:
        return "urgent"
    if stock <= 5:
        return "immediate"
    if stock <= 10:
        return "soon"
    return "none"


def summary_report(products: List[models.Product]) -> dict:
    total_value = sum(_value(p) for p in products)
    in_stock = sum(1 for p in products if p.stock > 10)
    low = sum(1 for p in products if 5 < p.stock <= 10)
    critical = sum(1 for p in products if 0 < p.stock <= 5)
    out = sum(1 for p in products if p.stock == 0)

    by_value = sorted(products, key=_value, reverse=True)[:10]
    low_stock = sorted((p for p in products if 0 < p.stock <= 10), key=lambda p: p.stock)[:20]
    return {
        "type": "summary",
        "summary": {
            "totalProducts": len(products),
            "totalValue": total_value,
            "averageStockValue": total_value / max(len(products), 1),
            "stockLevels": {
                "inStock": in_stock,
                "lowStock": low,
                "criticalStock": critical,
                "outOfStock": out,
            },
        },
        "topProductsByValue": [
            {"id": p.id, "name": p.name, "stock": p.stock, "totalValue": _value(p)} for p in by_value
        ],
        "lowStockProducts": [{"id": p.id, "name": p.name, "stock": p.stock} for p in low_stock],
    }


def stock_levels_report(products: List[models.Product]) -> dict:
    rows = [
        {
            "id": p.id,
            "name": p.name,
            "barcode": p.barcode,
            "currentStock": p.stock,
            "stockStatus": stock_status(p.stock).level,
            "daysOfStock": days_of_stock(p.stock),
            "reorderRecommendation": _reorder_recommendation(p.stock),
        }
        for p in products
    ]
    return {
        "type": "stock-levels",
        "products": rows,
        "summary": {
            "totalProducts": len(rows),
            "needsReorder": sum(1 for r in rows if r["reorderRecommendation"] != "none"),
            "criticalItems": sum(1 for r in rows if r["stockStatus"] == "critical"),
        },
    }


def valuation_report(products: List[models.Product]) -> dict:
    total = sum(_value(p) for p in products)
    rows = sorted(
        (
            {
                "id": p.id,
                "name": p.name,
                "stock": p.stock,
                "unitPrice": float(p.price),
                "totalValue": _value(p),
                "percentageOfTotal": (_value(p) / total * 100) if total > 0 else 0.0,
            }
            for p in products
        ),
        key=lambda r: r["totalValue"],
        reverse=True,
    )
    return {
        "type": "valuation",
        "totalInventoryValue": total,
        "averageItemValue": total / max(len(products), 1),
        "products": rows,
        "summary": {
            "totalItems": len(rows),
            "highValueItems": sum(1 for r in rows if r["totalValue"] > 1000),
            "lowValueItems": sum(1 for r in rows if r["totalValue"] < 100),
        },
    }


def abc_report(products: List[models.Product]) -> dict:
    """Classify products into A (first 80% of value), B (next 15%) and C."""
    total = sum(_value(p) for p in products)
    cumulative = 0.0
    rows = []
    for rank, p in enumerate(sorted(products, key=_value, reverse=True), start=1):
        cumulative += _value(p)
        share = (cumulative / total * 100) if total > 0 else 100.0
        klass = "A" if share <= 80 else "B" if share <= 95 else "C"
        rows.append({
            "id": p.id,
            "name": p.name,
            "totalValue": _value(p),
            "cumulativePercentage": share,
            "category": klass,
            "rank": rank,
        })

    analysis = {}
    for klass in ("A", "B", "C"):
        members = [r for r in rows if r["category"] == klass]
        analysis[f"category{klass}"] = {
            "count": len(members),
            "percentage": len(members) / len(rows) * 100 if rows else 0.0,
            "totalValue": sum(r["totalValue"] for r in members),
        }
    return {"type": "abc-analysis", "totalValue": total, "products": rows, "analysis": analysis}


def movement_report(db: Session, products: List[models.Product]) -> dict:
    """Per-product movement counts and volumes from the movement log."""
    rows = (
        db.query(
            models.StockMovement.product_id,
            func.count(models.StockMovement.id),
            func.coalesce(func.sum(models.StockMovement.quantity), 0),
            func.max(models.StockMovement.created_at)
        )
        .group_by(models.StockMovement.product_id)
        .all()
    )
    stats = {pid: (int(count), int(volume), last) for pid, count, volume, last in rows}
    items = []
    for p in products:
        count, volume, last = stats.get(p.id, (0, 0, None))
        items.append({
            "productId": p.id,
            "productName": p.name,
            "currentStock": p.stock,
            "totalMovements": count,
            "totalQuantity": volume,
            "lastMovement": last.isoformat() if last else None,
        })
    items.sort(key=lambda i: i["totalMovements"], reverse=True)
    return {
        "type": "movement-summary",
        "totalProducts": len(items),
        "fastMovingProducts": items[:10],
        "slowMovingProducts": list(reversed(items[-10:])),
        "summary": {
            "totalMovements": sum(i["totalMovements"] for i in items),
            "activeProducts": sum(1 for i in items if i["totalMovements"] > 0),
            "dormantProducts": sum(1 for i in items if i["totalMovements"] == 0),
        },
    }


def inventory_report(db: Session, report_type: str) -> dict:
    """
    Build one of the inventory reports.

    Raises:
        ValueError: unknown ``report_type``
    """
    if report_type not in REPORT_TYPES:
        raise ValueError("Invalid report type")
    products = db.query(models.Product).all()
    if report_type == "summary":
        report = summary_report(products)
    elif report_type == "stock-levels":
        report = stock_levels_report(products)
    elif report_type == "valuation":
        report = valuation_report(products)
    elif report_type == "abc-analysis":
        report = abc_report(products)
    else:
        report = movement_report(db, products)
    report["generatedAt"] = datetime.utcnow().isoformat()
    return report
