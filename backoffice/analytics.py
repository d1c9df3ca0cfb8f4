"""
Read-only dashboard and analytics aggregations.

Totals are computed with SQL ``SUM``/``COUNT``; grouping by day or month is
done in Python so the same queries run on PostgreSQL and SQLite.
Only orders in ``REVENUE_STATUSES`` count as sales.
"""
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models, schemas
from .crud import REVENUE_STATUSES, LOW_STOCK_LIMIT

TIMEFRAMES = ("week", "month", "quarter", "year")


def growth(current: float, previous: float) -> float:
    """Percentage change from ``previous`` to ``current``, rounded to 0.1."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift to the first day of the month ``months`` away from ``moment``."""
    index = moment.year * 12 + (moment.month - 1) + months
    return moment.replace(year=index // 12, month=index % 12 + 1, day=1)


def timeframe_range(timeframe: str, now: datetime) -> Tuple[datetime, datetime]:
    """
    Resolve a named timeframe to ``(start, end)``.

    week is the last seven days; month starts on the first of the current
    month; quarter on the first of the month three months back; year on the
    first of the same month last year.
    """
    if timeframe == "week":
        return now - timedelta(days=7), now
    if timeframe == "quarter":
        return start_of_day(add_months(now, -3)), now
    if timeframe == "year":
        return start_of_day(add_months(now, -12)), now
    return start_of_day(now.replace(day=1)), now


def _sales(db: Session):
    return db.query(models.Order).filter(models.Order.status.in_(REVENUE_STATUSES))


def revenue_between(db: Session, start: Optional[datetime], end: Optional[datetime]) -> Tuple[float, int]:
    """Sum and count of sales with ``start <= created_at < end``."""
    q = db.query(
        func.coalesce(func.sum(models.Order.total), 0),
        func.count(models.Order.id)
    ).filter(models.Order.status.in_(REVENUE_STATUSES))
    if start is not None:
        q = q.filter(models.Order.created_at >= start)
    if end is not None:
        q = q.filter(models.Order.created_at < end)
    total, count = q.one()
    return float(total or 0), int(count or 0)


def top_products(db: Session, start: Optional[datetime] = None, end: Optional[datetime] = None, limit: int = 5) -> List[schemas.TopProduct]:
    revenue = func.sum(models.OrderItem.quantity * models.OrderItem.price)
    q = (
        db.query(
            models.OrderItem.product_id,
            models.Product.name,
            revenue.label("revenue"),
            func.sum(models.OrderItem.quantity).label("quantity")
        )
        .join(models.Order, models.OrderItem.order_id == models.Order.id)
        .outerjoin(models.Product, models.OrderItem.product_id == models.Product.id)
        .filter(models.Order.status.in_(REVENUE_STATUSES))
    )
    if start is not None:
        q = q.filter(models.Order.created_at >= start)
    if end is not None:
        q = q.filter(models.Order.created_at < end)
    rows = (
        q.group_by(models.OrderItem.product_id, models.Product.name)
        .order_by(revenue.desc())
        .limit(limit)
        .all()
    )
    return [
        schemas.TopProduct(
            product_id=row.product_id,
            product_name=row.name,
            revenue=round(float(row.revenue or 0), 2),
            quantity=int(row.quantity or 0)
        )
        for row in rows
    ]


def dashboard_stats(db: Session, now: Optional[datetime] = None) -> schemas.DashboardStats:
    """
    Headline figures for the dashboard.

    Weeks start on Monday. Growth compares today with yesterday, this week
    with last week and this month with last month.
    """
    now = now or datetime.utcnow()
    today = start_of_day(now)
    week_start = today - timedelta(days=today.weekday())
    month_start = today.replace(day=1)

    sales_today, orders_today = revenue_between(db, today, None)
    sales_week, orders_week = revenue_between(db, week_start, None)
    sales_month, orders_month = revenue_between(db, month_start, None)
    total_revenue, total_sales = revenue_between(db, None, None)

    sales_yesterday, _ = revenue_between(db, today - timedelta(days=1), today)
    sales_last_week, _ = revenue_between(db, week_start - timedelta(days=7), week_start)
    sales_last_month, _ = revenue_between(db, add_months(month_start, -1), month_start)

    recent = (
        db.query(models.Order, models.Customer.name)
        .outerjoin(models.Customer, models.Order.customer_id == models.Customer.id)
        .order_by(models.Order.created_at.desc())
        .limit(10)
        .all()
    )
    low_stock = (
        db.query(models.Product)
        .filter(models.Product.stock < LOW_STOCK_LIMIT)
        .order_by(models.Product.stock.asc(), models.Product.name.asc())
        .limit(10)
        .all()
    )

    return schemas.DashboardStats(
        user_count=db.query(func.count(models.User.id)).scalar(),
        product_count=db.query(func.count(models.Product.id)).scalar(),
        customer_count=db.query(func.count(models.Customer.id)).scalar(),
        total_orders=db.query(func.count(models.Order.id)).scalar(),
        total_revenue=round(total_revenue, 2),
        sales_today=round(sales_today, 2),
        orders_today=orders_today,
        sales_week=round(sales_week, 2),
        orders_week=orders_week,
        sales_month=round(sales_month, 2),
        orders_month=orders_month,
        average_order_value=round(total_revenue / total_sales, 2) if total_sales else 0.0,
        daily_average_sales=round(sales_month / 30, 2),
        top_products=top_products(db, limit=5),
        recent_orders=[
            schemas.RecentOrder(
                id=order.id,
                customer_name=customer_name or "Guest",
                total=float(order.total),
                status=order.status,
                created_at=order.created_at
            )
            for order, customer_name in recent
        ],
        low_stock_products=[
            schemas.LowStockProduct(id=p.id, name=p.name, stock=p.stock, min_stock=LOW_STOCK_LIMIT)
            for p in low_stock
        ],
        sales_growth=schemas.SalesGrowth(
            daily=growth(sales_today, sales_yesterday),
            weekly=growth(sales_week, sales_last_week),
            monthly=growth(sales_month, sales_last_month)
        )
    )


def sales_analytics(
    db: Session,
    timeframe: str = "month",
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> schemas.SalesAnalytics:
    """
    Sales over a period, compared with the period of equal length before it.

    An explicit ``start_date``/``end_date`` pair overrides ``timeframe``.
    """
    now = now or datetime.utcnow()
    start, end = timeframe_range(timeframe, now)
    if start_date and end_date:
        start, end = start_date, end_date
    previous_start = start - (end - start)

    revenue, orders = revenue_between(db, start, end)
    previous_revenue, previous_orders = revenue_between(db, previous_start, start)

    rows = (
        _sales(db)
        .with_entities(models.Order.created_at, models.Order.total)
        .filter(models.Order.created_at >= start, models.Order.created_at < end)
        .order_by(models.Order.created_at)
        .all()
    )
    buckets = OrderedDict()
    for created_at, total in rows:
        key = created_at.strftime("%Y-%m")
        month_revenue, month_orders = buckets.get(key, (0.0, 0))
        buckets[key] = (month_revenue + float(total), month_orders + 1)

    monthly = []
    previous_month = None
    for key, (month_revenue, month_orders) in buckets.items():
        monthly.append(schemas.MonthlySales(
            month=key,
            revenue=round(month_revenue, 2),
            orders=month_orders,
            growth=growth(month_revenue, previous_month) if previous_month is not None else 0.0
        ))
        previous_month = month_revenue

    return schemas.SalesAnalytics(
        timeframe=timeframe,
        start_date=start,
        end_date=end,
        total_revenue=round(revenue, 2),
        total_orders=orders,
        average_order_value=round(revenue / orders, 2) if orders else 0.0,
        revenue_growth=growth(revenue, previous_revenue),
        order_growth=growth(orders, previous_orders),
        monthly_data=monthly,
        top_products=top_products(db, start, end, limit=10)
    )


def customer_analytics(db: Session, timeframe: str = "month", now: Optional[datetime] = None) -> schemas.CustomerAnalytics:
    """
    Customer counts for a period.

    Returning customers placed at least two sales in the period.
    """
    now = now or datetime.utcnow()
    start, end = timeframe_range(timeframe, now)

    total = db.query(func.count(models.Customer.id)).scalar()
    new = (
        db.query(func.count(models.Customer.id))
        .filter(models.Customer.created_at >= start, models.Customer.created_at < end)
        .scalar()
    )

    spend = func.coalesce(func.sum(models.Order.total), 0)
    rows = (
        db.query(
            models.Customer.id,
            models.Customer.name,
            func.count(models.Order.id).label("orders"),
            spend.label("spent")
        )
        .join(models.Order, models.Order.customer_id == models.Customer.id)
        .filter(
            models.Order.status.in_(REVENUE_STATUSES),
            models.Order.created_at >= start,
            models.Order.created_at < end
        )
        .group_by(models.Customer.id, models.Customer.name)
        .order_by(spend.desc())
        .all()
    )

    return schemas.CustomerAnalytics(
        timeframe=timeframe,
        total_customers=total,
        new_customers=new,
        returning_customers=sum(1 for row in rows if row.orders >= 2),
        top_customers=[
            schemas.TopCustomer(id=row.id, name=row.name, total_orders=row.orders, total_spent=round(float(row.spent), 2))
            for row in rows[:10]
        ]
    )


def timeseries(db: Session, days: int = 30, now: Optional[datetime] = None) -> schemas.Timeseries:
    """
    Daily sales for the last ``days`` days, today included.

    ``days`` is clamped to 1..180 and days without sales are zero-filled.
    """
    days = max(1, min(days, 180))
    now = now or datetime.utcnow()
    start = start_of_day(now) - timedelta(days=days - 1)

    rows = (
        _sales(db)
        .with_entities(models.Order.created_at, models.Order.total)
        .filter(models.Order.created_at >= start)
        .all()
    )
    data = {}
    for created_at, total in rows:
        orders, revenue = data.get(created_at.date(), (0, 0.0))
        data[created_at.date()] = (orders + 1, revenue + float(total))

    series = []
    for i in range(days):
        d = (start + timedelta(days=i)).date()
        orders, revenue = data.get(d, (0, 0.0))
        series.append(schemas.TimeseriesPoint(date=d.isoformat(), orders=orders, revenue=round(revenue, 2)))
    return schemas.Timeseries(days=days, series=series)


def sales_report(db: Session, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> schemas.SalesReport:
    """
    Revenue, tax and discount totals with per-payment-method and per-day
    breakdowns. Without both dates every sale is included.
    """
    q = _sales(db)
    if start_date and end_date:
        q = q.filter(models.Order.created_at >= start_date, models.Order.created_at <= end_date)
    orders = q.order_by(models.Order.created_at).all()

    methods = {}
    daily = OrderedDict()
    for order in orders:
        method = methods.setdefault(order.payment_method or "unknown", {"count": 0, "total": 0.0})
        method["count"] += 1
        method["total"] += float(order.total)

        day = daily.setdefault(order.created_at.date().isoformat(), {"sales": 0, "revenue": 0.0})
        day["sales"] += 1
        day["revenue"] += float(order.total)

    return schemas.SalesReport(
        total_sales=len(orders),
        total_revenue=round(sum(float(o.total) for o in orders), 2),
        total_tax=round(sum(float(o.tax) for o in orders), 2),
        total_discount=round(sum(float(o.discount) for o in orders), 2),
        payment_method_stats={
            k: schemas.PaymentMethodStats(count=v["count"], total=round(v["total"], 2)) for k, v in methods.items()
        },
        daily_stats={
            k: schemas.DailySales(sales=v["sales"], revenue=round(v["revenue"], 2)) for k, v in daily.items()
        }
    )
