"""
Retail Back-Office API

This module assembles the FastAPI application for the point of sale,
inventory, customer, order and analytics back office, backed by a
PostgreSQL database.

Routers:
    /api/auth, /api/users: Accounts and roles
    /api/products: Catalog and stock
    /api/categories: Category tree
    /api/customers: Shop customers
    /api/orders: Checkout and order management
    /api/inventory: Alerts, movements and reports
    /api/dashboard, /api/analytics, /api/sales: Read-only aggregations
    /healthz: Health check endpoint for orchestration systems

Attributes:
    app (FastAPI): The FastAPI application instance configured with the title "backoffice-api"
"""
import logging
from fastapi import FastAPI

from . import config, models
from .database import engine
from .routers import categories, customers, dashboard, inventory, orders, products, users

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

# Create database tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="backoffice-api")

app.include_router(users.router)
app.include_router(products.router)
app.include_router(categories.router)
app.include_router(customers.router)
app.include_router(orders.router)
app.include_router(inventory.router)
app.include_router(dashboard.router)


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the back-office API.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}
