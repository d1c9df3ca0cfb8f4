"""
Product catalog and stock endpoints.

Endpoints:
    GET /api/products: Filter, sort and paginate products
    POST /api/products: Create a product (admin only)
    POST /api/products/bulk-delete: Delete several products (admin only)
    POST /api/products/bulk-update: Update several products (admin only)
    GET /api/products/{product_id}: Get a single product
    PATCH /api/products/{product_id}: Update a product (admin only)
    DELETE /api/products/{product_id}: Delete a product (admin only)
    GET /api/products/{product_id}/stock: Stock status, metrics and alerts
    PATCH /api/products/{product_id}/stock: Set or adjust stock
"""
import math
from decimal import Decimal
from typing import Literal, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import auth, cache, crud, models, schemas, stock
from ..categories import get_category
from ..database import get_db

router = APIRouter(prefix="/api/products", tags=["products"])


def _get_or_404(db: Session, product_id: str) -> models.Product:
    db_product = crud.get_product(db, product_id=product_id)
    if db_product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return db_product


@router.get("", response_model=schemas.ProductPage)
def list_products(
    query: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", ge=0),
    stock_filter: Optional[Literal["inStock", "outOfStock", "lowStock"]] = Query(None, alias="stock"),
    sort_by: Literal["name", "price", "stock", "createdAt"] = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """
    Search the catalog (public).

    ``query`` matches product name, barcode or category name.
    """
    products, total = crud.search_products(
        db,
        query=query,
        category=category,
        min_price=min_price,
        max_price=max_price,
        stock=stock_filter,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit
    )
    total_pages = math.ceil(total / limit) if total else 0
    return schemas.ProductPage(
        products=[schemas.Product.model_validate(p) for p in products],
        total_products=total,
        total_pages=total_pages,
        current_page=page,
        has_next_page=page < total_pages,
        has_prev_page=page > 1
    )


@router.post("", response_model=schemas.Product, status_code=status.HTTP_201_CREATED)
def create_product(
    product: schemas.ProductCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Create a new product (admin only).

    Raises:
        HTTPException: 400 if the category does not exist
        HTTPException: 409 if the barcode is already used
    """
    if get_category(db, product.category_id) is None:
        raise HTTPException(status_code=400, detail="Category not found")
    if product.barcode and crud.get_product_by_barcode(db, product.barcode):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Barcode already exists")

    db_product = crud.create_product(db, product)
    cache.invalidate_dashboard()
    return db_product


@router.post("/bulk-delete", response_model=schemas.BulkResult)
def bulk_delete_products(
    data: schemas.BulkDelete,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """Delete the listed products; products that appear on orders are skipped."""
    deleted, skipped = crud.bulk_delete_products(db, data.product_ids)
    cache.invalidate_dashboard()
    return schemas.BulkResult(affected=deleted, skipped=skipped)


@router.post("/bulk-update", response_model=schemas.BulkResult)
def bulk_update_products(
    data: schemas.BulkUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Apply the same price, stock and/or category to several products.

    Raises:
        HTTPException: 400 if no field to update or unknown category
    """
    if data.price is None and data.stock is None and data.category_id is None:
        raise HTTPException(status_code=400, detail="No fields to update")
    if data.category_id is not None and get_category(db, data.category_id) is None:
        raise HTTPException(status_code=400, detail="Category not found")

    updated = crud.bulk_update_products(db, data, user_id=current_user.id)
    cache.invalidate_dashboard()
    return schemas.BulkResult(affected=updated)


@router.get("/{product_id}", response_model=schemas.Product)
def get_product(product_id: str, db: Session = Depends(get_db)):
    return _get_or_404(db, product_id)


@router.patch("/{product_id}", response_model=schemas.Product)
def update_product(
    product_id: str,
    product: schemas.ProductUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Update an existing product (admin only). Only the provided fields change.

    Raises:
        HTTPException: 400 if no field given or unknown category
        HTTPException: 404 if product not found
        HTTPException: 409 if the new barcode belongs to another product
    """
    db_product = _get_or_404(db, product_id)
    changes = product.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")

    if changes.get("category_id") and get_category(db, changes["category_id"]) is None:
        raise HTTPException(status_code=400, detail="Category not found")
    if changes.get("barcode"):
        owner = crud.get_product_by_barcode(db, changes["barcode"])
        if owner is not None and owner.id != product_id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Barcode already exists")

    db_product = crud.update_product(db, db_product, product, user_id=current_user.id)
    cache.invalidate_dashboard()
    return db_product


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Delete a product (admin only).

    Raises:
        HTTPException: 404 if product not found
        HTTPException: 409 if the product appears on an order
    """
    _get_or_404(db, product_id)
    if crud.product_has_sales(db, product_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Product has orders and cannot be deleted")
    crud.delete_product(db, product_id=product_id)
    cache.invalidate_dashboard()


@router.get("/{product_id}/stock", response_model=schemas.ProductStockInfo)
def get_product_stock(
    product_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    return stock.stock_info(_get_or_404(db, product_id))


@router.patch("/{product_id}/stock", response_model=schemas.ProductStockChange)
def update_product_stock(
    product_id: str,
    change: schemas.StockUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    """
    Set (``stock``) or shift (``adjustment``) a product's stock.

    Raises:
        HTTPException: 400 if neither or both values given, or stock would go negative
        HTTPException: 404 if product not found
    """
    db_product = _get_or_404(db, product_id)
    try:
        db_product, movement = stock.adjust_stock(db, db_product, change, user_id=current_user.id)
    except stock.StockAdjustmentError as e:
        raise HTTPException(status_code=400, detail=str(e))

    cache.invalidate_dashboard()
    base = schemas.Product.model_validate(db_product).model_dump()
    return schemas.ProductStockChange(**base, stock_movement=movement)
