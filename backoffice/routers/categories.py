"""
Category endpoints. Reads are public, writes are admin only.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import auth, categories, models, schemas
from ..database import get_db

router = APIRouter(prefix="/api/categories", tags=["categories"])


def _get_or_404(db: Session, category_id: str) -> models.Category:
    db_category = categories.get_category(db, category_id)
    if db_category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return db_category


@router.get("", response_model=List[schemas.CategoryNode])
def list_categories(db: Session = Depends(get_db)):
    """Return the whole category tree, each level ordered by ``sortOrder``."""
    return categories.get_category_tree(db)


@router.post("", response_model=schemas.Category, status_code=status.HTTP_201_CREATED)
def create_category(
    category: schemas.CategoryCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Create a category (admin only).

    The slug is derived from the name and made unique; the category is placed
    after its existing siblings.

    Raises:
        HTTPException: 404 if ``parentId`` does not exist
    """
    parent = None
    if category.parent_id:
        parent = categories.get_category(db, category.parent_id)
        if parent is None:
            raise HTTPException(status_code=404, detail="Parent category not found")
    return categories.create_category(db, category, parent=parent)


@router.get("/{category_id}", response_model=schemas.Category)
def get_category(category_id: str, db: Session = Depends(get_db)):
    return _get_or_404(db, category_id)


@router.get("/{category_id}/path", response_model=List[schemas.Category])
def get_category_path(category_id: str, db: Session = Depends(get_db)):
    """Breadcrumb from the root category down to ``category_id``."""
    _get_or_404(db, category_id)
    return categories.get_category_path(db, category_id)


@router.patch("/{category_id}", response_model=schemas.Category)
def update_category(
    category_id: str,
    category: schemas.CategoryUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    db_category = _get_or_404(db, category_id)
    if not category.model_dump(exclude_unset=True):
        raise HTTPException(status_code=400, detail="No fields to update")
    return categories.update_category(db, db_category, category)


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Delete a category (admin only).

    Raises:
        HTTPException: 404 if category not found
        HTTPException: 409 if it still has products or subcategories
    """
    db_category = _get_or_404(db, category_id)
    reason = categories.category_in_use(db, category_id)
    if reason:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=reason)
    categories.delete_category(db, db_category)
