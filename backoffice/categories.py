"""
Category tree helpers: slugs, hierarchy building and breadcrumbs.
"""
import re
from typing import Dict, Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models, schemas


def create_slug(name: str) -> str:
    """Lower-case ``name`` and keep only ``a-z``, digits and single hyphens."""
    slug = re.sub(r"\s+", "-", name.strip().lower())
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug or "category"


def generate_unique_slug(name: str, existing_slugs: Iterable[str]) -> str:
    """
    Return ``create_slug(name)``, suffixed with ``-1``, ``-2``, ... until it
    does not clash with ``existing_slugs``.
    """
    taken = set(existing_slugs)
    base = create_slug(name)
    slug = base
    counter = 1
    while slug in taken:
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def build_tree(categories: List[models.Category]) -> List[schemas.CategoryNode]:
    """
    Nest a flat category list under its parents.

    Categories whose parent is missing from the list are dropped. Every level
    is ordered by ``sort_order`` then name.
    """
    nodes: Dict[str, schemas.CategoryNode] = {
        c.id: schemas.CategoryNode.model_validate(c) for c in categories
    }
    roots = []
    for c in categories:
        node = nodes[c.id]
        if c.parent_id is None:
            roots.append(node)
        elif c.parent_id in nodes:
            nodes[c.parent_id].children.append(node)

    def sort_level(level: List[schemas.CategoryNode]) -> None:
        level.sort(key=lambda n: (n.sort_order, n.name))
        for n in level:
            sort_level(n.children)

    sort_level(roots)
    return roots


def get_category(db: Session, category_id: str) -> Optional[models.Category]:
    return db.query(models.Category).filter(models.Category.id == category_id).first()


def get_category_tree(db: Session) -> List[schemas.CategoryNode]:
    return build_tree(db.query(models.Category).all())


def get_category_path(db: Session, category_id: str) -> List[models.Category]:
    """Breadcrumb from the root down to ``category_id``; empty if unknown."""
    path = []
    seen = set()
    current = get_category(db, category_id)
    while current is not None and current.id not in seen:
        seen.add(current.id)
        path.insert(0, current)
        current = get_category(db, current.parent_id) if current.parent_id else None
    return path


def create_category(db: Session, category: schemas.CategoryCreate, parent: Optional[models.Category] = None) -> models.Category:
    """
    Insert a category at the end of its siblings.

    Args:
        db: Database session
        category: Category data
        parent: Already loaded parent category, None for a root category

    Returns:
        Created Category object
    """
    existing = [row[0] for row in db.query(models.Category.slug).all()]
    slug = generate_unique_slug(category.name, existing)

    siblings = db.query(func.max(models.Category.sort_order))
    if parent is None:
        siblings = siblings.filter(models.Category.parent_id.is_(None))
    else:
        siblings = siblings.filter(models.Category.parent_id == parent.id)
    max_sort = siblings.scalar()

    db_category = models.Category(
        name=category.name,
        slug=slug,
        description=category.description,
        parent_id=parent.id if parent else None,
        level=parent.level + 1 if parent else 0,
        sort_order=(max_sort or 0) + 1,
        is_active=True,
        image=category.image
    )
    db.add(db_category)
    db.commit()
    db.refresh(db_category)
    return db_category


def update_category(db: Session, db_category: models.Category, category: schemas.CategoryUpdate) -> models.Category:
    # slug is fixed at creation
    for key, value in category.model_dump(exclude_unset=True).items():
        setattr(db_category, key, value)
    db.commit()
    db.refresh(db_category)
    return db_category


def category_in_use(db: Session, category_id: str) -> Optional[str]:
    """Return why a category cannot be deleted, or None if it can."""
    if db.query(models.Product.id).filter(models.Product.category_id == category_id).first():
        return "Category still has products"
    if db.query(models.Category.id).filter(models.Category.parent_id == category_id).first():
        return "Category still has subcategories"
    return None


def delete_category(db: Session, db_category: models.Category) -> None:
    db.delete(db_category)
    db.commit()
