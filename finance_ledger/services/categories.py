# services/categories.py
"""
Two-level category tree: global (user_id NULL) and per-user categories.

Rules:
- a child has the same type as its parent
- a parent must itself be top level (one level of nesting)
- (name, type, parent, owner) is unique
- users edit or delete only their own categories; deletion is blocked
  while anything references the category, and so is a type change
"""

from typing import Any, Dict, List

import structlog
from sqlalchemy.orm import Session, selectinload

from finance_ledger.errors import ConflictError, NotFoundError, ValidationError
from finance_ledger.models import (
    AuditAction,
    Budget,
    Category,
    CategoryType,
    RecurringTransaction,
    Transaction,
)
from finance_ledger.services.audit import AuditLogger, serialize_details
from finance_ledger.services.ledger import visible_category_filter

logger = structlog.get_logger(__name__)


# ---- Global defaults seeded on startup ----

DEFAULT_CATEGORIES: List[Dict[str, Any]] = [
    # Income
    {"name": "Salary", "type": CategoryType.INCOME, "icon": "briefcase", "color": "#4CAF50"},
    {"name": "Bonus", "type": CategoryType.INCOME, "icon": "gift", "color": "#8BC34A"},
    {"name": "Business Income", "type": CategoryType.INCOME, "icon": "store", "color": "#CDDC39"},
    {"name": "Investments", "type": CategoryType.INCOME, "icon": "chart-line", "color": "#00BCD4"},
    {"name": "Freelance", "type": CategoryType.INCOME, "icon": "laptop-code", "color": "#3F51B5"},
    {"name": "Other Income", "type": CategoryType.INCOME, "icon": "ellipsis-h", "color": "#795548"},
    # Expense
    {
        "name": "Food & Drinks", "type": CategoryType.EXPENSE, "icon": "utensils", "color": "#FF5722",
        "children": ["Groceries", "Restaurants", "Coffee"],
    },
    {
        "name": "Transport", "type": CategoryType.EXPENSE, "icon": "car", "color": "#607D8B",
        "children": ["Fuel", "Public Transport", "Parking"],
    },
    {
        "name": "Housing", "type": CategoryType.EXPENSE, "icon": "home", "color": "#9C27B0",
        "children": ["Rent", "Utilities", "Internet"],
    },
    {"name": "Health", "type": CategoryType.EXPENSE, "icon": "heartbeat", "color": "#E91E63"},
    {"name": "Entertainment", "type": CategoryType.EXPENSE, "icon": "film", "color": "#FFC107"},
    {"name": "Shopping", "type": CategoryType.EXPENSE, "icon": "shopping-bag", "color": "#03A9F4"},
    {"name": "Other Expenses", "type": CategoryType.EXPENSE, "icon": "ellipsis-h", "color": "#9E9E9E"},
]


def seed_global_categories(db: Session) -> int:
    """
    Insert any missing default global categories. Idempotent.
    Returns the number of rows inserted.
    """
    inserted = 0

    def ensure(name: str, ctype: CategoryType, parent: Category | None, icon=None, color=None) -> Category:
        nonlocal inserted
        parent_filter = (
            Category.parent_id == parent.id if parent else Category.parent_id.is_(None)
        )
        existing = (
            db.query(Category)
            .filter(
                Category.user_id.is_(None),
                Category.name == name,
                Category.category_type == ctype,
                parent_filter,
            )
            .first()
        )
        if existing:
            return existing
        category = Category(
            user_id=None,
            name=name,
            category_type=ctype,
            parent_id=parent.id if parent else None,
            icon=icon,
            color=color,
        )
        db.add(category)
        db.flush()
        inserted += 1
        return category

    try:
        for template in DEFAULT_CATEGORIES:
            parent = ensure(template["name"], template["type"], None, template.get("icon"), template.get("color"))
            for child_name in template.get("children", []):
                ensure(child_name, template["type"], parent, template.get("icon"), template.get("color"))
        db.commit()
    except Exception:
        db.rollback()
        raise

    if inserted:
        logger.info("global_categories_seeded", inserted=inserted)
    return inserted


# ---- Helpers ----

def _check_parent(
    db: Session,
    user_id: str,
    parent_id: str,
    category_type: CategoryType,
) -> Category:
    parent = (
        db.query(Category)
        .filter(Category.id == parent_id, visible_category_filter(user_id))
        .first()
    )
    if parent is None:
        raise NotFoundError(f"Parent category with id {parent_id} not found")
    if parent.parent_id is not None:
        raise ValidationError("Parent category must be a top level category", field="parent_id")
    if parent.category_type != category_type:
        raise ValidationError(
            f"Child category type must be {parent.category_type.value}", field="type"
        )
    return parent


def _check_duplicate(
    db: Session,
    user_id: str,
    name: str,
    category_type: CategoryType,
    parent_id: str | None,
    exclude_id: str | None = None,
) -> None:
    query = db.query(Category).filter(
        Category.user_id == user_id,
        Category.name == name,
        Category.category_type == category_type,
    )
    if parent_id is None:
        query = query.filter(Category.parent_id.is_(None))
    else:
        query = query.filter(Category.parent_id == parent_id)
    if exclude_id:
        query = query.filter(Category.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Category already exists")


def _reference_counts(db: Session, category_id: str) -> Dict[str, int]:
    return {
        "transactions": db.query(Transaction.id).filter(Transaction.category_id == category_id).count(),
        "budgets": db.query(Budget.id).filter(Budget.category_id == category_id).count(),
        "recurring transactions": db.query(RecurringTransaction.id)
        .filter(RecurringTransaction.category_id == category_id)
        .count(),
    }


# ---- CRUD ----

def create_category(
    db: Session,
    user_id: str,
    name: str,
    category_type: CategoryType,
    parent_id: str | None = None,
    icon: str | None = None,
    color: str | None = None,
    audit: AuditLogger | None = None,
) -> Category:
    category_type = CategoryType(category_type)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required", field="name")

    if parent_id:
        _check_parent(db, user_id, parent_id, category_type)
    _check_duplicate(db, user_id, name, category_type, parent_id or None)

    category = Category(
        user_id=user_id,
        name=name,
        category_type=category_type,
        parent_id=parent_id or None,
        icon=icon,
        color=color,
    )
    db.add(category)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(category)

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.CATEGORY_CREATE,
            "Category",
            category.id,
            f"Category {category.name} created",
            serialize_details(
                {"name": name, "type": category_type, "parent_id": parent_id, "icon": icon, "color": color}
            ),
        )
    return category


def list_categories(
    db: Session,
    user_id: str,
    category_type: CategoryType | None = None,
    include_global: bool = True,
    hierarchical: bool = False,
    parent_id: str | None = None,
) -> List[Category]:
    """
    hierarchical=True returns only top-level categories (children are
    reachable through .children); parent_id lists one parent's children.
    """
    if hierarchical and parent_id:
        raise ValidationError("Cannot filter by parent_id when hierarchical is true", field="parent_id")

    if include_global:
        query = db.query(Category).filter(visible_category_filter(user_id))
    else:
        query = db.query(Category).filter(Category.user_id == user_id)

    if category_type:
        query = query.filter(Category.category_type == CategoryType(category_type))

    if hierarchical:
        query = query.filter(Category.parent_id.is_(None)).options(selectinload(Category.children))
    elif parent_id:
        get_category(db, user_id, parent_id)
        query = query.filter(Category.parent_id == parent_id)

    return query.order_by(Category.name.asc()).all()


def get_category(db: Session, user_id: str, category_id: str) -> Category:
    category = (
        db.query(Category)
        .options(selectinload(Category.children))
        .filter(Category.id == category_id, visible_category_filter(user_id))
        .first()
    )
    if category is None:
        raise NotFoundError("Category not found")
    return category


def _get_owned(db: Session, user_id: str, category_id: str) -> Category:
    category = (
        db.query(Category)
        .filter(Category.id == category_id, Category.user_id == user_id)
        .first()
    )
    if category is None:
        raise NotFoundError("Category not found")
    return category


def update_category(
    db: Session,
    user_id: str,
    category_id: str,
    patch: Dict[str, Any],
    audit: AuditLogger | None = None,
) -> Category:
    category = _get_owned(db, user_id, category_id)

    name = patch.get("name")
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Category name cannot be empty", field="name")
    new_name = name if name is not None else category.name
    new_type = CategoryType(patch["type"]) if patch.get("type") is not None else category.category_type
    new_parent = patch["parent_id"] if "parent_id" in patch else category.parent_id

    if new_parent == category_id:
        raise ValidationError("Parent ID cannot be same as category ID", field="parent_id")
    if new_parent is not None:
        _check_parent(db, user_id, new_parent, new_type)
        has_children = db.query(Category.id).filter(Category.parent_id == category_id).count()
        if has_children:
            raise ValidationError(
                "A category with children cannot become a child", field="parent_id"
            )
    if new_type != category.category_type:
        child_types = {
            c.category_type
            for c in db.query(Category).filter(Category.parent_id == category_id).all()
        }
        if child_types - {new_type}:
            raise ValidationError(
                "Category type must match its children's type", field="type"
            )
        in_use = [kind for kind, count in _reference_counts(db, category_id).items() if count]
        if in_use:
            raise ConflictError(
                f"Category type cannot change while it is in use by {', '.join(in_use)}"
            )

    _check_duplicate(db, user_id, new_name, new_type, new_parent, exclude_id=category_id)

    changes = {"name": new_name, "category_type": new_type, "parent_id": new_parent}
    for key in ("icon", "color"):
        if key in patch:
            changes[key] = patch[key]

    for key, value in changes.items():
        setattr(category, key, value)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.CATEGORY_UPDATE,
            "Category",
            category_id,
            "Category updated",
            serialize_details(changes),
        )
    return get_category(db, user_id, category_id)


def remove_category(
    db: Session,
    user_id: str,
    category_id: str,
    audit: AuditLogger | None = None,
) -> Dict[str, str]:
    category = _get_owned(db, user_id, category_id)

    references = _reference_counts(db, category_id)
    references["sub-categories"] = db.query(Category.id).filter(Category.parent_id == category_id).count()
    blocking = [kind for kind, count in references.items() if count]
    if blocking:
        raise ConflictError(f"Category has related {', '.join(blocking)}")

    name = category.name
    db.delete(category)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.CATEGORY_DELETE,
            "Category",
            category_id,
            "Category deleted",
            {"name": name},
        )
    return {"id": category_id, "message": "Category deleted successfully"}
