# routes_categories.py
"""
Routes for the category tree (global + per-user categories).
"""

from typing import List, Union

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from finance_ledger.deps import get_audit_logger, get_current_user, get_db
from finance_ledger.models import CategoryType, User
from finance_ledger.schemas import (
    CategoryCreate,
    CategoryOut,
    CategoryTreeOut,
    CategoryUpdate,
    DeleteResult,
)
from finance_ledger.services import categories as category_service
from finance_ledger.services.audit import AuditLogger

router = APIRouter(prefix="/categories", tags=["categories"])


@router.post("", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(
    body: CategoryCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return category_service.create_category(
        db,
        user.id,
        name=body.name,
        category_type=body.type,
        parent_id=body.parent_id,
        icon=body.icon,
        color=body.color,
        audit=audit,
    )


@router.get("", response_model=Union[List[CategoryTreeOut], List[CategoryOut]])
def list_categories(
    category_type: CategoryType | None = Query(None),
    include_global: bool = Query(True),
    hierarchical: bool = Query(False),
    parent_id: str | None = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List visible categories.

    - hierarchical=true: top-level categories with their children
    - parent_id=<id>: children of one category
    """
    categories = category_service.list_categories(
        db,
        user.id,
        category_type=category_type,
        include_global=include_global,
        hierarchical=hierarchical,
        parent_id=parent_id,
    )
    if hierarchical:
        return [CategoryTreeOut.model_validate(c) for c in categories]
    return [CategoryOut.model_validate(c) for c in categories]


@router.get("/{category_id}", response_model=CategoryTreeOut)
def get_category(
    category_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return category_service.get_category(db, user.id, category_id)


@router.patch("/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: str,
    body: CategoryUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return category_service.update_category(
        db, user.id, category_id, body.model_dump(exclude_unset=True), audit=audit
    )


@router.delete("/{category_id}", response_model=DeleteResult)
def delete_category(
    category_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return category_service.remove_category(db, user.id, category_id, audit=audit)
