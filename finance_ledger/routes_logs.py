# routes_logs.py
"""
Read access to the caller's audit trail.
"""

import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from finance_ledger.deps import Pagination, get_current_user, get_db
from finance_ledger.models import AuditAction, AuditLog, User
from finance_ledger.schemas import AuditLogPage

router = APIRouter(tags=["logs"])


@router.get("/logs", response_model=AuditLogPage)
def list_logs(
    action_type: AuditAction | None = Query(None),
    pagination: Pagination = Depends(),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(AuditLog).filter(AuditLog.user_id == user.id)
    if action_type:
        query = query.filter(AuditLog.action_type == action_type)

    total = query.count()
    page, limit = pagination.page, pagination.limit
    data = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "data": data,
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "last_page": math.ceil(total / limit) if total else 0,
            "has_next_page": page * limit < total,
            "has_previous_page": page > 1,
        },
    }
