# deps.py
# Role: Shared FastAPI dependencies.
#       Provides the per-request database session, the calling user, pagination limits,
#       and a request-scoped audit logger that writes after the response.

"""
Shared dependencies for the finance ledger API.
"""

from datetime import date, datetime
from typing import Callable, Generator

from fastapi import BackgroundTasks, Depends, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from finance_ledger.config import get_settings
from finance_ledger.db import SessionLocal
from finance_ledger.errors import ValidationError
from finance_ledger.models import User
from finance_ledger.services.audit import AuditLogger

# -------------------------------------------------------------------
# Database dependency
# -------------------------------------------------------------------

def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a database session and ensures it is closed.

    Typical usage in routes:
        db: Session = Depends(get_db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Factory for sessions that live outside the request (audit writes)."""
    return SessionLocal


# -------------------------------------------------------------------
# Caller identity
# -------------------------------------------------------------------

def get_current_user(
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the calling user from the X-User-Id header.

    Token issuance and verification happen upstream (gateway / auth
    service); by the time a request gets here the header is trusted.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")

    user = db.get(User, x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


# -------------------------------------------------------------------
# Audit logger
# -------------------------------------------------------------------

def get_audit_logger(
    request: Request,
    background_tasks: BackgroundTasks,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> AuditLogger:
    """Audit logger bound to this request's IP / user agent, writing in the background."""
    return AuditLogger(
        session_factory,
        background=background_tasks,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


# -------------------------------------------------------------------
# Pagination
# -------------------------------------------------------------------

class Pagination:
    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int | None = Query(None, ge=1),
    ):
        settings = get_settings()
        self.page = page
        self.limit = min(limit or settings.default_page_size, settings.max_page_size)


# -------------------------------------------------------------------
# Query parameter helpers
# -------------------------------------------------------------------

def parse_optional_date(value: str | None, end_of_day: bool = False) -> datetime | None:
    """Accept YYYY-MM-DD or a full ISO datetime; a bare date covers the whole day."""
    if not value:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        if len(value) == 10:
            d = date.fromisoformat(value)
            if end_of_day:
                return datetime(d.year, d.month, d.day, 23, 59, 59, 999999)
            return datetime(d.year, d.month, d.day)
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")
