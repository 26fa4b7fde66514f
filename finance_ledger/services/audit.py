# services/audit.py
"""
Audit logging for user actions.

Design:
- Best-effort: a failed write is logged and dropped, never raised
- Isolated: each entry is written in its own session, after the
  ledger's unit of work has committed
- Deferred: inside a request, writes are queued on FastAPI's
  BackgroundTasks so they run after the response is produced

Public API:
    AuditLogger(session_factory, background=None)
    AuditLogger.record(user_id, action, entity_type, entity_id, description, details)
"""

import enum
from typing import Any, Callable, Dict, Optional

import structlog
from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from finance_ledger.models import AuditAction, AuditLog
from finance_ledger.services.periods import utcnow

logger = structlog.get_logger(__name__)


class AuditLogger:
    """
    Writes AuditLog rows.

    Request-scoped instances carry the caller's IP address and user agent
    (see deps.get_audit_logger); the scheduler uses one without them.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        background: Optional[BackgroundTasks] = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ):
        self._session_factory = session_factory
        self._background = background
        self.ip_address = ip_address
        self.user_agent = user_agent

    def record(
        self,
        user_id: str | None,
        action: AuditAction,
        entity_type: str,
        entity_id: str | None,
        description: str,
        details: Dict[str, Any] | None = None,
    ) -> None:
        entry = {
            "user_id": user_id,
            "action_type": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "description": description,
            "details": details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": utcnow(),
        }

        if self._background is not None:
            self._background.add_task(self.write, entry)
        else:
            self.write(entry)

    def write(self, entry: Dict[str, Any]) -> bool:
        """
        Persist one entry. Returns False (and logs) on any failure.
        """
        logger.info(
            "audit_event",
            user_id=entry["user_id"],
            action=entry["action_type"].value,
            entity_type=entry["entity_type"],
            entity_id=entry["entity_id"],
        )

        db = None
        try:
            db = self._session_factory()
            db.add(AuditLog(**entry))
            db.commit()
            return True
        except Exception as e:
            if db is not None:
                db.rollback()
            logger.error(
                "audit_write_failed",
                error=repr(e),
                action=entry["action_type"].value,
                entity_id=entry["entity_id"],
            )
            return False
        finally:
            if db is not None:
                db.close()


def serialize_details(values: Dict[str, Any]) -> Dict[str, Any]:
    """Make a details dict JSON-safe (Decimal, datetime and enums become strings)."""
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, enum.Enum):
            out[key] = value.value
        elif value is None or isinstance(value, (bool, int, str)):
            out[key] = value
        elif hasattr(value, "isoformat"):
            out[key] = value.isoformat()
        elif isinstance(value, dict):
            out[key] = serialize_details(value)
        else:
            out[key] = str(value)
    return out
