import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def _sanitize(obj: Any) -> Any:
    """Make details/states JSON-serializable."""
    if hasattr(obj, "model_dump"):
        return _sanitize(obj.model_dump())
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(i) for i in obj]
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    return obj


class AuditService:
    def __init__(self, db: Session):
        self.db = db

    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        performed_by: Optional[str],
        details: Optional[dict] = None,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None
    ) -> AuditLog:
        """
        Create an append-only audit entry.

        Not committed here: the entry joins the caller's transaction, so an
        action and its audit record are persisted or rolled back together.
        """
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            performed_by=performed_by,
            details=_sanitize(details or {}),
            before_state=_sanitize(before_state),
            after_state=_sanitize(after_state)
        )
        self.db.add(entry)
        self.db.flush()
        logger.info(
            f"Audit: {action} on {entity_type} {entity_id}",
            extra={"action": action, "entity_type": entity_type, "entity_id": entity_id, "performed_by": performed_by}
        )
        return entry

    # Static wrapper for call sites that only hold a session
    @staticmethod
    def log(db: Session, *args, **kwargs) -> AuditLog:
        return AuditService(db).log_action(*args, **kwargs)
