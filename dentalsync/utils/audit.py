"""
Audit logging for chart writes. Inferred linkages are always recorded with
an ``inferred`` marker so best-effort matches can be reviewed later.
"""
import json
import logging
from typing import Any, Optional

from dentalsync.extensions import db
from dentalsync.models import AuditLog

logger = logging.getLogger(__name__)


def log_audit(
    entity_type: str,
    action: str,
    user_id: Optional[str] = None,
    entity_id: Optional[Any] = None,
    details: Optional[dict] = None,
) -> None:
    """Append an audit log entry."""
    try:
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            action=action,
            user_id=str(user_id) if user_id is not None else None,
            details=json.dumps(details, default=str) if details else None,
        )
        db.session.add(entry)
        db.session.commit()
    except Exception as e:
        logger.warning("Audit log failed: %s", e)
        db.session.rollback()
