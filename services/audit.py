from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from models.admin import AdminAuditLog, AdminUser

logger = logging.getLogger(__name__)


def _entity(target: Optional[Dict[str, Any]]):
    # {"booking_id": "..."} -> ("booking", "...")
    for key, value in (target or {}).items():
        if key.endswith("_id"):
            return key[:-3], str(value)
    return None, None


async def record_admin_action(
    admin: AdminUser,
    action: str,
    target: Optional[Dict[str, Any]] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> None:
    """Append to the admin audit trail. A failed write is logged, not raised."""
    entity, entity_id = _entity(target)
    try:
        await AdminAuditLog(
            admin_id=admin.id,
            admin_email=str(admin.email),
            action=action,
            entity=entity,
            entity_id=entity_id,
            details=dict(meta or {}),
        ).insert()
    except Exception:
        logger.exception("audit log write failed for %s (%s)", action, admin.email)
