"""Best-effort audit trail for sensitive account and copilot actions."""
from typing import Optional
import structlog

from healbridge.models import AuditLog
from healbridge.services.database import get_session

log = structlog.get_logger()


async def record_audit(
    user_id: str,
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
) -> bool:
    """
    Write one audit row in its own session.

    A failed write is logged and reported through the return value; it never
    fails the operation being audited.
    """
    try:
        async with get_session() as session:
            session.add(AuditLog(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
            ))
        return True
    except Exception as e:
        log.warning("audit_write_failed", user_id=user_id, action=action, error=str(e))
        return False
