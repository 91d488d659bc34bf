"""
Audit logging utilities.

Every commission record transition, successful or not, must be logged.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models.audit import AuditAction, CommissionAuditEntry

SYSTEM_ACTOR = "system"


def actor_label(user_id: Optional[int]) -> str:
    """Audit `performed_by` value for a user id (or the system)."""
    if user_id is None:
        return SYSTEM_ACTOR
    return f"user:{user_id}"


def log_action(
    db: AsyncSession,
    record_id: int,
    action: AuditAction,
    performed_by: str,
    details: Optional[dict[str, Any]] = None,
    succeeded: bool = True,
    ip_address: Optional[str] = None,
) -> CommissionAuditEntry:
    """
    Append an entry to a record's audit trail.

    Args:
        db: Database session
        record_id: Commission record the action concerns
        action: Type of action being performed
        performed_by: "user:<id>" or "system"
        details: Additional context (from/to state, amounts, references)
        succeeded: False for a rejected transition attempt
        ip_address: Client IP address

    Returns:
        Created CommissionAuditEntry
    """
    entry = CommissionAuditEntry(
        record_id=record_id,
        action=action,
        performed_by=performed_by,
        performed_at=datetime.now(timezone.utc),
        succeeded=succeeded,
        details=details,
        ip_address=ip_address,
    )
    db.add(entry)
    # Note: commit should happen in the calling context
    return entry


def get_client_ip(request) -> Optional[str]:
    """
    Extract client IP from request.

    Handles X-Forwarded-For header for reverse proxy setups.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First IP in the list is the client
        return forwarded_for.split(",")[0].strip()

    if hasattr(request, "client") and request.client:
        return request.client.host

    return None
