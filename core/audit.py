from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import Field

from .schema import ApiModel
from .storage import InMemoryStorage, Transaction


# Actions surfaced to super admins as platform notifications
NOTIFICATION_ACTIONS = (
    "WITHDRAWAL_CREATE",
    "WITHDRAWAL_APPROVED",
    "WITHDRAWAL_REJECTED",
    "ORDER_VERIFIED",
    "ORDER_CANCELED",
)


class AuditEntry(ApiModel):
    id: UUID
    actor_id: UUID
    action: str
    metadata: dict = Field(default_factory=dict)
    created_at: datetime


def record_audit(txn: Transaction, actor_id: UUID, action: str, metadata: Optional[dict[str, Any]] = None) -> AuditEntry:
    """Append an audit entry inside the caller's transaction."""
    entry = {
        "id": uuid4(),
        "actor_id": actor_id,
        "action": action,
        "metadata": dict(metadata or {}),
        "created_at": datetime.now(timezone.utc),
    }
    txn.insert("audit_log", entry["id"], entry)
    return AuditEntry(**entry)


def audit_trail(storage: InMemoryStorage, action: Optional[str] = None) -> list[AuditEntry]:
    entries = [AuditEntry(**e) for e in storage.snapshot("audit_log")]
    if action:
        entries = [e for e in entries if e.action == action]
    entries.sort(key=lambda e: e.created_at)
    return entries


def platform_notifications(storage: InMemoryStorage, limit: int = 50) -> list[AuditEntry]:
    """Newest withdrawal and order events first, capped at ``limit``."""
    entries = [e for e in audit_trail(storage) if e.action in NOTIFICATION_ACTIONS]
    entries.reverse()
    return entries[:limit]
