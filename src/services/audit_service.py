"""Audit trail for billing mutations.

Every state change (period transitions, generation, payments, allocations,
overrides, repayment plans) leaves one AuditLog row written in the same
transaction as the change itself.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from src.models.audit_log import AuditLog


def to_json(value: Any) -> Any:
    """Make a changes snapshot JSON-safe (money as strings, dates as ISO)."""
    if isinstance(value, dict):
        return {str(k.value if isinstance(k, Enum) else k): to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class AuditService:
    """Writes and reads billing audit entries.

    log() only adds the entry to the caller's session; the caller commits it
    together with the change it describes.
    """

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: int | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Add an audit entry to the session.

        Args:
            db: Database session holding the change
            entity_type: "billing_period", "payment", "import_batch", ...
            entity_id: Primary key of the entity
            action: "lock", "generate_accruals", "void", ...
            actor_id: Staff member, None for system actions
            changes: {"before": ..., "after": ...} snapshot
        """
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=to_json(changes) if changes is not None else None,
        )
        db.add(entry)
        return entry

    @staticmethod
    def history(db: Session, entity_type: str, entity_id: int) -> list[AuditLog]:
        """Audit entries of one entity, oldest first."""
        return (
            db.query(AuditLog)
            .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.id)
            .all()
        )


__all__ = ["AuditService", "to_json"]
